from __future__ import annotations

from datetime import date, datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Query
from sqlalchemy import case, func, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import settings
from taskboard.deps import get_current_user, get_db, require_admin, require_project_access
from taskboard.models import ProjectMember, Session as DbSession, Stage, Task, User, UserPresence
from taskboard.schemas import (
  CompletedStatsOut,
  ProjectStatsOut,
  StageStatsOut,
  TaskStatsOut,
  TaskTrendOut,
  TrendPoint,
  UserStatsOut,
)

router = APIRouter(prefix="/projects/{project_id}", tags=["analytics"])
users_router = APIRouter(prefix="/analytics", tags=["analytics"])

RECENT_COMPLETION_WINDOW = timedelta(days=7)
ACTIVE_USER_WINDOW = timedelta(days=30)


async def _count_tasks(db: AsyncSession, project_id: str, *criteria) -> int:
  res = await db.execute(select(func.count()).select_from(Task).where(Task.project_id == project_id, *criteria))
  return int(res.scalar_one() or 0)


def _overdue() -> tuple:
  return (Task.due_date.is_not(None), Task.due_date < date.today(), Task.status != "done")


@router.get("/stats", response_model=ProjectStatsOut)
async def project_stats(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectStatsOut:
  p = await require_project_access(project_id, user, db)

  mres = await db.execute(select(ProjectMember.user_id).where(ProjectMember.project_id == project_id))
  member_ids = set(mres.scalars().all())
  member_ids.add(p.owner_id)

  sres = await db.execute(select(func.count()).select_from(Stage).where(Stage.project_id == project_id))
  total_stages = int(sres.scalar_one() or 0)

  by_status: dict[str, int] = {}
  res = await db.execute(
    select(Task.status, func.count(Task.id)).where(Task.project_id == project_id).group_by(Task.status)
  )
  for st, n in res.all():
    by_status[st] = int(n)

  by_priority: dict[str, int] = {}
  res = await db.execute(
    select(Task.priority, func.count(Task.id)).where(Task.project_id == project_id).group_by(Task.priority)
  )
  for pr, n in res.all():
    by_priority[pr] = int(n)

  overdue = await _count_tasks(db, project_id, *_overdue())

  total = sum(by_status.values())
  done = by_status.get("done", 0)
  return ProjectStatsOut(
    project_id=project_id,
    total_members=len(member_ids),
    total_stages=total_stages,
    total_tasks=total,
    todo_tasks=by_status.get("todo", 0),
    in_progress_tasks=by_status.get("in_progress", 0),
    done_tasks=done,
    overdue_tasks=overdue,
    completion_rate=round(done * 100.0 / total, 2) if total else 0.0,
    tasks_by_status=by_status,
    tasks_by_priority=by_priority,
  )


@router.get("/stage-stats", response_model=list[StageStatsOut])
async def stage_stats(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[StageStatsOut]:
  await require_project_access(project_id, user, db)
  res = await db.execute(
    select(
      Stage.id,
      Stage.name,
      Stage.position,
      func.count(Task.id),
      func.coalesce(func.sum(case((Task.status == "done", 1), else_=0)), 0),
    )
    .outerjoin(Task, Task.stage_id == Stage.id)
    .where(Stage.project_id == project_id)
    .group_by(Stage.id, Stage.name, Stage.position)
    .order_by(Stage.position.asc())
  )
  return [
    StageStatsOut(stage_id=sid, name=name, position=pos, total_tasks=int(total), completed_tasks=int(done))
    for sid, name, pos, total, done in res.all()
  ]


@router.get("/task-stats", response_model=TaskStatsOut)
async def task_stats(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskStatsOut:
  await require_project_access(project_id, user, db)
  total = await _count_tasks(db, project_id)
  done = await _count_tasks(db, project_id, Task.status == "done")

  res = await db.execute(
    select(Task.created_at, Task.completed_at).where(
      Task.project_id == project_id, Task.status == "done", Task.completed_at.is_not(None)
    )
  )
  durations = [(completed - created).total_seconds() / 3600 for created, completed in res.all()]
  return TaskStatsOut(
    project_id=project_id,
    total_tasks=total,
    completed_tasks=done,
    in_progress_tasks=await _count_tasks(db, project_id, Task.status == "in_progress"),
    todo_tasks=await _count_tasks(db, project_id, Task.status == "todo"),
    overdue_tasks=await _count_tasks(db, project_id, *_overdue()),
    completion_rate=round(done * 100.0 / total, 2) if total else 0.0,
    avg_completion_hours=round(sum(durations) / len(durations), 2) if durations else 0.0,
  )


@router.get("/completed-stats", response_model=CompletedStatsOut)
async def completed_stats(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> CompletedStatsOut:
  await require_project_access(project_id, user, db)
  since = datetime.now(timezone.utc) - RECENT_COMPLETION_WINDOW
  return CompletedStatsOut(
    project_id=project_id,
    total_tasks=await _count_tasks(db, project_id),
    completed_count=await _count_tasks(db, project_id, Task.status == "done"),
    recent_completed_count=await _count_tasks(db, project_id, Task.status == "done", Task.completed_at >= since),
  )


@router.get("/trend", response_model=TaskTrendOut)
async def task_trend(
  project_id: str,
  days: int = Query(default=30),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> TaskTrendOut:
  """Tasks created and completed per UTC day, oldest first, today included."""
  await require_project_access(project_id, user, db)
  if days < 1 or days > 365:
    days = 30
  today = datetime.now(timezone.utc).date()
  first = today - timedelta(days=days - 1)
  since = datetime(first.year, first.month, first.day, tzinfo=timezone.utc)

  created = {first + timedelta(days=i): 0 for i in range(days)}
  completed = dict(created)
  res = await db.execute(
    select(Task.created_at, Task.completed_at).where(
      Task.project_id == project_id, or_(Task.created_at >= since, Task.completed_at >= since)
    )
  )
  for created_at, completed_at in res.all():
    day = created_at.astimezone(timezone.utc).date()
    if day in created:
      created[day] += 1
    if completed_at is not None:
      day = completed_at.astimezone(timezone.utc).date()
      if day in completed:
        completed[day] += 1

  trend = [TrendPoint(day=d, created=created[d], completed=completed[d]) for d in created]
  return TaskTrendOut(project_id=project_id, days=days, trend=trend)


@users_router.get("/users", response_model=UserStatsOut)
async def user_stats(_: User = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> UserStatsOut:
  now = datetime.now(timezone.utc)
  month_start = datetime(now.year, now.month, 1, tzinfo=timezone.utc)
  online_cutoff = now - timedelta(minutes=settings.presence_timeout_minutes)

  total = await db.execute(select(func.count()).select_from(User))
  new = await db.execute(select(func.count()).select_from(User).where(User.created_at >= month_start))
  # active means signed in within the window
  active = await db.execute(
    select(func.count(func.distinct(DbSession.user_id))).where(DbSession.created_at >= now - ACTIVE_USER_WINDOW)
  )
  online = await db.execute(
    select(func.count(func.distinct(UserPresence.user_id))).where(
      UserPresence.is_online.is_(True), UserPresence.last_heartbeat >= online_cutoff
    )
  )
  return UserStatsOut(
    total_users=int(total.scalar_one() or 0),
    active_users=int(active.scalar_one() or 0),
    new_users=int(new.scalar_one() or 0),
    online_users=int(online.scalar_one() or 0),
  )
