from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import get_current_user, get_db, require_project_access
from taskboard.errors import NotFoundError
from taskboard.models import Task, TaskActivity, User
from taskboard.schemas import ActivityOut, ActivityStatsOut

router = APIRouter(tags=["activities"])


def _activity_out(a: TaskActivity) -> ActivityOut:
  return ActivityOut(
    id=a.id,
    task_id=a.task_id,
    project_id=a.project_id,
    user_id=a.user_id,
    action_type=a.action_type,
    description=a.description,
    field_name=a.field_name,
    old_value=a.old_value,
    new_value=a.new_value,
    details=a.details or {},
    created_at=a.created_at,
  )


async def _page(db: AsyncSession, q, limit: int, offset: int) -> list[ActivityOut]:
  res = await db.execute(q.order_by(TaskActivity.created_at.desc()).limit(limit).offset(offset))
  return [_activity_out(a) for a in res.scalars().all()]


@router.get("/tasks/{task_id}/activities", response_model=list[ActivityOut])
async def task_activities(
  task_id: str,
  limit: int = Query(default=50, ge=1, le=200),
  offset: int = Query(default=0, ge=0),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ActivityOut]:
  tres = await db.execute(select(Task.project_id).where(Task.id == task_id))
  project_id = tres.scalar_one_or_none()
  if project_id is None:
    raise NotFoundError("Task not found")
  await require_project_access(project_id, user, db)
  return await _page(db, select(TaskActivity).where(TaskActivity.task_id == task_id), limit, offset)


@router.get("/projects/{project_id}/activities", response_model=list[ActivityOut])
async def project_activities(
  project_id: str,
  action_type: str | None = None,
  limit: int = Query(default=50, ge=1, le=200),
  offset: int = Query(default=0, ge=0),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ActivityOut]:
  await require_project_access(project_id, user, db)
  q = select(TaskActivity).where(TaskActivity.project_id == project_id)
  if action_type:
    q = q.where(TaskActivity.action_type == action_type)
  return await _page(db, q, limit, offset)


@router.get("/projects/{project_id}/activities/stats", response_model=ActivityStatsOut)
async def project_activity_stats(
  project_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ActivityStatsOut:
  await require_project_access(project_id, user, db)
  res = await db.execute(
    select(TaskActivity.action_type, func.count(TaskActivity.id))
    .where(TaskActivity.project_id == project_id)
    .group_by(TaskActivity.action_type)
  )
  by_action = {action: int(n) for action, n in res.all()}
  return ActivityStatsOut(total=sum(by_action.values()), by_action=by_action)


@router.get("/users/me/activities", response_model=list[ActivityOut])
async def my_activities(
  limit: int = Query(default=50, ge=1, le=200),
  offset: int = Query(default=0, ge=0),
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ActivityOut]:
  return await _page(db, select(TaskActivity).where(TaskActivity.user_id == user.id), limit, offset)
