from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, Request
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.activity import ActivityRecorder, get_activity_recorder
from taskboard.deps import get_current_user, get_db, require_project_access
from taskboard.errors import ConcurrencyHazard, NotFoundError, PolicyViolation, ValidationError
from taskboard.models import Comment, Project, ProjectMember, Stage, Task, User, utcnow
from taskboard.ordering import atomic, count_tasks, load_task, lock_stage, move_task, next_task_position, reorder_tasks
from taskboard.schemas import StageBrief, TaskCreateIn, TaskMoveIn, TaskOut, TaskReorderIn, TaskUpdateIn, UserBrief

logger = logging.getLogger(__name__)

router = APIRouter(tags=["tasks"])


def _task_out(t: Task, *, stage: Stage | None = None, assignee: User | None = None) -> TaskOut:
  return TaskOut(
    id=t.id,
    stage_id=t.stage_id,
    project_id=t.project_id,
    title=t.title,
    description=t.description,
    status=t.status,
    priority=t.priority,
    assignee_id=t.assignee_id,
    due_date=t.due_date,
    estimated_hours=t.estimated_hours,
    actual_hours=t.actual_hours,
    position=t.position,
    created_by=t.created_by,
    completed_at=t.completed_at,
    version=t.version,
    created_at=t.created_at,
    updated_at=t.updated_at,
    stage=StageBrief(id=stage.id, name=stage.name, color=stage.color, position=stage.position) if stage else None,
    assignee=UserBrief(id=assignee.id, username=assignee.username, email=assignee.email) if assignee else None,
  )


def _task_detail_out(t: Task) -> TaskOut:
  # requires load_task(): stage and assignee eagerly loaded
  return _task_out(t, stage=t.stage, assignee=t.assignee)


async def _get_task_or_404(db: AsyncSession, task_id: str) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise NotFoundError("Task not found")
  return t


async def _validate_assignee(db: AsyncSession, project: Project, assignee_id: str | None) -> None:
  if not assignee_id or assignee_id == project.owner_id:
    return
  res = await db.execute(
    select(ProjectMember.id).where(ProjectMember.project_id == project.id, ProjectMember.user_id == assignee_id)
  )
  if res.scalar_one_or_none() is None:
    raise ValidationError("Assignee must be a member of the project")


@router.post("/tasks", response_model=TaskOut)
async def create_task(
  payload: TaskCreateIn,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  activity: ActivityRecorder = Depends(get_activity_recorder),
) -> TaskOut:
  s = (await db.execute(select(Stage).where(Stage.id == payload.stage_id))).scalar_one_or_none()
  if not s or (payload.project_id and payload.project_id != s.project_id):
    raise NotFoundError("Stage not found")
  project = await require_project_access(s.project_id, user, db)
  await _validate_assignee(db, project, payload.assignee_id)

  async with atomic(db, "create task"):
    s = await lock_stage(db, payload.stage_id)
    if not s:
      raise NotFoundError("Stage not found")
    if not s.allow_task_creation:
      raise PolicyViolation("Task creation is not allowed in this stage")
    if s.max_tasks > 0 and await count_tasks(db, s.id) >= s.max_tasks:
      raise PolicyViolation("Stage has reached maximum task limit")
    t = Task(
      stage_id=s.id,
      project_id=s.project_id,
      title=payload.title.strip(),
      description=payload.description,
      status=s.auto_assign_status or payload.status,
      priority=payload.priority,
      assignee_id=payload.assignee_id,
      due_date=payload.due_date,
      estimated_hours=payload.estimated_hours,
      position=await next_task_position(db, s.id),
      created_by=user.id,
    )
    if t.status == "done":
      t.completed_at = utcnow()
    db.add(t)

  await activity.record_create(t, user_id=user.id, request=request)
  t = await load_task(db, t.id, fresh=True)
  return _task_detail_out(t)


@router.get("/projects/{project_id}/tasks", response_model=list[TaskOut])
async def list_tasks(
  project_id: str,
  stage_id: str | None = None,
  assignee_id: str | None = None,
  priority: str | None = None,
  status: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[TaskOut]:
  await require_project_access(project_id, user, db)
  q = select(Task).where(Task.project_id == project_id)
  if stage_id:
    q = q.where(Task.stage_id == stage_id)
  if assignee_id:
    q = q.where(Task.assignee_id == assignee_id)
  if priority:
    q = q.where(Task.priority == priority)
  if status:
    q = q.where(Task.status == status)
  q = q.join(Stage, Stage.id == Task.stage_id).order_by(Stage.position.asc(), Task.position.asc())
  res = await db.execute(q.execution_options(populate_existing=True))
  return [_task_out(t) for t in res.scalars().all()]


@router.get("/tasks/{task_id}", response_model=TaskOut)
async def get_task(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> TaskOut:
  t = await load_task(db, task_id)
  if not t:
    raise NotFoundError("Task not found")
  await require_project_access(t.project_id, user, db)
  return _task_detail_out(t)


@router.patch("/tasks/{task_id}", response_model=TaskOut)
async def update_task(
  task_id: str,
  payload: TaskUpdateIn,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  activity: ActivityRecorder = Depends(get_activity_recorder),
) -> TaskOut:
  t = await _get_task_or_404(db, task_id)
  project = await require_project_access(t.project_id, user, db)
  if payload.version is not None and payload.version != t.version:
    raise ConcurrencyHazard("Task was modified by another request; reload and retry")

  fields_set = payload.model_fields_set
  if "assignee_id" in fields_set:
    await _validate_assignee(db, project, payload.assignee_id)

  changed: list[tuple[str, object, object]] = []
  async with atomic(db, "update task"):
    for attr in ("title", "description", "status", "priority", "assignee_id", "due_date", "estimated_hours", "actual_hours"):
      if attr not in fields_set:
        continue
      val = getattr(payload, attr)
      if val is None and attr in ("title", "description", "status", "priority"):
        continue
      if attr == "title":
        val = val.strip()
      old = getattr(t, attr)
      if old == val:
        continue
      setattr(t, attr, val)
      changed.append((attr, old, val))
      if attr == "status":
        t.completed_at = utcnow() if val == "done" else None

  for attr, old, new in changed:
    await activity.record_update(t, user_id=user.id, field_name=attr, old_value=old, new_value=new, request=request)
  t = await load_task(db, task_id, fresh=True)
  return _task_detail_out(t)


@router.delete("/tasks/{task_id}")
async def delete_task(
  task_id: str,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  activity: ActivityRecorder = Depends(get_activity_recorder),
) -> dict:
  t = await _get_task_or_404(db, task_id)
  await require_project_access(t.project_id, user, db)
  title, project_id = t.title, t.project_id

  async with atomic(db, "delete task"):
    s = await lock_stage(db, t.stage_id)
    if s is not None and not s.allow_task_deletion:
      raise PolicyViolation("Task deletion is not allowed in this stage")
    # siblings keep their positions; gaps are tolerated
    await db.execute(delete(Comment).where(Comment.task_id == task_id))
    await db.execute(delete(Task).where(Task.id == task_id).execution_options(synchronize_session=False))

  logger.info("task %s deleted by %s", task_id, user.id)
  await activity.record_delete(task_id=task_id, project_id=project_id, title=title, user_id=user.id, request=request)
  return {"ok": True}


@router.patch("/tasks/{task_id}/move", response_model=TaskOut)
async def move(
  task_id: str,
  payload: TaskMoveIn,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  activity: ActivityRecorder = Depends(get_activity_recorder),
) -> TaskOut:
  t = await _get_task_or_404(db, task_id)
  await require_project_access(t.project_id, user, db)

  result = await move_task(db, task_id, payload.new_stage_id, payload.new_position, expected_version=payload.version)

  await activity.record_move(
    task_id=task_id,
    user_id=user.id,
    project_id=result.task.project_id,
    old_stage_id=result.from_stage.id,
    new_stage_id=result.to_stage.id,
    old_stage_name=result.from_stage.name,
    new_stage_name=result.to_stage.name,
    old_position=result.from_position,
    new_position=result.to_position,
    request=request,
  )
  return _task_detail_out(result.task)


@router.post("/tasks/reorder", response_model=list[TaskOut])
async def reorder(payload: TaskReorderIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[TaskOut]:
  ids = [o.task_id for o in payload.task_orders]
  res = await db.execute(select(Task.id, Task.project_id).where(Task.id.in_(ids)))
  project_by_task = {row.id: row.project_id for row in res.all()}
  missing = [i for i in ids if i not in project_by_task]
  if missing:
    raise NotFoundError(f"Task {missing[0]} not found")
  for project_id in set(project_by_task.values()):
    await require_project_access(project_id, user, db)

  async with atomic(db, "reorder tasks"):
    await reorder_tasks(db, [(o.task_id, o.position) for o in payload.task_orders])

  res = await db.execute(
    select(Task).where(Task.id.in_(ids)).order_by(Task.stage_id.asc(), Task.position.asc()).execution_options(populate_existing=True)
  )
  return [_task_out(x) for x in res.scalars().all()]
