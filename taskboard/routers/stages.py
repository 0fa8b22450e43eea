from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import get_current_user, get_db, require_project_access
from taskboard.errors import ConcurrencyHazard, NotFoundError
from taskboard.models import Stage, Task, User, utcnow
from taskboard.ordering import atomic, delete_stage, lock_project, lock_stage, next_stage_position, reorder_stages, reposition_stage
from taskboard.schemas import StageCreateIn, StageOut, StageReorderIn, StageUpdateIn

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stages"])


def _stage_out(s: Stage, task_count: int | None = None) -> StageOut:
  return StageOut(
    id=s.id,
    project_id=s.project_id,
    name=s.name,
    description=s.description,
    color=s.color,
    position=s.position,
    task_limit=s.task_limit,
    max_tasks=s.max_tasks,
    allow_task_creation=s.allow_task_creation,
    allow_task_deletion=s.allow_task_deletion,
    allow_task_movement=s.allow_task_movement,
    notification_enabled=s.notification_enabled,
    auto_assign_status=s.auto_assign_status,
    is_completed=s.is_completed,
    completed_at=s.completed_at,
    version=s.version,
    created_at=s.created_at,
    updated_at=s.updated_at,
    task_count=task_count,
  )


async def _get_stage_or_404(db: AsyncSession, stage_id: str) -> Stage:
  res = await db.execute(select(Stage).where(Stage.id == stage_id))
  s = res.scalar_one_or_none()
  if not s:
    raise NotFoundError("Stage not found")
  return s


@router.get("/projects/{project_id}/stages", response_model=list[StageOut])
async def list_stages(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[StageOut]:
  await require_project_access(project_id, user, db)
  counts = (
    select(Task.stage_id, func.count(Task.id).label("n")).where(Task.project_id == project_id).group_by(Task.stage_id).subquery()
  )
  res = await db.execute(
    select(Stage, counts.c.n)
    .outerjoin(counts, counts.c.stage_id == Stage.id)
    .where(Stage.project_id == project_id)
    .order_by(Stage.position.asc())
    .execution_options(populate_existing=True)
  )
  return [_stage_out(s, int(n or 0)) for s, n in res.all()]


@router.get("/stages/{stage_id}", response_model=StageOut)
async def get_stage(stage_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> StageOut:
  s = await _get_stage_or_404(db, stage_id)
  await require_project_access(s.project_id, user, db)
  cres = await db.execute(select(func.count()).select_from(Task).where(Task.stage_id == s.id))
  return _stage_out(s, int(cres.scalar_one() or 0))


@router.post("/stages", response_model=StageOut)
async def create_stage(payload: StageCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> StageOut:
  await require_project_access(payload.project_id, user, db)
  async with atomic(db, "create stage"):
    await lock_project(db, payload.project_id)
    s = Stage(
      project_id=payload.project_id,
      name=payload.name.strip(),
      description=payload.description,
      color=payload.color,
      task_limit=payload.task_limit,
      max_tasks=payload.max_tasks,
      allow_task_creation=payload.allow_task_creation,
      allow_task_deletion=payload.allow_task_deletion,
      allow_task_movement=payload.allow_task_movement,
      notification_enabled=payload.notification_enabled,
      auto_assign_status=payload.auto_assign_status,
      position=await next_stage_position(db, payload.project_id),
      created_by=user.id,
    )
    db.add(s)
  return _stage_out(s, 0)


@router.patch("/stages/{stage_id}", response_model=StageOut)
async def update_stage(
  stage_id: str,
  payload: StageUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> StageOut:
  s = await _get_stage_or_404(db, stage_id)
  await require_project_access(s.project_id, user, db)
  fields_set = payload.model_fields_set

  async with atomic(db, "update stage"):
    await lock_project(db, s.project_id)
    s = await lock_stage(db, stage_id)
    if not s:
      raise NotFoundError("Stage not found")
    if payload.version is not None and payload.version != s.version:
      raise ConcurrencyHazard("Stage was modified by another request; reload and retry")

    # shift siblings first so the stage row itself is written once
    if payload.position is not None:
      await reposition_stage(db, s, payload.position)

    for attr in (
      "name",
      "description",
      "color",
      "task_limit",
      "max_tasks",
      "allow_task_creation",
      "allow_task_deletion",
      "allow_task_movement",
      "notification_enabled",
    ):
      val = getattr(payload, attr)
      if val is not None:
        setattr(s, attr, val.strip() if attr == "name" else val)
    if "auto_assign_status" in fields_set:
      s.auto_assign_status = payload.auto_assign_status
    if payload.is_completed is not None and payload.is_completed != s.is_completed:
      s.is_completed = payload.is_completed
      s.completed_at = utcnow() if payload.is_completed else None

  return _stage_out(s)


@router.delete("/stages/{stage_id}")
async def remove_stage(stage_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  s = await _get_stage_or_404(db, stage_id)
  await require_project_access(s.project_id, user, db)
  async with atomic(db, "delete stage"):
    await lock_project(db, s.project_id)
    s = await lock_stage(db, stage_id)
    if not s:
      raise NotFoundError("Stage not found")
    removed = await delete_stage(db, s)
  logger.info("stage %s deleted with %d tasks", stage_id, removed)
  return {"ok": True, "deleted_tasks": removed}


@router.post("/stages/reorder", response_model=list[StageOut])
async def reorder(payload: StageReorderIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[StageOut]:
  await require_project_access(payload.project_id, user, db)
  async with atomic(db, "reorder stages"):
    await lock_project(db, payload.project_id)
    await reorder_stages(db, payload.project_id, [(o.stage_id, o.position) for o in payload.stage_orders])
  res = await db.execute(
    select(Stage)
    .where(Stage.project_id == payload.project_id)
    .order_by(Stage.position.asc())
    .execution_options(populate_existing=True)
  )
  return [_stage_out(s) for s in res.scalars().all()]
