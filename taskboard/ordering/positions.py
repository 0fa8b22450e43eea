from __future__ import annotations

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.errors import NotFoundError, ValidationError
from taskboard.models import Project, Stage, Task


def clamp_position(requested: int, size: int) -> int:
  if size < 1:
    raise ValidationError("Nothing to reposition into: collection is empty")
  if requested < 1:
    return 1
  if requested > size:
    return size
  return requested


async def _next_position(db: AsyncSession, column, *criteria) -> int:
  res = await db.execute(select(func.max(column)).where(*criteria))
  max_pos = res.scalar_one()
  return (max_pos + 1) if max_pos is not None else 1


async def next_stage_position(db: AsyncSession, project_id: str) -> int:
  return await _next_position(db, Stage.position, Stage.project_id == project_id)


async def next_task_position(db: AsyncSession, stage_id: str) -> int:
  return await _next_position(db, Task.position, Task.stage_id == stage_id)


async def count_stages(db: AsyncSession, project_id: str) -> int:
  res = await db.execute(select(func.count()).select_from(Stage).where(Stage.project_id == project_id))
  return int(res.scalar_one() or 0)


async def count_tasks(db: AsyncSession, stage_id: str) -> int:
  res = await db.execute(select(func.count()).select_from(Task).where(Task.stage_id == stage_id))
  return int(res.scalar_one() or 0)


# Writers to one collection serialize on its parent row: the project for
# stages, the stage for tasks. Position reads must happen after the lock.


async def lock_project(db: AsyncSession, project_id: str) -> Project:
  res = await db.execute(
    select(Project).where(Project.id == project_id).with_for_update().execution_options(populate_existing=True)
  )
  p = res.scalar_one_or_none()
  if not p:
    raise NotFoundError("Project not found")
  return p


async def lock_stage(db: AsyncSession, stage_id: str, *, project_id: str | None = None) -> Stage | None:
  q = select(Stage).where(Stage.id == stage_id)
  if project_id is not None:
    q = q.where(Stage.project_id == project_id)
  res = await db.execute(q.with_for_update().execution_options(populate_existing=True))
  return res.scalar_one_or_none()
