from __future__ import annotations

from collections.abc import Iterable

from sqlalchemy import delete, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.errors import NotFoundError
from taskboard.models import Comment, Stage, Task
from taskboard.ordering.positions import clamp_position, count_stages


async def reposition_stage(db: AsyncSession, stage: Stage, new_position: int) -> int:
  """Move ``stage`` to ``new_position`` and shift the stages in between.

  Must run inside the caller's transaction with the project row locked.
  Returns the clamped position the stage ended up at.
  """
  size = await count_stages(db, stage.project_id)
  target = clamp_position(new_position, size)
  old = stage.position
  if target == old:
    return target

  if target < old:
    shift = (
      update(Stage)
      .where(Stage.project_id == stage.project_id, Stage.id != stage.id, Stage.position >= target, Stage.position < old)
      .values(position=Stage.position + 1)
    )
  else:
    shift = (
      update(Stage)
      .where(Stage.project_id == stage.project_id, Stage.id != stage.id, Stage.position > old, Stage.position <= target)
      .values(position=Stage.position - 1)
    )
  await db.execute(shift.execution_options(synchronize_session=False))
  stage.position = target
  return target


async def delete_stage(db: AsyncSession, stage: Stage) -> int:
  """Delete the stage with its tasks and close the gap it leaves. Returns the number of tasks removed."""
  task_ids = select(Task.id).where(Task.stage_id == stage.id)
  await db.execute(delete(Comment).where(Comment.task_id.in_(task_ids)).execution_options(synchronize_session=False))
  res = await db.execute(delete(Task).where(Task.stage_id == stage.id).execution_options(synchronize_session=False))
  removed = res.rowcount or 0
  await db.execute(delete(Stage).where(Stage.id == stage.id).execution_options(synchronize_session=False))
  await db.execute(
    update(Stage)
    .where(Stage.project_id == stage.project_id, Stage.position > stage.position)
    .values(position=Stage.position - 1)
    .execution_options(synchronize_session=False)
  )
  return removed


async def reorder_stages(db: AsyncSession, project_id: str, orders: Iterable[tuple[str, int]]) -> None:
  # Caller supplies the full target ordering; nothing is shifted here.
  for stage_id, position in orders:
    res = await db.execute(
      update(Stage)
      .where(Stage.id == stage_id, Stage.project_id == project_id)
      .values(position=position)
      .execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise NotFoundError(f"Stage {stage_id} not found in project")
