from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from taskboard.errors import ConcurrencyHazard, NotFoundError, PolicyViolation, VerificationFailure
from taskboard.models import Stage, Task, utcnow
from taskboard.ordering.positions import clamp_position, count_tasks, lock_stage, next_task_position
from taskboard.ordering.transaction import atomic

logger = logging.getLogger(__name__)


@dataclass
class MoveResult:
  task: Task
  from_stage: Stage
  to_stage: Stage
  from_position: int
  to_position: int

  @property
  def changed_stage(self) -> bool:
    return self.from_stage.id != self.to_stage.id


async def load_task(db: AsyncSession, task_id: str, *, fresh: bool = False) -> Task | None:
  """Task with its stage and assignee loaded. ``fresh`` bypasses the identity map."""
  q = select(Task).where(Task.id == task_id).options(selectinload(Task.stage), selectinload(Task.assignee))
  if fresh:
    q = q.execution_options(populate_existing=True)
  res = await db.execute(q)
  return res.scalar_one_or_none()


async def _compact_stage(db: AsyncSession, stage_id: str) -> dict[str, int]:
  """Renumber a stage's tasks to 1..N in their current order. Returns the new positions by task id."""
  res = await db.execute(select(Task.id, Task.position).where(Task.stage_id == stage_id).order_by(Task.position.asc(), Task.id.asc()))
  renumbered: dict[str, int] = {}
  for pos, row in enumerate(res.all(), start=1):
    renumbered[row.id] = pos
    if row.position != pos:
      await db.execute(
        update(Task).where(Task.id == row.id).values(position=pos).execution_options(synchronize_session=False)
      )
  return renumbered


async def _shift_within_stage(db: AsyncSession, task: Task, old: int, target: int) -> None:
  if target == old:
    return
  if target < old:
    q = (
      update(Task)
      .where(Task.stage_id == task.stage_id, Task.id != task.id, Task.position >= target, Task.position < old)
      .values(position=Task.position + 1)
    )
  else:
    q = (
      update(Task)
      .where(Task.stage_id == task.stage_id, Task.id != task.id, Task.position > old, Task.position <= target)
      .values(position=Task.position - 1)
    )
  await db.execute(q.execution_options(synchronize_session=False))


async def _open_gap(db: AsyncSession, stage_id: str, at: int) -> None:
  await db.execute(
    update(Task)
    .where(Task.stage_id == stage_id, Task.position >= at)
    .values(position=Task.position + 1)
    .execution_options(synchronize_session=False)
  )


async def _write_position(db: AsyncSession, task: Task, stage_id: str, position: int) -> None:
  # Only the ordering columns; a concurrent edit of other fields must survive.
  res = await db.execute(
    update(Task)
    .where(Task.id == task.id, Task.version == task.version)
    .values(stage_id=stage_id, position=position, updated_at=utcnow(), version=Task.version + 1)
    .execution_options(synchronize_session=False)
  )
  if res.rowcount != 1:
    raise ConcurrencyHazard("Task was modified by another request; reload and retry")


async def move_task(
  db: AsyncSession,
  task_id: str,
  target_stage_id: str,
  target_position: int | None,
  *,
  expected_version: int | None = None,
) -> MoveResult:
  """Move a task to ``target_stage_id`` at ``target_position``.

  A missing or negative position appends to the target stage. Within the same
  stage the position is clamped to the stage size and the tasks in between
  shift by one, exactly like stage repositioning. Across stages an explicit
  position opens a gap at that slot (clamped to ``1..count+1``); the source
  stage keeps its gap. The target stage is renumbered to ``1..N`` first, so
  gaps left by earlier deletes never skew the clamp or the shift.

  Everything up to the write runs in one transaction. After commit the task
  is re-read; a stage mismatch raises VerificationFailure since the commit
  cannot be undone at that point.
  """
  async with atomic(db, "move task"):
    res = await db.execute(select(Task).where(Task.id == task_id).execution_options(populate_existing=True))
    task = res.scalar_one_or_none()
    if not task:
      raise NotFoundError("Task not found")

    # lock in id order so opposite moves between two stages cannot deadlock
    locked: dict[str, Stage] = {}
    for sid in sorted({target_stage_id, task.stage_id}):
      s = await lock_stage(db, sid, project_id=task.project_id)
      if s:
        locked[sid] = s
    target = locked.get(target_stage_id)
    if not target:
      raise NotFoundError("Target stage not found")
    source = locked[task.stage_id]
    if expected_version is not None and expected_version != task.version:
      raise ConcurrencyHazard("Task was modified by another request; reload and retry")

    if not target.allow_task_movement:
      raise PolicyViolation("Task movement is not allowed to this stage")

    same_stage = target.id == source.id
    if not same_stage and target.max_tasks > 0:
      if await count_tasks(db, target.id) >= target.max_tasks:
        raise PolicyViolation("Target stage has reached maximum task limit")

    from_position = task.position
    renumbered = await _compact_stage(db, target.id)
    append = target_position is None or target_position < 0
    if same_stage:
      size = len(renumbered)
      resolved = clamp_position(size if append else target_position, size)
      await _shift_within_stage(db, task, renumbered[task.id], resolved)
    elif append:
      resolved = await next_task_position(db, target.id)
    else:
      resolved = clamp_position(target_position, len(renumbered) + 1)
      await _open_gap(db, target.id, resolved)

    await _write_position(db, task, target.id, resolved)

  moved = await load_task(db, task_id, fresh=True)
  if moved is None or moved.stage_id != target.id:
    raw = (await db.execute(select(Task.stage_id, Task.position).where(Task.id == task_id))).one_or_none()
    if raw is None or raw.stage_id != target.id:
      logger.error("task %s move to stage %s not visible after commit (read back %s)", task_id, target.id, raw)
      raise VerificationFailure("Task move verification failed")
    moved = await load_task(db, task_id, fresh=True)

  logger.info("task %s moved %s:%s -> %s:%s", task_id, source.id, from_position, target.id, resolved)
  return MoveResult(task=moved, from_stage=source, to_stage=target, from_position=from_position, to_position=resolved)


async def reorder_tasks(db: AsyncSession, orders: Iterable[tuple[str, int]]) -> None:
  # Flat overwrite; the caller owns the consistency of the whole ordering.
  for task_id, position in orders:
    res = await db.execute(
      update(Task).where(Task.id == task_id).values(position=position).execution_options(synchronize_session=False)
    )
    if res.rowcount != 1:
      raise NotFoundError(f"Task {task_id} not found")
