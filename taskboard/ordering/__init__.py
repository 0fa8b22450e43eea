from taskboard.ordering.positions import (
  clamp_position,
  count_stages,
  count_tasks,
  lock_project,
  lock_stage,
  next_stage_position,
  next_task_position,
)
from taskboard.ordering.stages import delete_stage, reorder_stages, reposition_stage
from taskboard.ordering.tasks import MoveResult, load_task, move_task, reorder_tasks
from taskboard.ordering.transaction import atomic

__all__ = [
  "MoveResult",
  "atomic",
  "clamp_position",
  "count_stages",
  "count_tasks",
  "delete_stage",
  "load_task",
  "lock_project",
  "lock_stage",
  "move_task",
  "next_stage_position",
  "next_task_position",
  "reorder_stages",
  "reorder_tasks",
  "reposition_stage",
]
