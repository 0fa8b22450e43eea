from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Any

from fastapi import Request
from fastapi.encoders import jsonable_encoder
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from taskboard.models import Task, TaskActivity

logger = logging.getLogger(__name__)


def _text(value: Any) -> str | None:
  if value is None:
    return None
  if isinstance(value, (date, datetime)):
    return value.isoformat()
  return str(value)


class ActivityRecorder:
  """
  Best-effort task activity log.

  Writes happen in a session of their own, after the caller has committed,
  so a failure here is logged and never reaches the caller.
  """

  def __init__(self, session_factory: async_sessionmaker[AsyncSession]) -> None:
    self._session_factory = session_factory

  async def record(
    self,
    *,
    project_id: str,
    action_type: str,
    description: str,
    task_id: str | None = None,
    user_id: str | None = None,
    field_name: str | None = None,
    old_value: Any = None,
    new_value: Any = None,
    details: dict[str, Any] | None = None,
    request: Request | None = None,
  ) -> None:
    try:
      async with self._session_factory() as db:
        db.add(
          TaskActivity(
            task_id=task_id,
            project_id=project_id,
            user_id=user_id,
            action_type=action_type,
            description=description,
            field_name=field_name,
            old_value=_text(old_value),
            new_value=_text(new_value),
            details=jsonable_encoder(details or {}),
            ip_address=request.client.host if request is not None and request.client else None,
            user_agent=request.headers.get("user-agent") if request is not None else None,
          )
        )
        await db.commit()
    except Exception:
      logger.exception("failed to record %s activity for task %s", action_type, task_id)

  async def record_create(self, task: Task, *, user_id: str, request: Request | None = None) -> None:
    await self.record(
      project_id=task.project_id,
      task_id=task.id,
      user_id=user_id,
      action_type="created",
      description=f"Created task '{task.title}'",
      details={"stage_id": task.stage_id, "position": task.position},
      request=request,
    )

  async def record_update(
    self,
    task: Task,
    *,
    user_id: str,
    field_name: str,
    old_value: Any,
    new_value: Any,
    request: Request | None = None,
  ) -> None:
    action = "updated"
    if field_name == "assignee_id":
      action = "assigned" if new_value else "unassigned"
    elif field_name == "status" and new_value == "done":
      action = "completed"
    await self.record(
      project_id=task.project_id,
      task_id=task.id,
      user_id=user_id,
      action_type=action,
      description=f"Changed {field_name} of '{task.title}'",
      field_name=field_name,
      old_value=old_value,
      new_value=new_value,
      request=request,
    )

  async def record_move(
    self,
    *,
    task_id: str,
    user_id: str,
    project_id: str,
    old_stage_id: str,
    new_stage_id: str,
    old_stage_name: str,
    new_stage_name: str,
    old_position: int | None = None,
    new_position: int | None = None,
    request: Request | None = None,
  ) -> None:
    if old_stage_id == new_stage_id:
      description = f"Reordered within '{new_stage_name}'"
    else:
      description = f"Moved from '{old_stage_name}' to '{new_stage_name}'"
    await self.record(
      project_id=project_id,
      task_id=task_id,
      user_id=user_id,
      action_type="moved",
      description=description,
      field_name="stage_id",
      old_value=old_stage_id,
      new_value=new_stage_id,
      details={
        "old_stage_name": old_stage_name,
        "new_stage_name": new_stage_name,
        "old_position": old_position,
        "new_position": new_position,
      },
      request=request,
    )

  async def record_delete(self, *, task_id: str, project_id: str, title: str, user_id: str, request: Request | None = None) -> None:
    await self.record(
      project_id=project_id,
      task_id=task_id,
      user_id=user_id,
      action_type="deleted",
      description=f"Deleted task '{title}'",
      request=request,
    )


def get_activity_recorder(request: Request) -> ActivityRecorder:
  return request.app.state.activity
