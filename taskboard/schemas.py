from __future__ import annotations

import re
from datetime import date, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field
from pydantic import field_validator

_DATE_ONLY_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_COLOR_RE = re.compile(r"^#[0-9A-Fa-f]{6}$")

UserRole = Literal["admin", "user"]
MemberRole = Literal["manager", "collaborator"]


def _parse_date(value: object) -> object:
  # "YYYY-MM-DD" only; empty string clears the date
  if value is None or isinstance(value, date):
    return value
  if isinstance(value, str):
    s = value.strip()
    if not s:
      return None
    if not _DATE_ONLY_RE.fullmatch(s):
      raise ValueError("date must be formatted as YYYY-MM-DD")
    return date.fromisoformat(s)
  return value


def _check_email(value: str | None) -> str | None:
  if value is None:
    return None
  v = value.strip().lower()
  if "@" not in v or v.startswith("@") or v.endswith("@"):
    raise ValueError("invalid email")
  return v


class UserOut(BaseModel):
  id: str
  username: str
  email: str
  role: UserRole
  created_at: datetime


class UserBrief(BaseModel):
  id: str
  username: str
  email: str


class RegisterIn(BaseModel):
  username: str = Field(min_length=3, max_length=64)
  email: str = Field(min_length=3, max_length=320)
  password: str = Field(min_length=6, max_length=200)

  @field_validator("email")
  @classmethod
  def _email(cls, v: str) -> str:
    return _check_email(v)


class LoginIn(BaseModel):
  email: str
  password: str


class UserCreateIn(RegisterIn):
  role: UserRole = "user"


class UserUpdateIn(BaseModel):
  username: str | None = Field(default=None, min_length=3, max_length=64)
  email: str | None = Field(default=None, min_length=3, max_length=320)
  role: UserRole | None = None
  password: str | None = Field(default=None, min_length=6, max_length=200)

  @field_validator("email")
  @classmethod
  def _email(cls, v: str | None) -> str | None:
    return _check_email(v)


class UserSearchIn(BaseModel):
  query: str = Field(min_length=1, max_length=100)


class MemberIn(BaseModel):
  user_id: str
  role: MemberRole = "collaborator"


class MemberBatchIn(BaseModel):
  members: list[MemberIn] = Field(min_length=1)


class MemberRoleIn(BaseModel):
  role: MemberRole
  version: int | None = None


class MemberOut(BaseModel):
  id: str
  project_id: str
  user_id: str
  username: str
  email: str
  role: str
  invited_by: str | None
  version: int
  created_at: datetime


class ProjectCreateIn(BaseModel):
  name: str = Field(min_length=1, max_length=200)
  description: str = ""
  start_date: date | None = None
  end_date: date | None = None
  members: list[MemberIn] = []
  stages: list[str] = []

  @field_validator("start_date", "end_date", mode="before")
  @classmethod
  def _dates(cls, v: object) -> object:
    return _parse_date(v)


class ProjectUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=200)
  description: str | None = None
  status: Literal["active", "archived"] | None = None
  start_date: date | None = None
  end_date: date | None = None
  version: int | None = None

  @field_validator("start_date", "end_date", mode="before")
  @classmethod
  def _dates(cls, v: object) -> object:
    return _parse_date(v)


class ProjectOut(BaseModel):
  id: str
  name: str
  description: str
  owner_id: str
  status: str
  start_date: date | None
  end_date: date | None
  version: int
  created_at: datetime
  updated_at: datetime
  user_role: str | None = None


class StageCreateIn(BaseModel):
  project_id: str
  name: str = Field(min_length=1, max_length=120)
  description: str = ""
  color: str = "#3B82F6"
  task_limit: int = Field(default=0, ge=0)
  max_tasks: int = Field(default=0, ge=0)
  allow_task_creation: bool = True
  allow_task_deletion: bool = True
  allow_task_movement: bool = True
  notification_enabled: bool = True
  auto_assign_status: str | None = Field(default=None, max_length=32)

  @field_validator("color")
  @classmethod
  def _color(cls, v: str) -> str:
    if not _COLOR_RE.fullmatch(v):
      raise ValueError("color must be a #RRGGBB hex value")
    return v


class StageUpdateIn(BaseModel):
  name: str | None = Field(default=None, min_length=1, max_length=120)
  description: str | None = None
  color: str | None = None
  task_limit: int | None = Field(default=None, ge=0)
  max_tasks: int | None = Field(default=None, ge=0)
  allow_task_creation: bool | None = None
  allow_task_deletion: bool | None = None
  allow_task_movement: bool | None = None
  notification_enabled: bool | None = None
  auto_assign_status: str | None = Field(default=None, max_length=32)
  is_completed: bool | None = None
  position: int | None = None
  version: int | None = None

  @field_validator("color")
  @classmethod
  def _color(cls, v: str | None) -> str | None:
    if v is not None and not _COLOR_RE.fullmatch(v):
      raise ValueError("color must be a #RRGGBB hex value")
    return v


class StageOut(BaseModel):
  id: str
  project_id: str
  name: str
  description: str
  color: str
  position: int
  task_limit: int
  max_tasks: int
  allow_task_creation: bool
  allow_task_deletion: bool
  allow_task_movement: bool
  notification_enabled: bool
  auto_assign_status: str | None
  is_completed: bool
  completed_at: datetime | None
  version: int
  created_at: datetime
  updated_at: datetime
  task_count: int | None = None


class StageBrief(BaseModel):
  id: str
  name: str
  color: str
  position: int


class StageOrderIn(BaseModel):
  stage_id: str
  position: int = Field(ge=1)


class StageReorderIn(BaseModel):
  project_id: str
  stage_orders: list[StageOrderIn] = Field(min_length=1)


class TaskCreateIn(BaseModel):
  stage_id: str
  project_id: str | None = None
  title: str = Field(min_length=1, max_length=300)
  description: str = ""
  status: str = Field(default="todo", min_length=1, max_length=32)
  priority: Literal["P1", "P2", "P3"] = "P2"
  assignee_id: str | None = None
  due_date: date | None = None
  estimated_hours: float | None = Field(default=None, ge=0)

  @field_validator("due_date", mode="before")
  @classmethod
  def _due_date(cls, v: object) -> object:
    return _parse_date(v)


class TaskUpdateIn(BaseModel):
  version: int | None = None
  title: str | None = Field(default=None, min_length=1, max_length=300)
  description: str | None = None
  status: str | None = Field(default=None, min_length=1, max_length=32)
  priority: Literal["P1", "P2", "P3"] | None = None
  assignee_id: str | None = None
  due_date: date | None = None
  estimated_hours: float | None = Field(default=None, ge=0)
  actual_hours: float | None = Field(default=None, ge=0)

  @field_validator("due_date", mode="before")
  @classmethod
  def _due_date(cls, v: object) -> object:
    return _parse_date(v)


class TaskMoveIn(BaseModel):
  new_stage_id: str
  # absent or negative: append to the end of the target stage
  new_position: int | None = None
  version: int | None = None


class TaskOrderIn(BaseModel):
  task_id: str
  position: int = Field(ge=1)


class TaskReorderIn(BaseModel):
  task_orders: list[TaskOrderIn] = Field(min_length=1)


class TaskOut(BaseModel):
  id: str
  stage_id: str
  project_id: str
  title: str
  description: str
  status: str
  priority: str
  assignee_id: str | None
  due_date: date | None
  estimated_hours: float | None
  actual_hours: float | None
  position: int
  created_by: str | None
  completed_at: datetime | None
  version: int
  created_at: datetime
  updated_at: datetime
  stage: StageBrief | None = None
  assignee: UserBrief | None = None


class CommentCreateIn(BaseModel):
  content: str = Field(min_length=1, max_length=10000)
  media_id: str | None = None
  media_type: str | None = Field(default=None, max_length=32)
  media_name: str | None = None
  reply_to_id: str | None = None
  parent_comment_id: str | None = None


class CommentUpdateIn(BaseModel):
  content: str = Field(min_length=1, max_length=10000)


class CommentOut(BaseModel):
  id: str
  task_id: str
  user_id: str
  username: str
  content: str
  media_id: str | None
  media_type: str | None
  media_name: str | None
  reply_to_id: str | None
  parent_comment_id: str | None
  created_at: datetime
  updated_at: datetime
  replies: list[CommentOut] = []


class ActivityOut(BaseModel):
  id: str
  task_id: str | None
  project_id: str
  user_id: str | None
  action_type: str
  description: str
  field_name: str | None
  old_value: str | None
  new_value: str | None
  details: dict[str, Any]
  created_at: datetime


class ActivityStatsOut(BaseModel):
  total: int
  by_action: dict[str, int]


class ProjectStatsOut(BaseModel):
  project_id: str
  total_members: int
  total_stages: int
  total_tasks: int
  todo_tasks: int
  in_progress_tasks: int
  done_tasks: int
  overdue_tasks: int
  completion_rate: float
  tasks_by_status: dict[str, int]
  tasks_by_priority: dict[str, int]


class StageStatsOut(BaseModel):
  stage_id: str
  name: str
  position: int
  total_tasks: int
  completed_tasks: int


class PresenceIn(BaseModel):
  project_id: str
  connection_id: str | None = Field(default=None, max_length=200)


class PresenceOut(BaseModel):
  user_id: str
  username: str
  project_id: str
  is_online: bool
  last_heartbeat: datetime
  last_activity: datetime


class PresenceStatsOut(BaseModel):
  total: int
  online: int
  offline: int
  recent_activity: int


class TaskStatsOut(BaseModel):
  project_id: str
  total_tasks: int
  completed_tasks: int
  in_progress_tasks: int
  todo_tasks: int
  overdue_tasks: int
  completion_rate: float
  avg_completion_hours: float


class CompletedStatsOut(BaseModel):
  project_id: str
  total_tasks: int
  completed_count: int
  recent_completed_count: int


class TrendPoint(BaseModel):
  day: date
  created: int
  completed: int


class TaskTrendOut(BaseModel):
  project_id: str
  days: int
  trend: list[TrendPoint]


class UserStatsOut(BaseModel):
  total_users: int
  active_users: int
  new_users: int
  online_users: int


class CollaboratorIn(BaseModel):
  collaborator_id: str


class CollaboratorMembershipOut(BaseModel):
  project_id: str
  project_name: str
  role: str


class CollaboratorMembershipsOut(BaseModel):
  has_memberships: bool
  memberships: list[CollaboratorMembershipOut]
  total: int


CommentOut.model_rebuild()
