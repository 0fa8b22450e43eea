from __future__ import annotations

import uuid
from datetime import date, datetime, timezone
from typing import Any

from sqlalchemy import JSON, Boolean, Date, DateTime, Float, ForeignKey, Integer, String, Text, TypeDecorator, UniqueConstraint
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


def utcnow() -> datetime:
  return datetime.now(timezone.utc)


def new_id() -> str:
  return str(uuid.uuid4())


class UTCDateTime(TypeDecorator):
  # SQLite drops tzinfo on the way back; always hand out aware UTC values.
  impl = DateTime(timezone=True)
  cache_ok = True

  def process_bind_param(self, value: datetime | None, dialect) -> datetime | None:
    if value is not None and value.tzinfo is not None:
      return value.astimezone(timezone.utc)
    return value

  def process_result_value(self, value: datetime | None, dialect) -> datetime | None:
    if value is not None and value.tzinfo is None:
      return value.replace(tzinfo=timezone.utc)
    return value


class Base(DeclarativeBase):
  pass


class User(Base):
  __tablename__ = "users"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  username: Mapped[str] = mapped_column(String(64), nullable=False, unique=True, index=True)
  email: Mapped[str] = mapped_column(String(320), nullable=False, unique=True, index=True)
  password_hash: Mapped[str] = mapped_column(String, nullable=False)
  role: Mapped[str] = mapped_column(String(16), nullable=False, default="user")
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Session(Base):
  __tablename__ = "sessions"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  created_ip: Mapped[str | None] = mapped_column(String, nullable=True)
  user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  expires_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)


class Project(Base):
  __tablename__ = "projects"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  name: Mapped[str] = mapped_column(String(200), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  owner_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  status: Mapped[str] = mapped_column(String(16), nullable=False, default="active")
  start_date: Mapped[date | None] = mapped_column(Date, nullable=True)
  end_date: Mapped[date | None] = mapped_column(Date, nullable=True)
  created_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

  __mapper_args__ = {"version_id_col": version}


class ProjectMember(Base):
  __tablename__ = "project_members"
  __table_args__ = (UniqueConstraint("project_id", "user_id", name="ux_project_member_project_user"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  role: Mapped[str] = mapped_column(String(16), nullable=False, default="collaborator")
  invited_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

  __mapper_args__ = {"version_id_col": version}


class UserCollaborator(Base):
  __tablename__ = "user_collaborators"
  __table_args__ = (UniqueConstraint("user_id", "collaborator_id", name="ux_user_collaborator_pair"),)

  # one-directional: user_id keeps collaborator_id in their address book
  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  collaborator_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class Stage(Base):
  __tablename__ = "stages"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
  name: Mapped[str] = mapped_column(String(120), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  color: Mapped[str] = mapped_column(String(16), nullable=False, default="#3B82F6")
  # dense 1..N within the project; kept that way by transactional renumbering
  position: Mapped[int] = mapped_column(Integer, nullable=False)
  task_limit: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  allow_task_creation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  allow_task_deletion: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  allow_task_movement: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  max_tasks: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
  notification_enabled: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  auto_assign_status: Mapped[str | None] = mapped_column(String(32), nullable=True)
  is_completed: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
  completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  created_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

  __mapper_args__ = {"version_id_col": version}


class Task(Base):
  __tablename__ = "tasks"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  stage_id: Mapped[str] = mapped_column(String(36), ForeignKey("stages.id"), nullable=False, index=True)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
  title: Mapped[str] = mapped_column(String(300), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  status: Mapped[str] = mapped_column(String(32), nullable=False, default="todo")
  priority: Mapped[str] = mapped_column(String(8), nullable=False, default="P2")
  assignee_id: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True, index=True)
  due_date: Mapped[date | None] = mapped_column(Date, nullable=True)
  estimated_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
  actual_hours: Mapped[float | None] = mapped_column(Float, nullable=True)
  position: Mapped[int] = mapped_column(Integer, nullable=False)
  created_by: Mapped[str | None] = mapped_column(String(36), ForeignKey("users.id"), nullable=True)
  completed_at: Mapped[datetime | None] = mapped_column(UTCDateTime, nullable=True)
  version: Mapped[int] = mapped_column(Integer, nullable=False)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)

  # only ever loaded explicitly (selectinload) for detailed responses
  stage: Mapped[Stage] = relationship(Stage, lazy="raise")
  assignee: Mapped[User | None] = relationship(User, foreign_keys=[assignee_id], lazy="raise")

  __mapper_args__ = {"version_id_col": version}


class Comment(Base):
  __tablename__ = "comments"

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  task_id: Mapped[str] = mapped_column(String(36), ForeignKey("tasks.id"), nullable=False, index=True)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  content: Mapped[str] = mapped_column(Text, nullable=False)
  media_id: Mapped[str | None] = mapped_column(String, nullable=True)
  media_type: Mapped[str | None] = mapped_column(String(32), nullable=True)
  media_name: Mapped[str | None] = mapped_column(String, nullable=True)
  reply_to_id: Mapped[str | None] = mapped_column(String(36), nullable=True)
  parent_comment_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)


class TaskActivity(Base):
  __tablename__ = "task_activities"

  # log rows outlive the task they describe, so no foreign keys here
  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  task_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  project_id: Mapped[str] = mapped_column(String(36), nullable=False, index=True)
  user_id: Mapped[str | None] = mapped_column(String(36), nullable=True, index=True)
  action_type: Mapped[str] = mapped_column(String(32), nullable=False)
  description: Mapped[str] = mapped_column(Text, nullable=False, default="")
  field_name: Mapped[str | None] = mapped_column(String(64), nullable=True)
  old_value: Mapped[str | None] = mapped_column(Text, nullable=True)
  new_value: Mapped[str | None] = mapped_column(Text, nullable=True)
  details: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
  ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
  user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False, index=True)


class UserPresence(Base):
  __tablename__ = "user_presence"
  __table_args__ = (UniqueConstraint("user_id", "project_id", name="ux_user_presence_user_project"),)

  id: Mapped[str] = mapped_column(String(36), primary_key=True, default=new_id)
  user_id: Mapped[str] = mapped_column(String(36), ForeignKey("users.id"), nullable=False, index=True)
  project_id: Mapped[str] = mapped_column(String(36), ForeignKey("projects.id"), nullable=False, index=True)
  connection_id: Mapped[str | None] = mapped_column(String, nullable=True)
  is_online: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
  last_heartbeat: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  last_activity: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  user_agent: Mapped[str | None] = mapped_column(String, nullable=True)
  ip_address: Mapped[str | None] = mapped_column(String, nullable=True)
  created_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, nullable=False)
  updated_at: Mapped[datetime] = mapped_column(UTCDateTime, default=utcnow, onupdate=utcnow, nullable=False)
