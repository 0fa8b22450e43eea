from __future__ import annotations

from datetime import datetime, timezone

from fastapi import Cookie, Depends, HTTPException, Request, status
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.db import SessionLocal
from taskboard.errors import NotFoundError, PermissionDenied
from taskboard.models import Project, ProjectMember, Session as DbSession, User
from taskboard.security import SESSION_COOKIE_NAME


def _unauthorized(message: str) -> HTTPException:
  return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail={"code": "unauthorized", "message": message})


async def get_db() -> AsyncSession:
  async with SessionLocal() as session:
    yield session


async def get_current_user(
  db: AsyncSession = Depends(get_db),
  session_id: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> User:
  if not session_id:
    raise _unauthorized("Not authenticated")

  res = await db.execute(select(DbSession).where(DbSession.id == session_id))
  s = res.scalar_one_or_none()
  if not s:
    raise _unauthorized("Invalid session")
  if s.expires_at < datetime.now(timezone.utc):
    raise _unauthorized("Session expired")

  ures = await db.execute(select(User).where(User.id == s.user_id))
  u = ures.scalar_one_or_none()
  if not u:
    raise _unauthorized("User not found")
  return u


async def require_admin(user: User = Depends(get_current_user)) -> User:
  if user.role != "admin":
    raise PermissionDenied("Admin required")
  return user


async def require_project_access(project_id: str, user: User, db: AsyncSession) -> Project:
  # Owner or any member; there is a single permission tier below admin.
  res = await db.execute(select(Project).where(Project.id == project_id))
  p = res.scalar_one_or_none()
  if not p:
    raise NotFoundError("Project not found")
  if p.owner_id == user.id:
    return p
  mres = await db.execute(
    select(ProjectMember.id).where(ProjectMember.project_id == project_id, ProjectMember.user_id == user.id)
  )
  if mres.scalar_one_or_none() is None:
    raise PermissionDenied("No access to this project")
  return p


def client_ip(request: Request) -> str | None:
  return request.client.host if request.client else None
