from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import get_current_user, get_db, require_admin
from taskboard.errors import NotFoundError, ValidationError
from taskboard.models import Comment, Project, ProjectMember, Session as DbSession, Stage, Task, User, UserCollaborator, UserPresence
from taskboard.routers.auth import _user_out
from taskboard.schemas import UserCreateIn, UserOut, UserSearchIn, UserUpdateIn
from taskboard.security import hash_password

router = APIRouter(prefix="/users", tags=["users"])


def _conflict() -> HTTPException:
  return HTTPException(
    status_code=status.HTTP_409_CONFLICT,
    detail={"code": "user_exists", "message": "Username or email already registered"},
  )


@router.get("", response_model=list[UserOut])
async def list_users(_: User = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> list[UserOut]:
  res = await db.execute(select(User).order_by(User.created_at.asc()))
  return [_user_out(u) for u in res.scalars().all()]


@router.post("", response_model=UserOut)
async def create_user(payload: UserCreateIn, _: User = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> UserOut:
  username = payload.username.strip()
  res = await db.execute(select(User.id).where(or_(User.email == payload.email, User.username == username)))
  if res.first():
    raise _conflict()
  u = User(username=username, email=payload.email, password_hash=hash_password(payload.password), role=payload.role)
  db.add(u)
  await db.commit()
  return _user_out(u)


@router.post("/search", response_model=list[UserOut])
async def search_users(payload: UserSearchIn, _: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[UserOut]:
  like = f"%{payload.query.strip()}%"
  res = await db.execute(
    select(User).where(or_(User.username.ilike(like), User.email.ilike(like))).order_by(User.username.asc()).limit(20)
  )
  return [_user_out(u) for u in res.scalars().all()]


@router.patch("/{user_id}", response_model=UserOut)
async def update_user(
  user_id: str,
  payload: UserUpdateIn,
  _: User = Depends(require_admin),
  db: AsyncSession = Depends(get_db),
) -> UserOut:
  res = await db.execute(select(User).where(User.id == user_id))
  u = res.scalar_one_or_none()
  if not u:
    raise NotFoundError("User not found")

  if payload.username is not None and payload.username.strip() != u.username:
    dup = await db.execute(select(User.id).where(User.username == payload.username.strip()))
    if dup.first():
      raise _conflict()
    u.username = payload.username.strip()
  if payload.email is not None and payload.email != u.email:
    dup = await db.execute(select(User.id).where(User.email == payload.email))
    if dup.first():
      raise _conflict()
    u.email = payload.email
  if payload.role is not None:
    u.role = payload.role
  if payload.password is not None:
    u.password_hash = hash_password(payload.password)
    # force re-login everywhere
    await db.execute(delete(DbSession).where(DbSession.user_id == u.id))
  await db.commit()
  return _user_out(u)


@router.delete("/{user_id}")
async def delete_user(user_id: str, actor: User = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> dict:
  if actor.id == user_id:
    raise ValidationError("Cannot delete yourself")
  res = await db.execute(select(User).where(User.id == user_id))
  u = res.scalar_one_or_none()
  if not u:
    raise NotFoundError("User not found")
  owned = await db.execute(select(Project.id).where(Project.owner_id == u.id).limit(1))
  if owned.first():
    raise ValidationError("User still owns projects; delete them first")

  await db.execute(update(Task).where(Task.assignee_id == u.id).values(assignee_id=None))
  await db.execute(update(Task).where(Task.created_by == u.id).values(created_by=None))
  await db.execute(update(Stage).where(Stage.created_by == u.id).values(created_by=None))
  await db.execute(update(Project).where(Project.created_by == u.id).values(created_by=None))
  await db.execute(update(ProjectMember).where(ProjectMember.invited_by == u.id).values(invited_by=None))
  await db.execute(delete(Comment).where(Comment.user_id == u.id))
  await db.execute(delete(DbSession).where(DbSession.user_id == u.id))
  await db.execute(delete(ProjectMember).where(ProjectMember.user_id == u.id))
  await db.execute(delete(UserPresence).where(UserPresence.user_id == u.id))
  await db.execute(
    delete(UserCollaborator).where(or_(UserCollaborator.user_id == u.id, UserCollaborator.collaborator_id == u.id))
  )
  await db.execute(delete(User).where(User.id == u.id))
  await db.commit()
  return {"ok": True}
