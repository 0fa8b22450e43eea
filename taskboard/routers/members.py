from __future__ import annotations

from fastapi import APIRouter, Depends
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import get_current_user, get_db, require_project_access
from taskboard.errors import ConcurrencyHazard, NotFoundError, PermissionDenied, ValidationError
from taskboard.models import Project, ProjectMember, User, UserPresence
from taskboard.ordering import atomic
from taskboard.schemas import MemberBatchIn, MemberIn, MemberOut, MemberRoleIn

router = APIRouter(prefix="/projects/{project_id}/members", tags=["members"])


def _member_out(m: ProjectMember, u: User) -> MemberOut:
  return MemberOut(
    id=m.id,
    project_id=m.project_id,
    user_id=m.user_id,
    username=u.username,
    email=u.email,
    role=m.role,
    invited_by=m.invited_by,
    version=m.version,
    created_at=m.created_at,
  )


async def _add_members(db: AsyncSession, p: Project, items: list[MemberIn], actor: User) -> list[MemberOut]:
  ids = list(dict.fromkeys(i.user_id for i in items))
  ures = await db.execute(select(User).where(User.id.in_(ids)))
  users = {u.id: u for u in ures.scalars().all()}
  missing = [i for i in ids if i not in users]
  if missing:
    raise NotFoundError(f"User not found: {missing[0]}")
  eres = await db.execute(
    select(ProjectMember.user_id).where(ProjectMember.project_id == p.id, ProjectMember.user_id.in_(ids))
  )
  existing = set(eres.scalars().all())
  if p.owner_id in ids:
    existing.add(p.owner_id)

  added: list[tuple[ProjectMember, User]] = []
  async with atomic(db, "add project members"):
    for item in items:
      if item.user_id in existing:
        continue
      m = ProjectMember(project_id=p.id, user_id=item.user_id, role=item.role, invited_by=actor.id)
      db.add(m)
      existing.add(item.user_id)
      added.append((m, users[item.user_id]))
  return [_member_out(m, u) for m, u in added]


async def _get_member(db: AsyncSession, project_id: str, user_id: str) -> ProjectMember:
  res = await db.execute(
    select(ProjectMember).where(ProjectMember.project_id == project_id, ProjectMember.user_id == user_id)
  )
  m = res.scalar_one_or_none()
  if not m:
    raise NotFoundError("Member not found")
  return m


@router.get("", response_model=list[MemberOut])
async def list_members(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[MemberOut]:
  await require_project_access(project_id, user, db)
  res = await db.execute(
    select(ProjectMember, User)
    .join(User, User.id == ProjectMember.user_id)
    .where(ProjectMember.project_id == project_id)
    .order_by(ProjectMember.created_at.asc())
  )
  return [_member_out(m, u) for m, u in res.all()]


@router.post("", response_model=MemberOut)
async def add_member(
  project_id: str,
  payload: MemberIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> MemberOut:
  p = await require_project_access(project_id, user, db)
  added = await _add_members(db, p, [payload], user)
  if not added:
    raise ValidationError("User is already a member of this project")
  return added[0]


@router.post("/batch", response_model=list[MemberOut])
async def add_members_batch(
  project_id: str,
  payload: MemberBatchIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[MemberOut]:
  p = await require_project_access(project_id, user, db)
  return await _add_members(db, p, payload.members, user)


@router.patch("/{user_id}", response_model=MemberOut)
async def update_member_role(
  project_id: str,
  user_id: str,
  payload: MemberRoleIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> MemberOut:
  p = await require_project_access(project_id, user, db)
  if user_id == p.owner_id:
    raise PermissionDenied("Cannot change the project owner's role")
  m = await _get_member(db, project_id, user_id)
  if payload.version is not None and payload.version != m.version:
    raise ConcurrencyHazard("Member was modified by another request; reload and retry")
  async with atomic(db, "update member role"):
    m.role = payload.role
  ures = await db.execute(select(User).where(User.id == user_id))
  return _member_out(m, ures.scalar_one())


@router.delete("/{user_id}")
async def remove_member(
  project_id: str,
  user_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  p = await require_project_access(project_id, user, db)
  if user_id == p.owner_id:
    raise PermissionDenied("Cannot remove the project owner")
  m = await _get_member(db, project_id, user_id)
  async with atomic(db, "remove member"):
    await db.execute(delete(ProjectMember).where(ProjectMember.id == m.id))
    await db.execute(delete(UserPresence).where(UserPresence.project_id == project_id, UserPresence.user_id == user_id))
  return {"ok": True}
