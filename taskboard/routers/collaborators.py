from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import get_current_user, get_db, require_project_access
from taskboard.errors import NotFoundError, ValidationError
from taskboard.models import Project, ProjectMember, User, UserCollaborator
from taskboard.ordering import atomic
from taskboard.routers.auth import _user_out
from taskboard.routers.members import _member_out
from taskboard.schemas import CollaboratorIn, CollaboratorMembershipOut, CollaboratorMembershipsOut, MemberOut, UserOut

logger = logging.getLogger(__name__)

router = APIRouter(tags=["collaborators"])


async def _get_link(db: AsyncSession, user_id: str, collaborator_id: str) -> UserCollaborator | None:
  res = await db.execute(
    select(UserCollaborator).where(UserCollaborator.user_id == user_id, UserCollaborator.collaborator_id == collaborator_id)
  )
  return res.scalar_one_or_none()


async def _memberships_in_owned_projects(db: AsyncSession, owner_id: str, collaborator_id: str) -> list[CollaboratorMembershipOut]:
  res = await db.execute(
    select(ProjectMember.project_id, Project.name, ProjectMember.role)
    .join(Project, Project.id == ProjectMember.project_id)
    .where(ProjectMember.user_id == collaborator_id, Project.owner_id == owner_id, Project.status == "active")
    .order_by(Project.name.asc())
  )
  return [CollaboratorMembershipOut(project_id=pid, project_name=name, role=role) for pid, name, role in res.all()]


@router.get("/collaborators/available", response_model=list[UserOut])
async def available_collaborators(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[UserOut]:
  res = await db.execute(select(User).where(User.id != user.id).order_by(User.username.asc()))
  return [_user_out(u) for u in res.scalars().all()]


@router.get("/collaborators/my", response_model=list[UserOut])
async def my_collaborators(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[UserOut]:
  res = await db.execute(
    select(User)
    .join(UserCollaborator, UserCollaborator.collaborator_id == User.id)
    .where(UserCollaborator.user_id == user.id)
    .order_by(User.username.asc())
  )
  return [_user_out(u) for u in res.scalars().all()]


@router.post("/collaborators", response_model=UserOut)
async def add_collaborator(payload: CollaboratorIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> UserOut:
  res = await db.execute(select(User).where(User.id == payload.collaborator_id))
  other = res.scalar_one_or_none()
  if not other:
    raise NotFoundError("Collaborator user not found")
  if other.id == user.id:
    raise ValidationError("Cannot add yourself as collaborator")
  if await _get_link(db, user.id, other.id):
    raise ValidationError("User is already a collaborator")

  async with atomic(db, "add collaborator"):
    db.add(UserCollaborator(user_id=user.id, collaborator_id=other.id))
  return _user_out(other)


@router.get("/collaborators/{collaborator_id}/memberships", response_model=CollaboratorMembershipsOut)
async def collaborator_memberships(
  collaborator_id: str,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> CollaboratorMembershipsOut:
  if not await _get_link(db, user.id, collaborator_id):
    raise NotFoundError("Collaborator relationship not found")
  memberships = await _memberships_in_owned_projects(db, user.id, collaborator_id)
  return CollaboratorMembershipsOut(has_memberships=bool(memberships), memberships=memberships, total=len(memberships))


@router.delete("/collaborators/{collaborator_id}")
async def remove_collaborator(
  collaborator_id: str,
  force: bool = False,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> dict:
  """Drop a collaborator and their memberships in projects the caller owns.

  Without ``force`` an active membership makes this a 400 that lists them,
  so the client can ask for confirmation first.
  """
  if not await _get_link(db, user.id, collaborator_id):
    raise NotFoundError("Collaborator relationship not found")
  if not force:
    memberships = await _memberships_in_owned_projects(db, user.id, collaborator_id)
    if memberships:
      raise HTTPException(
        status_code=status.HTTP_400_BAD_REQUEST,
        detail={
          "code": "confirmation_required",
          "message": "Collaborator is still a project member; confirm to remove",
          "requires_confirmation": True,
          "memberships": [m.model_dump() for m in memberships],
          "total": len(memberships),
        },
      )

  owned = select(Project.id).where(Project.owner_id == user.id)
  async with atomic(db, "remove collaborator"):
    res = await db.execute(
      delete(ProjectMember)
      .where(ProjectMember.user_id == collaborator_id, ProjectMember.project_id.in_(owned))
      .execution_options(synchronize_session=False)
    )
    await db.execute(
      delete(UserCollaborator).where(UserCollaborator.user_id == user.id, UserCollaborator.collaborator_id == collaborator_id)
    )
  logger.info("collaborator %s removed by %s (%d memberships)", collaborator_id, user.id, res.rowcount)
  return {"ok": True, "removed_memberships": res.rowcount}


@router.get("/projects/{project_id}/collaborators", response_model=list[MemberOut])
async def project_collaborators(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[MemberOut]:
  await require_project_access(project_id, user, db)
  res = await db.execute(
    select(ProjectMember, User)
    .join(User, User.id == ProjectMember.user_id)
    .where(ProjectMember.project_id == project_id, ProjectMember.role != "owner")
    .order_by(ProjectMember.created_at.asc())
  )
  return [_member_out(m, u) for m, u in res.all()]
