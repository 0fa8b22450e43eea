from __future__ import annotations

import logging

from fastapi import APIRouter, Depends
from sqlalchemy import and_, delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.deps import get_current_user, get_db, require_project_access
from taskboard.errors import ConcurrencyHazard, NotFoundError
from taskboard.models import Comment, Project, ProjectMember, Stage, Task, TaskActivity, User, UserPresence
from taskboard.ordering import atomic, lock_project
from taskboard.schemas import ProjectCreateIn, ProjectOut, ProjectUpdateIn

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/projects", tags=["projects"])


def _project_out(p: Project, role: str | None = None) -> ProjectOut:
  return ProjectOut(
    id=p.id,
    name=p.name,
    description=p.description,
    owner_id=p.owner_id,
    status=p.status,
    start_date=p.start_date,
    end_date=p.end_date,
    version=p.version,
    created_at=p.created_at,
    updated_at=p.updated_at,
    user_role=role,
  )


async def _user_role(db: AsyncSession, p: Project, user_id: str) -> str | None:
  res = await db.execute(
    select(ProjectMember.role).where(ProjectMember.project_id == p.id, ProjectMember.user_id == user_id)
  )
  role = res.scalar_one_or_none()
  if role is None and p.owner_id == user_id:
    return "owner"
  return role


@router.get("", response_model=list[ProjectOut])
async def list_projects(
  status: str | None = None,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> list[ProjectOut]:
  q = (
    select(Project, ProjectMember.role)
    .outerjoin(ProjectMember, and_(ProjectMember.project_id == Project.id, ProjectMember.user_id == user.id))
    .where(or_(Project.owner_id == user.id, ProjectMember.id.is_not(None)))
    .order_by(Project.created_at.desc())
  )
  if status:
    q = q.where(Project.status == status)
  res = await db.execute(q)
  return [_project_out(p, role or ("owner" if p.owner_id == user.id else None)) for p, role in res.all()]


@router.post("", response_model=ProjectOut)
async def create_project(payload: ProjectCreateIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  invitees: dict[str, str] = {}
  for m in payload.members:
    if m.user_id == user.id:
      continue
    invitees[m.user_id] = m.role
  if invitees:
    ures = await db.execute(select(User.id).where(User.id.in_(list(invitees))))
    missing = set(invitees) - set(ures.scalars().all())
    if missing:
      raise NotFoundError(f"User not found: {sorted(missing)[0]}")

  async with atomic(db, "create project"):
    p = Project(
      name=payload.name.strip(),
      description=payload.description,
      owner_id=user.id,
      created_by=user.id,
      start_date=payload.start_date,
      end_date=payload.end_date,
    )
    db.add(p)
    await db.flush()
    db.add(ProjectMember(project_id=p.id, user_id=user.id, role="owner", invited_by=user.id))
    for uid, role in invitees.items():
      db.add(ProjectMember(project_id=p.id, user_id=uid, role=role, invited_by=user.id))
    for idx, name in enumerate(n.strip() for n in payload.stages if n.strip()):
      db.add(Stage(project_id=p.id, name=name, position=idx + 1, created_by=user.id))

  logger.info("project %s created by %s", p.id, user.id)
  return _project_out(p, "owner")


@router.get("/{project_id}", response_model=ProjectOut)
async def get_project(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> ProjectOut:
  p = await require_project_access(project_id, user, db)
  return _project_out(p, await _user_role(db, p, user.id))


@router.patch("/{project_id}", response_model=ProjectOut)
async def update_project(
  project_id: str,
  payload: ProjectUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> ProjectOut:
  await require_project_access(project_id, user, db)
  fields_set = payload.model_fields_set
  async with atomic(db, "update project"):
    p = await lock_project(db, project_id)
    if payload.version is not None and payload.version != p.version:
      raise ConcurrencyHazard("Project was modified by another request; reload and retry")
    if payload.name is not None:
      p.name = payload.name.strip()
    if payload.description is not None:
      p.description = payload.description
    if payload.status is not None:
      p.status = payload.status
    if "start_date" in fields_set:
      p.start_date = payload.start_date
    if "end_date" in fields_set:
      p.end_date = payload.end_date
  return _project_out(p, await _user_role(db, p, user.id))


@router.delete("/{project_id}")
async def delete_project(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  await require_project_access(project_id, user, db)
  async with atomic(db, "delete project"):
    await lock_project(db, project_id)
    task_ids = select(Task.id).where(Task.project_id == project_id)
    await db.execute(delete(Comment).where(Comment.task_id.in_(task_ids)).execution_options(synchronize_session=False))
    await db.execute(delete(Task).where(Task.project_id == project_id).execution_options(synchronize_session=False))
    await db.execute(delete(Stage).where(Stage.project_id == project_id).execution_options(synchronize_session=False))
    await db.execute(delete(ProjectMember).where(ProjectMember.project_id == project_id))
    await db.execute(delete(UserPresence).where(UserPresence.project_id == project_id))
    await db.execute(delete(TaskActivity).where(TaskActivity.project_id == project_id))
    await db.execute(delete(Project).where(Project.id == project_id).execution_options(synchronize_session=False))
  logger.info("project %s deleted by %s", project_id, user.id)
  return {"ok": True}
