from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.activity import ActivityRecorder, get_activity_recorder
from taskboard.deps import get_current_user, get_db, require_project_access
from taskboard.errors import NotFoundError, PermissionDenied, ValidationError
from taskboard.models import Comment, Task, User
from taskboard.ordering import atomic
from taskboard.schemas import CommentCreateIn, CommentOut, CommentUpdateIn

router = APIRouter(tags=["comments"])


def _comment_out(c: Comment, username: str) -> CommentOut:
  return CommentOut(
    id=c.id,
    task_id=c.task_id,
    user_id=c.user_id,
    username=username,
    content=c.content,
    media_id=c.media_id,
    media_type=c.media_type,
    media_name=c.media_name,
    reply_to_id=c.reply_to_id,
    parent_comment_id=c.parent_comment_id,
    created_at=c.created_at,
    updated_at=c.updated_at,
  )


async def _get_task_or_404(db: AsyncSession, task_id: str) -> Task:
  res = await db.execute(select(Task).where(Task.id == task_id))
  t = res.scalar_one_or_none()
  if not t:
    raise NotFoundError("Task not found")
  return t


async def _get_comment_or_404(db: AsyncSession, comment_id: str) -> Comment:
  res = await db.execute(select(Comment).where(Comment.id == comment_id))
  c = res.scalar_one_or_none()
  if not c:
    raise NotFoundError("Comment not found")
  return c


@router.get("/tasks/{task_id}/comments", response_model=list[CommentOut])
async def list_comments(task_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[CommentOut]:
  t = await _get_task_or_404(db, task_id)
  await require_project_access(t.project_id, user, db)
  res = await db.execute(
    select(Comment, User.username)
    .join(User, User.id == Comment.user_id)
    .where(Comment.task_id == task_id)
    .order_by(Comment.created_at.asc())
  )
  rows = res.all()

  # first pass builds every node, second pass hangs replies off their parent
  nodes = {c.id: _comment_out(c, username) for c, username in rows}
  roots: list[CommentOut] = []
  for c, _ in rows:
    node = nodes[c.id]
    parent = nodes.get(c.parent_comment_id) if c.parent_comment_id else None
    if parent is None:
      # orphaned replies surface at the top level
      roots.append(node)
    else:
      parent.replies.append(node)
  return roots


@router.post("/tasks/{task_id}/comments", response_model=CommentOut)
async def create_comment(
  task_id: str,
  payload: CommentCreateIn,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
  activity: ActivityRecorder = Depends(get_activity_recorder),
) -> CommentOut:
  t = await _get_task_or_404(db, task_id)
  await require_project_access(t.project_id, user, db)
  for ref in (payload.parent_comment_id, payload.reply_to_id):
    if ref:
      parent = await _get_comment_or_404(db, ref)
      if parent.task_id != task_id:
        raise ValidationError("Referenced comment belongs to another task")

  async with atomic(db, "create comment"):
    c = Comment(
      task_id=task_id,
      user_id=user.id,
      content=payload.content,
      media_id=payload.media_id,
      media_type=payload.media_type,
      media_name=payload.media_name,
      reply_to_id=payload.reply_to_id,
      parent_comment_id=payload.parent_comment_id,
    )
    db.add(c)

  await activity.record(
    project_id=t.project_id,
    task_id=t.id,
    user_id=user.id,
    action_type="comment_added",
    description=f"Commented on '{t.title}'",
    details={"comment_id": c.id, "parent_comment_id": c.parent_comment_id},
    request=request,
  )
  return _comment_out(c, user.username)


@router.patch("/comments/{comment_id}", response_model=CommentOut)
async def update_comment(
  comment_id: str,
  payload: CommentUpdateIn,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> CommentOut:
  c = await _get_comment_or_404(db, comment_id)
  t = await _get_task_or_404(db, c.task_id)
  await require_project_access(t.project_id, user, db)
  if c.user_id != user.id:
    raise PermissionDenied("Only the author can edit a comment")
  async with atomic(db, "update comment"):
    c.content = payload.content
  return _comment_out(c, user.username)


@router.delete("/comments/{comment_id}")
async def delete_comment(comment_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  c = await _get_comment_or_404(db, comment_id)
  t = await _get_task_or_404(db, c.task_id)
  p = await require_project_access(t.project_id, user, db)
  if c.user_id != user.id and p.owner_id != user.id:
    raise PermissionDenied("Only the author or the project owner can delete a comment")

  # the whole reply subtree goes with it
  doomed = [c.id]
  frontier = [c.id]
  while frontier:
    res = await db.execute(select(Comment.id).where(Comment.parent_comment_id.in_(frontier)))
    frontier = list(res.scalars().all())
    doomed.extend(frontier)

  async with atomic(db, "delete comment"):
    await db.execute(delete(Comment).where(Comment.id.in_(doomed)).execution_options(synchronize_session=False))
  return {"ok": True, "deleted": len(doomed)}
