from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import delete, func, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import settings
from taskboard.deps import client_ip, get_current_user, get_db, require_admin, require_project_access
from taskboard.models import User, UserPresence, utcnow
from taskboard.ordering import atomic
from taskboard.schemas import PresenceIn, PresenceOut, PresenceStatsOut

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/presence", tags=["presence"])

OFFLINE_RETENTION = timedelta(hours=24)
RECENT_ACTIVITY_WINDOW = timedelta(hours=1)


def _presence_out(p: UserPresence, username: str) -> PresenceOut:
  return PresenceOut(
    user_id=p.user_id,
    username=username,
    project_id=p.project_id,
    is_online=p.is_online,
    last_heartbeat=p.last_heartbeat,
    last_activity=p.last_activity,
  )


async def _get_presence(db: AsyncSession, user_id: str, project_id: str) -> UserPresence | None:
  res = await db.execute(
    select(UserPresence).where(UserPresence.user_id == user_id, UserPresence.project_id == project_id)
  )
  return res.scalar_one_or_none()


@router.put("/online", response_model=PresenceOut)
async def heartbeat(
  payload: PresenceIn,
  request: Request,
  user: User = Depends(get_current_user),
  db: AsyncSession = Depends(get_db),
) -> PresenceOut:
  await require_project_access(payload.project_id, user, db)
  now = utcnow()
  async with atomic(db, "presence heartbeat"):
    p = await _get_presence(db, user.id, payload.project_id)
    if p is None:
      p = UserPresence(user_id=user.id, project_id=payload.project_id)
      db.add(p)
    p.is_online = True
    p.connection_id = payload.connection_id
    p.last_heartbeat = now
    p.last_activity = now
    p.ip_address = client_ip(request)
    p.user_agent = request.headers.get("user-agent")
  return _presence_out(p, user.username)


@router.put("/offline")
async def go_offline(payload: PresenceIn, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> dict:
  async with atomic(db, "presence offline"):
    p = await _get_presence(db, user.id, payload.project_id)
    if p is not None:
      p.is_online = False
  return {"ok": True}


@router.get("/online", response_model=list[PresenceOut])
async def online_users(project_id: str, user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[PresenceOut]:
  await require_project_access(project_id, user, db)
  cutoff = datetime.now(timezone.utc) - timedelta(minutes=settings.presence_timeout_minutes)
  res = await db.execute(
    select(UserPresence, User.username)
    .join(User, User.id == UserPresence.user_id)
    .where(
      UserPresence.project_id == project_id,
      UserPresence.is_online.is_(True),
      UserPresence.last_heartbeat >= cutoff,
    )
    .order_by(User.username.asc())
  )
  return [_presence_out(p, username) for p, username in res.all()]


@router.get("/my", response_model=list[PresenceOut])
async def my_presence(user: User = Depends(get_current_user), db: AsyncSession = Depends(get_db)) -> list[PresenceOut]:
  res = await db.execute(
    select(UserPresence).where(UserPresence.user_id == user.id).order_by(UserPresence.last_heartbeat.desc())
  )
  return [_presence_out(p, user.username) for p in res.scalars().all()]


@router.get("/stats", response_model=PresenceStatsOut)
async def presence_stats(_: User = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> PresenceStatsOut:
  recent = datetime.now(timezone.utc) - RECENT_ACTIVITY_WINDOW
  res = await db.execute(select(UserPresence.is_online, func.count()).group_by(UserPresence.is_online))
  by_flag = {bool(flag): int(n) for flag, n in res.all()}
  rres = await db.execute(select(func.count()).select_from(UserPresence).where(UserPresence.last_activity >= recent))
  return PresenceStatsOut(
    total=sum(by_flag.values()),
    online=by_flag.get(True, 0),
    offline=by_flag.get(False, 0),
    recent_activity=int(rres.scalar_one() or 0),
  )


@router.delete("/cleanup")
async def cleanup(_: User = Depends(require_admin), db: AsyncSession = Depends(get_db)) -> dict:
  cutoff = datetime.now(timezone.utc) - OFFLINE_RETENTION
  async with atomic(db, "presence cleanup"):
    res = await db.execute(
      delete(UserPresence).where(UserPresence.is_online.is_(False), UserPresence.last_heartbeat < cutoff)
    )
  logger.info("presence cleanup removed %d rows", res.rowcount)
  return {"ok": True, "removed": res.rowcount}
