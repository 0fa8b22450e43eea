from __future__ import annotations

import logging

from fastapi import APIRouter, Cookie, Depends, HTTPException, Request, Response, status
from sqlalchemy import delete, or_, select
from sqlalchemy.ext.asyncio import AsyncSession

from taskboard.config import settings
from taskboard.deps import client_ip, get_current_user, get_db
from taskboard.models import Session as DbSession, User
from taskboard.rate_limit import auth_rate_limit
from taskboard.schemas import LoginIn, RegisterIn, UserOut
from taskboard.security import SESSION_COOKIE_NAME, hash_password, new_session_expires_at, verify_password

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/auth", tags=["auth"])


def _user_out(u: User) -> UserOut:
  return UserOut(id=u.id, username=u.username, email=u.email, role=u.role, created_at=u.created_at)


async def _start_session(db: AsyncSession, u: User, request: Request, response: Response) -> None:
  s = DbSession(
    user_id=u.id,
    created_ip=client_ip(request),
    user_agent=request.headers.get("user-agent"),
    expires_at=new_session_expires_at(),
  )
  db.add(s)
  await db.commit()
  response.set_cookie(
    SESSION_COOKIE_NAME,
    s.id,
    httponly=True,
    samesite="lax",
    secure=settings.cookie_secure,
    domain=settings.cookie_domain,
    max_age=settings.session_ttl_days * 24 * 3600,
  )


@router.post("/register", response_model=UserOut, dependencies=[Depends(auth_rate_limit)])
async def register(payload: RegisterIn, request: Request, response: Response, db: AsyncSession = Depends(get_db)) -> UserOut:
  username = payload.username.strip()
  res = await db.execute(select(User).where(or_(User.email == payload.email, User.username == username)))
  if res.scalars().first():
    raise HTTPException(
      status_code=status.HTTP_409_CONFLICT,
      detail={"code": "user_exists", "message": "Username or email already registered"},
    )
  u = User(username=username, email=payload.email, password_hash=hash_password(payload.password), role="user")
  db.add(u)
  await db.flush()
  await _start_session(db, u, request, response)
  logger.info("registered user %s", u.id)
  return _user_out(u)


@router.post("/login", response_model=UserOut, dependencies=[Depends(auth_rate_limit)])
async def login(payload: LoginIn, request: Request, response: Response, db: AsyncSession = Depends(get_db)) -> UserOut:
  email = (payload.email or "").strip().lower()
  res = await db.execute(select(User).where(User.email == email))
  u = res.scalar_one_or_none()
  if not u or not verify_password(payload.password, u.password_hash):
    logger.info("failed login for %s from %s", email, client_ip(request))
    raise HTTPException(
      status_code=status.HTTP_401_UNAUTHORIZED,
      detail={"code": "invalid_credentials", "message": "Invalid credentials"},
    )
  await _start_session(db, u, request, response)
  return _user_out(u)


@router.post("/logout")
async def logout(
  response: Response,
  db: AsyncSession = Depends(get_db),
  session_id: str | None = Cookie(default=None, alias=SESSION_COOKIE_NAME),
) -> dict:
  if session_id:
    await db.execute(delete(DbSession).where(DbSession.id == session_id))
    await db.commit()
  response.delete_cookie(SESSION_COOKIE_NAME, domain=settings.cookie_domain)
  return {"ok": True}


@router.get("/me", response_model=UserOut)
async def me(user: User = Depends(get_current_user)) -> UserOut:
  return _user_out(user)
