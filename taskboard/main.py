from __future__ import annotations

import asyncio
import logging
from datetime import datetime, timedelta, timezone

from fastapi import FastAPI, Request, status
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from sqlalchemy import func, select, update
from starlette.middleware.trustedhost import TrustedHostMiddleware

from taskboard.activity import ActivityRecorder
from taskboard.config import settings
from taskboard.db import SessionLocal, engine
from taskboard.errors import TaskboardError
from taskboard.models import User, UserPresence
from taskboard.rate_limit import RateLimiter, client_key
from taskboard.routers.activities import router as activities_router
from taskboard.routers.analytics import router as analytics_router
from taskboard.routers.analytics import users_router as analytics_users_router
from taskboard.routers.auth import router as auth_router
from taskboard.routers.collaborators import router as collaborators_router
from taskboard.routers.comments import router as comments_router
from taskboard.routers.members import router as members_router
from taskboard.routers.presence import router as presence_router
from taskboard.routers.projects import router as projects_router
from taskboard.routers.stages import router as stages_router
from taskboard.routers.tasks import router as tasks_router
from taskboard.routers.users import router as users_router

logging.basicConfig(level=settings.log_level.upper(), format="%(asctime)s %(levelname)s [%(name)s] %(message)s")
logger = logging.getLogger(__name__)

app = FastAPI(
  title="Taskboard API",
  version=settings.app_version,
  docs_url="/docs" if settings.api_docs_enabled else None,
  redoc_url="/redoc" if settings.api_docs_enabled else None,
  openapi_url="/openapi.json" if settings.api_docs_enabled else None,
)

app.state.rate_limiter = RateLimiter(rate=settings.rate_limit_rps, burst=settings.rate_limit_burst)
app.state.auth_rate_limiter = RateLimiter(rate=settings.rate_limit_auth_rps, burst=settings.rate_limit_auth_burst)
app.state.activity = ActivityRecorder(SessionLocal)


def _error_body(code: str, message: str, **extra) -> dict:
  return {"detail": {"code": code, "message": message, **extra}}


@app.exception_handler(TaskboardError)
async def _taskboard_error_handler(request: Request, exc: TaskboardError) -> JSONResponse:
  extra = {}
  if exc.status_code >= 500:
    logger.error("%s on %s %s: %s (%s)", exc.code, request.method, request.url.path, exc.message, exc.detail)
    if exc.detail and not settings.is_production():
      extra["debug"] = exc.detail
  return JSONResponse(status_code=exc.status_code, content=_error_body(exc.code, exc.message, **extra))


@app.exception_handler(RequestValidationError)
async def _request_validation_handler(_, exc: RequestValidationError) -> JSONResponse:
  errors = [{"loc": list(e.get("loc", ())), "msg": e.get("msg", "")} for e in exc.errors()]
  return JSONResponse(
    status_code=status.HTTP_400_BAD_REQUEST,
    content=_error_body("validation_error", "Invalid request data", errors=errors),
  )


@app.exception_handler(Exception)
async def _unhandled_error_handler(request: Request, exc: Exception) -> JSONResponse:
  logger.exception("unhandled error on %s %s", request.method, request.url.path)
  extra = {} if settings.is_production() else {"debug": f"{type(exc).__name__}: {exc}"}
  return JSONResponse(status_code=500, content=_error_body("internal_error", "Internal server error", **extra))


app.add_middleware(
  CORSMiddleware,
  allow_origins=settings.cors_origin_list(),
  allow_credentials=True,
  allow_methods=["*"],
  allow_headers=["*"],
)
app.add_middleware(TrustedHostMiddleware, allowed_hosts=settings.trusted_host_list())

app.include_router(auth_router, prefix="/api")
app.include_router(users_router, prefix="/api")
app.include_router(projects_router, prefix="/api")
app.include_router(members_router, prefix="/api")
app.include_router(collaborators_router, prefix="/api")
app.include_router(stages_router, prefix="/api")
app.include_router(tasks_router, prefix="/api")
app.include_router(comments_router, prefix="/api")
app.include_router(activities_router, prefix="/api")
app.include_router(analytics_router, prefix="/api")
app.include_router(analytics_users_router, prefix="/api")
app.include_router(presence_router, prefix="/api")


@app.middleware("http")
async def _rate_limit_and_headers_middleware(request: Request, call_next):
  path = request.url.path
  if path.startswith("/api/") and not path.startswith("/api/health"):
    allowed, retry_after = request.app.state.rate_limiter.hit(f"api:{client_key(request)}")
    if not allowed:
      return JSONResponse(
        status_code=status.HTTP_429_TOO_MANY_REQUESTS,
        content=_error_body("rate_limited", "Too many requests", retry_after_seconds=retry_after),
        headers={"Retry-After": str(retry_after)},
      )
  response = await call_next(request)
  response.headers.setdefault("X-Content-Type-Options", "nosniff")
  response.headers.setdefault("X-Frame-Options", "DENY")
  response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
  response.headers.setdefault("Permissions-Policy", "geolocation=(), microphone=(), camera=()")
  return response


@app.get("/api/health")
async def health() -> dict:
  return {"status": "ok", "version": settings.app_version, "timestamp": datetime.now(timezone.utc).isoformat()}


@app.get("/api/health/database")
async def health_database() -> JSONResponse:
  try:
    async with SessionLocal() as db:
      res = await db.execute(select(func.count()).select_from(User))
      user_count = int(res.scalar_one() or 0)
  except Exception:
    logger.exception("database health check failed")
    return JSONResponse(status_code=503, content={"status": "error", "message": "Database unavailable"})
  return JSONResponse(content={"status": "ok", "database": "connected", "user_count": user_count})


_presence_loop_task: asyncio.Task | None = None


def _is_test_db() -> bool:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  return "test" in db_name


async def _presence_sweep_loop() -> None:
  # Heartbeats that stop arriving mean the client is gone.
  while True:
    await asyncio.sleep(60)
    cutoff = datetime.now(timezone.utc) - timedelta(minutes=settings.presence_timeout_minutes)
    try:
      async with SessionLocal() as db:
        await db.execute(
          update(UserPresence)
          .where(UserPresence.is_online.is_(True), UserPresence.last_heartbeat < cutoff)
          .values(is_online=False)
        )
        await db.commit()
    except Exception:
      logger.exception("presence sweep failed")


@app.on_event("startup")
async def _startup() -> None:
  global _presence_loop_task
  logger.info("taskboard api %s starting (env=%s)", settings.app_version, settings.app_env)
  if _is_test_db():
    return
  if settings.is_production() and not settings.cookie_secure:
    logger.warning("COOKIE_SECURE is off in production")
  if _presence_loop_task is None:
    _presence_loop_task = asyncio.create_task(_presence_sweep_loop())


@app.on_event("shutdown")
async def _shutdown() -> None:
  if _presence_loop_task is not None:
    _presence_loop_task.cancel()
  await engine.dispose()
