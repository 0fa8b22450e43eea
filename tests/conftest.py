from __future__ import annotations

import os
import sys
import tempfile
from pathlib import Path

ROOT = Path(__file__).resolve().parents[1]
if str(ROOT) not in sys.path:
  sys.path.insert(0, str(ROOT))

# settings are read at import time; point them at a throwaway database first
_DB_DIR = Path(tempfile.mkdtemp(prefix="taskboard_"))
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{_DB_DIR / 'taskboard_test.db'}"
os.environ["APP_ENV"] = "development"
os.environ["PASSWORD_HASH_ROUNDS"] = "4"

import pytest
from httpx import ASGITransport, AsyncClient
from sqlalchemy import select

from taskboard.config import settings
from taskboard.db import SessionLocal, engine
from taskboard.main import app
from taskboard.models import Base, User
from taskboard.rate_limit import RateLimiter
from taskboard.security import hash_password

PASSWORD = "secret123"


@pytest.fixture(scope="session")
def anyio_backend() -> str:
  return "asyncio"


@pytest.fixture
async def schema() -> None:
  db_name = settings.database_url.rsplit("/", 1)[-1]
  if "test" not in db_name:
    raise RuntimeError("Refusing to run destructive tests against non-test DB.")
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.create_all)
  # fresh buckets per test, roomy enough to never trip by accident
  app.state.rate_limiter = RateLimiter(rate=1000, burst=10000)
  app.state.auth_rate_limiter = RateLimiter(rate=1000, burst=10000)
  yield
  async with engine.begin() as conn:
    await conn.run_sync(Base.metadata.drop_all)
  await engine.dispose()


@pytest.fixture
async def client(schema) -> AsyncClient:
  transport = ASGITransport(app=app)
  async with AsyncClient(transport=transport, base_url="http://localhost") as c:
    yield c


async def register(client: AsyncClient, username: str) -> dict:
  res = await client.post(
    "/api/auth/register",
    json={"username": username, "email": f"{username}@example.com", "password": PASSWORD},
  )
  assert res.status_code == 200, res.text
  assert "tb_session=" in (res.headers.get("set-cookie") or "")
  return res.json()


async def login(client: AsyncClient, username: str, password: str = PASSWORD) -> dict:
  res = await client.post("/api/auth/login", json={"email": f"{username}@example.com", "password": password})
  assert res.status_code == 200, res.text
  return res.json()


async def create_admin(username: str = "root") -> str:
  async with SessionLocal() as db:
    u = User(username=username, email=f"{username}@example.com", password_hash=hash_password(PASSWORD), role="admin")
    db.add(u)
    await db.commit()
    return u.id


async def user_id(username: str) -> str:
  async with SessionLocal() as db:
    res = await db.execute(select(User.id).where(User.username == username))
    return res.scalar_one()


async def make_project(client: AsyncClient, name: str = "Board", **extra) -> dict:
  res = await client.post("/api/projects", json={"name": name, **extra})
  assert res.status_code == 200, res.text
  return res.json()


async def make_stage(client: AsyncClient, project_id: str, name: str, **extra) -> dict:
  res = await client.post("/api/stages", json={"project_id": project_id, "name": name, **extra})
  assert res.status_code == 200, res.text
  return res.json()


async def make_task(client: AsyncClient, stage_id: str, title: str, **extra) -> dict:
  res = await client.post("/api/tasks", json={"stage_id": stage_id, "title": title, **extra})
  assert res.status_code == 200, res.text
  return res.json()


async def stage_positions(client: AsyncClient, project_id: str) -> dict[str, int]:
  res = await client.get(f"/api/projects/{project_id}/stages")
  assert res.status_code == 200, res.text
  return {s["name"]: s["position"] for s in res.json()}


async def task_positions(client: AsyncClient, project_id: str, stage_id: str) -> dict[str, int]:
  res = await client.get(f"/api/projects/{project_id}/tasks", params={"stage_id": stage_id})
  assert res.status_code == 200, res.text
  return {t["title"]: t["position"] for t in res.json()}
