from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient
from sqlalchemy import update

from conftest import SessionLocal, create_admin, login, make_project, register, user_id
from taskboard.models import UserPresence


@pytest.mark.anyio
async def test_heartbeat_and_offline(client: AsyncClient) -> None:
  await register(client, "alice")
  p = await make_project(client)

  res = await client.put("/api/presence/online", json={"project_id": p["id"], "connection_id": "tab-1"})
  assert res.status_code == 200, res.text
  assert res.json()["is_online"] is True

  res = await client.get("/api/presence/online", params={"project_id": p["id"]})
  assert [x["username"] for x in res.json()] == ["alice"]

  res = await client.put("/api/presence/offline", json={"project_id": p["id"]})
  assert res.status_code == 200, res.text
  res = await client.get("/api/presence/online", params={"project_id": p["id"]})
  assert res.json() == []


@pytest.mark.anyio
async def test_stale_heartbeat_is_not_online(client: AsyncClient) -> None:
  await register(client, "alice")
  p = await make_project(client)
  await client.put("/api/presence/online", json={"project_id": p["id"]})

  async with SessionLocal() as db:
    await db.execute(
      update(UserPresence).values(last_heartbeat=datetime.now(timezone.utc) - timedelta(minutes=30))
    )
    await db.commit()

  res = await client.get("/api/presence/online", params={"project_id": p["id"]})
  assert res.json() == []


@pytest.mark.anyio
async def test_heartbeat_requires_membership(client: AsyncClient) -> None:
  await register(client, "alice")
  p = await make_project(client)
  await register(client, "mallory")
  res = await client.put("/api/presence/online", json={"project_id": p["id"]})
  assert res.status_code == 403, res.text


@pytest.mark.anyio
async def test_cleanup_removes_old_offline_rows(client: AsyncClient) -> None:
  await register(client, "alice")
  alice = await user_id("alice")
  p = await make_project(client)
  await client.put("/api/presence/online", json={"project_id": p["id"]})
  await client.put("/api/presence/offline", json={"project_id": p["id"]})

  res = await client.delete("/api/presence/cleanup")
  assert res.status_code == 403, res.text

  async with SessionLocal() as db:
    await db.execute(
      update(UserPresence)
      .where(UserPresence.user_id == alice)
      .values(last_heartbeat=datetime.now(timezone.utc) - timedelta(days=2))
    )
    await db.commit()

  await create_admin()
  await login(client, "root")
  res = await client.delete("/api/presence/cleanup")
  assert res.status_code == 200, res.text
  assert res.json()["removed"] == 1


@pytest.mark.anyio
async def test_my_presence_and_admin_stats(client: AsyncClient) -> None:
  await register(client, "alice")
  first = await make_project(client, name="First")
  second = await make_project(client, name="Second")
  await client.put("/api/presence/online", json={"project_id": first["id"]})
  await client.put("/api/presence/online", json={"project_id": second["id"]})
  await client.put("/api/presence/offline", json={"project_id": first["id"]})

  res = await client.get("/api/presence/my")
  assert res.status_code == 200, res.text
  assert {x["project_id"]: x["is_online"] for x in res.json()} == {first["id"]: False, second["id"]: True}

  res = await client.get("/api/presence/stats")
  assert res.status_code == 403, res.text

  await create_admin()
  await login(client, "root")
  res = await client.get("/api/presence/stats")
  assert res.status_code == 200, res.text
  assert res.json() == {"total": 2, "online": 1, "offline": 1, "recent_activity": 2}
  res = await client.get("/api/presence/my")
  assert res.json() == []
