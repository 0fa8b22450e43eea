from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import login, make_project, make_stage, make_task, register, user_id


@pytest.mark.anyio
async def test_create_project_makes_creator_owner(client: AsyncClient) -> None:
  await register(client, "alice")
  p = await make_project(client, name="Launch", start_date="2026-01-05", end_date="")
  assert p["user_role"] == "owner"
  assert p["start_date"] == "2026-01-05"
  assert p["end_date"] is None
  assert p["status"] == "active"

  res = await client.get(f"/api/projects/{p['id']}/members")
  assert res.status_code == 200, res.text
  assert [(m["username"], m["role"]) for m in res.json()] == [("alice", "owner")]


@pytest.mark.anyio
async def test_project_with_initial_members_is_listed_for_them(client: AsyncClient) -> None:
  await register(client, "bob")
  bob = await user_id("bob")
  await register(client, "alice")
  p = await make_project(client, members=[{"user_id": bob, "role": "manager"}])

  await login(client, "bob")
  res = await client.get("/api/projects")
  assert res.status_code == 200, res.text
  listed = res.json()
  assert [x["id"] for x in listed] == [p["id"]]
  assert listed[0]["user_role"] == "manager"


@pytest.mark.anyio
async def test_outsider_cannot_see_project(client: AsyncClient) -> None:
  await register(client, "alice")
  p = await make_project(client)
  await register(client, "mallory")

  res = await client.get("/api/projects")
  assert res.json() == []
  res = await client.get(f"/api/projects/{p['id']}")
  assert res.status_code == 403, res.text
  res = await client.get("/api/projects/does-not-exist")
  assert res.status_code == 404, res.text


@pytest.mark.anyio
async def test_update_project_with_version(client: AsyncClient) -> None:
  await register(client, "alice")
  p = await make_project(client)

  res = await client.patch(f"/api/projects/{p['id']}", json={"status": "archived", "version": p["version"]})
  assert res.status_code == 200, res.text
  assert res.json()["status"] == "archived"

  res = await client.patch(f"/api/projects/{p['id']}", json={"name": "Late", "version": p["version"]})
  assert res.status_code == 409, res.text

  res = await client.get("/api/projects", params={"status": "archived"})
  assert [x["id"] for x in res.json()] == [p["id"]]


@pytest.mark.anyio
async def test_delete_project_cascades(client: AsyncClient) -> None:
  await register(client, "alice")
  p = await make_project(client)
  s = await make_stage(client, p["id"], "A")
  t = await make_task(client, s["id"], "t1")
  await client.post(f"/api/tasks/{t['id']}/comments", json={"content": "hi"})

  res = await client.delete(f"/api/projects/{p['id']}")
  assert res.status_code == 200, res.text
  assert (await client.get(f"/api/projects/{p['id']}")).status_code == 404
  assert (await client.get(f"/api/tasks/{t['id']}")).status_code == 404
  assert (await client.get(f"/api/stages/{s['id']}")).status_code == 404


@pytest.mark.anyio
async def test_member_lifecycle(client: AsyncClient) -> None:
  await register(client, "bob")
  await register(client, "carol")
  bob, carol = await user_id("bob"), await user_id("carol")
  await register(client, "alice")
  alice = await user_id("alice")
  p = await make_project(client)
  base = f"/api/projects/{p['id']}/members"

  res = await client.post(base, json={"user_id": bob})
  assert res.status_code == 200, res.text
  assert res.json()["role"] == "collaborator"
  res = await client.post(base, json={"user_id": bob})
  assert res.status_code == 400, res.text

  res = await client.post(f"{base}/batch", json={"members": [{"user_id": bob}, {"user_id": carol, "role": "manager"}]})
  assert res.status_code == 200, res.text
  assert [m["username"] for m in res.json()] == ["carol"]

  res = await client.patch(f"{base}/{bob}", json={"role": "manager"})
  assert res.status_code == 200, res.text
  assert res.json()["role"] == "manager"

  res = await client.patch(f"{base}/{alice}", json={"role": "collaborator"})
  assert res.status_code == 403, res.text
  res = await client.delete(f"{base}/{alice}")
  assert res.status_code == 403, res.text

  res = await client.delete(f"{base}/{carol}")
  assert res.status_code == 200, res.text
  res = await client.get(base)
  assert sorted(m["username"] for m in res.json()) == ["alice", "bob"]


@pytest.mark.anyio
async def test_member_can_work_on_board(client: AsyncClient) -> None:
  await register(client, "bob")
  bob = await user_id("bob")
  await register(client, "alice")
  p = await make_project(client)
  s = await make_stage(client, p["id"], "A")
  await client.post(f"/api/projects/{p['id']}/members", json={"user_id": bob})

  await login(client, "bob")
  t = await make_task(client, s["id"], "from bob")
  assert t["created_by"] == bob
  s2 = await make_stage(client, p["id"], "B")
  assert s2["position"] == 2
