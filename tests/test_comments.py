from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import login, make_project, make_stage, make_task, register, user_id


async def _task(client: AsyncClient) -> dict:
  await register(client, "alice")
  p = await make_project(client)
  s = await make_stage(client, p["id"], "A")
  return await make_task(client, s["id"], "discuss")


async def _comment(client: AsyncClient, task_id: str, content: str, **extra) -> dict:
  res = await client.post(f"/api/tasks/{task_id}/comments", json={"content": content, **extra})
  assert res.status_code == 200, res.text
  return res.json()


@pytest.mark.anyio
async def test_comments_come_back_as_a_tree(client: AsyncClient) -> None:
  t = await _task(client)
  root = await _comment(client, t["id"], "root")
  reply = await _comment(client, t["id"], "reply", parent_comment_id=root["id"], reply_to_id=root["id"])
  await _comment(client, t["id"], "nested", parent_comment_id=reply["id"])
  await _comment(client, t["id"], "second root", media_id="m1", media_type="image", media_name="shot.png")

  res = await client.get(f"/api/tasks/{t['id']}/comments")
  assert res.status_code == 200, res.text
  tree = res.json()
  assert [c["content"] for c in tree] == ["root", "second root"]
  assert tree[0]["username"] == "alice"
  assert [c["content"] for c in tree[0]["replies"]] == ["reply"]
  assert [c["content"] for c in tree[0]["replies"][0]["replies"]] == ["nested"]
  assert tree[1]["media_name"] == "shot.png"


@pytest.mark.anyio
async def test_reply_must_reference_same_task(client: AsyncClient) -> None:
  t = await _task(client)
  other = await make_task(client, t["stage_id"], "elsewhere")
  root = await _comment(client, other["id"], "root")
  res = await client.post(f"/api/tasks/{t['id']}/comments", json={"content": "x", "parent_comment_id": root["id"]})
  assert res.status_code == 400, res.text


@pytest.mark.anyio
async def test_only_author_edits_and_owner_may_delete(client: AsyncClient) -> None:
  await register(client, "bob")
  bob = await user_id("bob")
  t = await _task(client)
  await client.post(f"/api/projects/{t['project_id']}/members", json={"user_id": bob})
  mine = await _comment(client, t["id"], "from alice")

  await login(client, "bob")
  theirs = await _comment(client, t["id"], "from bob")
  await _comment(client, t["id"], "bob reply", parent_comment_id=theirs["id"])
  res = await client.patch(f"/api/comments/{mine['id']}", json={"content": "hijack"})
  assert res.status_code == 403, res.text
  res = await client.delete(f"/api/comments/{mine['id']}")
  assert res.status_code == 403, res.text

  res = await client.patch(f"/api/comments/{theirs['id']}", json={"content": "edited"})
  assert res.status_code == 200, res.text
  assert res.json()["content"] == "edited"

  await login(client, "alice")
  res = await client.delete(f"/api/comments/{theirs['id']}")
  assert res.status_code == 200, res.text
  assert res.json()["deleted"] == 2

  res = await client.get(f"/api/tasks/{t['id']}/comments")
  assert [c["content"] for c in res.json()] == ["from alice"]


@pytest.mark.anyio
async def test_comment_is_recorded_as_activity(client: AsyncClient) -> None:
  t = await _task(client)
  await _comment(client, t["id"], "noted")
  res = await client.get(f"/api/tasks/{t['id']}/activities")
  assert res.status_code == 200, res.text
  assert "comment_added" in [a["action_type"] for a in res.json()]
