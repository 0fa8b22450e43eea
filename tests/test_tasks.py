from __future__ import annotations

import pytest
from httpx import AsyncClient

from conftest import make_project, make_stage, make_task, register, task_positions, user_id


async def _board(client: AsyncClient) -> tuple[str, dict[str, dict]]:
  await register(client, "alice")
  p = await make_project(client)
  stages = {n: await make_stage(client, p["id"], n) for n in ("A", "B", "C")}
  return p["id"], stages


@pytest.mark.anyio
async def test_create_appends_in_creation_order(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  sid = stages["A"]["id"]
  created = [await make_task(client, sid, f"t{i}") for i in range(1, 4)]
  assert [t["position"] for t in created] == [1, 2, 3]
  assert created[0]["priority"] == "P2"
  assert created[0]["status"] == "todo"
  assert created[0]["stage"]["name"] == "A"
  assert created[0]["project_id"] == pid


@pytest.mark.anyio
async def test_create_respects_stage_policy_and_capacity(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  res = await client.patch(f"/api/stages/{stages['A']['id']}", json={"allow_task_creation": False})
  assert res.status_code == 200, res.text
  res = await client.post("/api/tasks", json={"stage_id": stages["A"]["id"], "title": "nope"})
  assert res.status_code == 400, res.text
  assert res.json()["detail"]["code"] == "policy_violation"

  await client.patch(f"/api/stages/{stages['B']['id']}", json={"max_tasks": 1})
  await make_task(client, stages["B"]["id"], "only")
  res = await client.post("/api/tasks", json={"stage_id": stages["B"]["id"], "title": "overflow"})
  assert res.status_code == 400, res.text


@pytest.mark.anyio
async def test_create_parses_due_date_and_rejects_other_formats(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  t = await make_task(client, stages["A"]["id"], "dated", due_date="2026-03-01")
  assert t["due_date"] == "2026-03-01"
  res = await client.post("/api/tasks", json={"stage_id": stages["A"]["id"], "title": "bad", "due_date": "03/01/2026"})
  assert res.status_code == 400, res.text


@pytest.mark.anyio
async def test_move_to_explicit_position_opens_gap_and_leaves_source_gap(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  b, c = stages["B"]["id"], stages["C"]["id"]
  t1 = await make_task(client, b, "T1")
  await make_task(client, b, "T2")
  await make_task(client, c, "C1")

  res = await client.patch(f"/api/tasks/{t1['id']}/move", json={"new_stage_id": c, "new_position": 1})
  assert res.status_code == 200, res.text
  body = res.json()
  assert body["stage_id"] == c
  assert body["position"] == 1
  assert body["stage"]["name"] == "C"
  assert body["version"] == t1["version"] + 1

  assert await task_positions(client, pid, c) == {"T1": 1, "C1": 2}
  assert await task_positions(client, pid, b) == {"T2": 2}


@pytest.mark.anyio
async def test_move_without_position_appends(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a, c = stages["A"]["id"], stages["C"]["id"]
  t = await make_task(client, a, "mover")
  await make_task(client, c, "c1")
  await make_task(client, c, "c2")

  res = await client.patch(f"/api/tasks/{t['id']}/move", json={"new_stage_id": c})
  assert res.status_code == 200, res.text
  assert res.json()["position"] == 3

  t2 = await make_task(client, a, "negative")
  res = await client.patch(f"/api/tasks/{t2['id']}/move", json={"new_stage_id": c, "new_position": -1})
  assert res.status_code == 200, res.text
  assert res.json()["position"] == 4


@pytest.mark.anyio
async def test_move_within_stage_shifts_neighbours(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a = stages["A"]["id"]
  tasks = [await make_task(client, a, f"t{i}") for i in range(1, 5)]

  res = await client.patch(f"/api/tasks/{tasks[3]['id']}/move", json={"new_stage_id": a, "new_position": 2})
  assert res.status_code == 200, res.text
  assert await task_positions(client, pid, a) == {"t1": 1, "t4": 2, "t2": 3, "t3": 4}

  res = await client.patch(f"/api/tasks/{tasks[0]['id']}/move", json={"new_stage_id": a, "new_position": 99})
  assert res.status_code == 200, res.text
  assert await task_positions(client, pid, a) == {"t4": 1, "t2": 2, "t3": 3, "t1": 4}


@pytest.mark.anyio
async def test_noop_move_keeps_ordering(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a = stages["A"]["id"]
  await make_task(client, a, "t1")
  t2 = await make_task(client, a, "t2")
  await make_task(client, a, "t3")

  res = await client.patch(f"/api/tasks/{t2['id']}/move", json={"new_stage_id": a, "new_position": 2})
  assert res.status_code == 200, res.text
  assert await task_positions(client, pid, a) == {"t1": 1, "t2": 2, "t3": 3}


@pytest.mark.anyio
async def test_move_into_full_stage_is_rejected_without_writes(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a, b = stages["A"]["id"], stages["B"]["id"]
  await client.patch(f"/api/stages/{b}", json={"max_tasks": 2})
  await make_task(client, b, "b1")
  await make_task(client, b, "b2")
  t = await make_task(client, a, "mover")

  res = await client.patch(f"/api/tasks/{t['id']}/move", json={"new_stage_id": b, "new_position": 1})
  assert res.status_code == 400, res.text
  assert res.json()["detail"]["code"] == "policy_violation"
  assert await task_positions(client, pid, a) == {"mover": 1}
  assert await task_positions(client, pid, b) == {"b1": 1, "b2": 2}


@pytest.mark.anyio
async def test_move_into_locked_stage_is_rejected(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a, b = stages["A"]["id"], stages["B"]["id"]
  await client.patch(f"/api/stages/{b}", json={"allow_task_movement": False})
  await make_task(client, b, "b1")
  t = await make_task(client, a, "mover")

  res = await client.patch(f"/api/tasks/{t['id']}/move", json={"new_stage_id": b, "new_position": 1})
  assert res.status_code == 400, res.text
  assert await task_positions(client, pid, b) == {"b1": 1}


@pytest.mark.anyio
async def test_move_to_stage_of_another_project_is_not_found(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  t = await make_task(client, stages["A"]["id"], "mover")
  other = await make_project(client, name="Other")
  foreign = await make_stage(client, other["id"], "X")

  res = await client.patch(f"/api/tasks/{t['id']}/move", json={"new_stage_id": foreign["id"], "new_position": 1})
  assert res.status_code == 404, res.text
  assert res.json()["detail"]["message"] == "Target stage not found"
  assert await task_positions(client, pid, stages["A"]["id"]) == {"mover": 1}


@pytest.mark.anyio
async def test_move_with_stale_version_conflicts(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a, b = stages["A"]["id"], stages["B"]["id"]
  t = await make_task(client, a, "mover")
  res = await client.patch(f"/api/tasks/{t['id']}", json={"title": "renamed"})
  assert res.status_code == 200, res.text

  res = await client.patch(
    f"/api/tasks/{t['id']}/move",
    json={"new_stage_id": b, "new_position": 1, "version": t["version"]},
  )
  assert res.status_code == 409, res.text
  assert await task_positions(client, pid, a) == {"renamed": 1}


@pytest.mark.anyio
async def test_move_that_does_not_stick_reports_verification_failure(client: AsyncClient, monkeypatch) -> None:
  import taskboard.ordering.tasks as task_ordering

  async def _lost_write(db, task, stage_id, position) -> None:
    return None

  pid, stages = await _board(client)
  t = await make_task(client, stages["A"]["id"], "mover")
  monkeypatch.setattr(task_ordering, "_write_position", _lost_write)

  res = await client.patch(f"/api/tasks/{t['id']}/move", json={"new_stage_id": stages["B"]["id"], "new_position": 1})
  assert res.status_code == 500, res.text
  detail = res.json()["detail"]
  assert detail["code"] == "verification_failed"
  assert "debug" not in detail


@pytest.mark.anyio
async def test_reorder_tasks_overwrites_positions(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a = stages["A"]["id"]
  t1 = await make_task(client, a, "t1")
  t2 = await make_task(client, a, "t2")

  res = await client.post(
    "/api/tasks/reorder",
    json={"task_orders": [{"task_id": t2["id"], "position": 1}, {"task_id": t1["id"], "position": 2}]},
  )
  assert res.status_code == 200, res.text
  assert [t["title"] for t in res.json()] == ["t2", "t1"]

  res = await client.post(
    "/api/tasks/reorder",
    json={"task_orders": [{"task_id": t1["id"], "position": 1}, {"task_id": "missing", "position": 2}]},
  )
  assert res.status_code == 404, res.text
  assert await task_positions(client, pid, a) == {"t2": 1, "t1": 2}


@pytest.mark.anyio
async def test_update_task_tracks_completion_and_version(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  t = await make_task(client, stages["A"]["id"], "work")

  res = await client.patch(f"/api/tasks/{t['id']}", json={"status": "done", "version": t["version"]})
  assert res.status_code == 200, res.text
  done = res.json()
  assert done["completed_at"]
  assert done["version"] == t["version"] + 1

  res = await client.patch(f"/api/tasks/{t['id']}", json={"status": "todo", "version": t["version"]})
  assert res.status_code == 409, res.text

  res = await client.patch(f"/api/tasks/{t['id']}", json={"status": "todo", "version": done["version"]})
  assert res.status_code == 200, res.text
  assert res.json()["completed_at"] is None


@pytest.mark.anyio
async def test_assignee_must_belong_to_project(client: AsyncClient) -> None:
  await register(client, "bob")
  bob = await user_id("bob")
  pid, stages = await _board(client)
  t = await make_task(client, stages["A"]["id"], "work")

  res = await client.patch(f"/api/tasks/{t['id']}", json={"assignee_id": bob})
  assert res.status_code == 400, res.text

  res = await client.post(f"/api/projects/{pid}/members", json={"user_id": bob})
  assert res.status_code == 200, res.text
  res = await client.patch(f"/api/tasks/{t['id']}", json={"assignee_id": bob})
  assert res.status_code == 200, res.text
  assert res.json()["assignee"]["username"] == "bob"


@pytest.mark.anyio
async def test_list_tasks_filters(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  await make_task(client, stages["A"]["id"], "a-high", priority="P1")
  await make_task(client, stages["B"]["id"], "b-low", priority="P3")

  res = await client.get(f"/api/projects/{pid}/tasks")
  assert [t["title"] for t in res.json()] == ["a-high", "b-low"]
  res = await client.get(f"/api/projects/{pid}/tasks", params={"priority": "P3"})
  assert [t["title"] for t in res.json()] == ["b-low"]


@pytest.mark.anyio
async def test_delete_task_keeps_sibling_positions(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a = stages["A"]["id"]
  t1 = await make_task(client, a, "t1")
  await make_task(client, a, "t2")

  res = await client.delete(f"/api/tasks/{t1['id']}")
  assert res.status_code == 200, res.text
  assert await task_positions(client, pid, a) == {"t2": 2}
  res = await client.get(f"/api/tasks/{t1['id']}")
  assert res.status_code == 404


@pytest.mark.anyio
async def test_delete_task_blocked_by_stage_policy(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a = stages["A"]["id"]
  t = await make_task(client, a, "keep")
  await client.patch(f"/api/stages/{a}", json={"allow_task_deletion": False})

  res = await client.delete(f"/api/tasks/{t['id']}")
  assert res.status_code == 400, res.text
  assert await task_positions(client, pid, a) == {"keep": 1}


@pytest.mark.anyio
async def test_append_within_stage_after_delete_lands_last(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a = stages["A"]["id"]
  t1 = await make_task(client, a, "t1")
  t2 = await make_task(client, a, "t2")
  await make_task(client, a, "t3")
  res = await client.delete(f"/api/tasks/{t2['id']}")
  assert res.status_code == 200, res.text

  res = await client.patch(f"/api/tasks/{t1['id']}/move", json={"new_stage_id": a})
  assert res.status_code == 200, res.text
  assert res.json()["position"] == 2
  assert await task_positions(client, pid, a) == {"t3": 1, "t1": 2}

  res = await client.patch(f"/api/tasks/{t1['id']}/move", json={"new_stage_id": a, "new_position": -1})
  assert res.status_code == 200, res.text
  assert await task_positions(client, pid, a) == {"t3": 1, "t1": 2}


@pytest.mark.anyio
async def test_move_into_stage_with_gap_keeps_it_dense(client: AsyncClient) -> None:
  pid, stages = await _board(client)
  a, b = stages["A"]["id"], stages["B"]["id"]
  await make_task(client, b, "b1")
  b2 = await make_task(client, b, "b2")
  await make_task(client, b, "b3")
  await client.delete(f"/api/tasks/{b2['id']}")
  m = await make_task(client, a, "m")

  res = await client.patch(f"/api/tasks/{m['id']}/move", json={"new_stage_id": b, "new_position": 3})
  assert res.status_code == 200, res.text
  assert res.json()["position"] == 3
  assert await task_positions(client, pid, b) == {"b1": 1, "b3": 2, "m": 3}

  n = await make_task(client, a, "n")
  res = await client.patch(f"/api/tasks/{n['id']}/move", json={"new_stage_id": b, "new_position": 2})
  assert res.status_code == 200, res.text
  assert await task_positions(client, pid, b) == {"b1": 1, "n": 2, "b3": 3, "m": 4}


@pytest.mark.anyio
async def test_failed_write_rolls_back_sibling_shift(client: AsyncClient, monkeypatch) -> None:
  import taskboard.ordering.tasks as task_ordering
  from taskboard.errors import ConcurrencyHazard

  opened: list[str] = []
  real_open_gap = task_ordering._open_gap

  async def _open_gap(db, stage_id, at) -> None:
    await real_open_gap(db, stage_id, at)
    opened.append(stage_id)

  async def _conflicting_write(db, task, stage_id, position) -> None:
    raise ConcurrencyHazard("Task was modified by another request; reload and retry")

  pid, stages = await _board(client)
  a, b = stages["A"]["id"], stages["B"]["id"]
  t = await make_task(client, a, "mover")
  await make_task(client, b, "b1")
  await make_task(client, b, "b2")
  monkeypatch.setattr(task_ordering, "_open_gap", _open_gap)
  monkeypatch.setattr(task_ordering, "_write_position", _conflicting_write)

  res = await client.patch(f"/api/tasks/{t['id']}/move", json={"new_stage_id": b, "new_position": 1})
  assert res.status_code == 409, res.text
  assert opened == [b]
  assert await task_positions(client, pid, b) == {"b1": 1, "b2": 2}
  res = await client.get(f"/api/tasks/{t['id']}")
  assert (res.json()["stage_id"], res.json()["position"]) == (a, 1)


@pytest.mark.anyio
async def test_reorder_failing_midway_rolls_back_whole_batch(client: AsyncClient, monkeypatch) -> None:
  import taskboard.routers.tasks as task_routes
  from taskboard.errors import ConcurrencyHazard

  real_reorder = task_routes.reorder_tasks

  async def _fails_after_first(db, orders) -> None:
    orders = list(orders)
    await real_reorder(db, orders[:1])
    raise ConcurrencyHazard("Task was modified by another request; reload and retry")

  pid, stages = await _board(client)
  a = stages["A"]["id"]
  t1 = await make_task(client, a, "t1")
  t2 = await make_task(client, a, "t2")
  monkeypatch.setattr(task_routes, "reorder_tasks", _fails_after_first)

  res = await client.post(
    "/api/tasks/reorder",
    json={"task_orders": [{"task_id": t2["id"], "position": 1}, {"task_id": t1["id"], "position": 2}]},
  )
  assert res.status_code == 409, res.text
  assert await task_positions(client, pid, a) == {"t1": 1, "t2": 2}
