"""Tests for inbox and notification endpoints."""

import pytest

from conftest import envelope, make_task, task_payload


BOB = {"X-User-Id": "bob"}


@pytest.fixture
async def items(client, app_container, team):
    """Bob assigned to two tasks through the ingress endpoint."""
    for task_id in ("t1", "t2"):
        task = make_task(task_id, assignees=("bob",))
        await team.task(task)
        await client.post(
            "/events",
            json=envelope("task.created", {"task": task_payload(task)}, event_id=f"e-{task_id}"),
        )
    return await app_container.attention_store.find_items(user_id="bob")


class TestListInbox:
    """Tests for GET /inbox."""

    @pytest.mark.asyncio
    async def test_requires_user(self, client):
        response = await client.get("/inbox")
        assert response.status_code == 401

    @pytest.mark.asyncio
    async def test_lists_items_with_counts(self, client, items):
        response = await client.get("/inbox", headers=BOB)

        assert response.status_code == 200
        data = response.json()
        assert {i["task_id"] for i in data["items"]} == {"t1", "t2"}
        assert all(i["kind"] == "assignment" and not i["read"] for i in data["items"])
        assert data["next_cursor"] is None
        assert data["counts"]["unread"] == 2
        assert data["counts"]["by_kind"]["assignment"] == {"unread": 2, "total": 2}

    @pytest.mark.asyncio
    async def test_pages_with_cursor(self, client, items):
        first = (await client.get("/inbox", headers=BOB, params={"limit": 1})).json()
        second = (
            await client.get(
                "/inbox", headers=BOB, params={"limit": 1, "cursor": first["next_cursor"]}
            )
        ).json()

        assert first["next_cursor"]
        assert first["items"][0]["id"] != second["items"][0]["id"]

    @pytest.mark.asyncio
    @pytest.mark.parametrize("limit", [0, 201])
    async def test_rejects_bad_limit(self, client, limit):
        response = await client.get("/inbox", headers=BOB, params={"limit": limit})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_rejects_bad_cursor(self, client):
        response = await client.get("/inbox", headers=BOB, params={"cursor": "garbage"})

        assert response.status_code == 400
        assert response.json()["field"] == "cursor"

    @pytest.mark.asyncio
    async def test_other_users_see_nothing(self, client, items):
        data = (await client.get("/inbox", headers={"X-User-Id": "carol"})).json()
        assert data["items"] == []

        response = await client.get(f"/inbox/{items[0].id}", headers={"X-User-Id": "carol"})
        assert response.status_code == 404


class TestAcknowledge:
    """Tests for read, dismiss and action."""

    @pytest.mark.asyncio
    async def test_mark_read(self, client, items):
        response = await client.post("/inbox/mark-read", headers=BOB, json={"ids": [items[0].id]})

        assert response.json() == {"updated": 1}
        counts = (await client.get("/inbox/counts", headers=BOB)).json()
        assert counts["unread"] == 1
        assert counts["total"] == 2

    @pytest.mark.asyncio
    async def test_mark_read_requires_ids(self, client):
        response = await client.post("/inbox/mark-read", headers=BOB, json={"ids": []})
        assert response.status_code == 400

    @pytest.mark.asyncio
    async def test_mark_all_read(self, client, items):
        response = await client.post("/inbox/mark-all-read", headers=BOB)

        assert response.json() == {"updated": 2}

    @pytest.mark.asyncio
    async def test_dismiss_twice_is_ok(self, client, items):
        body = {"ids": [items[0].id]}

        first = await client.post("/inbox/dismiss", headers=BOB, json=body)
        second = await client.post("/inbox/dismiss", headers=BOB, json=body)

        assert first.json() == {"dismissed": 1}
        assert second.status_code == 200
        assert second.json() == {"dismissed": 0}
        data = (await client.get("/inbox", headers=BOB)).json()
        assert [i["id"] for i in data["items"]] == [items[1].id]

    @pytest.mark.asyncio
    async def test_action_returns_target(self, client, items):
        response = await client.post("/inbox/action", headers=BOB, json={"id": items[0].id})

        assert response.status_code == 200
        assert response.json() == {
            "task_id": items[0].task_id,
            "comment_id": None,
            "project_id": "p1",
        }
        item = (await client.get(f"/inbox/{items[0].id}", headers=BOB)).json()
        assert item["actioned_at"] is not None

    @pytest.mark.asyncio
    async def test_action_on_dismissed_item_conflicts(self, client, items):
        await client.post("/inbox/dismiss", headers=BOB, json={"ids": [items[0].id]})

        response = await client.post("/inbox/action", headers=BOB, json={"id": items[0].id})

        assert response.status_code == 409
        assert response.json()["error"] == "StaleStateError"

    @pytest.mark.asyncio
    async def test_action_on_unknown_item(self, client):
        response = await client.post("/inbox/action", headers=BOB, json={"id": "missing"})
        assert response.status_code == 404


class TestNotifications:
    """Tests for the notification endpoints."""

    @pytest.mark.asyncio
    async def test_list_and_mark_read(self, client, items):
        notifications = (await client.get("/notifications", headers=BOB)).json()

        assert len(notifications) == 2
        assert {n["attention_item_id"] for n in notifications} == {i.id for i in items}
        assert all(n["type"] == "assignment" for n in notifications)

        response = await client.post(
            "/notifications/mark-read", headers=BOB, json={"ids": [notifications[0]["id"]]}
        )
        assert response.json() == {"updated": 1}

        unread = (await client.get("/notifications", headers=BOB, params={"unread": True})).json()
        assert [n["id"] for n in unread] == [notifications[1]["id"]]

    @pytest.mark.asyncio
    async def test_mark_all_read_without_body(self, client, items):
        response = await client.post("/notifications/mark-read", headers=BOB)

        assert response.json() == {"updated": 2}
