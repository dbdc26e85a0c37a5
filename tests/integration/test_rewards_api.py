"""End-to-end API tests for ledger, streak, badge, quest, loot box and notification endpoints."""

from __future__ import annotations

import pytest
from httpx import AsyncClient

ACCOUNT = 9009


class TestAuth:
    @pytest.mark.asyncio
    async def test_missing_token(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/me/stats")
        assert response.status_code in (401, 403)

    @pytest.mark.asyncio
    async def test_invalid_token(self, client: AsyncClient) -> None:
        response = await client.get("/api/v1/me/stats", headers={"Authorization": "Bearer not-a-jwt"})
        assert response.status_code == 401


class TestLedgerEndpoints:
    @pytest.mark.asyncio
    async def test_stats_for_new_account(self, client: AsyncClient, auth_headers) -> None:
        response = await client.get("/api/v1/me/stats", headers=auth_headers(ACCOUNT))
        assert response.status_code == 200
        assert response.json() == {"currentXP": 0, "currentLevel": 1, "totalGold": 0, "targetXP": 100}

    @pytest.mark.asyncio
    async def test_levels_table(self, client: AsyncClient) -> None:
        levels = (await client.get("/api/v1/levels")).json()["levels"]
        assert levels[0] == {"level": 1, "xp_required": 0}
        assert levels[1] == {"level": 2, "xp_required": 100}

    @pytest.mark.asyncio
    async def test_level_unknown_account(self, client: AsyncClient, auth_headers) -> None:
        response = await client.get("/api/v1/me/level", headers=auth_headers(ACCOUNT))
        assert response.status_code == 404
        assert response.json()["code"] == "NotFoundError"


class TestQuestFlow:
    @pytest.mark.asyncio
    async def test_quest_completion_end_to_end(self, client: AsyncClient, auth_headers, mock_redis) -> None:
        headers = auth_headers(ACCOUNT)
        quests = (await client.get("/api/v1/quests", params={"difficulty": "medium"})).json()
        assert [q["name"] for q in quests] == ["Quiz Streak"]
        quest_id = quests[0]["id"]

        response = await client.post(f"/api/v1/me/quests/{quest_id}/progress", json={"delta": 3}, headers=headers)
        assert response.status_code == 200
        body = response.json()
        assert body["completed_now"] is True
        assert body["quest"]["completed"] is True
        assert body["reward"]["new_xp"] == 150
        assert body["reward"]["new_level"] == 2

        channels = {call.args[0] for call in mock_redis.publish.await_args_list}
        assert channels == {f"ws:user:{ACCOUNT}"}

        stats = (await client.get("/api/v1/me/stats", headers=headers)).json()
        assert stats == {"currentXP": 150, "currentLevel": 2, "totalGold": 20, "targetXP": 250}

        grants = (await client.get("/api/v1/me/grants", headers=headers)).json()["grants"]
        assert [g["source"] for g in grants] == ["quest"]

        unshown = (await client.get("/api/v1/notifications/unshown", headers=headers)).json()
        assert [n["kind"] for n in unshown] == ["level", "quest"]
        assert unshown[1]["payload"] == {"xp": 150, "gold": 20, "questName": "Quiz Streak"}

        first_id = unshown[0]["id"]
        for _ in range(2):
            response = await client.post(f"/api/v1/notifications/{first_id}/shown", headers=headers)
            assert response.status_code == 200

        count = (await client.get("/api/v1/notifications/unshown/count", headers=headers)).json()
        assert count == {"count": 1}

        feed = (await client.get("/api/v1/notifications", headers=headers)).json()
        assert feed["total"] == 2

    @pytest.mark.asyncio
    async def test_negative_delta_is_validation_error(self, client: AsyncClient, auth_headers) -> None:
        quests = (await client.get("/api/v1/quests")).json()
        response = await client.post(
            f"/api/v1/me/quests/{quests[0]['id']}/progress", json={"delta": -1}, headers=auth_headers(ACCOUNT)
        )
        assert response.status_code == 422
        assert response.json()["detail"] == "Validation error"

    @pytest.mark.asyncio
    async def test_mark_unknown_notification(self, client: AsyncClient, auth_headers) -> None:
        response = await client.post("/api/v1/notifications/424242/shown", headers=auth_headers(ACCOUNT))
        assert response.status_code == 404
        assert response.json()["code"] == "NotFoundError"


class TestLootBoxEndpoints:
    @pytest.mark.asyncio
    async def test_purchase_without_gold(self, client: AsyncClient, auth_headers) -> None:
        boxes = (await client.get("/api/v1/loot-boxes")).json()
        assert [b["name"] for b in boxes] == ["Wooden Chest", "Silver Chest", "Legendary Chest"]

        response = await client.post(f"/api/v1/loot-boxes/{boxes[0]['id']}/purchase", headers=auth_headers(ACCOUNT))
        assert response.status_code == 409
        body = response.json()
        assert body["code"] == "InsufficientGold"
        assert body["details"]["required"] == 50

    @pytest.mark.asyncio
    async def test_purchase_and_open(self, client: AsyncClient, auth_headers, seeded_db) -> None:
        from liqrewards.gamification.ledger_service import credit

        await credit(seeded_db, None, ACCOUNT, 0, 50, "gift", "test")
        await seeded_db.commit()
        headers = auth_headers(ACCOUNT)

        boxes = (await client.get("/api/v1/loot-boxes")).json()
        response = await client.post(f"/api/v1/loot-boxes/{boxes[0]['id']}/purchase", headers=headers)
        assert response.status_code == 201
        instance = response.json()
        assert instance["opened"] is False
        assert instance["name"] == "Wooden Chest"

        opened = await client.post(f"/api/v1/me/loot-boxes/{instance['id']}/open", headers=headers)
        assert opened.status_code == 200
        assert opened.json()["opened"] is True
        assert len(opened.json()["opened_rewards"]) == 1

        again = await client.post(f"/api/v1/me/loot-boxes/{instance['id']}/open", headers=headers)
        assert again.status_code == 409
        assert again.json()["code"] == "AlreadyOpened"


class TestStreakAndBadgeEndpoints:
    @pytest.mark.asyncio
    async def test_login_then_streak(self, client: AsyncClient, auth_headers) -> None:
        headers = auth_headers(ACCOUNT)
        first = (await client.post("/api/v1/me/login", headers=headers)).json()
        assert first["changed"] is True
        assert first["streak"]["current_streak"] == 1

        second = (await client.post("/api/v1/me/login", headers=headers)).json()
        assert second["changed"] is False

        streak = (await client.get("/api/v1/me/streak", headers=headers)).json()
        assert streak["total_login_days"] == 1

        top = (await client.get("/api/v1/streaks/top")).json()
        assert top[0]["username"] == f"learner-{ACCOUNT}"

    @pytest.mark.asyncio
    async def test_badges_and_progress(self, client: AsyncClient, auth_headers) -> None:
        headers = auth_headers(ACCOUNT)
        badges = (await client.get("/api/v1/me/badges", headers=headers)).json()
        assert len(badges) == 6
        assert badges[0]["id"] == "first_steps"
        assert badges[0]["unlocked"] is False

        from sqlalchemy import select

        from liqrewards.database import get_session_factory
        from liqrewards.db.models import Achievement

        async with get_session_factory()() as session:
            first_steps_id = (
                await session.execute(select(Achievement.id).where(Achievement.slug == "first_steps"))
            ).scalar_one()

        response = await client.post(
            f"/api/v1/me/achievements/{first_steps_id}/progress", json={"delta": 1}, headers=headers
        )
        assert response.status_code == 200
        assert [t["tier_name"] for t in response.json()["unlocked"]] == ["Unlocked"]

        badges = (await client.get("/api/v1/me/badges", headers=headers)).json()
        assert badges[0]["id"] == "first_steps:1"
        assert badges[0]["unlocked"] is True
        assert badges[0]["unlockedAt"] is not None
