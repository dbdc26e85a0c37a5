"""Guild API endpoints."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from httpx import AsyncClient

LEADER, MEMBER, OTHER = 101, 102, 103


async def _create(client: AsyncClient, auth_headers, account_id: int, name: str) -> dict:
    response = await client.post("/api/v1/guilds", json={"name": name}, headers=auth_headers(account_id))
    assert response.status_code == 201, response.text
    return response.json()


class TestGuildApi:
    @pytest.mark.asyncio
    async def test_create_join_contribute(self, client: AsyncClient, auth_headers) -> None:
        guild = await _create(client, auth_headers, LEADER, "Polyglots")
        assert guild["leader_account_id"] == str(LEADER)
        assert guild["total_members"] == 1

        joined = await client.post(f"/api/v1/guilds/{guild['id']}/join", headers=auth_headers(MEMBER))
        assert joined.status_code == 200
        assert joined.json()["total_members"] == 2

        contributed = await client.post("/api/v1/guilds/contribute", json={"amount": 1200}, headers=auth_headers(MEMBER))
        assert contributed.status_code == 200
        assert contributed.json()["total_xp"] == 1200
        assert contributed.json()["level"] == 2

        mine = (await client.get("/api/v1/guilds/me", headers=auth_headers(MEMBER))).json()
        assert mine["id"] == guild["id"]

        members = (await client.get(f"/api/v1/guilds/{guild['id']}/members")).json()
        assert [m["account_id"] for m in members] == [str(MEMBER), str(LEADER)]
        assert members[1]["role"] == "leader"

        top = (await client.get("/api/v1/guilds/top")).json()
        assert top[0]["name"] == "Polyglots"

    @pytest.mark.asyncio
    async def test_name_taken(self, client: AsyncClient, auth_headers) -> None:
        await _create(client, auth_headers, LEADER, "Polyglots")
        response = await client.post("/api/v1/guilds", json={"name": "polyglots"}, headers=auth_headers(OTHER))
        assert response.status_code == 409
        assert response.json()["code"] == "NameTaken"

    @pytest.mark.asyncio
    async def test_already_in_guild(self, client: AsyncClient, auth_headers) -> None:
        await _create(client, auth_headers, LEADER, "Polyglots")
        other = await _create(client, auth_headers, OTHER, "Mathletes")
        response = await client.post(f"/api/v1/guilds/{other['id']}/join", headers=auth_headers(LEADER))
        assert response.status_code == 409
        assert response.json()["code"] == "AlreadyInGuild"

    @pytest.mark.asyncio
    async def test_leave_and_missing_membership(self, client: AsyncClient, auth_headers) -> None:
        guild = await _create(client, auth_headers, LEADER, "Polyglots")
        await client.post(f"/api/v1/guilds/{guild['id']}/join", headers=auth_headers(MEMBER))

        response = await client.post("/api/v1/guilds/leave", headers=auth_headers(LEADER))
        assert response.status_code == 200

        updated = (await client.get(f"/api/v1/guilds/{guild['id']}")).json()
        assert updated["leader_account_id"] == str(MEMBER)
        assert updated["total_members"] == 1

        response = await client.get("/api/v1/guilds/me", headers=auth_headers(LEADER))
        assert response.status_code == 404

        response = await client.post("/api/v1/guilds/leave", headers=auth_headers(LEADER))
        assert response.status_code == 409
        assert response.json()["code"] == "NotInGuild"

    @pytest.mark.asyncio
    async def test_challenge_flow(self, client: AsyncClient, auth_headers) -> None:
        guild = await _create(client, auth_headers, LEADER, "Polyglots")
        await client.post(f"/api/v1/guilds/{guild['id']}/join", headers=auth_headers(MEMBER))

        now = datetime.now(timezone.utc)
        body = {
            "name": "Weekend Sprint",
            "target_xp": 100,
            "reward_xp": 30,
            "reward_gold": 5,
            "start_date": (now - timedelta(hours=1)).isoformat(),
            "end_date": (now + timedelta(days=2)).isoformat(),
        }

        forbidden = await client.post("/api/v1/guilds/challenges", json=body, headers=auth_headers(MEMBER))
        assert forbidden.status_code == 403
        assert forbidden.json()["code"] == "NotGuildLeader"

        created = await client.post("/api/v1/guilds/challenges", json=body, headers=auth_headers(LEADER))
        assert created.status_code == 201
        challenge_id = created.json()["id"]

        progress = await client.post(
            f"/api/v1/guilds/challenges/{challenge_id}/progress", json={"amount": 100}, headers=auth_headers(MEMBER)
        )
        assert progress.status_code == 200
        result = progress.json()
        assert result["completed_now"] is True
        assert sorted(result["rewarded_account_ids"]) == [str(LEADER), str(MEMBER)]

        outsider = await client.post(
            f"/api/v1/guilds/challenges/{challenge_id}/progress", json={"amount": 1}, headers=auth_headers(OTHER)
        )
        assert outsider.status_code == 404

        challenges = (await client.get(f"/api/v1/guilds/{guild['id']}/challenges")).json()
        assert challenges[0]["completed"] is True
