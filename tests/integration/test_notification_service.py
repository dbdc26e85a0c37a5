"""Notification persistence, push and the shown flag."""

from __future__ import annotations

import json
from unittest.mock import AsyncMock

import pytest

from liqrewards.gamification.ledger_service import ensure_account
from liqrewards.social.notification_push import format_notification, push_notification_to_user, user_channel
from liqrewards.social.notification_service import (
    emit,
    fetch_unshown,
    get_notifications,
    get_unshown_count,
    mark_shown,
)

ACCOUNT = 6006


class TestEmit:
    @pytest.mark.asyncio
    async def test_persists_unshown_and_publishes(self, db_session, mock_redis) -> None:
        await ensure_account(db_session, ACCOUNT)
        notification = await emit(
            db_session, mock_redis, ACCOUNT, "badge", "Badge Unlocked", payload={"badgeId": "scholar:1"}
        )

        assert notification.id is not None
        assert notification.shown is False

        channel, body = mock_redis.publish.await_args.args
        assert channel == user_channel(ACCOUNT) == f"ws:user:{ACCOUNT}"
        message = json.loads(body)
        assert message["event"] == "notification"
        assert message["data"]["id"] == str(notification.id)
        assert message["data"]["payload"] == {"badgeId": "scholar:1"}

    @pytest.mark.asyncio
    async def test_unknown_kind_rejected(self, db_session) -> None:
        with pytest.raises(ValueError):
            await emit(db_session, None, ACCOUNT, "confetti", "Nope")

    @pytest.mark.asyncio
    async def test_push_failure_is_swallowed(self, db_session) -> None:
        await ensure_account(db_session, ACCOUNT)
        broken = AsyncMock()
        broken.publish = AsyncMock(side_effect=ConnectionError("redis down"))

        notification = await emit(db_session, broken, ACCOUNT, "level", "Level Up!")
        await db_session.commit()

        assert [n.id for n in await fetch_unshown(db_session, ACCOUNT)] == [notification.id]
        assert await push_notification_to_user(broken, notification) is False

    @pytest.mark.asyncio
    async def test_no_redis_skips_push(self, db_session) -> None:
        await ensure_account(db_session, ACCOUNT)
        notification = await emit(db_session, None, ACCOUNT, "quest", "Quest Complete!")
        assert await push_notification_to_user(None, notification) is False


class TestShown:
    @pytest.mark.asyncio
    async def test_fetch_unshown_oldest_first(self, db_session) -> None:
        await ensure_account(db_session, ACCOUNT)
        first = await emit(db_session, None, ACCOUNT, "streak", "7-Day Streak!")
        second = await emit(db_session, None, ACCOUNT, "level", "Level Up!")
        third = await emit(db_session, None, ACCOUNT, "quest", "Quest Complete!")

        unshown = await fetch_unshown(db_session, ACCOUNT)
        assert [n.id for n in unshown] == [first.id, second.id, third.id]

    @pytest.mark.asyncio
    async def test_mark_shown_is_idempotent(self, db_session) -> None:
        await ensure_account(db_session, ACCOUNT)
        first = await emit(db_session, None, ACCOUNT, "streak", "7-Day Streak!")
        second = await emit(db_session, None, ACCOUNT, "level", "Level Up!")

        assert await mark_shown(db_session, ACCOUNT, first.id) is True
        assert await mark_shown(db_session, ACCOUNT, first.id) is True
        assert [n.id for n in await fetch_unshown(db_session, ACCOUNT)] == [second.id]
        assert await get_unshown_count(db_session, ACCOUNT) == 1

    @pytest.mark.asyncio
    async def test_mark_shown_unknown_or_foreign(self, db_session) -> None:
        await ensure_account(db_session, ACCOUNT)
        note = await emit(db_session, None, ACCOUNT, "guild", "Challenge Complete")

        assert await mark_shown(db_session, ACCOUNT, 987654) is False
        assert await mark_shown(db_session, ACCOUNT + 1, note.id) is False
        assert await get_unshown_count(db_session, ACCOUNT) == 1

    @pytest.mark.asyncio
    async def test_feed_newest_first_with_pagination(self, db_session) -> None:
        await ensure_account(db_session, ACCOUNT)
        ids = [(await emit(db_session, None, ACCOUNT, "event", f"Event {i}")).id for i in range(5)]

        page, total = await get_notifications(db_session, ACCOUNT, page=1, per_page=2)
        assert total == 5
        assert [n.id for n in page] == [ids[4], ids[3]]

        page, _ = await get_notifications(db_session, ACCOUNT, page=3, per_page=2)
        assert [n.id for n in page] == [ids[0]]

    @pytest.mark.asyncio
    async def test_wire_format(self, db_session) -> None:
        await ensure_account(db_session, ACCOUNT)
        note = await emit(db_session, None, ACCOUNT, "lootbox", "Wooden Chest Opened!", message="+25 XP")
        wire = format_notification(note)
        assert wire["id"] == str(note.id)
        assert wire["kind"] == "lootbox"
        assert wire["message"] == "+25 XP"
        assert wire["shown"] is False
        assert wire["createdAt"] is not None
