"""Seasonal events: joining, progress and the one-time reward claim."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from liqrewards.db.models import Account, SeasonalEvent
from liqrewards.errors import AlreadyClaimed, NotFoundError, RequirementNotMet
from liqrewards.gamification import event_service

ACCOUNT = 7007


async def _event(db, *, starts_in: timedelta = timedelta(days=-1), lasts: timedelta = timedelta(days=7)):
    start = datetime.now(timezone.utc) + starts_in
    event = SeasonalEvent(
        name="Ramadan Reading Marathon",
        event_type="reading",
        description="Read every day of the month",
        start_date=start,
        end_date=start + lasts,
        reward_xp=200,
        reward_gold=50,
        is_active=True,
    )
    db.add(event)
    await db.flush()
    return event


class TestEvents:
    @pytest.mark.asyncio
    async def test_only_running_events_listed(self, db_session) -> None:
        running = await _event(db_session)
        await _event(db_session, starts_in=timedelta(days=3))
        await _event(db_session, starts_in=timedelta(days=-10), lasts=timedelta(days=2))

        assert [e.id for e in await event_service.get_active_events(db_session)] == [running.id]

    @pytest.mark.asyncio
    async def test_join_is_idempotent(self, db_session) -> None:
        event = await _event(db_session)
        first = await event_service.join_event(db_session, ACCOUNT, event.id)
        second = await event_service.join_event(db_session, ACCOUNT, event.id)
        assert first.id == second.id
        assert second.progress == 0

    @pytest.mark.asyncio
    async def test_cannot_join_future_event(self, db_session) -> None:
        event = await _event(db_session, starts_in=timedelta(days=3))
        with pytest.raises(NotFoundError):
            await event_service.join_event(db_session, ACCOUNT, event.id)

    @pytest.mark.asyncio
    async def test_progress_clamped_and_monotone(self, db_session) -> None:
        event = await _event(db_session)
        await event_service.join_event(db_session, ACCOUNT, event.id)

        p = await event_service.update_event_progress(db_session, ACCOUNT, event.id, 40)
        assert (p.progress, p.completed) == (40, False)
        p = await event_service.update_event_progress(db_session, ACCOUNT, event.id, 10)
        assert p.progress == 40
        p = await event_service.update_event_progress(db_session, ACCOUNT, event.id, 250)
        assert (p.progress, p.completed) == (100, True)

    @pytest.mark.asyncio
    async def test_progress_requires_participation(self, db_session) -> None:
        event = await _event(db_session)
        with pytest.raises(NotFoundError):
            await event_service.update_event_progress(db_session, ACCOUNT, event.id, 10)

    @pytest.mark.asyncio
    async def test_claim_once_after_completion(self, db_session, mock_redis) -> None:
        event = await _event(db_session)
        await event_service.join_event(db_session, ACCOUNT, event.id)

        with pytest.raises(RequirementNotMet):
            await event_service.claim_event_reward(db_session, mock_redis, ACCOUNT, event.id)

        await event_service.update_event_progress(db_session, ACCOUNT, event.id, 100)
        grant = await event_service.claim_event_reward(db_session, mock_redis, ACCOUNT, event.id)
        assert grant.applied is True
        assert (grant.new_xp, grant.new_gold) == (200, 50)

        with pytest.raises(AlreadyClaimed):
            await event_service.claim_event_reward(db_session, mock_redis, ACCOUNT, event.id)

        account = await db_session.get(Account, ACCOUNT)
        await db_session.refresh(account)
        assert (account.xp, account.gold) == (200, 50)
