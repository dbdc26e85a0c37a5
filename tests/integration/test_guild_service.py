"""Guild lifecycle: membership counters, leadership, contributions and challenges."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy import func, select

from liqrewards.db.models import Account, AchievementNotification, Guild, GuildMember
from liqrewards.errors import (
    AlreadyInGuild,
    ChallengeClosed,
    NameTaken,
    NotFoundError,
    NotGuildLeader,
    NotInGuild,
)
from liqrewards.social import guild_service

LEADER, SECOND, THIRD, OUTSIDER = 11, 12, 13, 14
NOW = datetime(2026, 5, 10, 12, 0, tzinfo=timezone.utc)


async def _assert_aggregates(db, guild_id: int) -> None:
    """total_xp and total_members always match the membership rows."""
    guild = await guild_service.get_guild(db, guild_id)
    count, total = (
        await db.execute(
            select(func.count(), func.coalesce(func.sum(GuildMember.contribution_xp), 0)).where(
                GuildMember.guild_id == guild_id
            )
        )
    ).one()
    assert guild.total_members == count
    assert guild.total_xp == total


async def _guild_of_three(db):
    guild = await guild_service.create_guild(db, LEADER, "Polyglots", "Learning together")
    await guild_service.join_guild(db, SECOND, guild.id)
    await guild_service.join_guild(db, THIRD, guild.id)
    return guild


class TestMembership:
    @pytest.mark.asyncio
    async def test_create_makes_leader(self, db_session) -> None:
        guild = await guild_service.create_guild(db_session, LEADER, "  Polyglots  ")
        assert guild.name == "Polyglots"
        assert guild.total_members == 1
        assert guild.total_xp == 0
        assert guild.level == 1
        membership = await guild_service.get_user_membership(db_session, LEADER)
        assert membership.role == "leader"
        assert membership.contribution_xp == 0

    @pytest.mark.asyncio
    async def test_contributions_roll_up(self, db_session) -> None:
        guild = await _guild_of_three(db_session)
        await guild_service.contribute_xp(db_session, None, LEADER, 500, now=NOW)
        await guild_service.contribute_xp(db_session, None, SECOND, 300, now=NOW)
        updated = await guild_service.contribute_xp(db_session, None, THIRD, 200, now=NOW)

        assert updated.total_xp == 1000
        assert updated.total_members == 3
        assert updated.level == 2
        await _assert_aggregates(db_session, guild.id)

    @pytest.mark.asyncio
    async def test_leaving_takes_contribution_along(self, db_session) -> None:
        guild = await _guild_of_three(db_session)
        await guild_service.contribute_xp(db_session, None, LEADER, 500, now=NOW)
        await guild_service.contribute_xp(db_session, None, SECOND, 300, now=NOW)
        await guild_service.contribute_xp(db_session, None, THIRD, 200, now=NOW)

        await guild_service.leave_guild(db_session, SECOND)
        updated = await guild_service.get_guild(db_session, guild.id)
        assert updated.total_xp == 700
        assert updated.total_members == 2
        assert updated.level == 1
        await _assert_aggregates(db_session, guild.id)

    @pytest.mark.asyncio
    async def test_leader_leaving_transfers_to_longest_serving(self, db_session) -> None:
        guild = await _guild_of_three(db_session)
        await guild_service.leave_guild(db_session, LEADER)

        updated = await guild_service.get_guild(db_session, guild.id)
        assert updated.leader_account_id == SECOND
        assert (await guild_service.get_user_membership(db_session, SECOND)).role == "leader"
        assert (await guild_service.get_user_membership(db_session, THIRD)).role == "member"

    @pytest.mark.asyncio
    async def test_last_member_dissolves_guild(self, db_session) -> None:
        guild = await guild_service.create_guild(db_session, LEADER, "Solo")
        await guild_service.leave_guild(db_session, LEADER)
        assert await guild_service.get_guild(db_session, guild.id) is None
        assert await guild_service.get_user_guild(db_session, LEADER) is None

    @pytest.mark.asyncio
    async def test_one_guild_per_account(self, db_session) -> None:
        guild = await guild_service.create_guild(db_session, LEADER, "Polyglots")
        other = await guild_service.create_guild(db_session, OUTSIDER, "Mathletes")
        with pytest.raises(AlreadyInGuild):
            await guild_service.join_guild(db_session, LEADER, other.id)
        with pytest.raises(AlreadyInGuild):
            await guild_service.create_guild(db_session, LEADER, "Another")
        await _assert_aggregates(db_session, guild.id)

    @pytest.mark.asyncio
    async def test_name_taken_case_insensitive(self, db_session) -> None:
        await guild_service.create_guild(db_session, LEADER, "Polyglots")
        with pytest.raises(NameTaken):
            await guild_service.create_guild(db_session, SECOND, "POLYGLOTS")

    @pytest.mark.asyncio
    async def test_blank_name_rejected(self, db_session) -> None:
        with pytest.raises(ValueError):
            await guild_service.create_guild(db_session, LEADER, "   ")

    @pytest.mark.asyncio
    async def test_join_unknown_guild(self, db_session) -> None:
        with pytest.raises(NotFoundError):
            await guild_service.join_guild(db_session, SECOND, 999)

    @pytest.mark.asyncio
    async def test_leave_or_contribute_without_guild(self, db_session) -> None:
        with pytest.raises(NotInGuild):
            await guild_service.leave_guild(db_session, OUTSIDER)
        with pytest.raises(NotInGuild):
            await guild_service.contribute_xp(db_session, None, OUTSIDER, 10)

    @pytest.mark.asyncio
    async def test_members_listed_by_contribution(self, db_session) -> None:
        guild = await _guild_of_three(db_session)
        await guild_service.contribute_xp(db_session, None, THIRD, 50, now=NOW)
        rows = await guild_service.get_guild_members(db_session, guild.id)
        assert [member.account_id for member, _ in rows][0] == THIRD

    @pytest.mark.asyncio
    async def test_top_guilds(self, db_session) -> None:
        await guild_service.create_guild(db_session, LEADER, "Polyglots")
        await guild_service.create_guild(db_session, OUTSIDER, "Mathletes")
        await guild_service.contribute_xp(db_session, None, OUTSIDER, 10, now=NOW)
        assert [g.name for g in await guild_service.get_top_guilds(db_session)] == ["Mathletes", "Polyglots"]


def _detached_membership(membership: GuildMember, contribution_xp: int) -> GuildMember:
    """Copy of a membership as another request read it earlier."""
    return GuildMember(
        id=membership.id,
        guild_id=membership.guild_id,
        account_id=membership.account_id,
        role=membership.role,
        contribution_xp=contribution_xp,
        joined_at=membership.joined_at,
    )


def _lookup_returning(monkeypatch, membership: GuildMember | None) -> None:
    async def lookup(_db, _account_id):
        return membership

    monkeypatch.setattr(guild_service, "get_user_membership", lookup)


class TestInterleavedRequests:
    """A request acting on a membership read before another request changed it."""

    @pytest.mark.asyncio
    async def test_contribution_after_leave_is_rejected(self, db_session, monkeypatch) -> None:
        guild = await _guild_of_three(db_session)
        await guild_service.contribute_xp(db_session, None, SECOND, 300, now=NOW)
        membership = await guild_service.get_user_membership(db_session, SECOND)
        read_earlier = _detached_membership(membership, 300)

        await guild_service.leave_guild(db_session, SECOND)
        await db_session.commit()

        _lookup_returning(monkeypatch, read_earlier)
        with pytest.raises(NotInGuild):
            await guild_service.contribute_xp(db_session, None, SECOND, 500, now=NOW)

        monkeypatch.undo()
        await _assert_aggregates(db_session, guild.id)
        assert (await guild_service.get_guild(db_session, guild.id)).total_xp == 0

    @pytest.mark.asyncio
    async def test_leave_removes_contribution_made_after_the_read(self, db_session, monkeypatch) -> None:
        guild = await _guild_of_three(db_session)
        membership = await guild_service.get_user_membership(db_session, SECOND)
        read_earlier = _detached_membership(membership, 0)

        await guild_service.contribute_xp(db_session, None, SECOND, 300, now=NOW)
        await guild_service.contribute_xp(db_session, None, THIRD, 200, now=NOW)
        await db_session.commit()

        _lookup_returning(monkeypatch, read_earlier)
        await guild_service.leave_guild(db_session, SECOND)
        await db_session.commit()

        monkeypatch.undo()
        updated = await guild_service.get_guild(db_session, guild.id)
        assert (updated.total_xp, updated.total_members) == (200, 2)
        await _assert_aggregates(db_session, guild.id)

    @pytest.mark.asyncio
    async def test_leave_twice_from_stale_read(self, db_session, monkeypatch) -> None:
        guild = await _guild_of_three(db_session)
        membership = await guild_service.get_user_membership(db_session, THIRD)
        read_earlier = _detached_membership(membership, 0)
        await guild_service.leave_guild(db_session, THIRD)
        await db_session.commit()

        _lookup_returning(monkeypatch, read_earlier)
        with pytest.raises(NotInGuild):
            await guild_service.leave_guild(db_session, THIRD)

        monkeypatch.undo()
        assert (await guild_service.get_guild(db_session, guild.id)).total_members == 2

    @pytest.mark.asyncio
    async def test_join_race_reports_already_in_guild(self, db_session, monkeypatch) -> None:
        first = await guild_service.create_guild(db_session, LEADER, "Polyglots")
        second = await guild_service.create_guild(db_session, OUTSIDER, "Mathletes")
        await guild_service.join_guild(db_session, SECOND, first.id)
        await db_session.commit()

        # The membership check ran before the first join committed
        _lookup_returning(monkeypatch, None)
        with pytest.raises(AlreadyInGuild):
            await guild_service.join_guild(db_session, SECOND, second.id)

        monkeypatch.undo()
        await db_session.commit()
        await _assert_aggregates(db_session, second.id)
        assert (await guild_service.get_guild(db_session, second.id)).total_members == 1

    @pytest.mark.asyncio
    async def test_create_race_reports_name_taken(self, db_session, monkeypatch) -> None:
        await guild_service.create_guild(db_session, LEADER, "Polyglots")
        await db_session.commit()

        async def name_free(_db, _name):
            return False

        monkeypatch.setattr(guild_service, "_name_taken", name_free)
        with pytest.raises(NameTaken):
            await guild_service.create_guild(db_session, SECOND, "polyglots")

        monkeypatch.undo()
        assert await guild_service.get_user_membership(db_session, SECOND) is None

    @pytest.mark.asyncio
    async def test_create_race_reports_already_in_guild(self, db_session, monkeypatch) -> None:
        await guild_service.create_guild(db_session, LEADER, "Polyglots")
        await db_session.commit()

        _lookup_returning(monkeypatch, None)
        with pytest.raises(AlreadyInGuild):
            await guild_service.create_guild(db_session, LEADER, "Mathletes")

        monkeypatch.undo()
        await db_session.commit()
        names = (await db_session.execute(select(Guild.name))).scalars().all()
        assert names == ["Polyglots"]


class TestChallenges:
    async def _challenge(self, db, target: int = 500):
        return await guild_service.create_challenge(
            db,
            LEADER,
            name="Spring Sprint",
            target_xp=target,
            start_date=NOW - timedelta(days=1),
            end_date=NOW + timedelta(days=6),
            reward_xp=50,
            reward_gold=10,
        )

    @pytest.mark.asyncio
    async def test_only_leader_creates(self, db_session) -> None:
        await _guild_of_three(db_session)
        with pytest.raises(NotGuildLeader):
            await guild_service.create_challenge(
                db_session,
                SECOND,
                name="Nope",
                target_xp=10,
                start_date=NOW,
                end_date=NOW + timedelta(days=1),
            )

    @pytest.mark.asyncio
    async def test_end_before_start_rejected(self, db_session) -> None:
        await _guild_of_three(db_session)
        with pytest.raises(ValueError):
            await guild_service.create_challenge(
                db_session, LEADER, name="Backwards", target_xp=10, start_date=NOW, end_date=NOW
            )

    @pytest.mark.asyncio
    async def test_completion_pays_each_member_once(self, db_session, mock_redis) -> None:
        await _guild_of_three(db_session)
        challenge = await self._challenge(db_session)

        partial = await guild_service.advance_challenge(db_session, mock_redis, challenge.id, 300, now=NOW)
        assert partial.completed_now is False
        assert partial.challenge.current_xp == 300

        done = await guild_service.advance_challenge(db_session, mock_redis, challenge.id, 300, now=NOW)
        assert done.completed_now is True
        assert done.challenge.completed is True
        assert done.challenge.current_xp == 500
        assert sorted(done.rewarded_account_ids) == [LEADER, SECOND, THIRD]

        again = await guild_service.advance_challenge(db_session, mock_redis, challenge.id, 100, now=NOW)
        assert again.completed_now is False
        assert again.rewarded_account_ids == []

        for account_id in (LEADER, SECOND, THIRD):
            account = await db_session.get(Account, account_id)
            await db_session.refresh(account)
            assert (account.xp, account.gold) == (50, 10)

        guild_notes = (
            await db_session.execute(
                select(func.count())
                .select_from(AchievementNotification)
                .where(AchievementNotification.kind == "guild")
            )
        ).scalar_one()
        assert guild_notes == 3

    @pytest.mark.asyncio
    async def test_closed_outside_window(self, db_session) -> None:
        await _guild_of_three(db_session)
        challenge = await self._challenge(db_session)

        with pytest.raises(ChallengeClosed):
            await guild_service.advance_challenge(db_session, None, challenge.id, 10, now=NOW + timedelta(days=6))
        with pytest.raises(ChallengeClosed):
            await guild_service.advance_challenge(db_session, None, challenge.id, 10, now=NOW - timedelta(days=2))

    @pytest.mark.asyncio
    async def test_contribution_advances_running_challenge(self, db_session) -> None:
        guild = await _guild_of_three(db_session)
        challenge = await self._challenge(db_session, target=100)

        await guild_service.contribute_xp(db_session, None, SECOND, 120, now=NOW)

        challenges = await guild_service.get_guild_challenges(db_session, guild.id)
        assert challenges[0].id == challenge.id
        assert challenges[0].completed is True
        assert challenges[0].current_xp == 100

    @pytest.mark.asyncio
    async def test_unknown_challenge(self, db_session) -> None:
        with pytest.raises(NotFoundError):
            await guild_service.advance_challenge(db_session, None, 4040, 1, now=NOW)
