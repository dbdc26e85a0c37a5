"""Daily login streaks and milestone bonuses.

One ``login_streaks`` row per account. The streak advances at most once per
UTC calendar day; a gap of more than one day restarts it at 1. Milestone
bonuses are credited through the ledger with keys derived from
``(account_id, streak)``, so replaying a login can never pay twice.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.config import get_settings
from liqrewards.db.base import dialect_name, insert_for
from liqrewards.db.models import Account, LoginStreak
from liqrewards.gamification.ledger_service import credit, ensure_account
from liqrewards.social.notification_service import emit
from liqrewards.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)

SEVEN_DAY = 7
THIRTY_DAY = 30


@dataclass
class Milestone:
    days: int
    streak: int
    xp: int
    gold: int
    applied: bool


@dataclass
class LoginResult:
    streak: LoginStreak
    changed: bool
    milestones: list[Milestone] = field(default_factory=list)


def next_streak(current: int, last_login: date | None, today: date) -> int | None:
    """Streak value after logging in on ``today``; None when nothing changes.

    Same day keeps the streak, the following day extends it, a first login or
    a gap restarts at 1. A last login dated after ``today`` (clock skew between
    servers) is treated like a same-day login.
    """
    if last_login is None:
        return 1
    days_since_last = (today - last_login).days
    if days_since_last <= 0:
        return None
    if days_since_last == 1:
        return current + 1
    return 1


def milestone_key(days: int, account_id: int, streak: int) -> str:
    return f"milestone:{days}:{account_id}:{streak}"


async def _lock_streak(db: AsyncSession, account_id: int) -> LoginStreak:
    """Load the account's streak row for update, creating it on first login."""
    await db.execute(
        insert_for(db, LoginStreak)
        .values(account_id=account_id)
        .on_conflict_do_nothing(index_elements=["account_id"])
    )
    stmt = select(LoginStreak).where(LoginStreak.account_id == account_id).execution_options(
        populate_existing=True
    )
    if dialect_name(db) == "postgresql":
        stmt = stmt.with_for_update(of=LoginStreak)
    result = await db.execute(stmt)
    return result.scalar_one()


async def record_login(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    now: datetime | None = None,
) -> LoginResult:
    """Apply one login event to the account's streak.

    Returns the updated streak, whether it changed, and the milestones
    crossed by this login. The caller commits.
    """
    now = as_utc(now) if now is not None else utcnow()
    today = now.date()

    await ensure_account(db, account_id)
    streak = await _lock_streak(db, account_id)

    new_value = next_streak(streak.current_streak, streak.last_login_date, today)
    if new_value is None:
        return LoginResult(streak=streak, changed=False)

    if new_value == 1 and streak.current_streak > 1:
        logger.info("Streak for account %s broken at %d days", account_id, streak.current_streak)

    streak.current_streak = new_value
    streak.longest_streak = max(streak.longest_streak, new_value)
    streak.last_login_date = today
    streak.total_login_days += 1
    streak.updated_at = now
    await db.flush()

    milestones = await _grant_milestones(db, redis, streak)
    return LoginResult(streak=streak, changed=True, milestones=milestones)


async def _grant_milestones(db: AsyncSession, redis: object | None, streak: LoginStreak) -> list[Milestone]:
    settings = get_settings()
    value = streak.current_streak
    crossed: list[Milestone] = []

    # 7- and 30-day bonuses are independent; day 210 pays both.
    rewards = (
        (SEVEN_DAY, settings.streak_7_day_xp, settings.streak_7_day_gold),
        (THIRTY_DAY, settings.streak_30_day_xp, settings.streak_30_day_gold),
    )
    for days, xp, gold in rewards:
        if value <= 0 or value % days != 0:
            continue

        result = await credit(
            db,
            redis,
            streak.account_id,
            xp_delta=xp,
            gold_delta=gold,
            idempotency_key=milestone_key(days, streak.account_id, value),
            source="streak",
            source_id=str(value),
            description=f"{days}-day login streak bonus",
        )
        if result.applied:
            if days == SEVEN_DAY:
                streak.seven_day_milestone_count += 1
            else:
                streak.thirty_day_milestone_count += 1
            streak.streak_rewards_earned += 1
            await emit(
                db,
                redis,
                streak.account_id,
                kind="streak",
                title=f"{value}-Day Streak!",
                message=f"You earned {xp} XP and {gold} Gold for logging in {value} days in a row",
                payload={"streak": value, "milestone": days, "xp": xp, "gold": gold},
            )
        crossed.append(Milestone(days=days, streak=value, xp=xp, gold=gold, applied=result.applied))

    if crossed:
        await db.flush()
    return crossed


async def get_login_streak(db: AsyncSession, account_id: int) -> LoginStreak | None:
    result = await db.execute(select(LoginStreak).where(LoginStreak.account_id == account_id))
    return result.scalar_one_or_none()


async def get_top_streaks(db: AsyncSession, limit: int = 10) -> list[dict]:
    """Longest current streaks across all accounts."""
    result = await db.execute(
        select(LoginStreak, Account.username)
        .join(Account, Account.id == LoginStreak.account_id)
        .where(LoginStreak.current_streak > 0)
        .order_by(LoginStreak.current_streak.desc(), LoginStreak.longest_streak.desc(), LoginStreak.account_id)
        .limit(limit)
    )
    return [
        {
            "rank": rank,
            "account_id": streak.account_id,
            "username": username or f"learner-{streak.account_id}",
            "current_streak": streak.current_streak,
            "longest_streak": streak.longest_streak,
        }
        for rank, (streak, username) in enumerate(result.all(), start=1)
    ]
