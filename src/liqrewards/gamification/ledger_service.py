"""XP/Gold ledger with idempotent grants and level-up detection.

Every balance change is a single statement against ``accounts``
(``xp = xp + :delta``), never a read followed by a write. The grant row is
inserted first; its unique ``idempotency_key`` decides whether the credit
is applied at all.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any

from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.db.base import insert_for
from liqrewards.db.models import Account, RewardGrant
from liqrewards.errors import DuplicateGrant, InsufficientGold, NotFoundError
from liqrewards.gamification.level_thresholds import level, level_progress, target_xp
from liqrewards.social.notification_service import emit
from liqrewards.timeutils import utcnow

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class CreditResult:
    new_xp: int
    new_gold: int
    leveled_up: bool
    old_level: int
    new_level: int
    applied: bool = True


@dataclass(frozen=True)
class UserStats:
    current_xp: int
    current_level: int
    total_gold: int
    target_xp: int

    def to_dict(self) -> dict[str, int]:
        return {
            "currentXP": self.current_xp,
            "currentLevel": self.current_level,
            "totalGold": self.total_gold,
            "targetXP": self.target_xp,
        }


async def ensure_account(db: AsyncSession, account_id: int, username: str | None = None) -> None:
    """Insert the account row if it doesn't exist yet. Never touches balances."""
    now = utcnow()
    stmt = (
        insert_for(db, Account)
        .values(id=account_id, username=username, xp=0, gold=0, created_at=now, updated_at=now)
        .on_conflict_do_nothing(index_elements=["id"])
    )
    await db.execute(stmt)
    if username is not None:
        await db.execute(
            update(Account)
            .where(Account.id == account_id, Account.username.is_(None))
            .values(username=username)
        )


async def get_account(db: AsyncSession, account_id: int) -> Account:
    result = await db.execute(select(Account).where(Account.id == account_id))
    account = result.scalar_one_or_none()
    if account is None:
        raise NotFoundError("Account", account_id)
    return account


async def credit(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    xp_delta: int,
    gold_delta: int,
    idempotency_key: str,
    source: str,
    source_id: str | None = None,
    description: str | None = None,
) -> CreditResult:
    """Credit XP and Gold exactly once per ``idempotency_key``.

    A repeated key returns the result recorded by the first application with
    ``applied=False``. On a level-up a ``level`` notification is emitted.
    The caller owns the transaction and commits.
    """
    if xp_delta < 0 or gold_delta < 0:
        raise ValueError("credit deltas must be non-negative")

    await ensure_account(db, account_id)

    try:
        grant_id = await _claim_grant(
            db, account_id, xp_delta, gold_delta, idempotency_key, source, source_id, description
        )
    except DuplicateGrant:
        logger.debug("Grant %s already applied", idempotency_key)
        return await _recorded_result(db, idempotency_key)

    result = await db.execute(
        update(Account)
        .where(Account.id == account_id)
        .values(xp=Account.xp + xp_delta, gold=Account.gold + gold_delta, updated_at=utcnow())
        .returning(Account.xp, Account.gold)
    )
    row = result.one_or_none()
    if row is None:
        raise NotFoundError("Account", account_id)
    new_xp, new_gold = row

    old_level = level(new_xp - xp_delta)
    new_level = level(new_xp)

    await db.execute(
        update(RewardGrant)
        .where(RewardGrant.id == grant_id)
        .values(result_xp=new_xp, result_gold=new_gold, old_level=old_level, new_level=new_level)
    )

    leveled_up = new_level > old_level
    if leveled_up:
        logger.info("Account %s leveled up %d -> %d", account_id, old_level, new_level)
        await emit(
            db,
            redis,
            account_id,
            kind="level",
            title="Level Up!",
            message=f"You reached level {new_level}",
            payload={"oldLevel": old_level, "newLevel": new_level, "xp": new_xp},
        )

    return CreditResult(
        new_xp=new_xp,
        new_gold=new_gold,
        leveled_up=leveled_up,
        old_level=old_level,
        new_level=new_level,
    )


async def _claim_grant(
    db: AsyncSession,
    account_id: int,
    xp_delta: int,
    gold_delta: int,
    idempotency_key: str,
    source: str,
    source_id: str | None,
    description: str | None,
) -> int:
    """Insert the grant row; raise DuplicateGrant if the key already exists."""
    stmt = (
        insert_for(db, RewardGrant)
        .values(
            idempotency_key=idempotency_key,
            account_id=account_id,
            xp_delta=xp_delta,
            gold_delta=gold_delta,
            source=source,
            source_id=source_id,
            description=description,
            created_at=utcnow(),
        )
        .on_conflict_do_nothing(index_elements=["idempotency_key"])
        .returning(RewardGrant.id)
    )
    grant_id = (await db.execute(stmt)).scalar_one_or_none()
    if grant_id is None:
        raise DuplicateGrant(idempotency_key=idempotency_key)
    return grant_id


async def _recorded_result(db: AsyncSession, idempotency_key: str) -> CreditResult:
    result = await db.execute(select(RewardGrant).where(RewardGrant.idempotency_key == idempotency_key))
    grant = result.scalar_one()
    new_level = grant.new_level or 1
    old_level = grant.old_level or new_level
    return CreditResult(
        new_xp=grant.result_xp or 0,
        new_gold=grant.result_gold or 0,
        leveled_up=new_level > old_level,
        old_level=old_level,
        new_level=new_level,
        applied=False,
    )


async def debit_gold(db: AsyncSession, account_id: int, amount: int) -> int:
    """Atomically spend gold. Returns the new balance.

    Raises InsufficientGold when the balance is below ``amount``.
    """
    if amount < 0:
        raise ValueError("debit amount must be non-negative")

    result = await db.execute(
        update(Account)
        .where(Account.id == account_id, Account.gold >= amount)
        .values(gold=Account.gold - amount, updated_at=utcnow())
        .returning(Account.gold)
    )
    new_gold = result.scalar_one_or_none()
    if new_gold is not None:
        return new_gold

    account = await db.execute(select(Account.gold).where(Account.id == account_id))
    current = account.scalar_one_or_none()
    if current is None:
        raise NotFoundError("Account", account_id)
    raise InsufficientGold(required=amount, current=current)


async def get_user_stats(db: AsyncSession, account_id: int) -> UserStats:
    account = await get_account(db, account_id)
    current_level = level(account.xp)
    return UserStats(
        current_xp=account.xp,
        current_level=current_level,
        total_gold=account.gold,
        target_xp=target_xp(current_level),
    )


async def get_level_info(db: AsyncSession, account_id: int) -> dict[str, Any]:
    account = await get_account(db, account_id)
    return {"account_id": account_id, "xp": account.xp, **level_progress(account.xp)}


async def get_leaderboard(db: AsyncSession, limit: int = 10) -> list[dict[str, Any]]:
    """Top accounts by XP. Ties keep the oldest account first."""
    result = await db.execute(
        select(Account).order_by(Account.xp.desc(), Account.created_at.asc(), Account.id.asc()).limit(limit)
    )
    return [
        {
            "rank": rank,
            "account_id": account.id,
            "username": account.username or f"learner-{account.id}",
            "referrals": account.referrals,
            "xp": account.xp,
        }
        for rank, account in enumerate(result.scalars().all(), start=1)
    ]


async def get_grant_history(db: AsyncSession, account_id: int, limit: int = 50) -> list[RewardGrant]:
    result = await db.execute(
        select(RewardGrant)
        .where(RewardGrant.account_id == account_id)
        .order_by(RewardGrant.created_at.desc(), RewardGrant.id.desc())
        .limit(limit)
    )
    return list(result.scalars().all())
