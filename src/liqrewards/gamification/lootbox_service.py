"""Loot box purchase and opening.

Purchase debits the box cost with a conditional update and creates an
unopened instance. Opening flips ``opened`` with a conditional update, so an
instance resolves exactly once, then credits the drawn XP/Gold through the
ledger under ``lootbox:{instance_id}``.
"""

from __future__ import annotations

import logging
import random
from datetime import datetime

from sqlalchemy import or_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.db.models import LootBox, UserLootBox
from liqrewards.errors import AlreadyOpened, NotFoundError
from liqrewards.gamification import rewards as reward_kinds
from liqrewards.gamification.ledger_service import credit, debit_gold, ensure_account
from liqrewards.social.notification_service import emit
from liqrewards.timeutils import as_utc, utcnow

logger = logging.getLogger(__name__)


def _is_available(box: LootBox, now: datetime) -> bool:
    return box.available_until is None or as_utc(box.available_until) > now


async def list_available_boxes(db: AsyncSession, now: datetime | None = None) -> list[LootBox]:
    now = as_utc(now) if now is not None else utcnow()
    result = await db.execute(
        select(LootBox)
        .where(or_(LootBox.available_until.is_(None), LootBox.available_until > now))
        .order_by(LootBox.cost.asc(), LootBox.id.asc())
    )
    # SQLite drops tzinfo on storage, so re-check in Python
    return [box for box in result.scalars().all() if _is_available(box, now)]


async def list_user_boxes(db: AsyncSession, account_id: int) -> list[UserLootBox]:
    result = await db.execute(
        select(UserLootBox)
        .where(UserLootBox.account_id == account_id)
        .order_by(UserLootBox.opened.asc(), UserLootBox.acquired_at.desc(), UserLootBox.id.desc())
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def purchase(
    db: AsyncSession,
    account_id: int,
    loot_box_id: int,
    now: datetime | None = None,
) -> UserLootBox:
    """Buy one box. Raises InsufficientGold when the balance is short."""
    now = as_utc(now) if now is not None else utcnow()

    box = await db.get(LootBox, loot_box_id)
    if box is None or not _is_available(box, now):
        raise NotFoundError("Loot box", loot_box_id)

    await ensure_account(db, account_id)
    remaining = await debit_gold(db, account_id, box.cost)

    instance = UserLootBox(
        account_id=account_id,
        loot_box_id=box.id,
        opened=False,
        acquired_at=now,
    )
    db.add(instance)
    await db.flush()

    logger.info(
        "Account %s bought loot box %s (instance=%d, gold left=%d)", account_id, box.slug, instance.id, remaining
    )
    return instance


async def open_box(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    instance_id: int,
    rng: random.Random | None = None,
) -> UserLootBox:
    """Resolve an unopened instance into rewards. Raises AlreadyOpened on repeat."""
    now = utcnow()
    claimed = await db.execute(
        update(UserLootBox)
        .where(
            UserLootBox.id == instance_id,
            UserLootBox.account_id == account_id,
            UserLootBox.opened.is_(False),
        )
        .values(opened=True, opened_at=now)
        .returning(UserLootBox.loot_box_id)
    )
    loot_box_id = claimed.scalar_one_or_none()
    if loot_box_id is None:
        exists = await db.execute(
            select(UserLootBox.id).where(
                UserLootBox.id == instance_id,
                UserLootBox.account_id == account_id,
            )
        )
        if exists.scalar_one_or_none() is None:
            raise NotFoundError("Loot box instance", instance_id)
        raise AlreadyOpened(instance_id=instance_id)

    box = (await db.execute(select(LootBox).where(LootBox.id == loot_box_id))).scalar_one()
    possible = reward_kinds.parse_rewards(box.possible_rewards)
    drawn = reward_kinds.draw(possible, count=box.reward_count, rng=rng)
    summary = reward_kinds.totals(drawn)

    await db.execute(
        update(UserLootBox)
        .where(UserLootBox.id == instance_id)
        .values(opened_rewards=reward_kinds.dump_rewards(drawn))
    )

    if summary.xp or summary.gold:
        await credit(
            db,
            redis,
            account_id,
            xp_delta=summary.xp,
            gold_delta=summary.gold,
            idempotency_key=f"lootbox:{instance_id}",
            source="lootbox",
            source_id=str(instance_id),
            description=f'Opened "{box.name}"',
        )

    await emit(
        db,
        redis,
        account_id,
        kind="lootbox",
        title=f"{box.name} Opened!",
        message=", ".join(reward_kinds.describe(r) for r in drawn),
        payload={
            "instanceId": instance_id,
            "rarity": box.rarity,
            "xp": summary.xp,
            "gold": summary.gold,
            "items": [item.item for item in summary.items],
        },
    )

    logger.info("Account %s opened loot box instance %d", account_id, instance_id)
    result = await db.execute(
        select(UserLootBox).where(UserLootBox.id == instance_id).execution_options(populate_existing=True)
    )
    return result.scalar_one()
