"""Quest progress and rewards.

Progress accumulates per (account, template), clamped at the template's
target. The first time it reaches the target ``completed_at`` is stamped and
the reward is credited under ``quest:{template_id}:{account_id}``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from sqlalchemy import case, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.db.base import insert_for
from liqrewards.db.models import QuestCompletion, QuestTemplate
from liqrewards.errors import NotFoundError
from liqrewards.gamification.ledger_service import CreditResult, credit, ensure_account
from liqrewards.social.notification_service import emit
from liqrewards.timeutils import utcnow

logger = logging.getLogger(__name__)

DIFFICULTIES = ("easy", "medium", "hard", "epic")


@dataclass
class QuestAdvance:
    completion: QuestCompletion
    completed_now: bool
    grant: CreditResult | None = None


def quest_key(template_id: int, account_id: int) -> str:
    return f"quest:{template_id}:{account_id}"


async def get_quest_templates(db: AsyncSession, difficulty: str | None = None) -> list[QuestTemplate]:
    """Active templates, optionally filtered by difficulty."""
    stmt = select(QuestTemplate).where(QuestTemplate.is_active.is_(True))
    if difficulty is not None:
        stmt = stmt.where(QuestTemplate.difficulty == difficulty)
    result = await db.execute(stmt.order_by(QuestTemplate.difficulty, QuestTemplate.id))
    return list(result.scalars().all())


async def get_quest_progress(db: AsyncSession, account_id: int) -> list[QuestCompletion]:
    """All progress rows for an account, including completions of retired quests."""
    result = await db.execute(
        select(QuestCompletion)
        .where(QuestCompletion.account_id == account_id)
        .order_by(QuestCompletion.quest_template_id)
        .execution_options(populate_existing=True)
    )
    return list(result.scalars().all())


async def advance_quest(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    quest_template_id: int,
    delta: int,
) -> QuestAdvance:
    """Add progress to a quest and reward its first completion."""
    if delta < 0:
        raise ValueError("Quest progress delta must be non-negative")

    template = await db.get(QuestTemplate, quest_template_id)
    if template is None or not template.is_active:
        raise NotFoundError("Quest", quest_template_id)

    await ensure_account(db, account_id)
    now = utcnow()

    await db.execute(
        insert_for(db, QuestCompletion)
        .values(account_id=account_id, quest_template_id=template.id, progress=0, updated_at=now)
        .on_conflict_do_nothing(index_elements=["account_id", "quest_template_id"])
    )

    advanced = QuestCompletion.progress + delta
    await db.execute(
        update(QuestCompletion)
        .where(
            QuestCompletion.account_id == account_id,
            QuestCompletion.quest_template_id == template.id,
            QuestCompletion.completed_at.is_(None),
        )
        .values(
            progress=case((advanced >= template.target_value, template.target_value), else_=advanced),
            updated_at=now,
        )
    )
    stamped = await db.execute(
        update(QuestCompletion)
        .where(
            QuestCompletion.account_id == account_id,
            QuestCompletion.quest_template_id == template.id,
            QuestCompletion.completed_at.is_(None),
            QuestCompletion.progress >= template.target_value,
        )
        .values(completed_at=now)
        .returning(QuestCompletion.id)
    )
    completed_now = stamped.scalar_one_or_none() is not None

    grant = None
    if completed_now:
        grant = await _reward_completion(db, redis, account_id, template)

    result = await db.execute(
        select(QuestCompletion)
        .where(
            QuestCompletion.account_id == account_id,
            QuestCompletion.quest_template_id == template.id,
        )
        .execution_options(populate_existing=True)
    )
    return QuestAdvance(completion=result.scalar_one(), completed_now=completed_now, grant=grant)


async def _reward_completion(
    db: AsyncSession,
    redis: object | None,
    account_id: int,
    template: QuestTemplate,
) -> CreditResult:
    grant = await credit(
        db,
        redis,
        account_id,
        xp_delta=template.xp_reward,
        gold_delta=template.gold_reward,
        idempotency_key=quest_key(template.id, account_id),
        source="quest",
        source_id=str(template.id),
        description=f'Completed quest "{template.name}"',
    )
    if grant.applied:
        await emit(
            db,
            redis,
            account_id,
            kind="quest",
            title="Quest Complete!",
            message=f'You completed "{template.name}"',
            payload={"xp": template.xp_reward, "gold": template.gold_reward, "questName": template.name},
        )
        logger.info("Account %s completed quest %s", account_id, template.slug)
    return grant
