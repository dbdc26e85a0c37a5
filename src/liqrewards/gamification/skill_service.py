"""Skill tree node unlocking.

A tree's ``nodes`` JSON is a list of ``{"id", "name", "requires": [...]}``.
A node unlocks once every node it requires is unlocked.
"""

from __future__ import annotations

import logging
from typing import Any

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.db.base import dialect_name, insert_for
from liqrewards.db.models import SkillProgress, SkillTree
from liqrewards.errors import AlreadyUnlocked, NotFoundError, RequirementNotMet
from liqrewards.gamification.ledger_service import ensure_account
from liqrewards.timeutils import utcnow

logger = logging.getLogger(__name__)


def find_node(tree: SkillTree, node_id: str) -> dict[str, Any] | None:
    for node in tree.nodes or []:
        if node.get("id") == node_id:
            return node
    return None


async def get_skill_progress(db: AsyncSession, account_id: int, tree_id: int) -> SkillProgress | None:
    result = await db.execute(
        select(SkillProgress)
        .where(SkillProgress.account_id == account_id, SkillProgress.skill_tree_id == tree_id)
        .execution_options(populate_existing=True)
    )
    return result.scalar_one_or_none()


async def unlock_skill_node(db: AsyncSession, account_id: int, tree_id: int, node_id: str) -> SkillProgress:
    tree = await db.get(SkillTree, tree_id)
    if tree is None:
        raise NotFoundError("Skill tree", tree_id)
    node = find_node(tree, node_id)
    if node is None:
        raise NotFoundError("Skill node", node_id)

    await ensure_account(db, account_id)
    await db.execute(
        insert_for(db, SkillProgress)
        .values(account_id=account_id, skill_tree_id=tree_id, unlocked_nodes=[])
        .on_conflict_do_nothing(index_elements=["account_id", "skill_tree_id"])
    )
    stmt = (
        select(SkillProgress)
        .where(SkillProgress.account_id == account_id, SkillProgress.skill_tree_id == tree_id)
        .execution_options(populate_existing=True)
    )
    if dialect_name(db) == "postgresql":
        stmt = stmt.with_for_update()
    progress = (await db.execute(stmt)).scalar_one()

    unlocked = list(progress.unlocked_nodes or [])
    if node_id in unlocked:
        raise AlreadyUnlocked(node=node_id)
    missing = [req for req in node.get("requires", []) if req not in unlocked]
    if missing:
        raise RequirementNotMet(node=node_id, missing=missing)

    # Reassign so the JSON column is flagged dirty
    progress.unlocked_nodes = [*unlocked, node_id]
    progress.last_updated = utcnow()
    await db.flush()
    logger.info("Account %s unlocked skill %s in tree %d", account_id, node_id, tree_id)
    return progress
