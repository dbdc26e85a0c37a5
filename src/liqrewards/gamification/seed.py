"""Seed data: achievements with badge tiers, quest templates, loot boxes, skill trees.

Every seed function is an upsert keyed on a stable slug, so running it on
each startup is safe.
"""

from __future__ import annotations

import logging

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.db.base import insert_for
from liqrewards.db.models import Achievement, BadgeTier, LootBox, QuestTemplate, SkillTree

logger = logging.getLogger(__name__)

TIER_NAMES = ("Bronze", "Silver", "Gold")

ACHIEVEMENT_SEED_DATA: list[dict] = [
    {
        "slug": "first_steps",
        "name": "First Steps",
        "description": "Complete your very first lesson",
        "icon": "\U0001f476",
        "tiers": [1],
        "sort_order": 1,
    },
    {
        "slug": "scholar",
        "name": "Scholar",
        "description": "Complete lessons across any course",
        "icon": "\U0001f4da",
        "tiers": [10, 50, 100],
        "sort_order": 2,
    },
    {
        "slug": "quiz_master",
        "name": "Quiz Master",
        "description": "Pass quizzes on the first attempt",
        "icon": "\U0001f9e0",
        "tiers": [5, 25, 100],
        "sort_order": 3,
    },
    {
        "slug": "dedicated",
        "name": "Dedicated Learner",
        "description": "Keep a daily login streak going",
        "icon": "\U0001f525",
        "tiers": [7, 30, 100],
        "sort_order": 4,
    },
    {
        "slug": "focused",
        "name": "Deep Focus",
        "description": "Minutes spent watching lessons",
        "icon": "\u23f1\ufe0f",
        "tiers": [60, 600, 3000],
        "sort_order": 5,
    },
    {
        "slug": "team_player",
        "name": "Team Player",
        "description": "XP contributed to your guild",
        "icon": "\U0001f91d",
        "tiers": [500, 5000, 25000],
        "sort_order": 6,
    },
]

QUEST_SEED_DATA: list[dict] = [
    {
        "slug": "daily_lesson",
        "quest_type": "lessons_completed",
        "name": "Daily Lesson",
        "description": "Complete one lesson today",
        "target_value": 1,
        "xp_reward": 25,
        "gold_reward": 5,
        "difficulty": "easy",
    },
    {
        "slug": "watch_30_minutes",
        "quest_type": "minutes_watched",
        "name": "Binge Learner",
        "description": "Watch 30 minutes of lessons",
        "target_value": 30,
        "xp_reward": 50,
        "gold_reward": 10,
        "difficulty": "easy",
    },
    {
        "slug": "quiz_streak",
        "quest_type": "quizzes_passed",
        "name": "Quiz Streak",
        "description": "Pass three quizzes",
        "target_value": 3,
        "xp_reward": 150,
        "gold_reward": 20,
        "difficulty": "medium",
    },
    {
        "slug": "assignment_ace",
        "quest_type": "assignments_completed",
        "name": "Assignment Ace",
        "description": "Submit five assignments",
        "target_value": 5,
        "xp_reward": 300,
        "gold_reward": 50,
        "difficulty": "hard",
    },
    {
        "slug": "course_conqueror",
        "quest_type": "courses_completed",
        "name": "Course Conqueror",
        "description": "Finish an entire course",
        "target_value": 1,
        "xp_reward": 1000,
        "gold_reward": 200,
        "difficulty": "epic",
    },
]

LOOT_BOX_SEED_DATA: list[dict] = [
    {
        "slug": "wooden_chest",
        "name": "Wooden Chest",
        "rarity": "common",
        "cost": 50,
        "reward_count": 1,
        "possible_rewards": [
            {"type": "xp", "amount": 25, "weight": 70},
            {"type": "gold", "amount": 40, "weight": 25},
            {"type": "item", "item": "Streak Freeze", "rarity": "rare", "weight": 5},
        ],
    },
    {
        "slug": "silver_chest",
        "name": "Silver Chest",
        "rarity": "rare",
        "cost": 150,
        "reward_count": 2,
        "possible_rewards": [
            {"type": "xp", "amount": 75, "weight": 50},
            {"type": "gold", "amount": 100, "weight": 35},
            {"type": "item", "item": "Double XP Hour", "rarity": "rare", "weight": 12},
            {"type": "item", "item": "Golden Avatar Frame", "rarity": "legendary", "weight": 3},
        ],
    },
    {
        "slug": "legendary_chest",
        "name": "Legendary Chest",
        "rarity": "legendary",
        "cost": 500,
        "reward_count": 3,
        "possible_rewards": [
            {"type": "xp", "amount": 250, "weight": 45},
            {"type": "gold", "amount": 300, "weight": 35},
            {"type": "item", "item": "Golden Avatar Frame", "rarity": "legendary", "weight": 15},
            {"type": "item", "item": "Mentor Session Pass", "rarity": "legendary", "weight": 5},
        ],
    },
]

SKILL_TREE_SEED_DATA: list[dict] = [
    {
        "name": "Language Fundamentals",
        "nodes": [
            {"id": "alphabet", "name": "Alphabet", "requires": []},
            {"id": "greetings", "name": "Greetings", "requires": ["alphabet"]},
            {"id": "numbers", "name": "Numbers", "requires": ["alphabet"]},
            {"id": "conversation", "name": "Conversation", "requires": ["greetings", "numbers"]},
        ],
    },
]


async def seed_achievements(db: AsyncSession) -> int:
    """Upsert achievements and their badge tiers. Returns number of achievements seeded."""
    seeded = 0
    for data in ACHIEVEMENT_SEED_DATA:
        tiers = data["tiers"]
        values = {k: v for k, v in data.items() if k != "tiers"}
        values["requirement_value"] = tiers[-1]

        stmt = insert_for(db, Achievement).values(**values)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "icon": stmt.excluded.icon,
                "requirement_value": stmt.excluded.requirement_value,
                "sort_order": stmt.excluded.sort_order,
            },
        )
        await db.execute(stmt)

        achievement_id = (
            await db.execute(select(Achievement.id).where(Achievement.slug == data["slug"]))
        ).scalar_one()
        for rank, requirement in enumerate(tiers, start=1):
            tier_stmt = insert_for(db, BadgeTier).values(
                achievement_id=achievement_id,
                tier_rank=rank,
                tier_name=TIER_NAMES[rank - 1] if len(tiers) > 1 else "Unlocked",
                requirement_value=requirement,
            )
            tier_stmt = tier_stmt.on_conflict_do_update(
                index_elements=["achievement_id", "tier_rank"],
                set_={
                    "tier_name": tier_stmt.excluded.tier_name,
                    "requirement_value": tier_stmt.excluded.requirement_value,
                },
            )
            await db.execute(tier_stmt)
        seeded += 1

    logger.info("Seeded %d achievements", seeded)
    return seeded


async def seed_quests(db: AsyncSession) -> int:
    seeded = 0
    for data in QUEST_SEED_DATA:
        stmt = insert_for(db, QuestTemplate).values(**data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "quest_type": stmt.excluded.quest_type,
                "name": stmt.excluded.name,
                "description": stmt.excluded.description,
                "target_value": stmt.excluded.target_value,
                "xp_reward": stmt.excluded.xp_reward,
                "gold_reward": stmt.excluded.gold_reward,
                "difficulty": stmt.excluded.difficulty,
            },
        )
        await db.execute(stmt)
        seeded += 1

    logger.info("Seeded %d quest templates", seeded)
    return seeded


async def seed_loot_boxes(db: AsyncSession) -> int:
    seeded = 0
    for data in LOOT_BOX_SEED_DATA:
        stmt = insert_for(db, LootBox).values(**data)
        stmt = stmt.on_conflict_do_update(
            index_elements=["slug"],
            set_={
                "name": stmt.excluded.name,
                "rarity": stmt.excluded.rarity,
                "cost": stmt.excluded.cost,
                "reward_count": stmt.excluded.reward_count,
                "possible_rewards": stmt.excluded.possible_rewards,
            },
        )
        await db.execute(stmt)
        seeded += 1

    logger.info("Seeded %d loot boxes", seeded)
    return seeded


async def seed_skill_trees(db: AsyncSession) -> int:
    """Skill trees have no natural key; only seed an empty table."""
    existing = (await db.execute(select(func.count()).select_from(SkillTree))).scalar_one()
    if existing:
        return 0
    for data in SKILL_TREE_SEED_DATA:
        db.add(SkillTree(**data))
    await db.flush()
    logger.info("Seeded %d skill trees", len(SKILL_TREE_SEED_DATA))
    return len(SKILL_TREE_SEED_DATA)


async def seed_all(db: AsyncSession) -> None:
    await seed_achievements(db)
    await seed_quests(db)
    await seed_loot_boxes(db)
    await seed_skill_trees(db)
    await db.commit()
