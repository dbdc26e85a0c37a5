"""Gamification API endpoints: ledger, streaks, badges, quests, loot boxes, events, skills."""

from __future__ import annotations

from fastapi import APIRouter, Depends, Query
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from liqrewards.auth.dependencies import get_current_account_id
from liqrewards.config import get_settings
from liqrewards.database import get_session
from liqrewards.db.models import LoginStreak, QuestCompletion, SkillTree, UserLootBox
from liqrewards.dependencies import get_redis_dep
from liqrewards.errors import NotFoundError
from liqrewards.gamification import (
    badge_service,
    event_service,
    ledger_service,
    lootbox_service,
    quest_service,
    skill_service,
    streak_service,
)
from liqrewards.gamification.level_thresholds import LEVEL_THRESHOLDS
from liqrewards.gamification.schemas import (
    AllLevelsResponse,
    BadgeProgressResponse,
    BadgeResponse,
    CreditResponse,
    EventParticipationResponse,
    EventProgressRequest,
    GrantEntry,
    GrantHistoryResponse,
    LeaderboardEntryResponse,
    LevelEntry,
    LevelResponse,
    LoginResponse,
    LootBoxResponse,
    MilestoneResponse,
    ProgressRequest,
    QuestAdvanceResponse,
    QuestProgressResponse,
    QuestTemplateResponse,
    SeasonalEventResponse,
    SkillProgressResponse,
    SkillTreeResponse,
    StreakResponse,
    TierUnlockResponse,
    TopStreakEntry,
    UnlockedTierResponse,
    UserLootBoxResponse,
    UserStatsResponse,
)

router = APIRouter(prefix="/api/v1", tags=["Gamification"])


def _streak_response(streak: LoginStreak | None) -> StreakResponse:
    if streak is None:
        return StreakResponse(
            current_streak=0,
            longest_streak=0,
            total_login_days=0,
            seven_day_milestone_count=0,
            thirty_day_milestone_count=0,
        )
    return StreakResponse(
        current_streak=streak.current_streak,
        longest_streak=streak.longest_streak,
        last_login_date=streak.last_login_date,
        total_login_days=streak.total_login_days,
        seven_day_milestone_count=streak.seven_day_milestone_count,
        thirty_day_milestone_count=streak.thirty_day_milestone_count,
    )


def _quest_progress(completion: QuestCompletion) -> QuestProgressResponse:
    return QuestProgressResponse(
        quest_template_id=completion.quest_template_id,
        name=completion.template.name,
        progress=completion.progress,
        target_value=completion.template.target_value,
        completed=completion.completed_at is not None,
        completed_at=completion.completed_at,
    )


def _user_box(instance: UserLootBox) -> UserLootBoxResponse:
    return UserLootBoxResponse(
        id=str(instance.id),
        loot_box_id=instance.loot_box_id,
        name=instance.loot_box.name,
        rarity=instance.loot_box.rarity,
        opened=instance.opened,
        opened_rewards=instance.opened_rewards,
        acquired_at=instance.acquired_at,
        opened_at=instance.opened_at,
    )


# ── Ledger & levels ──


@router.get("/levels", response_model=AllLevelsResponse)
async def list_levels():
    """The XP threshold table."""
    return AllLevelsResponse(
        levels=[LevelEntry(level=i, xp_required=xp) for i, xp in enumerate(LEVEL_THRESHOLDS, start=1)]
    )


@router.get("/leaderboard", response_model=list[LeaderboardEntryResponse])
async def leaderboard(
    limit: int | None = Query(None, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    """Top learners by XP."""
    entries = await ledger_service.get_leaderboard(db, limit or get_settings().leaderboard_size)
    return [LeaderboardEntryResponse(**e) for e in entries]


@router.get("/me/stats", response_model=UserStatsResponse)
async def my_stats(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    """Current XP, level, gold and the XP needed for the next level."""
    await ledger_service.ensure_account(db, account_id)
    await db.commit()
    stats = await ledger_service.get_user_stats(db, account_id)
    return UserStatsResponse(**stats.to_dict())


@router.get("/me/level", response_model=LevelResponse)
async def my_level(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    info = await ledger_service.get_level_info(db, account_id)
    return LevelResponse(**{**info, "account_id": str(account_id)})


@router.get("/me/grants", response_model=GrantHistoryResponse)
async def my_grants(
    limit: int = Query(50, ge=1, le=200),
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    """Most recent reward grants for the account."""
    grants = await ledger_service.get_grant_history(db, account_id, limit)
    return GrantHistoryResponse(
        grants=[
            GrantEntry(
                id=str(g.id),
                source=g.source,
                source_id=g.source_id,
                description=g.description,
                xp=g.xp_delta,
                gold=g.gold_delta,
                created_at=g.created_at,
            )
            for g in grants
        ]
    )


# ── Streaks ──


@router.post("/me/login", response_model=LoginResponse)
async def record_login(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    """Register today's login and pay any streak milestone reached."""
    result = await streak_service.record_login(db, redis, account_id)
    await db.commit()
    return LoginResponse(
        streak=_streak_response(result.streak),
        changed=result.changed,
        milestones=[MilestoneResponse(**vars(m)) for m in result.milestones],
    )


@router.get("/me/streak", response_model=StreakResponse)
async def my_streak(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    return _streak_response(await streak_service.get_login_streak(db, account_id))


@router.get("/streaks/top", response_model=list[TopStreakEntry])
async def top_streaks(
    limit: int = Query(10, ge=1, le=100),
    db: AsyncSession = Depends(get_session),
):
    entries = await streak_service.get_top_streaks(db, limit)
    return [
        TopStreakEntry(
            rank=e["rank"],
            username=e["username"],
            current_streak=e["current_streak"],
            longest_streak=e["longest_streak"],
        )
        for e in entries
    ]


# ── Badges ──


@router.get("/me/badges", response_model=list[BadgeResponse])
async def my_badges(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    """Unlocked tiers plus every achievement not yet earned."""
    badges = await badge_service.get_user_badges(db, account_id)
    return [BadgeResponse(**b.to_dict()) for b in badges]


@router.post("/me/achievements/{achievement_id}/progress", response_model=BadgeProgressResponse)
async def achievement_progress(
    achievement_id: int,
    body: ProgressRequest,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    tiers = await badge_service.record_progress(db, redis, account_id, achievement_id, body.delta)
    await db.commit()
    return BadgeProgressResponse(
        unlocked=[UnlockedTierResponse(tier_id=t.id, tier_rank=t.tier_rank, tier_name=t.tier_name) for t in tiers]
    )


@router.post("/me/badge-tiers/{tier_id}/unlock", response_model=TierUnlockResponse)
async def unlock_tier(
    tier_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    progress = await badge_service.unlock_tier(db, redis, account_id, tier_id)
    await db.commit()
    return TierUnlockResponse(tier_id=tier_id, unlocked=progress.unlocked, unlocked_at=progress.unlocked_at)


# ── Quests ──


@router.get("/quests", response_model=list[QuestTemplateResponse])
async def list_quests(
    difficulty: str | None = Query(None),
    db: AsyncSession = Depends(get_session),
):
    """Active quest templates, optionally filtered by difficulty."""
    templates = await quest_service.get_quest_templates(db, difficulty)
    return [
        QuestTemplateResponse(
            id=t.id,
            quest_type=t.quest_type,
            name=t.name,
            description=t.description,
            target_value=t.target_value,
            xp_reward=t.xp_reward,
            gold_reward=t.gold_reward,
            difficulty=t.difficulty,
        )
        for t in templates
    ]


@router.get("/me/quests", response_model=list[QuestProgressResponse])
async def my_quests(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    return [_quest_progress(c) for c in await quest_service.get_quest_progress(db, account_id)]


@router.post("/me/quests/{quest_template_id}/progress", response_model=QuestAdvanceResponse)
async def quest_progress(
    quest_template_id: int,
    body: ProgressRequest,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    result = await quest_service.advance_quest(db, redis, account_id, quest_template_id, body.delta)
    await db.commit()
    reward = None
    if result.grant is not None:
        reward = CreditResponse(
            new_xp=result.grant.new_xp,
            new_gold=result.grant.new_gold,
            leveled_up=result.grant.leveled_up,
            new_level=result.grant.new_level,
            applied=result.grant.applied,
        )
    return QuestAdvanceResponse(
        quest=_quest_progress(result.completion),
        completed_now=result.completed_now,
        reward=reward,
    )


# ── Loot boxes ──


@router.get("/loot-boxes", response_model=list[LootBoxResponse])
async def list_loot_boxes(db: AsyncSession = Depends(get_session)):
    boxes = await lootbox_service.list_available_boxes(db)
    return [
        LootBoxResponse(
            id=b.id,
            name=b.name,
            rarity=b.rarity,
            cost=b.cost,
            reward_count=b.reward_count,
            possible_rewards=b.possible_rewards,
            available_until=b.available_until,
        )
        for b in boxes
    ]


@router.get("/me/loot-boxes", response_model=list[UserLootBoxResponse])
async def my_loot_boxes(
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    return [_user_box(b) for b in await lootbox_service.list_user_boxes(db, account_id)]


@router.post("/loot-boxes/{loot_box_id}/purchase", response_model=UserLootBoxResponse, status_code=201)
async def purchase_loot_box(
    loot_box_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    """Buy a box with gold."""
    instance = await lootbox_service.purchase(db, account_id, loot_box_id)
    await db.commit()
    await db.refresh(instance, attribute_names=["loot_box"])
    return _user_box(instance)


@router.post("/me/loot-boxes/{instance_id}/open", response_model=UserLootBoxResponse)
async def open_loot_box(
    instance_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    instance = await lootbox_service.open_box(db, redis, account_id, instance_id)
    await db.commit()
    return _user_box(instance)


# ── Seasonal events ──


@router.get("/events", response_model=list[SeasonalEventResponse])
async def list_events(db: AsyncSession = Depends(get_session)):
    events = await event_service.get_active_events(db)
    return [
        SeasonalEventResponse(
            id=e.id,
            name=e.name,
            event_type=e.event_type,
            description=e.description,
            start_date=e.start_date,
            end_date=e.end_date,
            reward_xp=e.reward_xp,
            reward_gold=e.reward_gold,
        )
        for e in events
    ]


def _participation(p) -> EventParticipationResponse:
    return EventParticipationResponse(
        event_id=p.event_id,
        progress=p.progress,
        completed=p.completed,
        reward_claimed=p.reward_claimed,
    )


@router.post("/events/{event_id}/join", response_model=EventParticipationResponse)
async def join_event(
    event_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    participation = await event_service.join_event(db, account_id, event_id)
    await db.commit()
    return _participation(participation)


@router.post("/events/{event_id}/progress", response_model=EventParticipationResponse)
async def event_progress(
    event_id: int,
    body: EventProgressRequest,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    participation = await event_service.update_event_progress(db, account_id, event_id, body.progress)
    await db.commit()
    return _participation(participation)


@router.post("/events/{event_id}/claim", response_model=CreditResponse)
async def claim_event(
    event_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
    redis: object = Depends(get_redis_dep),
):
    grant = await event_service.claim_event_reward(db, redis, account_id, event_id)
    await db.commit()
    return CreditResponse(
        new_xp=grant.new_xp,
        new_gold=grant.new_gold,
        leveled_up=grant.leveled_up,
        new_level=grant.new_level,
        applied=grant.applied,
    )


# ── Skill trees ──


@router.get("/skill-trees", response_model=list[SkillTreeResponse])
async def list_skill_trees(db: AsyncSession = Depends(get_session)):
    result = await db.execute(select(SkillTree).order_by(SkillTree.id))
    return [SkillTreeResponse(id=t.id, name=t.name, nodes=t.nodes) for t in result.scalars().all()]


@router.get("/me/skill-trees/{tree_id}", response_model=SkillProgressResponse)
async def my_skill_progress(
    tree_id: int,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    if await db.get(SkillTree, tree_id) is None:
        raise NotFoundError("Skill tree", tree_id)
    progress = await skill_service.get_skill_progress(db, account_id, tree_id)
    if progress is None:
        return SkillProgressResponse(skill_tree_id=tree_id, unlocked_nodes=[])
    return SkillProgressResponse(
        skill_tree_id=tree_id,
        unlocked_nodes=progress.unlocked_nodes,
        last_updated=progress.last_updated,
    )


@router.post("/me/skill-trees/{tree_id}/nodes/{node_id}/unlock", response_model=SkillProgressResponse)
async def unlock_skill(
    tree_id: int,
    node_id: str,
    account_id: int = Depends(get_current_account_id),
    db: AsyncSession = Depends(get_session),
):
    progress = await skill_service.unlock_skill_node(db, account_id, tree_id, node_id)
    await db.commit()
    return SkillProgressResponse(
        skill_tree_id=tree_id,
        unlocked_nodes=progress.unlocked_nodes,
        last_updated=progress.last_updated,
    )
