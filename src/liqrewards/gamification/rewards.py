"""Reward kinds granted by loot boxes.

Loot box definitions store their rewards as JSON; they are parsed here into a
tagged union on ``type`` and every consumer handles all three kinds.
"""

from __future__ import annotations

import random
from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Annotated, Any, Literal, Union, assert_never

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter


class _RewardBase(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    weight: float = Field(gt=0)


class XPReward(_RewardBase):
    type: Literal["xp"] = "xp"
    amount: int = Field(gt=0)


class GoldReward(_RewardBase):
    type: Literal["gold"] = "gold"
    amount: int = Field(gt=0)


class ItemReward(_RewardBase):
    type: Literal["item"] = "item"
    item: str = Field(min_length=1)
    amount: int = Field(default=1, gt=0)
    rarity: str | None = None


Reward = Annotated[Union[XPReward, GoldReward, ItemReward], Field(discriminator="type")]

_reward_list = TypeAdapter(list[Reward])


def parse_rewards(raw: Any) -> list[Reward]:
    """Validate a stored ``possible_rewards`` list. Raises pydantic.ValidationError."""
    rewards = _reward_list.validate_python(raw)
    if not rewards:
        raise ValueError("A loot box needs at least one possible reward")
    return rewards


def dump_rewards(rewards: Sequence[Reward]) -> list[dict[str, Any]]:
    return _reward_list.dump_python(list(rewards), mode="json")


def draw(rewards: Sequence[Reward], count: int = 1, rng: random.Random | None = None) -> list[Reward]:
    """Draw ``count`` rewards with replacement, P(i) = weight_i / sum(weights)."""
    if count < 1:
        raise ValueError("count must be at least 1")
    rng = rng or random.SystemRandom()
    return rng.choices(list(rewards), weights=[r.weight for r in rewards], k=count)


@dataclass
class RewardTotals:
    xp: int = 0
    gold: int = 0
    items: list[ItemReward] = field(default_factory=list)


def totals(rewards: Sequence[Reward]) -> RewardTotals:
    """Fold drawn rewards into ledger amounts plus the item list."""
    result = RewardTotals()
    for reward in rewards:
        if isinstance(reward, XPReward):
            result.xp += reward.amount
        elif isinstance(reward, GoldReward):
            result.gold += reward.amount
        elif isinstance(reward, ItemReward):
            result.items.append(reward)
        else:
            assert_never(reward)
    return result


def describe(reward: Reward) -> str:
    if isinstance(reward, XPReward):
        return f"+{reward.amount} XP"
    if isinstance(reward, GoldReward):
        return f"+{reward.amount} Gold"
    if isinstance(reward, ItemReward):
        return f"{reward.amount}x {reward.item}" if reward.amount > 1 else reward.item
    assert_never(reward)
