"""Domain exceptions for the rewards engine.

Services raise these for precondition violations. The HTTP layer maps each
one to a status code and a short user-facing message; they are never retried
automatically. Transient storage failures are not wrapped here: grant
operations are idempotent, so callers retry them with the same key.
"""

from __future__ import annotations

from typing import Any


class RewardsError(Exception):
    """Base class for all rewards-domain failures."""

    status_code: int = 400
    default_message: str = "Something went wrong with your rewards."

    def __init__(self, message: str | None = None, **details: Any) -> None:
        self.message = message or self.default_message
        self.details = details
        self.code = self.__class__.__name__
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        return {"detail": self.message, "code": self.code, **({"details": self.details} if self.details else {})}


class NotFoundError(RewardsError):
    status_code = 404
    default_message = "Not found."

    def __init__(self, resource: str, identifier: Any = None) -> None:
        message = f"{resource} not found" if identifier is None else f"{resource} not found: {identifier}"
        super().__init__(message, resource=resource, identifier=identifier)


class InsufficientGold(RewardsError):
    """Gold balance below the price of a purchase."""

    status_code = 409
    default_message = "You don't have enough gold for that."

    def __init__(self, required: int, current: int | None = None) -> None:
        super().__init__(None, required=required, current=current)


# Name used by the platform's error catalogue
InsufficientFunds = InsufficientGold


class AlreadyInGuild(RewardsError):
    status_code = 409
    default_message = "You are already a member of a guild. Leave it first."


class NotInGuild(RewardsError):
    status_code = 409
    default_message = "You are not in a guild."


class NotGuildLeader(RewardsError):
    status_code = 403
    default_message = "Only the guild leader can do that."


class NameTaken(RewardsError):
    status_code = 409
    default_message = "A guild with this name already exists."


class ChallengeClosed(RewardsError):
    status_code = 409
    default_message = "This guild challenge is not running right now."


class AlreadyOpened(RewardsError):
    status_code = 409
    default_message = "This loot box has already been opened."


class AlreadyUnlocked(RewardsError):
    status_code = 409
    default_message = "Already unlocked."


class RequirementNotMet(RewardsError):
    status_code = 409
    default_message = "Requirements for this unlock are not met yet."


class AlreadyClaimed(RewardsError):
    status_code = 409
    default_message = "This reward has already been claimed."


class DuplicateGrant(RewardsError):
    """A grant with this idempotency key was already applied.

    The ledger absorbs this and returns the original result; it is never
    raised to API callers.
    """

    status_code = 200
    default_message = "Reward already granted."
