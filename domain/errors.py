from __future__ import annotations

from datetime import timedelta
from typing import Any, Dict, Optional


class EconomyError(Exception):
    """
    Base class for expected, recoverable rejections.

    Every subclass carries a stable `kind` so that chat adapters can pick a
    specific message without inspecting exception types, and `details` with
    the numbers needed to render it.
    """

    kind = "economy_error"
    retryable = False

    def __init__(self, message: str = "", **details: Any) -> None:
        super().__init__(message or self.kind)
        self.message = message or self.kind
        self.details: Dict[str, Any] = details


class InsufficientFunds(EconomyError):
    kind = "insufficient_funds"


class TargetTooPoor(EconomyError):
    kind = "target_too_poor"


class RobberTooPoor(EconomyError):
    kind = "robber_too_poor"


class SelfTargetNotAllowed(EconomyError):
    kind = "self_target_not_allowed"


class TargetNotFound(EconomyError):
    """The named user has never used the economy."""

    kind = "target_not_found"


class CooldownActive(EconomyError):
    kind = "cooldown_active"

    def __init__(self, remaining: timedelta, action: Optional[str] = None) -> None:
        super().__init__(
            f"{action or 'action'} is on cooldown",
            remaining_seconds=int(remaining.total_seconds()),
            action=action,
        )
        self.remaining = remaining


class DuplicateName(EconomyError):
    kind = "duplicate_name"


class AlreadyInClan(EconomyError):
    kind = "already_in_clan"


class NotClanLeader(EconomyError):
    kind = "not_clan_leader"


class LeaderCannotLeave(NotClanLeader):
    kind = "leader_cannot_leave"


class ClanNotFound(EconomyError):
    kind = "clan_not_found"


class NotInClan(EconomyError):
    kind = "not_in_clan"


class InvalidClanName(EconomyError):
    kind = "invalid_clan_name"


class InvalidAmount(EconomyError):
    kind = "invalid_amount"


class BetOutOfRange(EconomyError):
    kind = "bet_out_of_range"


class InvalidArguments(EconomyError):
    kind = "invalid_arguments"


class ConfirmationRequired(EconomyError):
    kind = "confirmation_required"


class UnknownAction(EconomyError):
    kind = "unknown_action"


class StorageUnavailable(EconomyError):
    """The persistence layer could not be reached in time. Safe to retry."""

    kind = "storage_unavailable"
    retryable = True


class InvariantViolation(Exception):
    """
    A mutation would leave an account or clan in an impossible state.

    This is a defect, not a user error: the session is aborted and nothing
    is written.
    """


class StaleWriteError(Exception):
    """The stored version moved on between load and commit."""


class LockSetChanged(Exception):
    """The accounts a session needs are no longer the ones it locked."""


class ConfigurationError(Exception):
    """Raised once at startup when settings fail validation."""
