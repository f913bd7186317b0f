"""Failure taxonomy shared by services, pipelines and the HTTP layer."""

from __future__ import annotations


class BattleHubError(Exception):
    """Base class for failures surfaced to callers as structured outcomes."""

    kind = "error"

    def __init__(self, message: str) -> None:
        super().__init__(message)
        self.message = message

    def to_dict(self) -> dict[str, str]:
        return {"error": self.kind, "message": self.message}


class ValidationError(BattleHubError):
    """Malformed or missing input."""

    kind = "validation_error"


class NotFoundError(BattleHubError):
    """A referenced user, battle, entry or match does not exist."""

    kind = "not_found"


class InconsistentStateError(BattleHubError):
    """Stored records contradict each other, e.g. a match whose winner entry is gone."""

    kind = "inconsistent_state"


class StoreUnavailableError(BattleHubError):
    """The ledger store could not be reached; the caller may retry."""

    kind = "store_unavailable"


class BatchAlreadyRunningError(BattleHubError):
    """A batch payout run is already in flight in this process."""

    kind = "batch_already_running"


__all__ = [
    "BattleHubError",
    "ValidationError",
    "NotFoundError",
    "InconsistentStateError",
    "StoreUnavailableError",
    "BatchAlreadyRunningError",
]
