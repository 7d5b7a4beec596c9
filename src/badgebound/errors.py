"""Exception types shared across the quest engine.

Mirror node failures are deliberately absent: the mirror client degrades to
empty results instead of raising.
"""

from __future__ import annotations


class ChainConfigError(RuntimeError):
    """Contract address or signing key is not configured."""


class ChainTransactionError(RuntimeError):
    """A contract transaction was mined but reverted."""

    def __init__(self, message: str, tx_hash: str | None = None) -> None:
        super().__init__(message)
        self.tx_hash = tx_hash


class ProgressConflictError(RuntimeError):
    """A progress row kept changing under a conditional update."""


class ClaimError(Exception):
    """Base class for claim precondition failures (user-facing, never retried)."""

    status_code = 400
    message = "Claim rejected"

    def __init__(self, message: str | None = None) -> None:
        super().__init__(message or self.message)
        self.message = message or self.message


class InvalidWalletError(ClaimError):
    message = "Invalid wallet address"


class QuestNotFoundError(ClaimError):
    status_code = 404
    message = "User quest not found"


class QuestNotCompletedError(ClaimError):
    message = "Quest is not in COMPLETED status"


class AlreadyClaimedError(ClaimError):
    status_code = 409
    message = "Quest already claimed for this period"


class ClaimInProgressError(ClaimError):
    status_code = 409
    message = "A claim for this quest is already in progress"


class ClaimConflictError(ClaimError):
    """The row was claimed by someone else while our mint was in flight."""

    status_code = 409
    message = "Quest was claimed concurrently"
