"""Promotion and credit ledger exceptions.

Each expected failure has a stable ``kind`` so API callers can tell them
apart; ``DataIntegrityError`` signals corrupted prior state and is never
shown to callers in detail.
"""


class PromotionServiceError(Exception):
    """Base exception for promotion and ledger operations."""

    kind = "error"


class NotFoundError(PromotionServiceError):
    kind = "not_found"


class PackageNotFound(NotFoundError):
    """Raised when a package is missing or no longer sold."""


class PromotionNotFound(NotFoundError):
    """Raised when a promotion does not exist."""


class OrganizationNotFound(NotFoundError):
    """Raised when a ledger operation names an organization that does not exist."""


class Forbidden(PromotionServiceError):
    """Raised when the caller's role or organization does not allow the action."""

    kind = "forbidden"


class InvalidState(PromotionServiceError):
    """Raised when a promotion is not in a state that allows the operation."""

    kind = "invalid_state"

    def __init__(self, status: str, message: str | None = None) -> None:
        self.status = status
        super().__init__(message or f"Promotion in status '{status}' cannot be changed")


class PromotionAlreadyCancelled(InvalidState):
    """Raised on a repeat cancellation; carries the result of the first one."""

    def __init__(self, credits_refunded: int, new_balance: int) -> None:
        self.credits_refunded = credits_refunded
        self.new_balance = new_balance
        super().__init__("cancelled", "Promotion is already cancelled")


class IdempotencyConflict(PromotionServiceError):
    """Raised when a request token is reused for a different purchase."""

    kind = "idempotency_conflict"


class InsufficientCreditsError(PromotionServiceError):
    """Raised when a debit would take an org's balance below zero."""

    kind = "insufficient_credits"

    def __init__(self, required: int, available: int) -> None:
        self.required = required
        self.available = available
        super().__init__(f"Insufficient credits: required {required}, available {available}")


class DataIntegrityError(PromotionServiceError):
    """Raised when stored data violates an invariant (e.g. end_at <= start_at)."""

    kind = "internal"


class AuthError(Exception):
    """Raised when a caller cannot be resolved from the request credentials."""
