"""
Domain-specific errors for the barter bounded context.

All errors raised from the domain layer must be defined here.
These are mapped to HTTP responses at the interface layer.
No framework imports allowed.

Every error carries a stable ``code`` naming the exact guard that
failed, so callers can explain *why* an operation was refused.
"""


class BarterDomainError(Exception):
    """Base error for all barter domain errors."""

    code = "BARTER_ERROR"

    def __init__(self, message: str) -> None:
        self.message = message
        super().__init__(self.message)


# ──────────────────────────────────────────────────────────────────────
# (a) Validation errors: rejected before any state mutation
# ──────────────────────────────────────────────────────────────────────


class ValidationError(BarterDomainError):
    """Raised when input is malformed or out of range."""

    code = "VALIDATION_FAILED"


class InvalidTradeTermsError(ValidationError):
    """Raised when the offered items/cash do not form a legal trade."""

    code = "INVALID_TRADE_TERMS"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid trade terms: {reason}")
        self.reason = reason


class InvalidScoreError(ValidationError):
    """Raised when a rating score falls outside 1-5."""

    code = "INVALID_SCORE"

    def __init__(self, field_name: str, value: int) -> None:
        super().__init__(f"{field_name} must be between 1 and 5, got {value}")
        self.field_name = field_name
        self.value = value


class MissingFieldError(ValidationError):
    """Raised when a required value is empty."""

    code = "MISSING_FIELD"

    def __init__(self, field_name: str) -> None:
        super().__init__(f"Missing required field: {field_name}")
        self.field_name = field_name


class InvalidResolutionError(ValidationError):
    """Raised when a resolution payload is inconsistent (e.g. ratio > 1)."""

    code = "INVALID_RESOLUTION"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Invalid resolution: {reason}")
        self.reason = reason


# ──────────────────────────────────────────────────────────────────────
# Not found
# ──────────────────────────────────────────────────────────────────────


class NotFoundError(BarterDomainError):
    code = "NOT_FOUND"


class UserNotFoundError(NotFoundError):
    code = "USER_NOT_FOUND"

    def __init__(self, user_id: str) -> None:
        super().__init__(f"User not found: {user_id}")
        self.user_id = user_id


class ItemNotFoundError(NotFoundError):
    code = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str) -> None:
        super().__init__(f"Item not found: {item_id}")
        self.item_id = item_id


class TradeNotFoundError(NotFoundError):
    code = "TRADE_NOT_FOUND"

    def __init__(self, trade_id: str) -> None:
        super().__init__(f"Trade not found: {trade_id}")
        self.trade_id = trade_id


class DisputeNotFoundError(NotFoundError):
    code = "DISPUTE_NOT_FOUND"

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Dispute ticket not found: {ticket_id}")
        self.ticket_id = ticket_id


# ──────────────────────────────────────────────────────────────────────
# (b) Guard failures: named precondition failures, no partial mutation
# ──────────────────────────────────────────────────────────────────────


class GuardError(BarterDomainError):
    """Raised when a precondition for a transition does not hold."""

    code = "GUARD_FAILED"


class ItemNotOwnedError(GuardError):
    """Raised when a party offers an item it does not own."""

    code = "ITEM_NOT_OWNED"

    def __init__(self, item_id: str, user_id: str) -> None:
        super().__init__(f"Item {item_id} is not owned by user {user_id}")
        self.item_id = item_id
        self.user_id = user_id


class ItemNoLongerAvailableError(GuardError):
    """Raised when an item was consumed by another trade since proposal."""

    code = "ITEM_NO_LONGER_AVAILABLE"

    def __init__(self, item_id: str, trade_id: str | None = None) -> None:
        super().__init__(f"Item {item_id} is no longer available")
        self.item_id = item_id
        self.trade_id = trade_id


class InsufficientBalanceError(GuardError):
    """Raised when a transition would drive a balance negative."""

    code = "INSUFFICIENT_BALANCE"

    def __init__(self, user_id: str, required: int, available: int) -> None:
        super().__init__(
            f"Insufficient balance for user {user_id}: "
            f"required {required}, available {available}"
        )
        self.user_id = user_id
        self.required = required
        self.available = available


class InvalidTransitionError(GuardError):
    """Raised when an operation is not legal from the current state."""

    code = "INVALID_TRANSITION"

    def __init__(self, entity_id: str, current: str, attempted: str) -> None:
        super().__init__(
            f"Cannot {attempted} {entity_id} while it is {current}"
        )
        self.entity_id = entity_id
        self.current = current
        self.attempted = attempted


class ActorNotPermittedError(GuardError):
    """Raised when the wrong actor attempts an action."""

    code = "ACTOR_NOT_PERMITTED"

    def __init__(self, actor_id: str, action: str) -> None:
        super().__init__(f"User {actor_id} may not {action}")
        self.actor_id = actor_id
        self.action = action


class DuplicateRatingError(GuardError):
    code = "DUPLICATE_RATING"

    def __init__(self, trade_id: str, rater_id: str) -> None:
        super().__init__(f"User {rater_id} already rated trade {trade_id}")
        self.trade_id = trade_id
        self.rater_id = rater_id


class NothingToShipError(GuardError):
    """Raised when a cash-only side submits tracking."""

    code = "NOTHING_TO_SHIP"

    def __init__(self, trade_id: str, user_id: str) -> None:
        super().__init__(f"User {user_id} has no items to ship in trade {trade_id}")
        self.trade_id = trade_id
        self.user_id = user_id


class EscrowNotRequiredError(GuardError):
    code = "ESCROW_NOT_REQUIRED"

    def __init__(self, trade_id: str) -> None:
        super().__init__(f"Trade {trade_id} has no cash differential to fund")
        self.trade_id = trade_id


class DisputeAlreadyOpenError(GuardError):
    code = "DISPUTE_ALREADY_OPEN"

    def __init__(self, trade_id: str, ticket_id: str) -> None:
        super().__init__(f"Trade {trade_id} already has open dispute {ticket_id}")
        self.trade_id = trade_id
        self.ticket_id = ticket_id


class DisputeClosedError(GuardError):
    """Raised on any mutation of a resolved dispute ticket."""

    code = "DISPUTE_CLOSED"

    def __init__(self, ticket_id: str) -> None:
        super().__init__(f"Dispute ticket {ticket_id} is already closed")
        self.ticket_id = ticket_id


# ──────────────────────────────────────────────────────────────────────
# (c) External dependency failures: state unchanged, safe to retry
# ──────────────────────────────────────────────────────────────────────


class ExternalDependencyError(BarterDomainError):
    code = "EXTERNAL_DEPENDENCY_FAILED"


class LedgerUnavailableError(ExternalDependencyError):
    """Raised when the ledger times out or cannot be reached."""

    code = "LEDGER_UNAVAILABLE"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Ledger unavailable: {reason}")
        self.reason = reason


class LedgerDeclinedError(ExternalDependencyError):
    """Raised when the ledger refuses a fund/release/refund call."""

    code = "LEDGER_DECLINED"

    def __init__(self, reason: str) -> None:
        super().__init__(f"Ledger declined the operation: {reason}")
        self.reason = reason


class ValuationUnavailableError(ExternalDependencyError):
    code = "VALUATION_UNAVAILABLE"

    def __init__(self, item_id: str) -> None:
        super().__init__(f"No valuation available for item {item_id}")
        self.item_id = item_id


# ──────────────────────────────────────────────────────────────────────
# (d) Terminal: the trade cannot change any more
# ──────────────────────────────────────────────────────────────────────


class TradeTerminalError(BarterDomainError):
    """Raised on any mutation attempt against a terminal trade."""

    code = "TRADE_TERMINAL"

    def __init__(self, trade_id: str, status: str) -> None:
        super().__init__(f"Trade {trade_id} is {status} and can no longer change")
        self.trade_id = trade_id
        self.status = status
