"""Domain exceptions for the Escrow Market.

These exceptions are framework-agnostic and represent business rule violations.
They are caught and translated to HTTP responses by the API layer's middleware.
"""


class MarketError(Exception):
    """Base exception for all domain errors."""

    def __init__(self, message: str, code: str = "MARKET_ERROR") -> None:
        self.message = message
        self.code = code
        super().__init__(self.message)


# --- State Machine Errors ---


class InvalidStateError(MarketError):
    """Raised when an operation is not valid for the item's current status.

    Example: confirm_item on an ON_SALE item (nothing has been bought yet).
    """

    def __init__(self, current_state: str, operation: str) -> None:
        super().__init__(
            message=f"Operation '{operation}' is not allowed while the item is {current_state}",
            code="INVALID_STATE",
        )
        self.current_state = current_state
        self.operation = operation


class NotAuthorizedError(MarketError):
    """Raised when the caller lacks the role an operation requires."""

    def __init__(self, operation: str, required_role: str, caller: str) -> None:
        super().__init__(
            message=f"Only the {required_role.lower()} may perform '{operation}' (caller: {caller})",
            code="NOT_AUTHORIZED",
        )
        self.operation = operation
        self.required_role = required_role
        self.caller = caller


# --- Lookup Errors ---


class ItemNotFoundError(MarketError):
    """Raised when an item ID does not exist."""

    def __init__(self, item_id: int) -> None:
        super().__init__(
            message=f"Item not found: {item_id}",
            code="NOT_FOUND",
        )
        self.item_id = item_id


class InvalidPrincipalError(MarketError):
    """Raised for a principal the ledger cannot accept."""

    def __init__(self, principal: str) -> None:
        super().__init__(
            message=f"Invalid principal: {principal!r}",
            code="INVALID_PRINCIPAL",
        )
        self.principal = principal


# --- Precondition Errors ---


class InvalidListingError(MarketError):
    """Raised when an item is registered with an empty name or a non-positive price."""

    def __init__(self, message: str) -> None:
        super().__init__(message=message, code="INVALID_LISTING")


class InsufficientPaymentError(MarketError):
    """Raised when a buyer tenders less than the asking price."""

    def __init__(self, price: int, paid: int) -> None:
        super().__init__(
            message=f"Payment of {paid} is below the asking price of {price}",
            code="INSUFFICIENT_PAYMENT",
        )
        self.price = price
        self.paid = paid


class InvalidPaymentError(MarketError):
    """Raised when a tendered amount is larger than the ledger can hold."""

    def __init__(self, paid: int, maximum: int) -> None:
        super().__init__(
            message=f"Payment of {paid} exceeds the largest amount the ledger holds ({maximum})",
            code="INVALID_PAYMENT",
        )
        self.paid = paid
        self.maximum = maximum


class SelfTradeError(MarketError):
    """Raised when a seller tries to buy their own item."""

    def __init__(self, item_id: int) -> None:
        super().__init__(
            message=f"The seller cannot buy their own item: {item_id}",
            code="SELF_TRADE",
        )


class EmptyReasonError(MarketError):
    """Raised when a refund request or refusal carries no reason."""

    def __init__(self, operation: str) -> None:
        super().__init__(
            message=f"A reason is required for '{operation}'",
            code="EMPTY_REASON",
        )


class OutOfRangeError(MarketError):
    """Raised when a rating falls outside 1..5."""

    def __init__(self, value: int, low: int = 1, high: int = 5) -> None:
        super().__init__(
            message=f"Rating must be between {low} and {high}, got {value}",
            code="OUT_OF_RANGE",
        )
        self.value = value


class AlreadyRatedError(MarketError):
    """Raised when a transaction has already been rated."""

    def __init__(self, item_id: int) -> None:
        super().__init__(
            message=f"Transaction already rated: {item_id}",
            code="ALREADY_RATED",
        )


# --- Settlement Errors ---


class TransferFailedError(MarketError):
    """Raised when the settlement gateway reports a failed disbursement.

    The item is left untouched and its funds remain in escrow.
    """

    def __init__(self, item_id: int, recipient: str, amount: int, reason: str = "") -> None:
        detail = f": {reason}" if reason else ""
        super().__init__(
            message=f"Transfer of {amount} to {recipient} for item {item_id} failed{detail}",
            code="TRANSFER_FAILED",
        )
        self.item_id = item_id
        self.recipient = recipient
        self.amount = amount


# --- Ledger Errors ---


class LedgerNotInitializedError(MarketError):
    """Raised when an admin-dependent operation runs before the ledger has an admin."""

    def __init__(self) -> None:
        super().__init__(
            message="The ledger has not been initialized with an admin",
            code="LEDGER_NOT_INITIALIZED",
        )


# --- Idempotency Errors ---


class DuplicateOperationError(MarketError):
    """Raised when a duplicate idempotency key is detected."""

    def __init__(self, idempotency_key: str) -> None:
        super().__init__(
            message=f"Duplicate operation detected for key: {idempotency_key}",
            code="DUPLICATE_OPERATION",
        )
