"""
Typed Exception Hierarchy for the custody kernel.

===============================================================================
WHY TYPED EXCEPTIONS
===============================================================================

Callers (scanner screens, the batch coordinator, scripts) must react to
custody failures precisely: an item that is already checked out is a user
message, a transaction conflict is a "try again", a missing staff record is
a data problem.  Every failure therefore has:

  1. A TYPED exception class (catch by type, not message)
  2. A CODE class attribute (machine-readable, UI/API-safe)
  3. Structured DATA attributes (item_id, staff_uid, quantities, ...)

Example:
    try:
        custody.checkout(item_id, staff_uid, acting_staff_uid)
    except AlreadyCheckedOutError as e:
        show_banner(f"{e.item_id} is already out")
    except TransactionConflictError:
        offer_retry()

===============================================================================
EXCEPTION HIERARCHY
===============================================================================

    ToolCribError (base)
    |
    +-- NotFoundError
    |   +-- ItemNotFoundError
    |   +-- StaffNotFoundError
    |
    +-- PreconditionFailedError
    |   +-- AlreadyCheckedOutError
    |   +-- NotCheckedOutError
    |   +-- InsufficientQuantityError
    |   +-- InvalidQuantityError
    |   +-- StaffInactiveError
    |
    +-- ConcurrencyError
    |   +-- TransactionConflictError
    |
    +-- StoreError
    |   +-- DocumentMissingError
    |   +-- UnsupportedStoreOperationError
    |
    +-- LedgerError
    |   +-- LedgerWriteError
    |
    +-- QueryError
    |   +-- InvalidDateRangeError
    |   +-- InvalidQueryLimitError
    |
    +-- BatchError
        +-- BatchValidationError
        +-- EmptyBatchError

===============================================================================
ERROR CODES - QUICK REFERENCE
===============================================================================

Category        | Code                     | When Raised
----------------|--------------------------|-----------------------------------------
NotFound        | ITEM_NOT_FOUND           | Tool/consumable id or unique id unknown
                | STAFF_NOT_FOUND          | Staff uid unknown
----------------|--------------------------|-----------------------------------------
Precondition    | ALREADY_CHECKED_OUT      | Checkout on a non-available tool
                | NOT_CHECKED_OUT          | Checkin on an available tool
                | INSUFFICIENT_QUANTITY    | Usage larger than current stock
                | INVALID_QUANTITY         | Zero or negative quantity
                | STAFF_INACTIVE           | Assigning to a deactivated staff member
----------------|--------------------------|-----------------------------------------
Concurrency     | TRANSACTION_CONFLICT     | Optimistic retries exhausted (retryable)
----------------|--------------------------|-----------------------------------------
Store           | DOCUMENT_MISSING         | update() on a document that is absent
                | UNSUPPORTED_OPERATION    | Transform the backend cannot apply
----------------|--------------------------|-----------------------------------------
Ledger          | LEDGER_WRITE_FAILED      | Best-effort history append failed
----------------|--------------------------|-----------------------------------------
Query           | INVALID_DATE_RANGE       | start > end
----------------|--------------------------|-----------------------------------------
Batch           | BATCH_VALIDATION_FAILED  | Scan rejected (see ``reason``)
                | EMPTY_BATCH              | Submit with no items

===============================================================================
HANDLING PATTERNS
===============================================================================

1. Atomic-phase failures (NotFound, PreconditionFailed, Concurrency) are
   always raised to the caller of the custody operation.

2. LedgerWriteError never reaches the caller of a custody operation: the
   engine logs it and returns success, because the custody mutation has
   already committed.

3. The batch coordinator converts per-item ToolCribErrors into report
   rows; BatchValidationError is raised only for scan-time rejections.
"""


class ToolCribError(Exception):
    """
    Base exception for all custody kernel errors.

    All subclasses must have a `code` class attribute for machine-readable
    error identification.
    """

    code: str = "TOOLCRIB_ERROR"
    retryable: bool = False


# Not-found errors


class NotFoundError(ToolCribError):
    """Base exception for missing items or staff."""

    code: str = "NOT_FOUND"


class ItemNotFoundError(NotFoundError):
    """Tool or consumable does not exist."""

    code: str = "ITEM_NOT_FOUND"

    def __init__(self, item_id: str, item_kind: str | None = None):
        self.item_id = item_id
        self.item_kind = item_kind
        label = item_kind or "item"
        super().__init__(f"{label.capitalize()} not found: {item_id}")


class StaffNotFoundError(NotFoundError):
    """Staff record does not exist."""

    code: str = "STAFF_NOT_FOUND"

    def __init__(self, staff_uid: str):
        self.staff_uid = staff_uid
        super().__init__(f"Staff member not found: {staff_uid}")


# Precondition errors


class PreconditionFailedError(ToolCribError):
    """Base exception for items or staff not in the expected state."""

    code: str = "PRECONDITION_FAILED"


class AlreadyCheckedOutError(PreconditionFailedError):
    """Checkout attempted on a tool that is not available."""

    code: str = "ALREADY_CHECKED_OUT"

    def __init__(self, item_id: str, current_holder_uid: str | None = None):
        self.item_id = item_id
        self.current_holder_uid = current_holder_uid
        super().__init__(f"Tool is already checked out: {item_id}")


class NotCheckedOutError(PreconditionFailedError):
    """Checkin attempted on a tool that is available."""

    code: str = "NOT_CHECKED_OUT"

    def __init__(self, item_id: str):
        self.item_id = item_id
        super().__init__(f"Tool is already available: {item_id}")


class InsufficientQuantityError(PreconditionFailedError):
    """Consumable usage exceeds the quantity in stock."""

    code: str = "INSUFFICIENT_QUANTITY"

    def __init__(self, item_id: str, requested: float, available: float):
        self.item_id = item_id
        self.requested = requested
        self.available = available
        super().__init__(
            f"Insufficient quantity for {item_id}: "
            f"requested {requested}, available {available}"
        )


class InvalidQuantityError(PreconditionFailedError):
    """Quantity is zero or negative."""

    code: str = "INVALID_QUANTITY"

    def __init__(self, item_id: str, quantity: float):
        self.item_id = item_id
        self.quantity = quantity
        super().__init__(f"Quantity must be positive for {item_id}: {quantity}")


class StaffInactiveError(PreconditionFailedError):
    """Staff member is deactivated and cannot receive items."""

    code: str = "STAFF_INACTIVE"

    def __init__(self, staff_uid: str):
        self.staff_uid = staff_uid
        super().__init__(f"Staff member is inactive: {staff_uid}")


# Concurrency errors


class ConcurrencyError(ToolCribError):
    """Base exception for concurrency issues."""

    code: str = "CONCURRENCY_ERROR"


class TransactionConflictError(ConcurrencyError):
    """Optimistic-lock retries were exhausted."""

    code: str = "TRANSACTION_CONFLICT"
    retryable: bool = True

    def __init__(self, attempts: int, paths: tuple[str, ...] = ()):
        self.attempts = attempts
        self.paths = paths
        super().__init__(
            f"Transaction conflict after {attempts} attempt(s)"
            + (f" on {', '.join(paths)}" if paths else "")
        )


# Store errors


class StoreError(ToolCribError):
    """Base exception for document store failures."""

    code: str = "STORE_ERROR"


class DocumentMissingError(StoreError):
    """update() called for a document that does not exist."""

    code: str = "DOCUMENT_MISSING"

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Document does not exist: {path}")


class UnsupportedStoreOperationError(StoreError):
    """The backend cannot apply the requested field transform."""

    code: str = "UNSUPPORTED_OPERATION"

    def __init__(self, operation: str, backend: str):
        self.operation = operation
        self.backend = backend
        super().__init__(f"{backend} does not support {operation}")


# Ledger errors


class LedgerError(ToolCribError):
    """Base exception for history ledger failures."""

    code: str = "LEDGER_ERROR"


class LedgerWriteError(LedgerError):
    """A best-effort history append failed."""

    code: str = "LEDGER_WRITE_FAILED"

    def __init__(self, ledger: str, partition_path: str, entry_id: str, reason: str):
        self.ledger = ledger
        self.partition_path = partition_path
        self.entry_id = entry_id
        self.reason = reason
        super().__init__(
            f"{ledger} append failed for {partition_path} "
            f"(entry {entry_id}): {reason}"
        )


# Query errors


class QueryError(ToolCribError):
    """Base exception for history query errors."""

    code: str = "QUERY_ERROR"


class InvalidDateRangeError(QueryError):
    """Query start is after query end."""

    code: str = "INVALID_DATE_RANGE"

    def __init__(self, start: object, end: object):
        self.start = start
        self.end = end
        super().__init__(f"Start {start} is after end {end}")


class InvalidQueryLimitError(QueryError):
    """Query limit is negative."""

    code: str = "INVALID_QUERY_LIMIT"

    def __init__(self, limit: int):
        self.limit = limit
        super().__init__(f"Query limit must not be negative, got {limit}")


# Batch errors


class BatchError(ToolCribError):
    """Base exception for batch coordinator errors."""

    code: str = "BATCH_ERROR"


class BatchValidationError(BatchError):
    """A scan or submission was rejected; batch state is unchanged."""

    code: str = "BATCH_VALIDATION_FAILED"

    def __init__(self, reason: str, item_id: str | None = None, detail: str = ""):
        self.reason = reason
        self.item_id = item_id
        self.detail = detail
        message = f"Batch validation failed ({reason})"
        if item_id:
            message += f" for {item_id}"
        if detail:
            message += f": {detail}"
        super().__init__(message)


class EmptyBatchError(BatchError):
    """Submit called on a batch with no items."""

    code: str = "EMPTY_BATCH"

    def __init__(self):
        super().__init__("Cannot submit an empty batch")
