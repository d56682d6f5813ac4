"""
Typed exception hierarchy for the ledger kernel.

Every error raised by a kernel service is an instance of a typed class with
a static, machine-readable ``code`` and structured attributes.  Callers catch
by type and read attributes; they never parse messages.

Four kinds sit under the base class and map one-to-one onto the responses an
outer API layer gives:

    LedgerKernelError (base)
    |
    +-- ValidationError           malformed or unbalanced input
    |   +-- UnbalancedEntryError
    |   +-- EmptyEntryError
    |   +-- InvalidLineError
    |   +-- InvalidAccountReferenceError
    |   +-- AccountInactiveError
    |   +-- InvalidPeriodRangeError
    |   +-- InvalidPeriodFieldError
    |   +-- BackdatedPostingError
    |
    +-- NotFoundError             id does not resolve for the company
    |   +-- AccountNotFoundError
    |   +-- JournalEntryNotFoundError
    |   +-- PeriodNotFoundError
    |
    +-- InvalidStateError         operation not allowed from current status
    |   +-- JournalEntryStateError
    |   +-- PeriodStateError
    |   +-- ClosedPeriodError
    |   +-- AccountReferencedError
    |
    +-- ConflictError             uniqueness / overlap conflicts
    |   +-- DuplicateAccountCodeError
    |   +-- RetainedEarningsConflictError
    |   +-- PeriodOverlapError
    |
    +-- ImmutabilityViolationError  ORM guard on posted history

All domain checks run before any mutation.  A raised error rolls back the
operation's savepoint; nothing is retried automatically.
"""


class LedgerKernelError(Exception):
    """Base exception for all ledger kernel errors.

    All subclasses must define a ``code`` class attribute.
    """

    code: str = "LEDGER_KERNEL_ERROR"


# =============================================================================
# Validation
# =============================================================================


class ValidationError(LedgerKernelError):
    """Input violates a domain invariant and must be fixed by the caller."""

    code: str = "VALIDATION_ERROR"


class UnbalancedEntryError(ValidationError):
    """Total debits and total credits differ by more than the tolerance."""

    code: str = "UNBALANCED_ENTRY"

    def __init__(self, debits: str, credits: str):
        self.debits = debits
        self.credits = credits
        super().__init__(
            f"Journal entry is not balanced. Debits: {debits}, Credits: {credits}"
        )


class EmptyEntryError(ValidationError):
    """A journal entry was submitted without lines."""

    code: str = "EMPTY_ENTRY"

    def __init__(self):
        super().__init__("Journal entry must have at least one line")


class InvalidLineError(ValidationError):
    """A journal line has negative amounts or not exactly one side populated."""

    code: str = "INVALID_LINE"

    def __init__(self, line_index: int, reason: str):
        self.line_index = line_index
        self.reason = reason
        super().__init__(f"Invalid journal line {line_index}: {reason}")


class InvalidAccountReferenceError(ValidationError):
    """A journal line references an account that is not in the company."""

    code: str = "INVALID_ACCOUNT_REFERENCE"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account {account_id} not found for this company")


class AccountInactiveError(ValidationError):
    """A journal line references an archived account."""

    code: str = "ACCOUNT_INACTIVE"

    def __init__(self, account_id: str, account_code: str):
        self.account_id = account_id
        self.account_code = account_code
        super().__init__(f"Account {account_code} is inactive and cannot be posted to")


class InvalidPeriodRangeError(ValidationError):
    """Period start date is not before its end date."""

    code: str = "INVALID_PERIOD_RANGE"

    def __init__(self, start_date: str, end_date: str):
        self.start_date = start_date
        self.end_date = end_date
        super().__init__(
            f"End date must be after start date (start {start_date}, end {end_date})"
        )


class InvalidPeriodFieldError(ValidationError):
    """A period attribute is outside its allowed domain."""

    code: str = "INVALID_PERIOD_FIELD"

    def __init__(self, field: str, reason: str):
        self.field = field
        self.reason = reason
        super().__init__(f"Invalid period {field}: {reason}")


class BackdatedPostingError(ValidationError):
    """A posting is dated before existing ledger rows and backdating is rejected."""

    code: str = "BACKDATED_POSTING"

    def __init__(self, account_id: str, transaction_date: str, latest_date: str):
        self.account_id = account_id
        self.transaction_date = transaction_date
        self.latest_date = latest_date
        super().__init__(
            f"Account {account_id} already has ledger rows dated {latest_date}; "
            f"cannot post on {transaction_date}"
        )


# =============================================================================
# Not found
# =============================================================================


class NotFoundError(LedgerKernelError):
    """An identifier does not resolve within the given company."""

    code: str = "NOT_FOUND"


class AccountNotFoundError(NotFoundError):
    code: str = "ACCOUNT_NOT_FOUND"

    def __init__(self, account_id: str):
        self.account_id = account_id
        super().__init__(f"Account not found: {account_id}")


class JournalEntryNotFoundError(NotFoundError):
    code: str = "JOURNAL_ENTRY_NOT_FOUND"

    def __init__(self, entry_id: str):
        self.entry_id = entry_id
        super().__init__(f"Journal entry not found: {entry_id}")


class PeriodNotFoundError(NotFoundError):
    code: str = "PERIOD_NOT_FOUND"

    def __init__(self, period_id: str):
        self.period_id = period_id
        super().__init__(f"Accounting period not found: {period_id}")


# =============================================================================
# Invalid state
# =============================================================================


class InvalidStateError(LedgerKernelError):
    """Operation attempted from a status that disallows it."""

    code: str = "INVALID_STATE"


class JournalEntryStateError(InvalidStateError):
    """Journal entry status does not permit the requested operation."""

    code: str = "JOURNAL_ENTRY_INVALID_STATE"

    def __init__(
        self,
        entry_id: str,
        current_status: str,
        required_status: str,
        operation: str,
    ):
        self.entry_id = entry_id
        self.current_status = current_status
        self.required_status = required_status
        self.operation = operation
        super().__init__(f"Only {required_status} entries can be {operation}")


class PeriodStateError(InvalidStateError):
    """Accounting period status does not permit the requested operation."""

    code: str = "PERIOD_INVALID_STATE"

    def __init__(
        self,
        period_id: str,
        current_status: str,
        required_status: str,
        operation: str,
    ):
        self.period_id = period_id
        self.current_status = current_status
        self.required_status = required_status
        self.operation = operation
        super().__init__(
            f"Only {required_status} periods can be {operation} "
            f"(period is {current_status})"
        )


class ClosedPeriodError(InvalidStateError):
    """A posting date falls inside a closed or locked period."""

    code: str = "CLOSED_PERIOD"

    def __init__(self, period_name: str, effective_date: str, status: str):
        self.period_name = period_name
        self.effective_date = effective_date
        self.status = status
        super().__init__(
            f"Cannot post on {effective_date}: period \"{period_name}\" is {status}"
        )


class AccountReferencedError(InvalidStateError):
    """Account has ledger rows, so it cannot be deleted or restructured."""

    code: str = "ACCOUNT_REFERENCED"

    def __init__(self, account_id: str, reason: str):
        self.account_id = account_id
        self.reason = reason
        super().__init__(f"Account {account_id} has ledger activity: {reason}")


# =============================================================================
# Conflict
# =============================================================================


class ConflictError(LedgerKernelError):
    """Request conflicts with existing data."""

    code: str = "CONFLICT"


class DuplicateAccountCodeError(ConflictError):
    code: str = "DUPLICATE_ACCOUNT_CODE"

    def __init__(self, account_code: str):
        self.account_code = account_code
        super().__init__(f"Account code {account_code} already exists")


class RetainedEarningsConflictError(ConflictError):
    """The Retained Earnings code is held by an account that is not equity."""

    code: str = "RETAINED_EARNINGS_CONFLICT"

    def __init__(self, account_code: str, account_type: str):
        self.account_code = account_code
        self.account_type = account_type
        super().__init__(
            f"Account code {account_code} is a {account_type} account and cannot "
            "receive closing entries as Retained Earnings"
        )


class PeriodOverlapError(ConflictError):
    """New period date range overlaps an existing period of the company."""

    code: str = "PERIOD_OVERLAP"

    def __init__(
        self,
        new_period_name: str,
        existing_period_name: str,
        existing_start: str,
        existing_end: str,
    ):
        self.new_period_name = new_period_name
        self.existing_period_name = existing_period_name
        self.existing_start = existing_start
        self.existing_end = existing_end
        super().__init__(
            f'Period overlaps with existing period "{existing_period_name}" '
            f"({existing_start} to {existing_end})"
        )


# =============================================================================
# Immutability
# =============================================================================


class ImmutabilityViolationError(LedgerKernelError):
    """Attempt to modify or delete posted accounting history."""

    code: str = "IMMUTABILITY_VIOLATION"

    def __init__(self, entity_type: str, entity_id: str, reason: str):
        self.entity_type = entity_type
        self.entity_id = entity_id
        self.reason = reason
        super().__init__(f"Cannot modify {entity_type} {entity_id}: {reason}")
