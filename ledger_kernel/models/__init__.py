"""ORM models for the ledger kernel."""

from ledger_kernel.models.account import (
    ACCOUNT_STRUCTURAL_FIELDS,
    Account,
    AccountTag,
    AccountType,
    NormalBalance,
)
from ledger_kernel.models.accounting_period import (
    AccountingPeriod,
    PeriodStatus,
    PeriodType,
)
from ledger_kernel.models.journal import (
    JournalEntry,
    JournalEntryStatus,
    JournalEntryType,
    JournalLine,
)
from ledger_kernel.models.ledger import LedgerRow
from ledger_kernel.models.sequence import SequenceCounter

__all__ = [
    "ACCOUNT_STRUCTURAL_FIELDS",
    "Account",
    "AccountTag",
    "AccountType",
    "AccountingPeriod",
    "JournalEntry",
    "JournalEntryStatus",
    "JournalEntryType",
    "JournalLine",
    "LedgerRow",
    "NormalBalance",
    "PeriodStatus",
    "PeriodType",
    "SequenceCounter",
]
