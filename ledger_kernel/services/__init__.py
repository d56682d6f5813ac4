"""
Kernel services.

Services accept a caller-owned Session, flush inside a savepoint per
operation, and never commit.
"""

from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.reconciliation_service import ReconciliationService
from ledger_kernel.services.sequence_service import SequenceService

__all__ = [
    "AccountService",
    "JournalService",
    "LedgerStore",
    "PeriodService",
    "ReconciliationService",
    "SequenceService",
]
