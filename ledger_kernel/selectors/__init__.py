"""Read-only selectors returning frozen DTOs."""

from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.selectors.ledger_selector import (
    AccountBalanceInfo,
    AccountLedger,
    LedgerSelector,
    TrialBalance,
    TrialBalanceRow,
)
from ledger_kernel.selectors.period_selector import PeriodSelector

__all__ = [
    "AccountBalanceInfo",
    "AccountLedger",
    "AccountSelector",
    "JournalSelector",
    "LedgerSelector",
    "PeriodSelector",
    "TrialBalance",
    "TrialBalanceRow",
]
