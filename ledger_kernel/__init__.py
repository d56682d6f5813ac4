"""
Ledger Kernel - double-entry ledger and period-close engine

A company-scoped accounting core with:
- Balanced journal entries (draft -> posted -> void)
- Append-only ledger rows carrying per-account running balances
- Fiscal period close, reopen and lock
- Cached balance reconciliation against the ledger
"""

__version__ = "0.1.0"
