"""
DTOs -- immutable values crossing the service boundary.

Responsibility:
    Inbound line specifications and the frozen snapshots services return.
    Callers never receive ORM instances, so a returned value cannot be used
    to mutate the ledger behind a service's back.

Architecture position:
    Kernel > Domain.  ``from_model()`` converters are the only place ORM
    types appear, and only under TYPE_CHECKING.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any
from uuid import UUID

from ledger_kernel.db.types import ZERO, to_money

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account as AccountModel
    from ledger_kernel.models.accounting_period import (
        AccountingPeriod as AccountingPeriodModel,
    )
    from ledger_kernel.models.journal import JournalEntry as JournalEntryModel
    from ledger_kernel.models.journal import JournalLine as JournalLineModel
    from ledger_kernel.models.ledger import LedgerRow as LedgerRowModel


def _value(enum_or_str: Any) -> str:
    return getattr(enum_or_str, "value", enum_or_str)


# =============================================================================
# Inbound
# =============================================================================


@dataclass(frozen=True)
class JournalLineInput:
    """
    One line of a journal entry as submitted by a caller.

    Amounts are coerced to cent-rounded Decimals; ``None`` means zero.
    Domain validation (sign, one side, balance) happens in JournalService.
    """

    account_id: UUID
    debit: Decimal = ZERO
    credit: Decimal = ZERO
    description: str | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "debit", to_money(self.debit))
        object.__setattr__(self, "credit", to_money(self.credit))

    @classmethod
    def dr(cls, account_id: UUID, amount, description: str | None = None) -> JournalLineInput:
        return cls(account_id=account_id, debit=amount, description=description)

    @classmethod
    def cr(cls, account_id: UUID, amount, description: str | None = None) -> JournalLineInput:
        return cls(account_id=account_id, credit=amount, description=description)


# =============================================================================
# Accounts
# =============================================================================


@dataclass(frozen=True)
class AccountInfo:
    """Snapshot of a chart-of-accounts entry."""

    id: UUID
    company_id: UUID
    code: str
    name: str
    account_type: str
    normal_balance: str
    balance: Decimal
    is_active: bool
    sub_type: str | None = None
    description: str | None = None
    parent_id: UUID | None = None
    tags: tuple[str, ...] = ()

    @classmethod
    def from_model(cls, model: AccountModel) -> AccountInfo:
        return cls(
            id=model.id,
            company_id=model.company_id,
            code=model.code,
            name=model.name,
            account_type=_value(model.account_type),
            normal_balance=_value(model.normal_balance),
            balance=model.balance,
            is_active=model.is_active,
            sub_type=model.sub_type,
            description=model.description,
            parent_id=model.parent_id,
            tags=tuple(model.tags or ()),
        )


# =============================================================================
# Journal entries
# =============================================================================


@dataclass(frozen=True)
class JournalLineInfo:
    id: UUID
    account_id: UUID
    debit: Decimal
    credit: Decimal
    description: str | None
    line_seq: int

    @classmethod
    def from_model(cls, model: JournalLineModel) -> JournalLineInfo:
        return cls(
            id=model.id,
            account_id=model.account_id,
            debit=model.debit,
            credit=model.credit,
            description=model.description,
            line_seq=model.line_seq,
        )


@dataclass(frozen=True)
class JournalEntryInfo:
    """Snapshot of a journal entry and its lines."""

    id: UUID
    company_id: UUID
    entry_number: str
    entry_date: date
    entry_type: str
    status: str
    total_debit: Decimal
    total_credit: Decimal
    lines: tuple[JournalLineInfo, ...]
    created_by_id: UUID
    reference_number: str | None = None
    description: str | None = None
    is_closing_entry: bool = False
    posted_by_id: UUID | None = None
    posted_at: datetime | None = None
    voided_by_id: UUID | None = None
    voided_at: datetime | None = None

    @classmethod
    def from_model(cls, model: JournalEntryModel) -> JournalEntryInfo:
        return cls(
            id=model.id,
            company_id=model.company_id,
            entry_number=model.entry_number,
            entry_date=model.entry_date,
            entry_type=_value(model.entry_type),
            status=_value(model.status),
            total_debit=model.total_debit,
            total_credit=model.total_credit,
            lines=tuple(JournalLineInfo.from_model(line) for line in model.lines),
            created_by_id=model.created_by_id,
            reference_number=model.reference_number,
            description=model.description,
            is_closing_entry=model.is_closing_entry,
            posted_by_id=model.posted_by_id,
            posted_at=model.posted_at,
            voided_by_id=model.voided_by_id,
            voided_at=model.voided_at,
        )


# =============================================================================
# Ledger
# =============================================================================


@dataclass(frozen=True)
class LedgerRowInfo:
    id: UUID
    account_id: UUID
    journal_entry_id: UUID
    entry_number: str
    transaction_date: date
    description: str | None
    debit: Decimal
    credit: Decimal
    running_balance: Decimal
    seq: int
    is_reversal: bool

    @classmethod
    def from_model(cls, model: LedgerRowModel) -> LedgerRowInfo:
        return cls(
            id=model.id,
            account_id=model.account_id,
            journal_entry_id=model.journal_entry_id,
            entry_number=model.entry_number,
            transaction_date=model.transaction_date,
            description=model.description,
            debit=model.debit,
            credit=model.credit,
            running_balance=model.running_balance,
            seq=model.seq,
            is_reversal=model.is_reversal,
        )


# =============================================================================
# Periods
# =============================================================================


@dataclass(frozen=True)
class PeriodInfo:
    """Snapshot of an accounting period."""

    id: UUID
    company_id: UUID
    period_name: str
    period_type: str
    fiscal_year: int
    start_date: date
    end_date: date
    status: str
    closed_by_id: UUID | None = None
    closed_at: datetime | None = None
    closing_journal_entry_id: UUID | None = None
    notes: str | None = None

    @property
    def is_open(self) -> bool:
        return self.status == "open"

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    @classmethod
    def from_model(cls, model: AccountingPeriodModel) -> PeriodInfo:
        return cls(
            id=model.id,
            company_id=model.company_id,
            period_name=model.period_name,
            period_type=_value(model.period_type),
            fiscal_year=model.fiscal_year,
            start_date=model.start_date,
            end_date=model.end_date,
            status=_value(model.status),
            closed_by_id=model.closed_by_id,
            closed_at=model.closed_at,
            closing_journal_entry_id=model.closing_journal_entry_id,
            notes=model.notes,
        )


@dataclass(frozen=True)
class PeriodCloseResult:
    """
    Outcome of closing a period.

    ``closing_entry_id`` is None when no revenue or expense account carried a
    balance, in which case the period closed without an entry.
    """

    period: PeriodInfo
    closing_entry_id: UUID | None
    closing_entry_number: str | None
    net_income: Decimal
    total_revenue: Decimal
    total_expenses: Decimal
    revenue_accounts_closed: int
    expense_accounts_closed: int


# =============================================================================
# Reconciliation
# =============================================================================


@dataclass(frozen=True)
class ReconciliationResult:
    """
    Outcome of reconciling one account's cached balance.

    ``reconciled`` is True only when drift above the tolerance was found and
    the cached balance was overwritten.
    """

    account_id: UUID
    account_code: str
    reconciled: bool
    previous_balance: Decimal
    actual_balance: Decimal
    difference: Decimal


@dataclass(frozen=True)
class ReconciliationFailure:
    account_id: UUID
    account_code: str
    error_type: str
    message: str


@dataclass(frozen=True)
class BatchReconciliationResult:
    total_accounts: int
    reconciled_count: int
    unchanged_count: int
    total_drift: Decimal
    results: tuple[ReconciliationResult, ...] = ()
    failures: tuple[ReconciliationFailure, ...] = field(default_factory=tuple)

    @property
    def failed_count(self) -> int:
        return len(self.failures)


@dataclass(frozen=True)
class RunningBalanceDiscrepancy:
    """A stored running balance that differs from its replayed value."""

    account_id: UUID
    ledger_row_id: UUID
    entry_number: str
    transaction_date: date
    stored_balance: Decimal
    expected_balance: Decimal
