"""
Module: ledger_kernel.models.accounting_period
Responsibility: ORM persistence for a company's accounting periods and their
    close state.
Architecture position: Kernel > Models.

Invariants enforced:
    - start_date < end_date.
    - No two periods of one company overlap (inclusive ranges); enforced by
      PeriodService under a lock, since the rule spans rows.
    - Lifecycle OPEN -> CLOSED -> {OPEN, LOCKED}.  LOCKED is terminal.
"""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from sqlalchemy import CheckConstraint, Date, DateTime, ForeignKey, Index, Integer, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString


class PeriodStatus(str, Enum):
    """Lifecycle: OPEN -> CLOSED -> LOCKED (or back to OPEN on reopen)."""

    OPEN = "open"
    CLOSED = "closed"
    LOCKED = "locked"


class PeriodType(str, Enum):
    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    ANNUAL = "annual"


class AccountingPeriod(TrackedBase):
    """
    Accounting period for one company.

    Contract:
        ``closing_journal_entry_id`` is set only while the period is CLOSED
        or LOCKED and a closing entry was needed.
    """

    __tablename__ = "accounting_periods"
    __table_args__ = (
        CheckConstraint("start_date < end_date", name="ck_period_date_order"),
        Index("idx_period_company_dates", "company_id", "start_date", "end_date"),
        Index("idx_period_company_status", "company_id", "status"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    period_name: Mapped[str] = mapped_column(String(100), nullable=False)

    period_type: Mapped[PeriodType] = mapped_column(String(20), nullable=False)

    fiscal_year: Mapped[int] = mapped_column(Integer, nullable=False)

    start_date: Mapped[date] = mapped_column(Date, nullable=False)

    end_date: Mapped[date] = mapped_column(Date, nullable=False)

    status: Mapped[PeriodStatus] = mapped_column(
        String(10),
        default=PeriodStatus.OPEN,
        nullable=False,
    )

    closed_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    closed_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    closing_journal_entry_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=True,
    )

    notes: Mapped[str | None] = mapped_column(String(500), nullable=True)

    def __repr__(self) -> str:
        return f"<AccountingPeriod {self.period_name} {self.status}>"

    def contains_date(self, check_date: date) -> bool:
        return self.start_date <= check_date <= self.end_date

    @property
    def is_open(self) -> bool:
        return self.status == PeriodStatus.OPEN

    @property
    def is_closed(self) -> bool:
        """Closed or locked: no ordinary postings allowed."""
        return self.status in (PeriodStatus.CLOSED, PeriodStatus.LOCKED)
