"""
Module: ledger_kernel.models.journal
Responsibility: ORM persistence for journal entries and their lines.
Architecture position: Kernel > Models.  May import from db/ and sibling
    models only.

Invariants enforced:
    - (company_id, entry_number) is unique.
    - Accepted entries satisfy abs(total_debit - total_credit) <= tolerance
      (enforced by JournalService before any write).
    - Once POSTED, the entry and its lines are frozen; the only further
      change is POSTED -> VOID (enforced by db/immutability.py).

Failure modes:
    - IntegrityError on a duplicate entry number if the sequence counter is
      bypassed.
"""

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import TYPE_CHECKING
from uuid import UUID

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.db.types import Money

if TYPE_CHECKING:
    from ledger_kernel.models.account import Account


class JournalEntryStatus(str, Enum):
    """Lifecycle: DRAFT -> POSTED -> VOID."""

    DRAFT = "draft"
    POSTED = "posted"
    VOID = "void"


class JournalEntryType(str, Enum):
    """Origin of the entry."""

    MANUAL = "manual"
    AUTO_INVOICE = "auto_invoice"
    AUTO_BILL = "auto_bill"
    AUTO_PAYMENT = "auto_payment"


class JournalEntry(TrackedBase):
    """
    Journal entry header.

    Contract:
        ``total_debit`` and ``total_credit`` always equal the sums of the
        current lines.  Posting and voiding write ledger rows; the entry
        itself never stores balances.
    """

    __tablename__ = "journal_entries"
    __table_args__ = (
        UniqueConstraint("company_id", "entry_number", name="uq_journal_company_number"),
        Index("idx_journal_company_date", "company_id", "entry_date"),
        Index("idx_journal_company_status", "company_id", "status"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    entry_number: Mapped[str] = mapped_column(String(50), nullable=False)

    entry_date: Mapped[date] = mapped_column(Date, nullable=False)

    reference_number: Mapped[str | None] = mapped_column(String(100), nullable=True)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    entry_type: Mapped[JournalEntryType] = mapped_column(
        String(20),
        default=JournalEntryType.MANUAL,
        nullable=False,
    )

    status: Mapped[JournalEntryStatus] = mapped_column(
        String(10),
        default=JournalEntryStatus.DRAFT,
        nullable=False,
    )

    # Period-close entries bypass the closed-period posting guard
    is_closing_entry: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    total_debit: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)

    total_credit: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)

    posted_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    posted_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    voided_by_id: Mapped[UUID | None] = mapped_column(UUIDString(), nullable=True)

    voided_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )

    lines: Mapped[list["JournalLine"]] = relationship(
        back_populates="entry",
        cascade="all, delete-orphan",
        lazy="selectin",
        order_by="JournalLine.line_seq",
    )

    def __repr__(self) -> str:
        return f"<JournalEntry {self.entry_number} status={self.status}>"

    @property
    def is_draft(self) -> bool:
        return self.status == JournalEntryStatus.DRAFT

    @property
    def is_posted(self) -> bool:
        return self.status == JournalEntryStatus.POSTED

    @property
    def is_void(self) -> bool:
        return self.status == JournalEntryStatus.VOID


class JournalLine(TrackedBase):
    """
    One debit or credit line of a journal entry.

    Contract:
        Amounts are non-negative with exactly one side populated.  Several
        lines of one entry may touch the same account.
    """

    __tablename__ = "journal_lines"
    __table_args__ = (
        Index("idx_line_entry", "journal_entry_id"),
        Index("idx_line_account", "account_id"),
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id", ondelete="CASCADE"),
        nullable=False,
    )

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    debit: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)

    credit: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Position within the entry
    line_seq: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    entry: Mapped[JournalEntry] = relationship(back_populates="lines")

    account: Mapped["Account"] = relationship(lazy="joined")

    def __repr__(self) -> str:
        return f"<JournalLine {self.account_id} Dr {self.debit} Cr {self.credit}>"
