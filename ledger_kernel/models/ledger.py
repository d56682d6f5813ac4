"""
Module: ledger_kernel.models.ledger
Responsibility: ORM persistence for ledger rows, the posted effect of one
    journal line on one account together with the account's running balance
    immediately after it.
Architecture position: Kernel > Models.

Invariants enforced:
    - Rows are append-only.  Financial fields never change and rows are
      never deleted (db/immutability.py).  Only running_balance may be
      rebased by LedgerStore when an earlier-dated row is inserted.
    - For one account, replaying rows in (transaction_date, seq) order from
      zero with the account's normal-balance sign reproduces every stored
      running_balance.
    - seq is unique per company, which makes the ordering total.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import Boolean, Date, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.db.types import Money, Sequence


class LedgerRow(TrackedBase):
    """Posted, signed effect of one journal line on one account."""

    __tablename__ = "ledger_rows"
    __table_args__ = (
        UniqueConstraint("company_id", "seq", name="uq_ledger_company_seq"),
        Index("idx_ledger_account_order", "account_id", "transaction_date", "seq"),
        Index("idx_ledger_entry", "journal_entry_id"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    account_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=False,
    )

    journal_entry_id: Mapped[UUID] = mapped_column(
        UUIDString(),
        ForeignKey("journal_entries.id"),
        nullable=False,
    )

    entry_number: Mapped[str] = mapped_column(String(60), nullable=False)

    transaction_date: Mapped[date] = mapped_column(Date, nullable=False)

    description: Mapped[str | None] = mapped_column(String(520), nullable=True)

    debit: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)

    credit: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)

    # Balance after this row, in the account's normal-balance direction
    running_balance: Mapped[Money] = mapped_column(nullable=False)

    # Company-scoped insertion order; tie-breaker within a transaction_date
    seq: Mapped[Sequence] = mapped_column(nullable=False)

    is_reversal: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    def __repr__(self) -> str:
        return (
            f"<LedgerRow {self.entry_number} {self.transaction_date} "
            f"Dr {self.debit} Cr {self.credit} bal {self.running_balance}>"
        )
