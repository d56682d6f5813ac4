"""
Module: ledger_kernel.models.account
Responsibility: ORM persistence for the chart of accounts, the target of
    every journal line and ledger row.
Architecture position: Kernel > Models.  May import from db/ only.

Invariants enforced:
    - (company_id, code) is unique.
    - normal_balance is fixed once ledger rows reference the account; it is
      the single source of the sign convention for running balances.
    - balance is a cache of the latest ledger running balance.  Only the
      journal engine and the reconciliation service write it.

Failure modes:
    - IntegrityError on a duplicate (company_id, code) that slipped past the
      service-level DuplicateAccountCodeError check.
"""

from decimal import Decimal
from enum import Enum
from uuid import UUID

from sqlalchemy import JSON, Boolean, ForeignKey, Index, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import TrackedBase, UUIDString
from ledger_kernel.db.types import Money


class AccountType(str, Enum):
    """Types of accounts in the chart of accounts."""

    ASSET = "asset"
    LIABILITY = "liability"
    EQUITY = "equity"
    REVENUE = "revenue"
    EXPENSE = "expense"


class NormalBalance(str, Enum):
    """Side on which the account's balance increases."""

    DEBIT = "debit"
    CREDIT = "credit"


class AccountTag(str, Enum):
    """Explicit classification used by close and reporting logic."""

    CONTRA_REVENUE = "contra_revenue"
    CONTRA_ASSET = "contra_asset"
    COST_OF_SALES = "cost_of_sales"
    OPERATING = "operating"
    NON_OPERATING = "non_operating"
    CURRENT = "current"
    NON_CURRENT = "non_current"
    RETAINED_EARNINGS = "retained_earnings"


# Structural fields frozen once ledger rows exist for the account
ACCOUNT_STRUCTURAL_FIELDS = frozenset({"code", "account_type", "normal_balance"})


class Account(TrackedBase):
    """
    Chart of accounts entry for one company.

    Contract:
        ``sub_type`` is free text for display only.  Close and report logic
        classify accounts through ``account_type`` and ``tags``.
    """

    __tablename__ = "accounts"
    __table_args__ = (
        UniqueConstraint("company_id", "code", name="uq_account_company_code"),
        Index("idx_account_company_type", "company_id", "account_type"),
        Index("idx_account_company_active", "company_id", "is_active"),
    )

    company_id: Mapped[UUID] = mapped_column(UUIDString(), nullable=False)

    code: Mapped[str] = mapped_column(String(50), nullable=False)

    name: Mapped[str] = mapped_column(String(255), nullable=False)

    account_type: Mapped[AccountType] = mapped_column(String(20), nullable=False)

    sub_type: Mapped[str | None] = mapped_column(String(100), nullable=True)

    normal_balance: Mapped[NormalBalance] = mapped_column(String(10), nullable=False)

    # Cached balance in the account's normal-balance direction
    balance: Mapped[Money] = mapped_column(default=Decimal("0"), nullable=False)

    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    description: Mapped[str | None] = mapped_column(String(500), nullable=True)

    # Tags stored as a JSON array of AccountTag values
    tags: Mapped[list[str] | None] = mapped_column(JSON, nullable=True)

    parent_id: Mapped[UUID | None] = mapped_column(
        UUIDString(),
        ForeignKey("accounts.id"),
        nullable=True,
    )

    def __repr__(self) -> str:
        return f"<Account {self.code}: {self.name}>"

    @property
    def is_debit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.DEBIT

    @property
    def is_credit_normal(self) -> bool:
        return self.normal_balance == NormalBalance.CREDIT

    def has_tag(self, tag: AccountTag | str) -> bool:
        """Check if account has a specific tag."""
        if not self.tags:
            return False
        tag_value = tag.value if isinstance(tag, AccountTag) else tag
        return tag_value in self.tags
