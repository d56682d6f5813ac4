"""
Module: ledger_kernel.selectors.account_selector
Responsibility: Read-only chart-of-accounts queries, always scoped to one
    company.
"""

from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.models.account import Account, AccountTag, AccountType
from ledger_kernel.selectors.base import BaseSelector


class AccountSelector(BaseSelector[Account]):
    """Account lookups by id or code, and filtered listings."""

    def get_account(self, company_id: UUID, account_id: UUID) -> AccountInfo | None:
        account = self.session.execute(
            select(Account).where(
                Account.company_id == company_id,
                Account.id == account_id,
            )
        ).scalar_one_or_none()
        return AccountInfo.from_model(account) if account else None

    def get_by_code(self, company_id: UUID, code: str) -> AccountInfo | None:
        account = self.session.execute(
            select(Account).where(
                Account.company_id == company_id,
                Account.code == code,
            )
        ).scalar_one_or_none()
        return AccountInfo.from_model(account) if account else None

    def list_accounts(
        self,
        company_id: UUID,
        account_types: list[AccountType] | None = None,
        active_only: bool = False,
        tag: AccountTag | None = None,
    ) -> list[AccountInfo]:
        """
        List a company's accounts ordered by code.

        Tag filtering happens in Python so the query stays portable across
        JSON column implementations.
        """
        stmt = select(Account).where(Account.company_id == company_id)
        if account_types:
            stmt = stmt.where(Account.account_type.in_([AccountType(t).value for t in account_types]))
        if active_only:
            stmt = stmt.where(Account.is_active.is_(True))
        accounts = self.session.execute(stmt.order_by(Account.code)).scalars().all()
        if tag is not None:
            accounts = [a for a in accounts if a.has_tag(tag)]
        return [AccountInfo.from_model(a) for a in accounts]
