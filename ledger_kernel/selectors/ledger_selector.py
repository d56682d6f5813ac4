"""
Module: ledger_kernel.selectors.ledger_selector
Responsibility: Read-only ledger queries.  Owns the one running-balance
    query ("balance of account X as of date D") that posting, voiding,
    reporting and reconciliation all share.
Architecture position: Kernel > Selectors.  Used directly by LedgerStore
    and ReconciliationService, so every caller resolves balances through
    the same SQL.

Invariants enforced:
    - Balance as of D is the running_balance of the row with the greatest
      (transaction_date, seq) where transaction_date <= D, or 0 when none.
    - Rows are always returned in (transaction_date, seq) ascending order.

Failure modes:
    - AccountNotFoundError from account-scoped reports when the account does
      not belong to the company.
"""

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.balance import is_balanced, trial_balance_columns
from ledger_kernel.domain.dtos import AccountInfo, LedgerRowInfo
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.models.account import Account
from ledger_kernel.models.ledger import LedgerRow
from ledger_kernel.selectors.base import BaseSelector

# Trial balance totals may differ by rounding residue up to this amount
TRIAL_BALANCE_TOLERANCE = Decimal("0.01")


@dataclass(frozen=True)
class AccountBalanceInfo:
    account_id: UUID
    account_code: str
    account_name: str
    as_of: date | None
    balance: Decimal


@dataclass(frozen=True)
class AccountLedger:
    """Ledger rows of one account with opening/closing balances and totals."""

    account: AccountInfo
    opening_balance: Decimal
    rows: tuple[LedgerRowInfo, ...]
    total_debit: Decimal
    total_credit: Decimal
    closing_balance: Decimal


@dataclass(frozen=True)
class TrialBalanceRow:
    account_id: UUID
    account_code: str
    account_name: str
    account_type: str
    normal_balance: str
    balance: Decimal
    debit: Decimal
    credit: Decimal


@dataclass(frozen=True)
class TrialBalance:
    as_of: date | None
    rows: tuple[TrialBalanceRow, ...]
    total_debit: Decimal
    total_credit: Decimal

    @property
    def is_balanced(self) -> bool:
        return is_balanced(self.total_debit, self.total_credit, TRIAL_BALANCE_TOLERANCE)


class LedgerSelector(BaseSelector[LedgerRow]):
    """
    Ledger reads and the canonical balance-as-of query.

    Contract:
        All queries are scoped by company_id.  Balances are read from the
        stored running balances, never from Account.balance.
    """

    def _ordered(self, stmt):
        return stmt.order_by(LedgerRow.transaction_date, LedgerRow.seq)

    def balance_as_of(
        self,
        company_id: UUID,
        account_id: UUID,
        as_of: date | None = None,
    ) -> Decimal:
        """
        Running balance of ``account_id`` at the end of ``as_of``.

        ``as_of=None`` means the latest row regardless of date.
        """
        stmt = select(LedgerRow.running_balance).where(
            LedgerRow.company_id == company_id,
            LedgerRow.account_id == account_id,
        )
        if as_of is not None:
            stmt = stmt.where(LedgerRow.transaction_date <= as_of)
        stmt = stmt.order_by(
            LedgerRow.transaction_date.desc(),
            LedgerRow.seq.desc(),
        ).limit(1)
        value = self.session.execute(stmt).scalar_one_or_none()
        return round_money(value) if value is not None else ZERO

    def latest_balance(self, company_id: UUID, account_id: UUID) -> Decimal:
        return self.balance_as_of(company_id, account_id, None)

    def has_rows(self, account_id: UUID) -> bool:
        found = self.session.execute(
            select(LedgerRow.id).where(LedgerRow.account_id == account_id).limit(1)
        ).first()
        return found is not None

    def has_rows_after(self, company_id: UUID, account_id: UUID, after: date) -> date | None:
        """Latest transaction_date of the account's rows dated after ``after``."""
        return self.session.execute(
            select(LedgerRow.transaction_date)
            .where(
                LedgerRow.company_id == company_id,
                LedgerRow.account_id == account_id,
                LedgerRow.transaction_date > after,
            )
            .order_by(LedgerRow.transaction_date.desc())
            .limit(1)
        ).scalar_one_or_none()

    def rows_for_entry(self, company_id: UUID, entry_id: UUID) -> list[LedgerRowInfo]:
        """Original and reversing rows written for one journal entry."""
        rows = self.session.execute(
            select(LedgerRow)
            .where(
                LedgerRow.company_id == company_id,
                LedgerRow.journal_entry_id == entry_id,
            )
            .order_by(LedgerRow.seq)
        ).scalars().all()
        return [LedgerRowInfo.from_model(r) for r in rows]

    def rows_for_account(
        self,
        company_id: UUID,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[LedgerRowInfo]:
        stmt = select(LedgerRow).where(
            LedgerRow.company_id == company_id,
            LedgerRow.account_id == account_id,
        )
        if start_date is not None:
            stmt = stmt.where(LedgerRow.transaction_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(LedgerRow.transaction_date <= end_date)
        rows = self.session.execute(self._ordered(stmt)).scalars().all()
        return [LedgerRowInfo.from_model(r) for r in rows]

    def _account(self, company_id: UUID, account_id: UUID) -> Account:
        account = self.session.execute(
            select(Account).where(
                Account.company_id == company_id,
                Account.id == account_id,
            )
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def _account_ledger(
        self,
        company_id: UUID,
        account: Account,
        start_date: date | None,
        end_date: date | None,
    ) -> AccountLedger:
        opening = ZERO
        if start_date is not None:
            opening = self.balance_as_of(company_id, account.id, start_date - timedelta(days=1))
        rows = self.rows_for_account(company_id, account.id, start_date, end_date)
        total_debit = round_money(sum((r.debit for r in rows), ZERO))
        total_credit = round_money(sum((r.credit for r in rows), ZERO))
        closing = round_money(rows[-1].running_balance) if rows else opening
        return AccountLedger(
            account=AccountInfo.from_model(account),
            opening_balance=opening,
            rows=tuple(rows),
            total_debit=total_debit,
            total_credit=total_credit,
            closing_balance=closing,
        )

    def account_ledger(
        self,
        company_id: UUID,
        account_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> AccountLedger:
        """Rows of one account in [start_date, end_date] with totals."""
        account = self._account(company_id, account_id)
        return self._account_ledger(company_id, account, start_date, end_date)

    def account_balance(
        self,
        company_id: UUID,
        account_id: UUID,
        as_of: date | None = None,
    ) -> AccountBalanceInfo:
        account = self._account(company_id, account_id)
        return AccountBalanceInfo(
            account_id=account.id,
            account_code=account.code,
            account_name=account.name,
            as_of=as_of,
            balance=self.balance_as_of(company_id, account.id, as_of),
        )

    def general_ledger(
        self,
        company_id: UUID,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> list[AccountLedger]:
        """Per-account ledgers, ordered by account code, for accounts with rows in range."""
        stmt = select(LedgerRow.account_id).where(LedgerRow.company_id == company_id)
        if start_date is not None:
            stmt = stmt.where(LedgerRow.transaction_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(LedgerRow.transaction_date <= end_date)
        account_ids = set(self.session.execute(stmt.distinct()).scalars().all())
        if not account_ids:
            return []
        accounts = self.session.execute(
            select(Account)
            .where(Account.company_id == company_id, Account.id.in_(account_ids))
            .order_by(Account.code)
        ).scalars().all()
        return [
            self._account_ledger(company_id, account, start_date, end_date)
            for account in accounts
        ]

    def trial_balance(self, company_id: UUID, as_of: date | None = None) -> TrialBalance:
        """
        Every account's ledger balance placed in its debit or credit column.

        Accounts with a zero balance are omitted.
        """
        accounts = self.session.execute(
            select(Account).where(Account.company_id == company_id).order_by(Account.code)
        ).scalars().all()
        rows = []
        total_debit = ZERO
        total_credit = ZERO
        for account in accounts:
            balance = self.balance_as_of(company_id, account.id, as_of)
            if balance == 0:
                continue
            debit, credit = trial_balance_columns(account.normal_balance, balance)
            total_debit += debit
            total_credit += credit
            rows.append(
                TrialBalanceRow(
                    account_id=account.id,
                    account_code=account.code,
                    account_name=account.name,
                    account_type=getattr(account.account_type, "value", account.account_type),
                    normal_balance=getattr(account.normal_balance, "value", account.normal_balance),
                    balance=balance,
                    debit=debit,
                    credit=credit,
                )
            )
        return TrialBalance(
            as_of=as_of,
            rows=tuple(rows),
            total_debit=round_money(total_debit),
            total_credit=round_money(total_credit),
        )
