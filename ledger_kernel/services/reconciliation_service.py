"""
ReconciliationService -- keeps the cached Account.balance honest.

Responsibility:
    Account.balance is a cache of the account's latest running balance.
    This service compares the two, overwrites drifted caches, and verifies
    that stored running balances still replay from zero.

Architecture position:
    Kernel > Services.  Called by PeriodService before a close, by the
    maintenance CLI (scripts/reconcile_balances.py), and by operators.

Invariants enforced:
    - The ledger is the source of truth; only the cache is ever rewritten.
    - Reconciling twice without intervening postings reports
      ``reconciled=False`` the second time.
    - In a batch each account runs in its own savepoint; one failing
      account is rolled back alone and reported, the rest still commit.
    - A batch locks all of its accounts up front in ascending id order,
      the order postings use.
"""

from collections.abc import Sequence
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.config import KernelSettings
from ledger_kernel.db.types import round_money
from ledger_kernel.domain.balance import replay_running_balances
from ledger_kernel.domain.dtos import (
    BatchReconciliationResult,
    ReconciliationFailure,
    ReconciliationResult,
    RunningBalanceDiscrepancy,
)
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.ledger import LedgerRow
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.base import BaseService

logger = get_logger("services.reconciliation")


class ReconciliationService(BaseService[Account]):
    """Cached balance reconciliation and running-balance verification."""

    def __init__(self, session: Session, settings: KernelSettings | None = None):
        super().__init__(session)
        self._settings = settings or KernelSettings()
        self._ledger = LedgerSelector(session)
        self._accounts = AccountService(session, self._settings)

    def _reconcile(self, company_id: UUID, account: Account) -> ReconciliationResult:
        previous = round_money(account.balance)
        actual = self._ledger.latest_balance(company_id, account.id)
        difference = round_money(actual - previous)
        drifted = abs(difference) > self._settings.balance_tolerance
        if drifted:
            account.balance = actual
            self.session.flush()
            logger.warning(
                "account_balance_reconciled",
                extra={
                    "account_id": str(account.id),
                    "account_code": account.code,
                    "previous_balance": previous,
                    "actual_balance": actual,
                    "difference": difference,
                },
            )
        return ReconciliationResult(
            account_id=account.id,
            account_code=account.code,
            reconciled=drifted,
            previous_balance=previous,
            actual_balance=actual,
            difference=difference,
        )

    def reconcile_account_balance(self, company_id: UUID, account_id: UUID) -> ReconciliationResult:
        """
        Compare one account's cached balance with its latest running balance.

        Raises:
            AccountNotFoundError: account is not part of the company.
        """
        with self._atomic("account_reconcile", company_id=company_id, account_id=account_id):
            account = self.session.execute(
                select(Account)
                .where(Account.company_id == company_id, Account.id == account_id)
                .with_for_update()
                .execution_options(populate_existing=True)
            ).scalar_one_or_none()
            if account is None:
                raise AccountNotFoundError(str(account_id))
            return self._reconcile(company_id, account)

    def reconcile_all_account_balances(
        self,
        company_id: UUID,
        account_types: Sequence[AccountType | str] | None = None,
    ) -> BatchReconciliationResult:
        """
        Reconcile every account of the company, optionally by type.

        Failures do not abort the batch: the failing account's savepoint is
        rolled back and the error is recorded in ``failures``.
        """
        stmt = select(Account.id, Account.code).where(Account.company_id == company_id)
        if account_types:
            stmt = stmt.where(
                Account.account_type.in_([AccountType(t).value for t in account_types])
            )
        targets = self.session.execute(stmt.order_by(Account.code)).all()
        if targets:
            self._accounts.lock_accounts(
                company_id, [account_id for account_id, _ in targets], require_active=False
            )

        results: list[ReconciliationResult] = []
        failures: list[ReconciliationFailure] = []
        for account_id, account_code in targets:
            try:
                results.append(self.reconcile_account_balance(company_id, account_id))
            except Exception as exc:
                logger.exception(
                    "account_reconcile_failed",
                    extra={"account_id": str(account_id), "account_code": account_code},
                )
                failures.append(
                    ReconciliationFailure(
                        account_id=account_id,
                        account_code=account_code,
                        error_type=type(exc).__name__,
                        message=str(exc),
                    )
                )

        reconciled = [r for r in results if r.reconciled]
        total_drift = round_money(sum((abs(r.difference) for r in reconciled), Decimal("0")))
        logger.info(
            "account_balances_reconciled",
            extra={
                "company_id": str(company_id),
                "total_accounts": len(targets),
                "reconciled_count": len(reconciled),
                "failed_count": len(failures),
                "total_drift": total_drift,
            },
        )
        return BatchReconciliationResult(
            total_accounts=len(targets),
            reconciled_count=len(reconciled),
            unchanged_count=len(results) - len(reconciled),
            total_drift=total_drift,
            results=tuple(results),
            failures=tuple(failures),
        )

    def verify_running_balances(
        self,
        company_id: UUID,
        account_id: UUID | None = None,
    ) -> list[RunningBalanceDiscrepancy]:
        """
        Replay stored running balances from zero and report mismatches.

        Read-only.  Use LedgerStore.replay_running_balances to repair.
        """
        stmt = select(Account).where(Account.company_id == company_id)
        if account_id is not None:
            stmt = stmt.where(Account.id == account_id)
        accounts = self.session.execute(stmt.order_by(Account.code)).scalars().all()

        discrepancies = []
        for account in accounts:
            rows = self.session.execute(
                select(LedgerRow)
                .where(LedgerRow.company_id == company_id, LedgerRow.account_id == account.id)
                .order_by(LedgerRow.transaction_date, LedgerRow.seq)
            ).scalars().all()
            expected = replay_running_balances(
                account.normal_balance, ((r.debit, r.credit) for r in rows)
            )
            for row, value in zip(rows, expected):
                stored = round_money(row.running_balance)
                if stored != value:
                    discrepancies.append(
                        RunningBalanceDiscrepancy(
                            account_id=account.id,
                            ledger_row_id=row.id,
                            entry_number=row.entry_number,
                            transaction_date=row.transaction_date,
                            stored_balance=stored,
                            expected_balance=value,
                        )
                    )

        if discrepancies:
            logger.warning(
                "running_balance_discrepancies_found",
                extra={"company_id": str(company_id), "count": len(discrepancies)},
            )
        return discrepancies
