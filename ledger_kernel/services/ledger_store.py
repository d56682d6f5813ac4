"""
LedgerStore -- append-only ledger rows with per-account running balances.

Responsibility:
    Turns one posted (or reversed) journal line into one ledger row whose
    running balance is the account's balance as of the row's date plus the
    row's signed delta.  Applies the backdated-posting policy and can replay
    an account's running balances from scratch.

Architecture position:
    Kernel > Services.  Called by JournalService inside its post/void
    savepoint, after the touched accounts have been locked.  Reads balances
    exclusively through LedgerSelector.balance_as_of.

Invariants enforced:
    - Sign convention comes from the account's normal balance only
      (domain.balance.signed_delta).
    - Replaying an account's rows in (transaction_date, seq) order from zero
      reproduces every stored running balance.  When a row lands before
      existing later-dated rows, those rows are shifted by the same delta
      ("rebase") or the posting is refused ("reject").
    - Rows are never updated except for running_balance and never deleted.

Failure modes:
    - BackdatedPostingError under the ``reject`` policy.
"""

from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select, update
from sqlalchemy.orm import Session

from ledger_kernel.config import KernelSettings
from ledger_kernel.db.types import round_money
from ledger_kernel.domain.balance import replay_running_balances, signed_delta
from ledger_kernel.exceptions import BackdatedPostingError
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.ledger import LedgerRow
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.sequence_service import (
    SequenceService,
    ledger_row_sequence,
)

logger = get_logger("services.ledger_store")


class LedgerStore(BaseService[LedgerRow]):
    """
    Writer side of the ledger.

    Non-goals:
        - Does NOT lock accounts; the caller holds the account row locks.
        - Does NOT touch Account.balance except in replay_running_balances.
    """

    def __init__(
        self,
        session: Session,
        settings: KernelSettings | None = None,
        sequences: SequenceService | None = None,
    ):
        super().__init__(session)
        self._settings = settings or KernelSettings()
        self._sequences = sequences or SequenceService(session)
        self._selector = LedgerSelector(session)

    def balance_as_of(self, company_id: UUID, account_id: UUID, as_of: date | None) -> Decimal:
        return self._selector.balance_as_of(company_id, account_id, as_of)

    def latest_balance(self, company_id: UUID, account_id: UUID) -> Decimal:
        return self._selector.latest_balance(company_id, account_id)

    def append_row(
        self,
        *,
        account: Account,
        journal_entry_id: UUID,
        entry_number: str,
        transaction_date: date,
        debit: Decimal,
        credit: Decimal,
        description: str | None,
        actor_id: UUID,
        is_reversal: bool = False,
    ) -> LedgerRow:
        """
        Append one row for ``account`` and return it.

        Raises:
            BackdatedPostingError: later-dated rows exist and the policy is
                ``reject``.
        """
        company_id = account.company_id
        later_date = self._selector.has_rows_after(company_id, account.id, transaction_date)
        if later_date is not None and self._settings.backdated_postings == "reject":
            raise BackdatedPostingError(
                str(account.id), str(transaction_date), str(later_date)
            )

        previous = self._selector.balance_as_of(company_id, account.id, transaction_date)
        delta = signed_delta(account.normal_balance, debit, credit)
        seq = self._sequences.next_value(ledger_row_sequence(company_id))

        row = LedgerRow(
            company_id=company_id,
            account_id=account.id,
            journal_entry_id=journal_entry_id,
            entry_number=entry_number,
            transaction_date=transaction_date,
            description=description,
            debit=debit,
            credit=credit,
            running_balance=round_money(previous + delta),
            seq=seq,
            is_reversal=is_reversal,
            created_by_id=actor_id,
        )
        self.session.add(row)
        self.session.flush()

        if later_date is not None and delta != 0:
            result = self.session.execute(
                update(LedgerRow)
                .where(
                    LedgerRow.company_id == company_id,
                    LedgerRow.account_id == account.id,
                    LedgerRow.transaction_date > transaction_date,
                )
                .values(running_balance=LedgerRow.running_balance + delta)
                .execution_options(synchronize_session="fetch")
            )
            logger.info(
                "ledger_rows_rebased",
                extra={
                    "account_id": str(account.id),
                    "after_date": str(transaction_date),
                    "delta": delta,
                    "rows": result.rowcount,
                },
            )

        logger.debug(
            "ledger_row_appended",
            extra={
                "account_id": str(account.id),
                "entry_number": entry_number,
                "transaction_date": str(transaction_date),
                "seq": seq,
                "running_balance": row.running_balance,
            },
        )
        return row

    def replay_running_balances(self, company_id: UUID, account_id: UUID) -> int:
        """
        Recompute every running balance of an account and fix drifted rows.

        Also refreshes Account.balance from the replayed result.

        Returns:
            Number of rows whose stored running balance was rewritten.
        """
        with self._atomic("ledger_replay", company_id=company_id, account_id=account_id):
            account = self.session.execute(
                select(Account)
                .where(Account.company_id == company_id, Account.id == account_id)
                .with_for_update()
            ).scalar_one()
            rows = self.session.execute(
                select(LedgerRow)
                .where(LedgerRow.company_id == company_id, LedgerRow.account_id == account_id)
                .order_by(LedgerRow.transaction_date, LedgerRow.seq)
            ).scalars().all()

            expected = replay_running_balances(
                account.normal_balance,
                ((r.debit, r.credit) for r in rows),
            )
            fixed = 0
            for row, value in zip(rows, expected):
                if round_money(row.running_balance) != value:
                    row.running_balance = value
                    fixed += 1
            account.balance = expected[-1] if expected else round_money(Decimal("0"))
            self.session.flush()

        logger.info(
            "ledger_replayed",
            extra={
                "account_id": str(account_id),
                "rows": len(rows),
                "rows_fixed": fixed,
            },
        )
        return fixed
