"""
PeriodService -- accounting period lifecycle and period close.

Responsibility:
    Creates non-overlapping periods, closes them by zeroing revenue and
    expense accounts into Retained Earnings, reopens closed periods by
    voiding the closing entry, and locks periods permanently.  Also answers
    "which period contains this date" and "is this date in closed history".

Architecture position:
    Kernel > Services.  Uses JournalService to post and void the closing
    entry, so closing goes through the same ledger mechanics as any other
    posting.

Invariants enforced:
    - Periods of one company never overlap (inclusive [start, end]).
    - OPEN -> CLOSED -> {OPEN, LOCKED}; LOCKED is terminal.  Only OPEN
      periods may be closed or deleted; only CLOSED periods may be reopened
      or locked; LOCKED periods may not be edited.
    - After close every included revenue and expense account has a zero
      balance and Retained Earnings has moved by exactly the net income.
    - Period mutations lock the period row and run in one savepoint.
    - Close locks the entry-number counter, then every revenue, expense
      and Retained Earnings account in ascending id order, before reading
      any balance.  create_and_post_entry takes the same locks in the same
      order.

Failure modes:
    - InvalidPeriodRangeError, InvalidPeriodFieldError (validation).
    - PeriodOverlapError, RetainedEarningsConflictError (conflict).
    - PeriodNotFoundError, PeriodStateError.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.config import KernelSettings
from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.domain.balance import closing_amounts, retained_earnings_amounts
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import JournalLineInput, PeriodCloseResult, PeriodInfo
from ledger_kernel.exceptions import (
    InvalidPeriodFieldError,
    InvalidPeriodRangeError,
    PeriodNotFoundError,
    PeriodOverlapError,
    PeriodStateError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.models.accounting_period import (
    AccountingPeriod,
    PeriodStatus,
    PeriodType,
)
from ledger_kernel.models.journal import JournalEntryType
from ledger_kernel.selectors.period_selector import PeriodSelector
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.reconciliation_service import ReconciliationService
from ledger_kernel.services.sequence_service import (
    SequenceService,
    journal_entry_sequence,
)

logger = get_logger("services.period")

_UNSET = object()

MIN_FISCAL_YEAR = 1900
MAX_FISCAL_YEAR = 2100
MAX_NOTES_LENGTH = 500

CLOSING_REFERENCE_PREFIX = "CLOSE-"


def closing_reference(period_name: str) -> str:
    """Reference number of a period's closing entry, e.g. ``CLOSE-Jan-2025``."""
    return f"{CLOSING_REFERENCE_PREFIX}{period_name.strip().replace(' ', '-')}"


class PeriodService(BaseService[AccountingPeriod]):
    """
    Accounting period lifecycle.

    Contract:
        Public methods return ``PeriodInfo`` (or ``PeriodCloseResult``)
        snapshots and flush inside a savepoint; the caller commits.

    Non-goals:
        - No automatic period generation from a fiscal calendar.
        - No partial close of selected accounts.
    """

    def __init__(
        self,
        session: Session,
        settings: KernelSettings | None = None,
        clock: Clock | None = None,
    ):
        super().__init__(session)
        self._settings = settings or KernelSettings()
        self._clock = clock or SystemClock()
        self._selector = PeriodSelector(session)
        self._accounts = AccountService(session, self._settings)
        self._journal = JournalService(session, self._settings, self._clock)
        self._reconciliation = ReconciliationService(session, self._settings)
        self._sequences = SequenceService(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_model(self, company_id: UUID, period_id: UUID, for_update: bool = False) -> AccountingPeriod:
        stmt = select(AccountingPeriod).where(
            AccountingPeriod.company_id == company_id,
            AccountingPeriod.id == period_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        period = self.session.execute(stmt).scalar_one_or_none()
        if period is None:
            raise PeriodNotFoundError(str(period_id))
        return period

    @staticmethod
    def _require_status(
        period: AccountingPeriod,
        allowed: tuple[PeriodStatus, ...],
        operation: str,
    ) -> None:
        if period.status not in allowed:
            raise PeriodStateError(
                period_id=str(period.id),
                current_status=getattr(period.status, "value", period.status),
                required_status=" or ".join(s.value for s in allowed),
                operation=operation,
            )

    @staticmethod
    def _validate_fields(
        fiscal_year: int | None = None,
        period_type: str | None = None,
        notes: str | None = None,
        period_name: str | None = None,
    ) -> None:
        if period_name is not None and not period_name.strip():
            raise InvalidPeriodFieldError("period_name", "must not be blank")
        if fiscal_year is not None and not MIN_FISCAL_YEAR <= fiscal_year <= MAX_FISCAL_YEAR:
            raise InvalidPeriodFieldError(
                "fiscal_year",
                f"must be between {MIN_FISCAL_YEAR} and {MAX_FISCAL_YEAR}",
            )
        if period_type is not None:
            try:
                PeriodType(period_type)
            except ValueError:
                raise InvalidPeriodFieldError(
                    "period_type",
                    f"must be one of {[t.value for t in PeriodType]}",
                ) from None
        if notes is not None and len(notes) > MAX_NOTES_LENGTH:
            raise InvalidPeriodFieldError(
                "notes", f"must be at most {MAX_NOTES_LENGTH} characters"
            )

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_period(self, company_id: UUID, period_id: UUID) -> PeriodInfo:
        return PeriodInfo.from_model(self._get_model(company_id, period_id))

    def list_periods(
        self,
        company_id: UUID,
        fiscal_year: int | None = None,
        status: PeriodStatus | str | None = None,
    ) -> list[PeriodInfo]:
        return self._selector.list_periods(company_id, fiscal_year=fiscal_year, status=status)

    def find_period_for_date(self, company_id: UUID, check_date: date) -> PeriodInfo | None:
        """Period containing ``check_date`` in any status, or None."""
        return self._selector.find_period_for_date(company_id, check_date)

    def check_date_in_closed_period(self, company_id: UUID, check_date: date) -> PeriodInfo | None:
        """CLOSED or LOCKED period containing ``check_date``, or None."""
        return self._selector.find_period_for_date(company_id, check_date, closed_only=True)

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def create_period(
        self,
        company_id: UUID,
        actor_id: UUID,
        period_name: str,
        period_type: PeriodType | str,
        fiscal_year: int,
        start_date: date,
        end_date: date,
        notes: str | None = None,
    ) -> PeriodInfo:
        """
        Create an OPEN period.

        Raises:
            InvalidPeriodRangeError: start_date is not before end_date.
            InvalidPeriodFieldError: bad fiscal year, type, name or notes.
            PeriodOverlapError: range intersects an existing period.
        """
        with self._atomic("period_create", company_id=company_id, period_name=period_name):
            if start_date >= end_date:
                raise InvalidPeriodRangeError(str(start_date), str(end_date))
            self._validate_fields(
                fiscal_year=fiscal_year,
                period_type=period_type,
                notes=notes,
                period_name=period_name,
            )
            existing = self._selector.find_overlapping(company_id, start_date, end_date)
            if existing is not None:
                raise PeriodOverlapError(
                    new_period_name=period_name,
                    existing_period_name=existing.period_name,
                    existing_start=str(existing.start_date),
                    existing_end=str(existing.end_date),
                )

            period = AccountingPeriod(
                company_id=company_id,
                period_name=period_name,
                period_type=PeriodType(period_type).value,
                fiscal_year=fiscal_year,
                start_date=start_date,
                end_date=end_date,
                status=PeriodStatus.OPEN.value,
                notes=notes,
                created_by_id=actor_id,
            )
            self.session.add(period)
            self.session.flush()

        logger.info(
            "period_created",
            extra={
                "company_id": str(company_id),
                "period_id": str(period.id),
                "period_name": period_name,
                "start_date": str(start_date),
                "end_date": str(end_date),
            },
        )
        return PeriodInfo.from_model(period)

    def update_period(
        self,
        company_id: UUID,
        period_id: UUID,
        actor_id: UUID,
        *,
        period_name: str = _UNSET,
        notes: str | None = _UNSET,
    ) -> PeriodInfo:
        """
        Rename a period or edit its notes.  Dates and status are not editable.

        Raises:
            PeriodStateError: the period is LOCKED.
        """
        with self._atomic("period_update", company_id=company_id, period_id=period_id):
            period = self._get_model(company_id, period_id, for_update=True)
            self._require_status(period, (PeriodStatus.OPEN, PeriodStatus.CLOSED), "updated")
            self._validate_fields(
                period_name=None if period_name is _UNSET else period_name,
                notes=None if notes is _UNSET else notes,
            )
            if period_name is not _UNSET:
                period.period_name = period_name
            if notes is not _UNSET:
                period.notes = notes
            period.updated_by_id = actor_id
            self.session.flush()

        logger.info("period_updated", extra={"period_id": str(period.id)})
        return PeriodInfo.from_model(period)

    def delete_period(self, company_id: UUID, period_id: UUID) -> None:
        """
        Delete an OPEN period.

        Raises:
            PeriodStateError: the period is CLOSED or LOCKED.
        """
        with self._atomic("period_delete", company_id=company_id, period_id=period_id):
            period = self._get_model(company_id, period_id, for_update=True)
            self._require_status(period, (PeriodStatus.OPEN,), "deleted")
            period_name = period.period_name
            self.session.delete(period)
            self.session.flush()

        logger.info(
            "period_deleted",
            extra={"period_id": str(period_id), "period_name": period_name},
        )

    # ------------------------------------------------------------------
    # Close / reopen / lock
    # ------------------------------------------------------------------

    def _closing_lines(
        self,
        company_id: UUID,
        period: AccountingPeriod,
        retained_earnings: Account,
    ) -> tuple[list[JournalLineInput], dict]:
        accounts = self.session.execute(
            select(Account)
            .where(
                Account.company_id == company_id,
                Account.is_active.is_(True),
                Account.account_type.in_(
                    [AccountType.REVENUE.value, AccountType.EXPENSE.value]
                ),
            )
            .order_by(Account.code)
        ).scalars().all()

        lines = []
        total_revenue = ZERO
        expense_contribution = ZERO
        revenue_closed = 0
        expense_closed = 0
        for account in accounts:
            if account.balance == 0:
                continue
            debit, credit = closing_amounts(account.normal_balance, account.balance)
            lines.append(
                JournalLineInput(
                    account_id=account.id,
                    debit=debit,
                    credit=credit,
                    description=f"Close {account.name} to {retained_earnings.name}",
                )
            )
            if account.account_type == AccountType.REVENUE:
                total_revenue += debit - credit
                revenue_closed += 1
            else:
                expense_contribution += debit - credit
                expense_closed += 1

        total_expenses = -expense_contribution
        net_income = round_money(total_revenue - total_expenses)
        if net_income != 0:
            debit, credit = retained_earnings_amounts(net_income)
            lines.append(
                JournalLineInput(
                    account_id=retained_earnings.id,
                    debit=debit,
                    credit=credit,
                    description=f"Net Income/Loss for {period.period_name}",
                )
            )
        summary = {
            "net_income": net_income,
            "total_revenue": round_money(total_revenue),
            "total_expenses": round_money(total_expenses),
            "revenue_accounts_closed": revenue_closed,
            "expense_accounts_closed": expense_closed,
        }
        return lines, summary

    def close_period(self, company_id: UUID, period_id: UUID, actor_id: UUID) -> PeriodCloseResult:
        """
        OPEN -> CLOSED, posting a closing entry dated end_date.

        Each active revenue and expense account with a non-zero cached
        balance gets one line that zeroes it; the net goes to Retained
        Earnings.  When nothing carries a balance the period closes without
        an entry.

        Raises:
            PeriodStateError: "Only open periods can be closed".
            RetainedEarningsConflictError: the Retained Earnings code is
                held by a non-equity account.
        """
        with LogContext.bind(company_id=company_id, actor_id=actor_id, period_id=period_id):
            with self._atomic("period_close", period_id=period_id):
                period = self._get_model(company_id, period_id, for_update=True)
                self._require_status(period, (PeriodStatus.OPEN,), "closed")

                retained_earnings, income_ids = self._lock_close_scope(company_id, actor_id)
                if self._settings.reconcile_before_close:
                    for account_id in income_ids:
                        self._reconciliation.reconcile_account_balance(company_id, account_id)

                lines, summary = self._closing_lines(company_id, period, retained_earnings)

                closing_entry = None
                if lines:
                    closing_entry = self._journal.create_and_post_entry(
                        company_id,
                        actor_id,
                        period.end_date,
                        lines,
                        reference_number=closing_reference(period.period_name),
                        description=f"Closing entry for {period.period_name}",
                        entry_type=JournalEntryType.MANUAL,
                        is_closing_entry=True,
                    )

                period.status = PeriodStatus.CLOSED.value
                period.closed_by_id = actor_id
                period.closed_at = self._clock.now()
                period.closing_journal_entry_id = closing_entry.id if closing_entry else None
                period.updated_by_id = actor_id
                self.session.flush()

            logger.info(
                "period_closed",
                extra={
                    "period_name": period.period_name,
                    "closing_entry_number": closing_entry.entry_number if closing_entry else None,
                    **summary,
                },
            )
            return PeriodCloseResult(
                period=PeriodInfo.from_model(period),
                closing_entry_id=closing_entry.id if closing_entry else None,
                closing_entry_number=closing_entry.entry_number if closing_entry else None,
                **summary,
            )

    def _lock_close_scope(self, company_id: UUID, actor_id: UUID) -> tuple[Account, list[UUID]]:
        """
        Lock everything a close reads or writes.

        The counter comes first because the closing entry allocates a number
        after the accounts are read.  Returns Retained Earnings and the ids
        of every revenue and expense account, archived ones included.
        """
        self._sequences.lock_counter(journal_entry_sequence(company_id))
        retained_earnings = self._accounts.get_or_create_retained_earnings(company_id, actor_id)
        income_ids = self.session.execute(
            select(Account.id)
            .where(
                Account.company_id == company_id,
                Account.account_type.in_(
                    [AccountType.REVENUE.value, AccountType.EXPENSE.value]
                ),
            )
            .order_by(Account.id)
        ).scalars().all()
        self._accounts.lock_accounts(
            company_id, [*income_ids, retained_earnings.id], require_active=False
        )
        return retained_earnings, list(income_ids)

    def reopen_period(self, company_id: UUID, period_id: UUID, actor_id: UUID) -> PeriodInfo:
        """
        CLOSED -> OPEN, voiding the closing entry if one was posted.

        Raises:
            PeriodStateError: "Only closed periods can be reopened".
        """
        with LogContext.bind(company_id=company_id, actor_id=actor_id, period_id=period_id):
            with self._atomic("period_reopen", period_id=period_id):
                period = self._get_model(company_id, period_id, for_update=True)
                self._require_status(period, (PeriodStatus.CLOSED,), "reopened")

                voided_entry_id = period.closing_journal_entry_id
                if voided_entry_id is not None:
                    self._journal.void_entry(company_id, voided_entry_id, actor_id)

                period.status = PeriodStatus.OPEN.value
                period.closed_by_id = None
                period.closed_at = None
                period.closing_journal_entry_id = None
                period.updated_by_id = actor_id
                self.session.flush()

            logger.info(
                "period_reopened",
                extra={
                    "period_name": period.period_name,
                    "voided_entry_id": str(voided_entry_id) if voided_entry_id else None,
                },
            )
        return PeriodInfo.from_model(period)

    def lock_period(
        self,
        company_id: UUID,
        period_id: UUID,
        actor_id: UUID | None = None,
    ) -> PeriodInfo:
        """
        CLOSED -> LOCKED.  Irreversible.

        Raises:
            PeriodStateError: "Only closed periods can be locked".
        """
        with self._atomic("period_lock", company_id=company_id, period_id=period_id):
            period = self._get_model(company_id, period_id, for_update=True)
            self._require_status(period, (PeriodStatus.CLOSED,), "locked")
            period.status = PeriodStatus.LOCKED.value
            if actor_id is not None:
                period.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "period_locked",
            extra={"period_id": str(period.id), "period_name": period.period_name},
        )
        return PeriodInfo.from_model(period)
