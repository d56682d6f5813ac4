"""
JournalService -- the journal engine.

Responsibility:
    Owns the journal entry state machine (DRAFT -> POSTED -> VOID) and the
    balance invariant.  Posting writes one ledger row per line through
    LedgerStore; voiding writes mirrored reversing rows.  Both refresh the
    cached balance of every touched account from the ledger.

Architecture position:
    Kernel > Services.  Called by the outer API layer for manual entries,
    by document workflows for automated entries (create_and_post_entry), and
    by PeriodService for closing entries.

Invariants enforced:
    - Every accepted entry has abs(total_debit - total_credit) <= tolerance;
      checked on create and update, re-checked on post.
    - Lines reference active accounts of the same company and carry
      non-negative amounts on exactly one side.
    - Only DRAFT entries can be updated, deleted or posted; only POSTED
      entries can be voided.
    - Touched accounts are locked (SELECT ... FOR UPDATE, ascending id)
      before any running balance is read, serializing postings per account.
    - Ledger rows are never removed: a void appends reversing rows.
    - Non-closing postings and voids dated inside a CLOSED or LOCKED period
      are refused.  The period check runs after the account locks, so a
      posting that waited on a concurrent close sees the closed period.
    - Each operation runs in one savepoint: on any failure nothing persists
      and the entry keeps its previous status.

Failure modes:
    - EmptyEntryError, InvalidLineError, UnbalancedEntryError,
      InvalidAccountReferenceError, AccountInactiveError (validation).
    - JournalEntryNotFoundError.
    - JournalEntryStateError (wrong status), ClosedPeriodError.
    - BackdatedPostingError under the ``reject`` policy.
"""

from collections.abc import Sequence
from datetime import date
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session

from ledger_kernel.config import KernelSettings
from ledger_kernel.domain.balance import validate_entry_lines
from ledger_kernel.domain.clock import Clock, SystemClock
from ledger_kernel.domain.dtos import JournalEntryInfo, JournalLineInput
from ledger_kernel.exceptions import (
    AccountInactiveError,
    ClosedPeriodError,
    InvalidAccountReferenceError,
    JournalEntryNotFoundError,
    JournalEntryStateError,
)
from ledger_kernel.logging_config import LogContext, get_logger
from ledger_kernel.models.account import Account
from ledger_kernel.models.journal import (
    JournalEntry,
    JournalEntryStatus,
    JournalEntryType,
    JournalLine,
)
from ledger_kernel.selectors.period_selector import PeriodSelector
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.base import BaseService
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_kernel.services.sequence_service import (
    SequenceService,
    format_entry_number,
    journal_entry_sequence,
)

logger = get_logger("services.journal")

_UNSET = object()

VOID_NUMBER_SUFFIX = "-VOID"
VOID_DESCRIPTION_PREFIX = "VOID: "


class JournalService(BaseService[JournalEntry]):
    """
    Journal entry lifecycle.

    Contract:
        Public methods take the company id explicitly and return
        ``JournalEntryInfo`` snapshots.  They flush inside a savepoint and
        never commit.

    Non-goals:
        - No currency conversion; every amount is in the company currency.
        - Does NOT decide whether a period may close; PeriodService does.
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
        self._sequences = SequenceService(session)
        self._accounts = AccountService(session, self._settings)
        self._ledger = LedgerStore(session, self._settings, self._sequences)
        self._periods = PeriodSelector(session)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _get_entry(self, company_id: UUID, entry_id: UUID, for_update: bool = False) -> JournalEntry:
        stmt = select(JournalEntry).where(
            JournalEntry.company_id == company_id,
            JournalEntry.id == entry_id,
        )
        if for_update:
            stmt = stmt.with_for_update()
        entry = self.session.execute(stmt).scalar_one_or_none()
        if entry is None:
            raise JournalEntryNotFoundError(str(entry_id))
        return entry

    def _require_status(
        self,
        entry: JournalEntry,
        required: JournalEntryStatus,
        operation: str,
    ) -> None:
        if entry.status != required:
            raise JournalEntryStateError(
                entry_id=str(entry.id),
                current_status=getattr(entry.status, "value", entry.status),
                required_status=required.value,
                operation=operation,
            )

    def _validate_lines(
        self,
        company_id: UUID,
        lines: Sequence[JournalLineInput],
    ) -> tuple[Decimal, Decimal]:
        """Amounts, balance and account ownership; returns the totals."""
        totals = validate_entry_lines(
            [(line.debit, line.credit) for line in lines],
            self._settings.balance_tolerance,
        )
        self._resolve_accounts(company_id, {line.account_id for line in lines})
        return totals

    def _resolve_accounts(self, company_id: UUID, account_ids: set[UUID]) -> None:
        # Read-only resolution; posting takes the row locks.
        found = {
            a.id: a
            for a in self.session.execute(
                select(Account).where(
                    Account.company_id == company_id,
                    Account.id.in_(account_ids),
                )
            ).scalars()
        }
        for account_id in sorted(account_ids, key=str):
            account = found.get(account_id)
            if account is None:
                raise InvalidAccountReferenceError(str(account_id))
            if not account.is_active:
                raise AccountInactiveError(str(account.id), account.code)

    @staticmethod
    def _build_lines(lines: Sequence[JournalLineInput], actor_id: UUID) -> list[JournalLine]:
        return [
            JournalLine(
                account_id=line.account_id,
                debit=line.debit,
                credit=line.credit,
                description=line.description,
                line_seq=index,
                created_by_id=actor_id,
            )
            for index, line in enumerate(lines)
        ]

    def _guard_closed_period(self, entry: JournalEntry, ledger_date: date) -> None:
        if entry.is_closing_entry or not self._settings.enforce_closed_periods:
            return
        period = self._periods.find_period_for_date(
            entry.company_id, ledger_date, closed_only=True
        )
        if period is not None:
            raise ClosedPeriodError(
                period_name=period.period_name,
                effective_date=str(ledger_date),
                status=period.status,
            )

    def _refresh_cached_balances(self, company_id: UUID, accounts: dict[UUID, Account]) -> None:
        for account in accounts.values():
            account.balance = self._ledger.latest_balance(company_id, account.id)

    # ------------------------------------------------------------------
    # Draft lifecycle
    # ------------------------------------------------------------------

    def create_entry(
        self,
        company_id: UUID,
        actor_id: UUID,
        entry_date: date,
        lines: Sequence[JournalLineInput],
        reference_number: str | None = None,
        description: str | None = None,
        entry_type: JournalEntryType = JournalEntryType.MANUAL,
        is_closing_entry: bool = False,
    ) -> JournalEntryInfo:
        """
        Create a DRAFT entry with a freshly allocated entry number.

        Raises:
            EmptyEntryError, InvalidLineError, UnbalancedEntryError,
            InvalidAccountReferenceError, AccountInactiveError.
        """
        with self._atomic("journal_entry_create", company_id=company_id):
            total_debit, total_credit = self._validate_lines(company_id, lines)
            number = self._sequences.next_value(journal_entry_sequence(company_id))
            entry = JournalEntry(
                company_id=company_id,
                entry_number=format_entry_number(self._settings.entry_number_prefix, number),
                entry_date=entry_date,
                reference_number=reference_number,
                description=description,
                entry_type=JournalEntryType(entry_type).value,
                status=JournalEntryStatus.DRAFT.value,
                is_closing_entry=is_closing_entry,
                total_debit=total_debit,
                total_credit=total_credit,
                created_by_id=actor_id,
                lines=self._build_lines(lines, actor_id),
            )
            self.session.add(entry)
            self.session.flush()

        logger.info(
            "journal_entry_created",
            extra={
                "entry_id": str(entry.id),
                "entry_number": entry.entry_number,
                "entry_type": entry.entry_type,
                "line_count": len(lines),
                "total_debit": total_debit,
                "total_credit": total_credit,
            },
        )
        return JournalEntryInfo.from_model(entry)

    def update_entry(
        self,
        company_id: UUID,
        entry_id: UUID,
        actor_id: UUID,
        *,
        entry_date: date = _UNSET,
        reference_number: str | None = _UNSET,
        description: str | None = _UNSET,
        lines: Sequence[JournalLineInput] | None = None,
    ) -> JournalEntryInfo:
        """
        Update a DRAFT entry.  Omitted fields are preserved; supplied
        ``lines`` replace the existing ones and are validated as on create.

        Raises:
            JournalEntryStateError: "Only draft entries can be updated".
        """
        with self._atomic("journal_entry_update", company_id=company_id, entry_id=entry_id):
            entry = self._get_entry(company_id, entry_id, for_update=True)
            self._require_status(entry, JournalEntryStatus.DRAFT, "updated")

            if lines is not None:
                total_debit, total_credit = self._validate_lines(company_id, lines)
                entry.lines = self._build_lines(lines, actor_id)
                entry.total_debit = total_debit
                entry.total_credit = total_credit
            if entry_date is not _UNSET:
                entry.entry_date = entry_date
            if reference_number is not _UNSET:
                entry.reference_number = reference_number
            if description is not _UNSET:
                entry.description = description
            entry.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "journal_entry_updated",
            extra={"entry_id": str(entry.id), "lines_replaced": lines is not None},
        )
        return JournalEntryInfo.from_model(entry)

    def delete_entry(self, company_id: UUID, entry_id: UUID) -> None:
        """
        Hard-delete a DRAFT entry.  Drafts have no ledger rows.

        Raises:
            JournalEntryStateError: "Only draft entries can be deleted".
        """
        with self._atomic("journal_entry_delete", company_id=company_id, entry_id=entry_id):
            entry = self._get_entry(company_id, entry_id, for_update=True)
            self._require_status(entry, JournalEntryStatus.DRAFT, "deleted")
            entry_number = entry.entry_number
            self.session.delete(entry)
            self.session.flush()

        logger.info(
            "journal_entry_deleted",
            extra={"entry_id": str(entry_id), "entry_number": entry_number},
        )

    # ------------------------------------------------------------------
    # Posting
    # ------------------------------------------------------------------

    def post_entry(self, company_id: UUID, entry_id: UUID, actor_id: UUID) -> JournalEntryInfo:
        """
        DRAFT -> POSTED.  Appends one ledger row per line dated entry_date.

        Raises:
            JournalEntryStateError, UnbalancedEntryError,
            InvalidAccountReferenceError, AccountInactiveError,
            ClosedPeriodError, BackdatedPostingError.
        """
        with LogContext.bind(company_id=company_id, actor_id=actor_id, entry_id=entry_id):
            with self._atomic("journal_entry_post", entry_id=entry_id):
                entry = self._get_entry(company_id, entry_id, for_update=True)
                self._require_status(entry, JournalEntryStatus.DRAFT, "posted")
                validate_entry_lines(
                    [(line.debit, line.credit) for line in entry.lines],
                    self._settings.balance_tolerance,
                )
                accounts = self._accounts.lock_accounts(
                    company_id, [line.account_id for line in entry.lines]
                )
                self._guard_closed_period(entry, entry.entry_date)

                for line in entry.lines:
                    self._ledger.append_row(
                        account=accounts[line.account_id],
                        journal_entry_id=entry.id,
                        entry_number=entry.entry_number,
                        transaction_date=entry.entry_date,
                        debit=line.debit,
                        credit=line.credit,
                        description=line.description or entry.description,
                        actor_id=actor_id,
                    )
                self._refresh_cached_balances(company_id, accounts)

                entry.status = JournalEntryStatus.POSTED.value
                entry.posted_by_id = actor_id
                entry.posted_at = self._clock.now()
                entry.updated_by_id = actor_id
                self.session.flush()

            logger.info(
                "journal_entry_posted",
                extra={
                    "entry_number": entry.entry_number,
                    "entry_date": str(entry.entry_date),
                    "line_count": len(entry.lines),
                    "total_debit": entry.total_debit,
                    "is_closing_entry": entry.is_closing_entry,
                },
            )
        return JournalEntryInfo.from_model(entry)

    def void_entry(self, company_id: UUID, entry_id: UUID, actor_id: UUID) -> JournalEntryInfo:
        """
        POSTED -> VOID.  Appends one reversing row per original line.

        Reversing rows swap debit and credit, carry entry number
        ``<N>-VOID`` and a ``VOID: `` description prefix.  They are dated at
        the original entry date, or at the clock's date when
        ``void_dating`` is ``void_date``.  Original rows are untouched.

        Raises:
            JournalEntryStateError: "Only posted entries can be voided".
            ClosedPeriodError: reversal date inside a closed period.
        """
        with LogContext.bind(company_id=company_id, actor_id=actor_id, entry_id=entry_id):
            with self._atomic("journal_entry_void", entry_id=entry_id):
                entry = self._get_entry(company_id, entry_id, for_update=True)
                self._require_status(entry, JournalEntryStatus.POSTED, "voided")

                if self._settings.void_dating == "void_date":
                    reversal_date = self._clock.today()
                else:
                    reversal_date = entry.entry_date

                accounts = self._accounts.lock_accounts(
                    company_id,
                    [line.account_id for line in entry.lines],
                    require_active=False,
                )
                self._guard_closed_period(entry, reversal_date)
                void_number = f"{entry.entry_number}{VOID_NUMBER_SUFFIX}"
                for line in entry.lines:
                    text = line.description or entry.description or entry.entry_number
                    self._ledger.append_row(
                        account=accounts[line.account_id],
                        journal_entry_id=entry.id,
                        entry_number=void_number,
                        transaction_date=reversal_date,
                        debit=line.credit,
                        credit=line.debit,
                        description=f"{VOID_DESCRIPTION_PREFIX}{text}",
                        actor_id=actor_id,
                        is_reversal=True,
                    )
                self._refresh_cached_balances(company_id, accounts)

                entry.status = JournalEntryStatus.VOID.value
                entry.voided_by_id = actor_id
                entry.voided_at = self._clock.now()
                self.session.flush()

            logger.info(
                "journal_entry_voided",
                extra={
                    "entry_number": entry.entry_number,
                    "reversal_date": str(reversal_date),
                    "line_count": len(entry.lines),
                },
            )
        return JournalEntryInfo.from_model(entry)

    def create_and_post_entry(
        self,
        company_id: UUID,
        actor_id: UUID,
        entry_date: date,
        lines: Sequence[JournalLineInput],
        reference_number: str | None = None,
        description: str | None = None,
        entry_type: JournalEntryType = JournalEntryType.MANUAL,
        is_closing_entry: bool = False,
    ) -> JournalEntryInfo:
        """Create and post in one savepoint; used for automated entries."""
        with self._atomic("journal_entry_create_and_post", company_id=company_id):
            draft = self.create_entry(
                company_id,
                actor_id,
                entry_date,
                lines,
                reference_number=reference_number,
                description=description,
                entry_type=entry_type,
                is_closing_entry=is_closing_entry,
            )
            return self.post_entry(company_id, draft.id, actor_id)

    def get_entry(self, company_id: UUID, entry_id: UUID) -> JournalEntryInfo:
        return JournalEntryInfo.from_model(self._get_entry(company_id, entry_id))
