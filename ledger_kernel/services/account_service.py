"""
AccountService -- the account registry.

Responsibility:
    Chart-of-accounts maintenance for one company at a time: create, update,
    archive and delete accounts, find or create Retained Earnings for period
    close, and take the per-account row locks that serialize postings.

Architecture position:
    Kernel > Services.  Leaf dependency of JournalService, PeriodService and
    ReconciliationService.

Invariants enforced:
    - (company_id, code) is unique.
    - code, account_type and normal_balance are frozen once ledger rows
      reference the account.
    - Accounts with ledger rows or journal lines are archived, never deleted.
    - lock_accounts() locks rows in ascending id order, so two postings that
      touch the same accounts cannot deadlock on each other.

Failure modes:
    - DuplicateAccountCodeError, AccountNotFoundError,
      AccountReferencedError, InvalidAccountReferenceError,
      AccountInactiveError, RetainedEarningsConflictError.
"""

from collections.abc import Iterable
from uuid import UUID

from sqlalchemy import exists, select
from sqlalchemy.orm import Session

from ledger_kernel.config import KernelSettings
from ledger_kernel.db.types import ZERO
from ledger_kernel.domain.dtos import AccountInfo
from ledger_kernel.exceptions import (
    AccountInactiveError,
    AccountNotFoundError,
    AccountReferencedError,
    DuplicateAccountCodeError,
    InvalidAccountReferenceError,
    RetainedEarningsConflictError,
)
from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.account import (
    Account,
    AccountTag,
    AccountType,
    NormalBalance,
)
from ledger_kernel.models.journal import JournalLine
from ledger_kernel.models.ledger import LedgerRow
from ledger_kernel.selectors.account_selector import AccountSelector
from ledger_kernel.services.base import BaseService

logger = get_logger("services.account")

_UNSET = object()

DEFAULT_NORMAL_BALANCE = {
    AccountType.ASSET: NormalBalance.DEBIT,
    AccountType.EXPENSE: NormalBalance.DEBIT,
    AccountType.LIABILITY: NormalBalance.CREDIT,
    AccountType.EQUITY: NormalBalance.CREDIT,
    AccountType.REVENUE: NormalBalance.CREDIT,
}


class AccountService(BaseService[Account]):
    """
    Account registry operations.

    Contract:
        Public methods return ``AccountInfo`` DTOs.  ``lock_accounts`` and
        ``get_or_create_retained_earnings`` return ORM rows because their
        callers write balances and ledger rows against them in the same
        transaction.
    """

    def __init__(self, session: Session, settings: KernelSettings | None = None):
        super().__init__(session)
        self._settings = settings or KernelSettings()
        self._selector = AccountSelector(session)

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _get_model(self, company_id: UUID, account_id: UUID) -> Account:
        account = self.session.execute(
            select(Account).where(
                Account.company_id == company_id,
                Account.id == account_id,
            )
        ).scalar_one_or_none()
        if account is None:
            raise AccountNotFoundError(str(account_id))
        return account

    def _code_taken(self, company_id: UUID, code: str, exclude_id: UUID | None = None) -> bool:
        criteria = [Account.company_id == company_id, Account.code == code]
        if exclude_id is not None:
            criteria.append(Account.id != exclude_id)
        return bool(self.session.execute(select(exists().where(*criteria))).scalar())

    def has_ledger_rows(self, account_id: UUID) -> bool:
        return bool(
            self.session.execute(
                select(exists().where(LedgerRow.account_id == account_id))
            ).scalar()
        )

    def get_account(self, company_id: UUID, account_id: UUID) -> AccountInfo:
        return AccountInfo.from_model(self._get_model(company_id, account_id))

    def get_account_by_code(self, company_id: UUID, code: str) -> AccountInfo | None:
        return self._selector.get_by_code(company_id, code)

    def list_accounts(
        self,
        company_id: UUID,
        account_types: list[AccountType] | None = None,
        active_only: bool = False,
        tag: AccountTag | None = None,
    ) -> list[AccountInfo]:
        return self._selector.list_accounts(
            company_id,
            account_types=account_types,
            active_only=active_only,
            tag=tag,
        )

    # ------------------------------------------------------------------
    # Maintenance
    # ------------------------------------------------------------------

    def create_account(
        self,
        company_id: UUID,
        actor_id: UUID,
        code: str,
        name: str,
        account_type: AccountType | str,
        normal_balance: NormalBalance | str | None = None,
        sub_type: str | None = None,
        description: str | None = None,
        parent_id: UUID | None = None,
        tags: Iterable[AccountTag | str] | None = None,
    ) -> AccountInfo:
        """
        Add an account to the company's chart.

        ``normal_balance`` defaults from ``account_type`` (debit for assets
        and expenses, credit otherwise).  Pass it explicitly for contra
        accounts.

        Raises:
            DuplicateAccountCodeError: code already used in this company.
            AccountNotFoundError: parent_id is not an account of the company.
        """
        account_type = AccountType(account_type)
        normal_balance = (
            NormalBalance(normal_balance)
            if normal_balance is not None
            else DEFAULT_NORMAL_BALANCE[account_type]
        )
        with self._atomic("account_create", company_id=company_id, code=code):
            if self._code_taken(company_id, code):
                raise DuplicateAccountCodeError(code)
            if parent_id is not None:
                self._get_model(company_id, parent_id)

            account = Account(
                company_id=company_id,
                code=code,
                name=name,
                account_type=account_type.value,
                normal_balance=normal_balance.value,
                sub_type=sub_type,
                description=description,
                parent_id=parent_id,
                tags=[AccountTag(t).value for t in tags] if tags else None,
                balance=ZERO,
                is_active=True,
                created_by_id=actor_id,
            )
            self.session.add(account)
            self.session.flush()

        logger.info(
            "account_created",
            extra={
                "company_id": str(company_id),
                "account_id": str(account.id),
                "code": code,
                "account_type": account_type.value,
                "normal_balance": normal_balance.value,
            },
        )
        return AccountInfo.from_model(account)

    def update_account(
        self,
        company_id: UUID,
        account_id: UUID,
        actor_id: UUID,
        *,
        code: str = _UNSET,
        name: str = _UNSET,
        account_type: AccountType | str = _UNSET,
        normal_balance: NormalBalance | str = _UNSET,
        sub_type: str | None = _UNSET,
        description: str | None = _UNSET,
        tags: Iterable[AccountTag | str] | None = _UNSET,
    ) -> AccountInfo:
        """
        Update the supplied fields; omitted fields keep their values.

        Raises:
            AccountReferencedError: a structural field (code, account_type,
                normal_balance) changes on an account with ledger rows.
            DuplicateAccountCodeError: the new code is already used.
        """
        with self._atomic("account_update", company_id=company_id, account_id=account_id):
            account = self._get_model(company_id, account_id)

            structural = {}
            if code is not _UNSET and code != account.code:
                structural["code"] = code
            if account_type is not _UNSET and AccountType(account_type) != account.account_type:
                structural["account_type"] = AccountType(account_type).value
            if (
                normal_balance is not _UNSET
                and NormalBalance(normal_balance) != account.normal_balance
            ):
                structural["normal_balance"] = NormalBalance(normal_balance).value

            if structural and self.has_ledger_rows(account.id):
                raise AccountReferencedError(
                    str(account.id),
                    f"cannot change {sorted(structural)} once ledger rows exist",
                )
            if "code" in structural and self._code_taken(company_id, code, account.id):
                raise DuplicateAccountCodeError(code)

            for field, value in structural.items():
                setattr(account, field, value)
            if name is not _UNSET:
                account.name = name
            if sub_type is not _UNSET:
                account.sub_type = sub_type
            if description is not _UNSET:
                account.description = description
            if tags is not _UNSET:
                account.tags = [AccountTag(t).value for t in tags] if tags else None
            account.updated_by_id = actor_id
            self.session.flush()

        logger.info(
            "account_updated",
            extra={"account_id": str(account.id), "structural_fields": sorted(structural)},
        )
        return AccountInfo.from_model(account)

    def archive_account(self, company_id: UUID, account_id: UUID, actor_id: UUID) -> AccountInfo:
        """Deactivate an account; it keeps its history but accepts no new postings."""
        with self._atomic("account_archive", company_id=company_id, account_id=account_id):
            account = self._get_model(company_id, account_id)
            account.is_active = False
            account.updated_by_id = actor_id
            self.session.flush()
        logger.info("account_archived", extra={"account_id": str(account.id)})
        return AccountInfo.from_model(account)

    def delete_account(self, company_id: UUID, account_id: UUID) -> None:
        """
        Hard-delete an account that nothing references.

        Raises:
            AccountReferencedError: ledger rows or journal lines use it.
        """
        with self._atomic("account_delete", company_id=company_id, account_id=account_id):
            account = self._get_model(company_id, account_id)
            if self.has_ledger_rows(account.id):
                raise AccountReferencedError(
                    str(account.id), "archive the account instead of deleting it"
                )
            referenced_by_draft = self.session.execute(
                select(exists().where(JournalLine.account_id == account.id))
            ).scalar()
            if referenced_by_draft:
                raise AccountReferencedError(
                    str(account.id), "journal lines reference this account"
                )
            self.session.delete(account)
            self.session.flush()
        logger.info("account_deleted", extra={"account_id": str(account_id)})

    # ------------------------------------------------------------------
    # Kernel collaborators
    # ------------------------------------------------------------------

    def get_or_create_retained_earnings(self, company_id: UUID, actor_id: UUID) -> Account:
        """
        Retained Earnings account of the company, created on first use.

        Looked up by the configured code and must be an equity account;
        created as equity with a credit normal balance and the
        ``retained_earnings`` tag.

        Raises:
            RetainedEarningsConflictError: the code belongs to a non-equity
                account.
        """
        code = self._settings.retained_earnings_code
        account = self.session.execute(
            select(Account).where(
                Account.company_id == company_id,
                Account.code == code,
            )
        ).scalar_one_or_none()
        if account is not None:
            if account.account_type != AccountType.EQUITY:
                raise RetainedEarningsConflictError(
                    code, getattr(account.account_type, "value", account.account_type)
                )
            return account

        account = Account(
            company_id=company_id,
            code=code,
            name=self._settings.retained_earnings_name,
            account_type=AccountType.EQUITY.value,
            normal_balance=NormalBalance.CREDIT.value,
            sub_type="Retained Earnings",
            tags=[AccountTag.RETAINED_EARNINGS.value],
            balance=ZERO,
            is_active=True,
            created_by_id=actor_id,
        )
        self.session.add(account)
        self.session.flush()
        logger.info(
            "retained_earnings_account_created",
            extra={"company_id": str(company_id), "account_id": str(account.id), "code": code},
        )
        return account

    def lock_accounts(
        self,
        company_id: UUID,
        account_ids: Iterable[UUID],
        require_active: bool = True,
    ) -> dict[UUID, Account]:
        """
        SELECT ... FOR UPDATE the given accounts in ascending id order.

        Every running-balance read for these accounts must happen after this
        call and in the same transaction.

        Raises:
            InvalidAccountReferenceError: an id is not an account of the company.
            AccountInactiveError: an account is archived and ``require_active``.
        """
        ordered = sorted(set(account_ids), key=str)
        accounts = self.session.execute(
            select(Account)
            .where(Account.company_id == company_id, Account.id.in_(ordered))
            .order_by(Account.id)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalars().all()
        by_id = {a.id: a for a in accounts}
        for account_id in ordered:
            account = by_id.get(account_id)
            if account is None:
                raise InvalidAccountReferenceError(str(account_id))
            if require_active and not account.is_active:
                raise AccountInactiveError(str(account.id), account.code)
        return by_id
