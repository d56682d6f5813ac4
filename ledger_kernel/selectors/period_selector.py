"""
Module: ledger_kernel.selectors.period_selector
Responsibility: Read-only accounting period queries, including the date
    lookups other modules use to refuse postings into closed history.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import select

from ledger_kernel.domain.dtos import PeriodInfo
from ledger_kernel.models.accounting_period import AccountingPeriod, PeriodStatus
from ledger_kernel.selectors.base import BaseSelector

CLOSED_STATUSES = (PeriodStatus.CLOSED.value, PeriodStatus.LOCKED.value)


class PeriodSelector(BaseSelector[AccountingPeriod]):

    def get_period(self, company_id: UUID, period_id: UUID) -> PeriodInfo | None:
        period = self.session.execute(
            select(AccountingPeriod).where(
                AccountingPeriod.company_id == company_id,
                AccountingPeriod.id == period_id,
            )
        ).scalar_one_or_none()
        return PeriodInfo.from_model(period) if period else None

    def list_periods(
        self,
        company_id: UUID,
        fiscal_year: int | None = None,
        status: PeriodStatus | None = None,
    ) -> list[PeriodInfo]:
        """List periods newest first (start_date descending)."""
        stmt = select(AccountingPeriod).where(AccountingPeriod.company_id == company_id)
        if fiscal_year is not None:
            stmt = stmt.where(AccountingPeriod.fiscal_year == fiscal_year)
        if status is not None:
            stmt = stmt.where(AccountingPeriod.status == PeriodStatus(status).value)
        periods = self.session.execute(
            stmt.order_by(AccountingPeriod.start_date.desc())
        ).scalars().all()
        return [PeriodInfo.from_model(p) for p in periods]

    def find_period_for_date(
        self,
        company_id: UUID,
        check_date: date,
        closed_only: bool = False,
    ) -> PeriodInfo | None:
        """
        Period whose inclusive [start_date, end_date] contains ``check_date``.

        Periods never overlap, so at most one matches.
        """
        stmt = select(AccountingPeriod).where(
            AccountingPeriod.company_id == company_id,
            AccountingPeriod.start_date <= check_date,
            AccountingPeriod.end_date >= check_date,
        )
        if closed_only:
            stmt = stmt.where(AccountingPeriod.status.in_(CLOSED_STATUSES))
        period = self.session.execute(stmt.limit(1)).scalar_one_or_none()
        return PeriodInfo.from_model(period) if period else None

    def find_overlapping(
        self,
        company_id: UUID,
        start_date: date,
        end_date: date,
        exclude_id: UUID | None = None,
    ) -> PeriodInfo | None:
        """First period of the company intersecting [start_date, end_date]."""
        stmt = select(AccountingPeriod).where(
            AccountingPeriod.company_id == company_id,
            AccountingPeriod.start_date <= end_date,
            AccountingPeriod.end_date >= start_date,
        )
        if exclude_id is not None:
            stmt = stmt.where(AccountingPeriod.id != exclude_id)
        period = self.session.execute(
            stmt.order_by(AccountingPeriod.start_date).limit(1)
        ).scalar_one_or_none()
        return PeriodInfo.from_model(period) if period else None
