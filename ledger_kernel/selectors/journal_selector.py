"""
Module: ledger_kernel.selectors.journal_selector
Responsibility: Read-only journal entry queries for the reporting layer:
    fetch one entry, or list a company's entries filtered by status, type
    and date range.
"""

from datetime import date
from uuid import UUID

from sqlalchemy import func, select

from ledger_kernel.domain.dtos import JournalEntryInfo
from ledger_kernel.models.journal import (
    JournalEntry,
    JournalEntryStatus,
    JournalEntryType,
)
from ledger_kernel.selectors.base import BaseSelector


class JournalSelector(BaseSelector[JournalEntry]):
    """Journal entry reads, newest first."""

    def get_entry(self, company_id: UUID, entry_id: UUID) -> JournalEntryInfo | None:
        entry = self.session.execute(
            select(JournalEntry).where(
                JournalEntry.company_id == company_id,
                JournalEntry.id == entry_id,
            )
        ).scalar_one_or_none()
        return JournalEntryInfo.from_model(entry) if entry else None

    def get_by_number(self, company_id: UUID, entry_number: str) -> JournalEntryInfo | None:
        entry = self.session.execute(
            select(JournalEntry).where(
                JournalEntry.company_id == company_id,
                JournalEntry.entry_number == entry_number,
            )
        ).scalar_one_or_none()
        return JournalEntryInfo.from_model(entry) if entry else None

    def _filtered(
        self,
        stmt,
        company_id: UUID,
        status: JournalEntryStatus | None,
        entry_type: JournalEntryType | None,
        start_date: date | None,
        end_date: date | None,
    ):
        stmt = stmt.where(JournalEntry.company_id == company_id)
        if status is not None:
            stmt = stmt.where(JournalEntry.status == JournalEntryStatus(status).value)
        if entry_type is not None:
            stmt = stmt.where(JournalEntry.entry_type == JournalEntryType(entry_type).value)
        if start_date is not None:
            stmt = stmt.where(JournalEntry.entry_date >= start_date)
        if end_date is not None:
            stmt = stmt.where(JournalEntry.entry_date <= end_date)
        return stmt

    def list_entries(
        self,
        company_id: UUID,
        status: JournalEntryStatus | None = None,
        entry_type: JournalEntryType | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
        limit: int | None = None,
        offset: int = 0,
    ) -> list[JournalEntryInfo]:
        """
        List entries ordered by entry_date descending, then entry_number
        descending.  Date bounds are inclusive.
        """
        stmt = self._filtered(
            select(JournalEntry), company_id, status, entry_type, start_date, end_date
        ).order_by(JournalEntry.entry_date.desc(), JournalEntry.entry_number.desc())
        if offset:
            stmt = stmt.offset(offset)
        if limit is not None:
            stmt = stmt.limit(limit)
        entries = self.session.execute(stmt).scalars().all()
        return [JournalEntryInfo.from_model(e) for e in entries]

    def count_entries(
        self,
        company_id: UUID,
        status: JournalEntryStatus | None = None,
        entry_type: JournalEntryType | None = None,
        start_date: date | None = None,
        end_date: date | None = None,
    ) -> int:
        stmt = self._filtered(
            select(func.count(JournalEntry.id)),
            company_id,
            status,
            entry_type,
            start_date,
            end_date,
        )
        return self.session.execute(stmt).scalar_one()
