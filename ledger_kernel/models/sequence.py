"""
Module: ledger_kernel.models.sequence
Responsibility: Named counter rows backing SequenceService.  Each row is
    locked with SELECT ... FOR UPDATE while a value is allocated, so values
    are unique and strictly increasing per name.
"""

from sqlalchemy import BigInteger, String
from sqlalchemy.orm import Mapped, mapped_column

from ledger_kernel.db.base import Base


class SequenceCounter(Base):
    """One named sequence and its last allocated value."""

    __tablename__ = "sequence_counters"

    # e.g. "journal_entry:<company_id>", "ledger_row:<company_id>"
    name: Mapped[str] = mapped_column(String(100), nullable=False, unique=True)

    current_value: Mapped[int] = mapped_column(BigInteger, nullable=False, default=0)
