"""
SequenceService -- monotonic sequence allocation via locked counter rows.

Responsibility:
    Allocates strictly increasing integers per sequence name.  The ledger
    kernel keeps two sequences per company: journal entry numbers and the
    ledger row ``seq`` that orders rows sharing a transaction date.

Invariants enforced:
    - The locked counter row is the sole source of the next value.  The
      aggregate max()+1 pattern is never used.
    - Allocation is transactional: a rolled-back transaction returns its
      values.

Failure modes:
    - IntegrityError on a concurrent first use of a name is absorbed by a
      savepoint and the allocation retried against the winner's row.
"""

from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ledger_kernel.logging_config import get_logger
from ledger_kernel.models.sequence import SequenceCounter

logger = get_logger("services.sequence")


def journal_entry_sequence(company_id: UUID) -> str:
    return f"journal_entry:{company_id}"


def ledger_row_sequence(company_id: UUID) -> str:
    return f"ledger_row:{company_id}"


def format_entry_number(prefix: str, value: int) -> str:
    """``JE`` and 7 -> ``JE-00007``."""
    return f"{prefix}-{value:05d}"


class SequenceService:
    """
    Transactional sequence numbers backed by ``sequence_counters``.

    Usage:
        seq = SequenceService(session).next_value(ledger_row_sequence(company_id))
    """

    def __init__(self, session: Session):
        self._session = session

    def _locked_counter(self, sequence_name: str) -> SequenceCounter | None:
        return self._session.execute(
            select(SequenceCounter)
            .where(SequenceCounter.name == sequence_name)
            .with_for_update()
            .execution_options(populate_existing=True)
        ).scalar_one_or_none()

    def lock_counter(self, sequence_name: str) -> SequenceCounter:
        """
        Lock (or create at zero) the counter row without allocating a value.

        Callers that must hold the counter before other row locks use this
        to keep one lock order across operations.
        """
        counter = self._locked_counter(sequence_name)
        if counter is not None:
            return counter

        savepoint = self._session.begin_nested()
        try:
            counter = SequenceCounter(name=sequence_name, current_value=0)
            self._session.add(counter)
            self._session.flush()
            savepoint.commit()
            return counter
        except IntegrityError:
            logger.debug(
                "sequence_counter_race_retry",
                extra={"sequence_name": sequence_name},
            )
            savepoint.rollback()
            counter = self._locked_counter(sequence_name)
            if counter is None:
                raise
            return counter

    def next_value(self, sequence_name: str) -> int:
        """
        Lock (or create) the counter row, increment it, return the new value.

        Returns:
            An integer > 0, strictly greater than any value previously
            returned for ``sequence_name``.
        """
        counter = self.lock_counter(sequence_name)
        counter.current_value += 1
        self._session.flush()
        logger.debug(
            "sequence_allocated",
            extra={"sequence_name": sequence_name, "value": counter.current_value},
        )
        return counter.current_value

    def current_value(self, sequence_name: str) -> int:
        """Last allocated value, or 0 if the sequence was never used."""
        value = self._session.execute(
            select(SequenceCounter.current_value).where(
                SequenceCounter.name == sequence_name
            )
        ).scalar_one_or_none()
        return value or 0
