"""
BaseService -- common base for ledger kernel services that write.

Responsibility:
    Holds the caller's SQLAlchemy ``Session`` and provides ``_atomic()``,
    the savepoint wrapper every public write operation runs in.

Invariants enforced:
    - Services flush and never commit or roll back the caller's
      transaction.  The caller (``session_scope()`` or a test harness) owns
      the outer transaction.
    - Each write operation runs inside ``session.begin_nested()``.  A
      domain error or unexpected exception releases nothing: the savepoint
      is rolled back and the caller's earlier work stays intact.

Failure modes:
    - Rejected operations are logged at WARNING with the error code and
      re-raised unchanged.
"""

from abc import ABC
from contextlib import contextmanager
from typing import Any, Generic, Iterator, TypeVar

from sqlalchemy.orm import Session

from ledger_kernel.db.base import Base
from ledger_kernel.exceptions import LedgerKernelError
from ledger_kernel.logging_config import get_logger

ModelType = TypeVar("ModelType", bound=Base)

logger = get_logger("services.base")


class BaseService(ABC, Generic[ModelType]):
    """
    Abstract base class for kernel services.

    Contract:
        Accepts a Session from the caller and persists through
        ``session.flush()`` within the active transaction.

    Non-goals:
        - Does NOT manage the outer transaction lifecycle.
        - Does NOT provide read-only queries; those live in
          ``ledger_kernel/selectors/``.
    """

    def __init__(self, session: Session):
        self.session = session

    @contextmanager
    def _atomic(self, operation: str, **context: Any) -> Iterator[None]:
        """
        Run a block inside a SAVEPOINT.

        The savepoint is released on success and rolled back on any
        exception, which then propagates to the caller.
        """
        try:
            with self.session.begin_nested():
                yield
        except LedgerKernelError as exc:
            logger.warning(
                "operation_rejected",
                extra={
                    "operation": operation,
                    "error_code": exc.code,
                    "error": str(exc),
                    **{k: str(v) for k, v in context.items()},
                },
            )
            raise
