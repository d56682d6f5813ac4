"""
ORM-level immutability enforcement for posted accounting history.

SQLAlchemy fires mapper events before an UPDATE or DELETE reaches the
database.  The listeners registered here inspect attribute history and raise
ImmutabilityViolationError when code tries to rewrite history:

    Entity         | Frozen when                   | Still allowed
    ---------------|-------------------------------|-------------------------------
    JournalEntry   | status is POSTED or VOID      | POSTED -> VOID with voided_*
    JournalLine    | parent entry not DRAFT        | nothing
    LedgerRow      | always                        | running_balance (rebase/replay)
    Account        | ledger rows reference it      | non-structural fields, balance

Deleting a ledger row, a non-draft entry or one of its lines is always
blocked.  ``updated_at``/``updated_by_id`` are audit metadata and may change
on any row.

Bulk ``update()`` statements bypass mapper events; LedgerStore's rebase is
the only bulk statement and touches running_balance alone.
"""

from sqlalchemy import event, exists, inspect, select
from sqlalchemy.orm.attributes import get_history

from ledger_kernel.exceptions import ImmutabilityViolationError
from ledger_kernel.logging_config import get_logger

logger = get_logger("db.immutability")

_AUDIT_FIELDS = frozenset({"updated_at", "updated_by_id"})
_VOID_TRANSITION_FIELDS = frozenset({"status", "voided_by_id", "voided_at"})
_LEDGER_MUTABLE_FIELDS = frozenset({"running_balance"})


def _changed_fields(target) -> list[str]:
    insp = inspect(target)
    changed = []
    for attr in insp.mapper.column_attrs:
        if attr.key in _AUDIT_FIELDS:
            continue
        if get_history(target, attr.key).has_changes():
            changed.append(attr.key)
    return changed


def _violation(entity_type: str, entity_id, operation: str, reason: str, **fields):
    logger.error(
        "immutability_violation_blocked",
        extra={
            "entity_type": entity_type,
            "entity_id": str(entity_id),
            "operation": operation,
            **fields,
        },
    )
    return ImmutabilityViolationError(
        entity_type=entity_type,
        entity_id=str(entity_id),
        reason=reason,
    )


def _previous_status(target) -> str:
    history = get_history(target, "status")
    if history.deleted:
        old = history.deleted[0]
    else:
        old = target.status
    return getattr(old, "value", old)


def _check_journal_entry_update(mapper, connection, target):
    """
    Block changes to entries that were already posted or voided.

    DRAFT -> POSTED is the posting itself and passes.  POSTED -> VOID may
    touch only the void fields.
    """
    previous = _previous_status(target)
    if previous == "draft":
        return

    changed = _changed_fields(target)
    if not changed:
        return

    current = getattr(target.status, "value", target.status)
    if previous == "posted" and current == "void":
        extra = [f for f in changed if f not in _VOID_TRANSITION_FIELDS]
        if not extra:
            return
        changed = extra

    raise _violation(
        "JournalEntry",
        target.id,
        "UPDATE",
        f"Cannot modify field(s) {changed} on {previous} journal entry",
        fields=changed,
    )


def _check_journal_entry_delete(mapper, connection, target):
    previous = _previous_status(target)
    if previous != "draft":
        raise _violation(
            "JournalEntry",
            target.id,
            "DELETE",
            f"Cannot delete {previous} journal entry",
        )


def _line_parent_status(connection, target) -> str | None:
    from ledger_kernel.models.journal import JournalEntry

    return connection.execute(
        select(JournalEntry.status).where(JournalEntry.id == target.journal_entry_id)
    ).scalar_one_or_none()


def _check_journal_line_update(mapper, connection, target):
    status = _line_parent_status(connection, target)
    if status is not None and status != "draft" and _changed_fields(target):
        raise _violation(
            "JournalLine",
            target.id,
            "UPDATE",
            f"Cannot modify a line of a {status} journal entry",
        )


def _check_journal_line_delete(mapper, connection, target):
    status = _line_parent_status(connection, target)
    if status is not None and status != "draft":
        raise _violation(
            "JournalLine",
            target.id,
            "DELETE",
            f"Cannot delete a line of a {status} journal entry",
        )


def _check_ledger_row_update(mapper, connection, target):
    changed = [f for f in _changed_fields(target) if f not in _LEDGER_MUTABLE_FIELDS]
    if changed:
        raise _violation(
            "LedgerRow",
            target.id,
            "UPDATE",
            f"Ledger rows are append-only; cannot modify {changed}",
            fields=changed,
        )


def _check_ledger_row_delete(mapper, connection, target):
    raise _violation(
        "LedgerRow",
        target.id,
        "DELETE",
        "Ledger rows are append-only and cannot be deleted",
    )


def _account_has_ledger_rows(connection, account_id) -> bool:
    from ledger_kernel.models.ledger import LedgerRow

    return bool(
        connection.execute(
            select(exists().where(LedgerRow.account_id == account_id))
        ).scalar()
    )


def _check_account_structural_update(mapper, connection, target):
    from ledger_kernel.models.account import ACCOUNT_STRUCTURAL_FIELDS

    changed = [
        f for f in ACCOUNT_STRUCTURAL_FIELDS if get_history(target, f).has_changes()
    ]
    if changed and _account_has_ledger_rows(connection, target.id):
        raise _violation(
            "Account",
            target.id,
            "UPDATE",
            f"Cannot modify structural field(s) {sorted(changed)} on an account "
            "with ledger rows",
            fields=sorted(changed),
        )


def _check_account_delete(mapper, connection, target):
    if _account_has_ledger_rows(connection, target.id):
        raise _violation(
            "Account",
            target.id,
            "DELETE",
            "Cannot delete an account with ledger rows; archive it instead",
        )


def _listeners():
    from ledger_kernel.models.account import Account
    from ledger_kernel.models.journal import JournalEntry, JournalLine
    from ledger_kernel.models.ledger import LedgerRow

    return [
        (JournalEntry, "before_update", _check_journal_entry_update),
        (JournalEntry, "before_delete", _check_journal_entry_delete),
        (JournalLine, "before_update", _check_journal_line_update),
        (JournalLine, "before_delete", _check_journal_line_delete),
        (LedgerRow, "before_update", _check_ledger_row_update),
        (LedgerRow, "before_delete", _check_ledger_row_delete),
        (Account, "before_update", _check_account_structural_update),
        (Account, "before_delete", _check_account_delete),
    ]


def register_immutability_listeners() -> None:
    """
    Register the immutability listeners.

    Call once at application start, after models are importable.
    Registering twice is a no-op.
    """
    for target, event_name, fn in _listeners():
        if not event.contains(target, event_name, fn):
            event.listen(target, event_name, fn)


def _safe_remove_listener(target, event_name, listener_fn):
    if event.contains(target, event_name, listener_fn):
        event.remove(target, event_name, listener_fn)


def unregister_immutability_listeners() -> None:
    """Remove the listeners. Tests only."""
    for target, event_name, fn in _listeners():
        _safe_remove_listener(target, event_name, fn)
