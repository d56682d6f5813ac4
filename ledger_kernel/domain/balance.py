"""
Balance arithmetic -- the pure rules of double-entry posting.

Responsibility:
    Sign conventions, entry balance checks, running-balance replay, closing
    line sides and trial-balance columns.  Everything here is a function of
    its arguments; nothing touches the database.

Invariants enforced:
    - The account's normal balance is the ONLY input deciding the sign of a
      ledger movement.  Account type never participates.
    - Entry balance: abs(total_debit - total_credit) <= tolerance.
    - Each line carries non-negative amounts on exactly one side.

Failure modes:
    - UnbalancedEntryError, InvalidLineError, EmptyEntryError.
"""

from __future__ import annotations

from collections.abc import Iterable
from decimal import Decimal

from ledger_kernel.db.types import ZERO, round_money
from ledger_kernel.exceptions import (
    EmptyEntryError,
    InvalidLineError,
    UnbalancedEntryError,
)

DEBIT = "debit"
CREDIT = "credit"


def _side(normal_balance) -> str:
    value = getattr(normal_balance, "value", normal_balance)
    if value not in (DEBIT, CREDIT):
        raise ValueError(f"Unknown normal balance: {normal_balance!r}")
    return value


def signed_delta(normal_balance, debit: Decimal, credit: Decimal) -> Decimal:
    """
    Effect of a debit/credit pair on a balance kept in the account's
    normal-balance direction.

    Debit-normal: debit - credit.  Credit-normal: credit - debit.
    """
    if _side(normal_balance) == DEBIT:
        return round_money(debit - credit)
    return round_money(credit - debit)


def validate_line_amounts(index: int, debit: Decimal, credit: Decimal) -> None:
    """Reject negative amounts and lines that are not exactly one-sided."""
    if debit < 0 or credit < 0:
        raise InvalidLineError(index, "debit and credit must be non-negative")
    if debit > 0 and credit > 0:
        raise InvalidLineError(index, "a line may carry a debit or a credit, not both")
    if debit == 0 and credit == 0:
        raise InvalidLineError(index, "a line must carry a non-zero debit or credit")


def line_totals(pairs: Iterable[tuple[Decimal, Decimal]]) -> tuple[Decimal, Decimal]:
    """Sum (debit, credit) pairs, rounded to cents."""
    total_debit = ZERO
    total_credit = ZERO
    for debit, credit in pairs:
        total_debit += debit
        total_credit += credit
    return round_money(total_debit), round_money(total_credit)


def is_balanced(total_debit: Decimal, total_credit: Decimal, tolerance: Decimal) -> bool:
    return abs(total_debit - total_credit) <= tolerance


def validate_entry_lines(
    pairs: list[tuple[Decimal, Decimal]],
    tolerance: Decimal,
) -> tuple[Decimal, Decimal]:
    """
    Validate a whole entry's amounts and return its (total_debit, total_credit).

    Raises:
        EmptyEntryError: no lines.
        InvalidLineError: a line is negative or not one-sided.
        UnbalancedEntryError: totals differ by more than ``tolerance``.
    """
    if not pairs:
        raise EmptyEntryError()
    for index, (debit, credit) in enumerate(pairs):
        validate_line_amounts(index, debit, credit)
    total_debit, total_credit = line_totals(pairs)
    if not is_balanced(total_debit, total_credit, tolerance):
        raise UnbalancedEntryError(
            debits=str(total_debit),
            credits=str(total_credit),
        )
    return total_debit, total_credit


def replay_running_balances(
    normal_balance,
    movements: Iterable[tuple[Decimal, Decimal]],
    opening: Decimal = ZERO,
) -> list[Decimal]:
    """
    Re-derive running balances for ordered (debit, credit) movements.

    ``movements`` must already be in (transaction_date, seq) order.
    """
    balances = []
    running = opening
    for debit, credit in movements:
        running = round_money(running + signed_delta(normal_balance, debit, credit))
        balances.append(running)
    return balances


def closing_amounts(normal_balance, balance: Decimal) -> tuple[Decimal, Decimal]:
    """
    (debit, credit) that brings ``balance`` to zero.

    A positive balance is removed on the side opposite the normal balance;
    a negative balance flips to the normal side.
    """
    amount = round_money(abs(balance))
    if balance == 0:
        return ZERO, ZERO
    removes_on_credit = (_side(normal_balance) == DEBIT) == (balance > 0)
    if removes_on_credit:
        return ZERO, amount
    return amount, ZERO


def retained_earnings_amounts(net_income: Decimal) -> tuple[Decimal, Decimal]:
    """Credit retained earnings for income, debit it for a loss."""
    amount = round_money(abs(net_income))
    if net_income >= 0:
        return ZERO, amount
    return amount, ZERO


def trial_balance_columns(normal_balance, balance: Decimal) -> tuple[Decimal, Decimal]:
    """
    Place a balance in the debit or credit column of a trial balance.

    Normal-side balances go in their own column; a negative balance (for
    example a contra position) goes in the opposite one.
    """
    amount = round_money(abs(balance))
    on_debit = (_side(normal_balance) == DEBIT) == (balance >= 0)
    if on_debit:
        return amount, ZERO
    return ZERO, amount
