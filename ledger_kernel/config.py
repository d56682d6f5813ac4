"""
Module: ledger_kernel.config
Responsibility: Load kernel settings from a YAML file and the environment
    into a single frozen ``KernelSettings`` value that services receive at
    construction time.
Architecture position: Kernel root.  Imported by services and the db layer;
    imports nothing from them.

Invariants enforced:
    - Settings are immutable once loaded (frozen dataclass).
    - Monetary settings are parsed as Decimal from their string form, never
      through float.
    - Enumerated policies (backdated postings, void dating) reject unknown
      values at load time instead of at first use.

Failure modes:
    - FileNotFoundError if an explicit config path does not exist.
    - yaml.YAMLError on malformed YAML.
    - ValueError on an unknown key or an invalid policy value.
"""

from __future__ import annotations

import os
from dataclasses import dataclass, fields, replace
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

BACKDATED_POLICIES = ("rebase", "reject")
VOID_DATING_POLICIES = ("entry_date", "void_date")

_ENV_PREFIX = "LEDGER_KERNEL_"


@dataclass(frozen=True)
class KernelSettings:
    """
    Runtime settings for the ledger kernel.

    Attributes:
        database_url: SQLAlchemy URL used by ``db.engine.init_engine_from_url``.
        balance_tolerance: Maximum absolute debit/credit difference accepted
            for an entry, and the drift threshold used by reconciliation.
        retained_earnings_code: Account code period close posts net income to.
        retained_earnings_name: Name used when that account is auto-created.
        backdated_postings: ``rebase`` shifts later running balances of the
            account when an earlier-dated row is inserted; ``reject`` refuses
            the posting.
        void_dating: Date given to reversing ledger rows, either the original
            ``entry_date`` or the ``void_date`` reported by the clock.
        reconcile_before_close: Refresh revenue/expense cached balances from
            the ledger before computing a closing entry.
        enforce_closed_periods: Reject non-closing postings dated inside a
            closed or locked period.
        entry_number_prefix: Prefix of generated journal entry numbers.
        log_level: Level passed to ``configure_logging``.
    """

    database_url: str = "sqlite:///ledger_kernel.db"
    balance_tolerance: Decimal = Decimal("0.01")
    retained_earnings_code: str = "3200"
    retained_earnings_name: str = "Retained Earnings"
    backdated_postings: str = "rebase"
    void_dating: str = "entry_date"
    reconcile_before_close: bool = True
    enforce_closed_periods: bool = True
    entry_number_prefix: str = "JE"
    log_level: str = "INFO"

    def __post_init__(self) -> None:
        if self.backdated_postings not in BACKDATED_POLICIES:
            raise ValueError(
                f"backdated_postings must be one of {BACKDATED_POLICIES}, "
                f"got {self.backdated_postings!r}"
            )
        if self.void_dating not in VOID_DATING_POLICIES:
            raise ValueError(
                f"void_dating must be one of {VOID_DATING_POLICIES}, "
                f"got {self.void_dating!r}"
            )
        if self.balance_tolerance < 0:
            raise ValueError("balance_tolerance must not be negative")


def _coerce(name: str, value: Any) -> Any:
    if name == "balance_tolerance":
        return Decimal(str(value))
    if name in ("reconcile_before_close", "enforce_closed_periods"):
        if isinstance(value, str):
            return value.strip().lower() in ("1", "true", "yes", "on")
        return bool(value)
    return str(value)


def settings_from_dict(data: dict[str, Any]) -> KernelSettings:
    """Build settings from a mapping, rejecting unknown keys."""
    known = {f.name for f in fields(KernelSettings)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(f"Unknown ledger_kernel settings: {sorted(unknown)}")
    return KernelSettings(**{k: _coerce(k, v) for k, v in data.items()})


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its contents as a dict (empty if blank)."""
    with open(path) as f:
        return yaml.safe_load(f) or {}


def load_settings(
    path: str | Path | None = None,
    environ: dict[str, str] | None = None,
) -> KernelSettings:
    """
    Load settings from YAML, then apply environment overrides.

    The YAML document may hold the settings at top level or under a
    ``ledger_kernel`` key.  Environment variables named
    ``LEDGER_KERNEL_<FIELD>`` override individual fields; ``DATABASE_URL``
    is honoured when ``LEDGER_KERNEL_DATABASE_URL`` is absent.

    Args:
        path: YAML file.  Defaults to ``LEDGER_KERNEL_CONFIG`` when set,
            otherwise built-in defaults are used.
        environ: Environment mapping (defaults to ``os.environ``).
    """
    env = os.environ if environ is None else environ

    if path is None:
        path = env.get(f"{_ENV_PREFIX}CONFIG")

    data: dict[str, Any] = {}
    if path is not None:
        raw = load_yaml_file(Path(path))
        data = dict(raw.get("ledger_kernel", raw))

    settings = settings_from_dict(data)

    overrides: dict[str, Any] = {}
    for f in fields(KernelSettings):
        env_value = env.get(f"{_ENV_PREFIX}{f.name.upper()}")
        if env_value is not None:
            overrides[f.name] = _coerce(f.name, env_value)
    if "database_url" not in overrides and env.get("DATABASE_URL"):
        overrides["database_url"] = env["DATABASE_URL"]

    return replace(settings, **overrides) if overrides else settings
