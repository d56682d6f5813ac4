"""
Pytest fixtures for the ledger kernel test suite.

Provides:
- One engine and schema per test session, per-test isolation by rolling
  back a joined outer transaction
- Service, selector and clock fixtures
- A standard chart of accounts and posting helpers
- pg_session_factory for multi-connection tests (PostgreSQL only)

Environment Variables:
- DATABASE_URL: database for the suite.  Defaults to an in-memory SQLite
  database; point it at PostgreSQL (postgresql+psycopg://...) to run the
  same tests against the production dialect.
"""

import json
import logging
import os
import threading
from datetime import date
from decimal import Decimal
from io import StringIO
from typing import Generator
from uuid import UUID, uuid4

import pytest
from sqlalchemy import text
from sqlalchemy.orm import Session

from ledger_kernel.config import KernelSettings
from ledger_kernel.db.base import Base
from ledger_kernel.db.engine import (
    create_tables,
    drop_tables,
    get_session_factory,
    init_engine_from_url,
    reset_engine,
)
from ledger_kernel.db.immutability import (
    register_immutability_listeners,
    unregister_immutability_listeners,
)
from ledger_kernel.domain.clock import DeterministicClock
from ledger_kernel.domain.dtos import JournalLineInput
from ledger_kernel.logging_config import (
    LogContext,
    StructuredFormatter,
    configure_logging,
    reset_logging,
)
from ledger_kernel.models.account import AccountTag, AccountType, NormalBalance
from ledger_kernel.selectors.journal_selector import JournalSelector
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.selectors.period_selector import PeriodSelector
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.ledger_store import LedgerStore
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.reconciliation_service import ReconciliationService

# Test actor ID for all test operations
TEST_ACTOR_ID = uuid4()

DEFAULT_TEST_URL = "sqlite://"


def get_database_url() -> str:
    return os.environ.get("DATABASE_URL", DEFAULT_TEST_URL)


# =============================================================================
# Logging fixtures
# =============================================================================


@pytest.fixture(autouse=True, scope="session")
def _configure_test_logging():
    """Configure structured logging for the test suite."""
    reset_logging()
    configure_logging(level=logging.DEBUG)
    yield
    reset_logging()


@pytest.fixture(autouse=True)
def _clear_log_context():
    """Clear LogContext between tests to prevent cross-test contamination."""
    LogContext.clear()
    yield
    LogContext.clear()


@pytest.fixture
def captured_logs():
    """
    Capture ledger_kernel logs as parsed JSON dicts.

    Usage::

        def test_something(captured_logs, journal_service):
            journal_service.post_entry(...)
            logs = captured_logs()
            assert any(r["message"] == "journal_entry_posted" for r in logs)
    """
    stream = StringIO()
    handler = logging.StreamHandler(stream)
    handler.setFormatter(StructuredFormatter())
    root = logging.getLogger("ledger_kernel")
    previous_level = root.level
    root.setLevel(logging.DEBUG)
    root.addHandler(handler)

    def _get_records() -> list[dict]:
        lines = stream.getvalue().strip().split("\n")
        return [json.loads(line) for line in lines if line]

    yield _get_records

    root.removeHandler(handler)
    root.setLevel(previous_level)


# =============================================================================
# Database
# =============================================================================


@pytest.fixture(scope="session")
def db_engine():
    """Single engine for the entire test session."""
    eng = init_engine_from_url(get_database_url(), echo=False, pool_size=5)
    yield eng
    reset_engine()


@pytest.fixture(scope="session")
def db_tables(db_engine):
    """Create all tables once per session; listeners stay registered."""
    drop_tables()
    create_tables()
    register_immutability_listeners()
    yield
    unregister_immutability_listeners()
    drop_tables()


@pytest.fixture
def session(db_tables, db_engine) -> Generator[Session, None, None]:
    """
    Session joined to an outer transaction that is rolled back at teardown.

    ``session.commit()`` inside a test releases a savepoint only, so every
    test starts from empty tables.
    """
    conn = db_engine.connect()
    trans = conn.begin()
    sess = Session(bind=conn, join_transaction_mode="create_savepoint", expire_on_commit=False)
    yield sess
    try:
        sess.close()
    finally:
        try:
            trans.rollback()
        finally:
            conn.close()


# =============================================================================
# Concurrency fixtures (real commits + TRUNCATE cleanup)
# =============================================================================


def _truncate_all_tables(engine) -> None:
    names = ", ".join(table.name for table in Base.metadata.sorted_tables)
    with engine.begin() as conn:
        conn.execute(text(f"TRUNCATE TABLE {names} CASCADE"))


@pytest.fixture
def pg_session_factory(db_engine, db_tables):
    """
    Session factory for tests that run work on several connections at once.

    Sessions from this factory really commit, so the test is skipped unless
    DATABASE_URL points at PostgreSQL.  On teardown every tracked session is
    rolled back and closed, then all tables are truncated.
    """
    if db_engine.dialect.name != "postgresql":
        pytest.skip("requires a PostgreSQL DATABASE_URL")

    factory = get_session_factory()
    created: list[Session] = []
    lock = threading.Lock()

    def tracked_factory() -> Session:
        with lock:
            sess = factory()
            created.append(sess)
            return sess

    yield tracked_factory

    for sess in created:
        if sess.in_transaction():
            sess.rollback()
        sess.close()
    _truncate_all_tables(db_engine)


# =============================================================================
# Identity, clock and settings
# =============================================================================


@pytest.fixture
def test_actor_id() -> UUID:
    """Provide a consistent test actor ID."""
    return TEST_ACTOR_ID


@pytest.fixture
def company_id() -> UUID:
    """A fresh company per test; every query is scoped by it."""
    return uuid4()


@pytest.fixture
def deterministic_clock():
    """Provide a deterministic clock for testing."""
    return DeterministicClock()


@pytest.fixture
def settings() -> KernelSettings:
    return KernelSettings(database_url=get_database_url())


# =============================================================================
# Services and selectors
# =============================================================================


@pytest.fixture
def account_service(session, settings) -> AccountService:
    return AccountService(session, settings)


@pytest.fixture
def journal_service(session, settings, deterministic_clock) -> JournalService:
    return JournalService(session, settings, deterministic_clock)


@pytest.fixture
def period_service(session, settings, deterministic_clock) -> PeriodService:
    return PeriodService(session, settings, deterministic_clock)


@pytest.fixture
def reconciliation_service(session, settings) -> ReconciliationService:
    return ReconciliationService(session, settings)


@pytest.fixture
def ledger_store(session, settings) -> LedgerStore:
    return LedgerStore(session, settings)


@pytest.fixture
def ledger_selector(session) -> LedgerSelector:
    return LedgerSelector(session)


@pytest.fixture
def journal_selector(session) -> JournalSelector:
    return JournalSelector(session)


@pytest.fixture
def period_selector(session) -> PeriodSelector:
    return PeriodSelector(session)


# =============================================================================
# Chart of accounts and posting helpers
# =============================================================================


STANDARD_CHART = (
    # key, code, name, type, normal balance override, tags
    ("cash", "1000", "Cash", AccountType.ASSET, None, (AccountTag.CURRENT,)),
    ("receivable", "1100", "Accounts Receivable", AccountType.ASSET, None, (AccountTag.CURRENT,)),
    ("payable", "2000", "Accounts Payable", AccountType.LIABILITY, None, (AccountTag.CURRENT,)),
    ("equity", "3000", "Owner Capital", AccountType.EQUITY, None, ()),
    ("revenue", "4000", "Sales Revenue", AccountType.REVENUE, None, (AccountTag.OPERATING,)),
    ("service_revenue", "4100", "Service Revenue", AccountType.REVENUE, None, (AccountTag.OPERATING,)),
    (
        "sales_returns",
        "4900",
        "Sales Returns",
        AccountType.REVENUE,
        NormalBalance.DEBIT,
        (AccountTag.CONTRA_REVENUE,),
    ),
    ("cogs", "5000", "Cost of Goods Sold", AccountType.EXPENSE, None, (AccountTag.COST_OF_SALES,)),
    ("rent", "5100", "Rent Expense", AccountType.EXPENSE, None, (AccountTag.OPERATING,)),
)


@pytest.fixture
def create_account(account_service, company_id, test_actor_id):
    """Factory: create an account for the test company."""

    def _create(code, name, account_type, **kwargs):
        return account_service.create_account(
            company_id, test_actor_id, code, name, account_type, **kwargs
        )

    return _create


@pytest.fixture
def standard_accounts(create_account) -> dict:
    """Standard chart of accounts keyed by role (``cash``, ``revenue``, ...)."""
    accounts = {}
    for key, code, name, account_type, normal_balance, tags in STANDARD_CHART:
        accounts[key] = create_account(
            code, name, account_type, normal_balance=normal_balance, tags=tags
        )
    return accounts


@pytest.fixture
def post_entry(journal_service, company_id, test_actor_id):
    """
    Factory: create and post a two-or-more line entry.

    ``lines`` is a list of (account, debit, credit) tuples with amounts as
    strings or Decimals.
    """

    def _post(lines, entry_date=date(2025, 1, 15), description=None, **kwargs):
        return journal_service.create_and_post_entry(
            company_id,
            test_actor_id,
            entry_date,
            [
                JournalLineInput(account.id, debit=Decimal(debit), credit=Decimal(credit))
                for account, debit, credit in lines
            ],
            description=description,
            **kwargs,
        )

    return _post


@pytest.fixture
def january_period(period_service, company_id, test_actor_id):
    return period_service.create_period(
        company_id,
        test_actor_id,
        "Jan 2025",
        "monthly",
        2025,
        date(2025, 1, 1),
        date(2025, 1, 31),
    )
