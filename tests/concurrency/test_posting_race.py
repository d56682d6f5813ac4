"""
Concurrent postings to the same account.

Two threads, each on its own connection, post to one shared cash account
at the same time.  Some postings are backdated so the rebase of later rows
races with new appends.  The account row lock must serialize them: no lost
update, and replaying the rows from zero gives every stored running balance.

Requires PostgreSQL (DATABASE_URL=postgresql+psycopg://...).
"""

from concurrent.futures import ThreadPoolExecutor
from datetime import date
from decimal import Decimal
from threading import Barrier
from uuid import uuid4

import pytest

from ledger_kernel.domain.clock import SystemClock
from ledger_kernel.domain.dtos import JournalLineInput
from ledger_kernel.models.account import AccountType
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.reconciliation_service import ReconciliationService

pytestmark = pytest.mark.postgres

D = Decimal

POSTS_PER_THREAD = 10


def _seed_accounts(session, settings, company_id, actor_id):
    accounts = AccountService(session, settings)
    cash = accounts.create_account(company_id, actor_id, "1000", "Cash", AccountType.ASSET)
    sales = accounts.create_account(company_id, actor_id, "4000", "Sales", AccountType.REVENUE)
    services = accounts.create_account(
        company_id, actor_id, "4100", "Service Revenue", AccountType.REVENUE
    )
    session.commit()
    return cash.id, sales.id, services.id


def _amounts(worker):
    return [D(worker * 100 + i + 1) for i in range(POSTS_PER_THREAD)]


def _entry_date(worker, i):
    # Interleaved, partly decreasing dates force backdated postings.
    return date(2025, 1, 1 + (i * 7 + worker * 3) % 28)


class TestConcurrentPosting:

    def test_two_sessions_posting_to_one_account(self, pg_session_factory, settings, test_actor_id):
        company_id = uuid4()
        setup = pg_session_factory()
        cash_id, sales_id, services_id = _seed_accounts(setup, settings, company_id, test_actor_id)
        setup.close()

        barrier = Barrier(2)

        def worker(index, revenue_id):
            session = pg_session_factory()
            service = JournalService(session, settings, SystemClock())
            barrier.wait()
            for i, amount in enumerate(_amounts(index)):
                service.create_and_post_entry(
                    company_id,
                    test_actor_id,
                    _entry_date(index, i),
                    [
                        JournalLineInput.dr(cash_id, amount),
                        JournalLineInput.cr(revenue_id, amount),
                    ],
                    description=f"worker {index} sale {i}",
                )
                session.commit()
            session.close()

        with ThreadPoolExecutor(max_workers=2) as pool:
            futures = [pool.submit(worker, 0, sales_id), pool.submit(worker, 1, services_id)]
            for future in futures:
                future.result(timeout=60)

        check = pg_session_factory()
        expected_total = sum(_amounts(0) + _amounts(1), D("0"))

        ledger = LedgerSelector(check)
        assert ledger.latest_balance(company_id, cash_id) == expected_total
        assert ledger.latest_balance(company_id, sales_id) == sum(_amounts(0), D("0"))
        assert ledger.latest_balance(company_id, services_id) == sum(_amounts(1), D("0"))
        assert len(ledger.rows_for_account(company_id, cash_id)) == 2 * POSTS_PER_THREAD

        cash = AccountService(check, settings).get_account(company_id, cash_id)
        assert cash.balance == expected_total

        assert ReconciliationService(check, settings).verify_running_balances(company_id) == []

    def test_entry_numbers_unique_under_contention(self, pg_session_factory, settings, test_actor_id):
        company_id = uuid4()
        setup = pg_session_factory()
        cash_id, sales_id, _ = _seed_accounts(setup, settings, company_id, test_actor_id)
        setup.close()

        barrier = Barrier(2)

        def worker(index):
            session = pg_session_factory()
            service = JournalService(session, settings, SystemClock())
            barrier.wait()
            numbers = []
            for i in range(POSTS_PER_THREAD):
                entry = service.create_and_post_entry(
                    company_id,
                    test_actor_id,
                    date(2025, 1, 15),
                    [JournalLineInput.dr(cash_id, D("1")), JournalLineInput.cr(sales_id, D("1"))],
                )
                session.commit()
                numbers.append(entry.entry_number)
            session.close()
            return numbers

        with ThreadPoolExecutor(max_workers=2) as pool:
            results = [f.result(timeout=60) for f in [pool.submit(worker, 0), pool.submit(worker, 1)]]

        numbers = results[0] + results[1]
        assert len(set(numbers)) == 2 * POSTS_PER_THREAD
        assert sorted(numbers) == [f"JE-{n:05d}" for n in range(1, 2 * POSTS_PER_THREAD + 1)]
