"""
Period close racing a posting into the same period.

A close and a posting that touches the same revenue and expense accounts
start together on separate connections.  Whichever gets the account locks
first wins:

- the posting commits first and the close zeroes its amounts too, or
- the close commits first and the posting is refused with ClosedPeriodError.

Either way no deadlock, every revenue and expense account is zero after the
close, and Retained Earnings holds exactly the net income.

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
from ledger_kernel.exceptions import ClosedPeriodError
from ledger_kernel.models.account import AccountType
from ledger_kernel.selectors.ledger_selector import LedgerSelector
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.period_service import PeriodService
from ledger_kernel.services.reconciliation_service import ReconciliationService

pytestmark = pytest.mark.postgres

D = Decimal

ROUNDS = 5


def _seed(session, settings, company_id, actor_id):
    """Chart, an open January, one month of activity and a pending draft."""
    accounts = AccountService(session, settings)
    rent = accounts.create_account(company_id, actor_id, "5100", "Rent", AccountType.EXPENSE)
    sales = accounts.create_account(company_id, actor_id, "4000", "Sales", AccountType.REVENUE)
    cash = accounts.create_account(company_id, actor_id, "1000", "Cash", AccountType.ASSET)

    period = PeriodService(session, settings).create_period(
        company_id, actor_id, "Jan 2025", "monthly", 2025, date(2025, 1, 1), date(2025, 1, 31)
    )
    journal = JournalService(session, settings)
    journal.create_and_post_entry(
        company_id,
        actor_id,
        date(2025, 1, 10),
        [JournalLineInput.dr(cash.id, D("5000")), JournalLineInput.cr(sales.id, D("5000"))],
    )
    journal.create_and_post_entry(
        company_id,
        actor_id,
        date(2025, 1, 12),
        [JournalLineInput.dr(rent.id, D("3000")), JournalLineInput.cr(cash.id, D("3000"))],
    )
    draft = journal.create_entry(
        company_id,
        actor_id,
        date(2025, 1, 20),
        [
            JournalLineInput.dr(rent.id, D("100")),
            JournalLineInput.dr(cash.id, D("200")),
            JournalLineInput.cr(sales.id, D("300")),
        ],
    )
    session.commit()
    return {"rent": rent.id, "sales": sales.id, "cash": cash.id}, period.id, draft.id


class TestPeriodCloseVsPost:

    @pytest.mark.parametrize("attempt", range(ROUNDS))
    def test_close_and_post_serialize(self, pg_session_factory, settings, test_actor_id, attempt):
        company_id = uuid4()
        setup = pg_session_factory()
        accounts, period_id, draft_id = _seed(setup, settings, company_id, test_actor_id)
        setup.close()

        barrier = Barrier(2)

        def close():
            session = pg_session_factory()
            service = PeriodService(session, settings, SystemClock())
            barrier.wait()
            try:
                result = service.close_period(company_id, period_id, test_actor_id)
                session.commit()
                return result
            finally:
                session.close()

        def post():
            session = pg_session_factory()
            service = JournalService(session, settings, SystemClock())
            barrier.wait()
            try:
                service.post_entry(company_id, draft_id, test_actor_id)
                session.commit()
                return True
            except ClosedPeriodError:
                session.rollback()
                return False
            finally:
                session.close()

        with ThreadPoolExecutor(max_workers=2) as pool:
            close_future = pool.submit(close)
            post_future = pool.submit(post)
            result = close_future.result(timeout=60)
            posted = post_future.result(timeout=60)

        check = pg_session_factory()
        ledger = LedgerSelector(check)
        registry = AccountService(check, settings)

        status = JournalService(check, settings).get_entry(company_id, draft_id).status
        assert status == ("posted" if posted else "draft")

        expected_net = D("2200") if posted else D("2000")
        assert result.net_income == expected_net
        assert ledger.latest_balance(company_id, accounts["sales"]) == 0
        assert ledger.latest_balance(company_id, accounts["rent"]) == 0
        assert registry.get_account(company_id, accounts["sales"]).balance == 0
        assert registry.get_account(company_id, accounts["rent"]).balance == 0

        retained = registry.get_account_by_code(company_id, settings.retained_earnings_code)
        assert retained.balance == expected_net

        assert ReconciliationService(check, settings).verify_running_balances(company_id) == []
