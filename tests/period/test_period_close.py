"""
Period close and reopen.

Closing posts one entry dated at the period end that zeroes every revenue
and expense account into Retained Earnings.  Reopening voids that entry.
"""

from dataclasses import replace
from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import update

from ledger_kernel.exceptions import ConflictError, RetainedEarningsConflictError
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.period_service import PeriodService, closing_reference

D = Decimal


def _record_month(post_entry, accounts, revenue="5000", rent="3000"):
    post_entry(
        [(accounts["cash"], revenue, "0"), (accounts["revenue"], "0", revenue)],
        entry_date=date(2025, 1, 10),
        description="January sales",
    )
    post_entry(
        [(accounts["rent"], rent, "0"), (accounts["cash"], "0", rent)],
        entry_date=date(2025, 1, 12),
        description="January rent",
    )


def _retained_earnings(account_service, company_id):
    return account_service.get_account_by_code(company_id, "3200")


class TestClosePeriod:

    def test_close_zeroes_income_accounts(
        self, period_service, journal_service, account_service, post_entry,
        standard_accounts, january_period, company_id, test_actor_id,
    ):
        _record_month(post_entry, standard_accounts)

        result = period_service.close_period(company_id, january_period.id, test_actor_id)

        assert result.net_income == D("2000.00")
        assert result.total_revenue == D("5000.00")
        assert result.total_expenses == D("3000.00")
        assert result.revenue_accounts_closed == 1
        assert result.expense_accounts_closed == 1
        assert result.period.status == "closed"
        assert result.period.closed_by_id == test_actor_id
        assert result.period.closing_journal_entry_id == result.closing_entry_id

        revenue = account_service.get_account(company_id, standard_accounts["revenue"].id)
        rent = account_service.get_account(company_id, standard_accounts["rent"].id)
        cash = account_service.get_account(company_id, standard_accounts["cash"].id)
        assert revenue.balance == 0
        assert rent.balance == 0
        assert cash.balance == D("2000.00")

        retained = _retained_earnings(account_service, company_id)
        assert retained is not None
        assert retained.account_type == "equity"
        assert retained.normal_balance == "credit"
        assert retained.balance == D("2000.00")

        entry = journal_service.get_entry(company_id, result.closing_entry_id)
        assert entry.status == "posted"
        assert entry.is_closing_entry is True
        assert entry.entry_date == date(2025, 1, 31)
        assert entry.reference_number == "CLOSE-Jan-2025"
        assert entry.description == "Closing entry for Jan 2025"
        assert entry.entry_number == result.closing_entry_number

        by_account = {line.account_id: line for line in entry.lines}
        assert by_account[revenue.id].debit == D("5000.00")
        assert by_account[rent.id].credit == D("3000.00")
        assert by_account[retained.id].credit == D("2000.00")
        assert by_account[retained.id].description == "Net Income/Loss for Jan 2025"
        assert by_account[revenue.id].description == "Close Sales Revenue to Retained Earnings"

    def test_net_loss_debits_retained_earnings(
        self, period_service, account_service, journal_service, post_entry,
        standard_accounts, january_period, company_id, test_actor_id,
    ):
        _record_month(post_entry, standard_accounts, revenue="1000", rent="1500")

        result = period_service.close_period(company_id, january_period.id, test_actor_id)

        assert result.net_income == D("-500.00")
        retained = _retained_earnings(account_service, company_id)
        assert retained.balance == D("-500.00")
        entry = journal_service.get_entry(company_id, result.closing_entry_id)
        retained_line = next(line for line in entry.lines if line.account_id == retained.id)
        assert retained_line.debit == D("500.00")
        assert retained_line.credit == 0

    def test_contra_revenue_reduces_total_revenue(
        self, period_service, account_service, post_entry, standard_accounts,
        january_period, company_id, test_actor_id,
    ):
        _record_month(post_entry, standard_accounts)
        post_entry(
            [(standard_accounts["sales_returns"], "200", "0"), (standard_accounts["cash"], "0", "200")],
            entry_date=date(2025, 1, 20),
        )

        result = period_service.close_period(company_id, january_period.id, test_actor_id)

        assert result.total_revenue == D("4800.00")
        assert result.net_income == D("1800.00")
        assert result.revenue_accounts_closed == 2
        returns = account_service.get_account(company_id, standard_accounts["sales_returns"].id)
        assert returns.balance == 0
        assert _retained_earnings(account_service, company_id).balance == D("1800.00")

    def test_balance_sheet_accounts_untouched(
        self, period_service, account_service, post_entry, standard_accounts,
        january_period, company_id, test_actor_id,
    ):
        post_entry(
            [(standard_accounts["cash"], "700", "0"), (standard_accounts["equity"], "0", "700")],
            entry_date=date(2025, 1, 3),
        )
        result = period_service.close_period(company_id, january_period.id, test_actor_id)

        assert result.closing_entry_id is None
        assert account_service.get_account(company_id, standard_accounts["equity"].id).balance == D("700.00")

    def test_no_activity_closes_without_entry(
        self, period_service, journal_selector, standard_accounts, january_period,
        company_id, test_actor_id,
    ):
        result = period_service.close_period(company_id, january_period.id, test_actor_id)

        assert result.closing_entry_id is None
        assert result.closing_entry_number is None
        assert result.net_income == 0
        assert result.period.status == "closed"
        assert journal_selector.count_entries(company_id) == 0

    def test_drifted_cache_reconciled_before_close(
        self, session, period_service, account_service, post_entry, standard_accounts,
        january_period, company_id, test_actor_id,
    ):
        _record_month(post_entry, standard_accounts)
        revenue_id = standard_accounts["revenue"].id
        session.execute(
            update(Account).where(Account.id == revenue_id).values(balance=D("123.00"))
        )

        result = period_service.close_period(company_id, january_period.id, test_actor_id)

        assert result.total_revenue == D("5000.00")
        assert account_service.get_account(company_id, revenue_id).balance == 0

    def test_close_trusts_cache_when_reconcile_disabled(
        self, session, settings, deterministic_clock, account_service, post_entry,
        standard_accounts, january_period, company_id, test_actor_id,
    ):
        _record_month(post_entry, standard_accounts)
        session.execute(
            update(Account)
            .where(Account.id == standard_accounts["revenue"].id)
            .values(balance=D("4000.00"))
        )
        service = PeriodService(
            session, replace(settings, reconcile_before_close=False), deterministic_clock
        )

        result = service.close_period(company_id, january_period.id, test_actor_id)

        assert result.total_revenue == D("4000.00")
        assert result.net_income == D("1000.00")

    def test_existing_retained_earnings_account_reused(
        self, period_service, account_service, create_account, post_entry,
        standard_accounts, january_period, company_id, test_actor_id,
    ):
        existing = create_account("3200", "Retained Earnings", AccountType.EQUITY)
        _record_month(post_entry, standard_accounts)

        period_service.close_period(company_id, january_period.id, test_actor_id)

        equity = account_service.list_accounts(company_id, account_types=[AccountType.EQUITY])
        assert [a.code for a in equity] == ["3000", "3200"]
        assert _retained_earnings(account_service, company_id).id == existing.id
        assert account_service.get_account(company_id, existing.id).balance == D("2000.00")

    def test_retained_earnings_code_held_by_non_equity_account(
        self, period_service, journal_selector, account_service, create_account, post_entry,
        standard_accounts, january_period, company_id, test_actor_id,
    ):
        petty_cash = create_account("3200", "Petty Cash", AccountType.ASSET)
        _record_month(post_entry, standard_accounts)

        with pytest.raises(ConflictError) as exc_info:
            period_service.close_period(company_id, january_period.id, test_actor_id)

        assert isinstance(exc_info.value, RetainedEarningsConflictError)
        assert exc_info.value.account_code == "3200"
        assert exc_info.value.account_type == "asset"
        assert account_service.get_account(company_id, petty_cash.id).balance == 0
        assert account_service.get_account(
            company_id, standard_accounts["revenue"].id
        ).balance == D("5000.00")
        assert period_service.get_period(company_id, january_period.id).status == "open"
        assert journal_selector.count_entries(company_id) == 2

    def test_empty_close_does_not_consume_entry_number(
        self, period_service, post_entry, standard_accounts, january_period,
        company_id, test_actor_id,
    ):
        result = period_service.close_period(company_id, january_period.id, test_actor_id)
        assert result.closing_entry_id is None

        entry = post_entry(
            [(standard_accounts["cash"], "10", "0"), (standard_accounts["equity"], "0", "10")],
            entry_date=date(2025, 2, 3),
        )
        assert entry.entry_number == "JE-00001"

    def test_close_locks_every_account_it_reads_before_reading(
        self, monkeypatch, period_service, account_service, post_entry, standard_accounts,
        january_period, company_id, test_actor_id,
    ):
        _record_month(post_entry, standard_accounts)
        calls = []
        original = AccountService.lock_accounts

        def recording_lock(self, company_id, account_ids, require_active=True):
            account_ids = list(account_ids)
            calls.append((account_ids, require_active))
            return original(self, company_id, account_ids, require_active)

        monkeypatch.setattr(AccountService, "lock_accounts", recording_lock)

        period_service.close_period(company_id, january_period.id, test_actor_id)

        retained = _retained_earnings(account_service, company_id)
        income_keys = ("revenue", "service_revenue", "sales_returns", "cogs", "rent")
        expected = {standard_accounts[key].id for key in income_keys} | {retained.id}
        first_ids, require_active = calls[0]
        assert set(first_ids) == expected
        assert require_active is False

    def test_close_logs_summary(
        self, captured_logs, period_service, post_entry, standard_accounts,
        january_period, company_id, test_actor_id,
    ):
        _record_month(post_entry, standard_accounts)
        period_service.close_period(company_id, january_period.id, test_actor_id)

        closed = [r for r in captured_logs() if r["message"] == "period_closed"]
        assert len(closed) == 1
        assert closed[0]["period_name"] == "Jan 2025"
        assert closed[0]["net_income"] == "2000.00"
        assert closed[0]["period_id"] == str(january_period.id)


class TestReopenPeriod:

    def test_reopen_voids_closing_entry(
        self, period_service, journal_service, account_service, post_entry,
        standard_accounts, january_period, company_id, test_actor_id,
    ):
        _record_month(post_entry, standard_accounts)
        closed = period_service.close_period(company_id, january_period.id, test_actor_id)

        reopened = period_service.reopen_period(company_id, january_period.id, test_actor_id)

        assert reopened.status == "open"
        assert reopened.closed_by_id is None
        assert reopened.closed_at is None
        assert reopened.closing_journal_entry_id is None
        assert journal_service.get_entry(company_id, closed.closing_entry_id).status == "void"

        balances = {
            key: account_service.get_account(company_id, standard_accounts[key].id).balance
            for key in ("revenue", "rent", "cash")
        }
        assert balances == {
            "revenue": D("5000.00"),
            "rent": D("3000.00"),
            "cash": D("2000.00"),
        }
        assert _retained_earnings(account_service, company_id).balance == 0

    def test_reopen_without_closing_entry(
        self, period_service, january_period, company_id, test_actor_id,
    ):
        period_service.close_period(company_id, january_period.id, test_actor_id)
        reopened = period_service.reopen_period(company_id, january_period.id, test_actor_id)
        assert reopened.status == "open"

    def test_close_again_after_reopen(
        self, period_service, reconciliation_service, account_service, post_entry,
        standard_accounts, january_period, company_id, test_actor_id,
    ):
        _record_month(post_entry, standard_accounts)
        first = period_service.close_period(company_id, january_period.id, test_actor_id)
        period_service.reopen_period(company_id, january_period.id, test_actor_id)
        post_entry(
            [(standard_accounts["cash"], "250", "0"), (standard_accounts["service_revenue"], "0", "250")],
            entry_date=date(2025, 1, 25),
        )

        second = period_service.close_period(company_id, january_period.id, test_actor_id)

        assert second.closing_entry_id != first.closing_entry_id
        assert second.net_income == D("2250.00")
        assert _retained_earnings(account_service, company_id).balance == D("2250.00")
        assert reconciliation_service.verify_running_balances(company_id) == []

    def test_closing_reference_format(self):
        assert closing_reference("Jan 2025") == "CLOSE-Jan-2025"
        assert closing_reference(" Q1 FY 2025 ") == "CLOSE-Q1-FY-2025"
