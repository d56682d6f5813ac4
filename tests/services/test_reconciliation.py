"""
Cached balance reconciliation and the reconcile_balances script.
"""

import importlib.util
from datetime import date
from decimal import Decimal
from pathlib import Path
from uuid import uuid4

import pytest
from sqlalchemy import update

import ledger_kernel.db.engine as engine_module
from ledger_kernel.db.engine import create_tables, init_engine_from_url, session_scope
from ledger_kernel.domain.dtos import JournalLineInput
from ledger_kernel.exceptions import AccountNotFoundError
from ledger_kernel.models.account import Account, AccountType
from ledger_kernel.services.account_service import AccountService
from ledger_kernel.services.journal_service import JournalService
from ledger_kernel.services.reconciliation_service import ReconciliationService

D = Decimal

SCRIPT_PATH = Path(__file__).resolve().parents[2] / "scripts" / "reconcile_balances.py"


def _set_cached_balance(session, account_id, value):
    session.execute(update(Account).where(Account.id == account_id).values(balance=D(value)))


@pytest.fixture
def funded_cash(post_entry, standard_accounts):
    post_entry(
        [(standard_accounts["cash"], "100", "0"), (standard_accounts["equity"], "0", "100")],
        entry_date=date(2025, 1, 2),
    )
    return standard_accounts["cash"]


class TestReconcileAccount:

    def test_no_drift(self, reconciliation_service, funded_cash, company_id):
        result = reconciliation_service.reconcile_account_balance(company_id, funded_cash.id)

        assert result.reconciled is False
        assert result.previous_balance == D("100.00")
        assert result.actual_balance == D("100.00")
        assert result.difference == 0

    def test_drift_overwrites_cache(
        self, session, reconciliation_service, account_service, funded_cash, company_id,
    ):
        _set_cached_balance(session, funded_cash.id, "123.45")

        result = reconciliation_service.reconcile_account_balance(company_id, funded_cash.id)

        assert result.reconciled is True
        assert result.account_code == "1000"
        assert result.previous_balance == D("123.45")
        assert result.actual_balance == D("100.00")
        assert result.difference == D("-23.45")
        assert account_service.get_account(company_id, funded_cash.id).balance == D("100.00")

        again = reconciliation_service.reconcile_account_balance(company_id, funded_cash.id)
        assert again.reconciled is False

    def test_drift_within_tolerance_left_alone(
        self, session, reconciliation_service, account_service, funded_cash, company_id,
    ):
        _set_cached_balance(session, funded_cash.id, "100.01")

        result = reconciliation_service.reconcile_account_balance(company_id, funded_cash.id)

        assert result.reconciled is False
        assert result.difference == D("-0.01")
        assert account_service.get_account(company_id, funded_cash.id).balance == D("100.01")

    def test_account_without_rows_reconciles_to_zero(
        self, session, reconciliation_service, account_service, standard_accounts, company_id,
    ):
        receivable = standard_accounts["receivable"]
        _set_cached_balance(session, receivable.id, "50")

        result = reconciliation_service.reconcile_account_balance(company_id, receivable.id)

        assert result.reconciled is True
        assert result.actual_balance == 0
        assert account_service.get_account(company_id, receivable.id).balance == 0

    def test_drift_is_logged(
        self, session, captured_logs, reconciliation_service, funded_cash, company_id,
    ):
        _set_cached_balance(session, funded_cash.id, "90")
        reconciliation_service.reconcile_account_balance(company_id, funded_cash.id)

        records = [r for r in captured_logs() if r["message"] == "account_balance_reconciled"]
        assert len(records) == 1
        assert records[0]["level"] == "WARNING"
        assert records[0]["difference"] == "10.00"

    def test_unknown_account(self, reconciliation_service, company_id, funded_cash):
        with pytest.raises(AccountNotFoundError):
            reconciliation_service.reconcile_account_balance(company_id, uuid4())
        with pytest.raises(AccountNotFoundError):
            reconciliation_service.reconcile_account_balance(uuid4(), funded_cash.id)


class TestReconcileAll:

    def test_batch_counts_and_drift(
        self, session, reconciliation_service, standard_accounts, funded_cash, company_id,
    ):
        _set_cached_balance(session, funded_cash.id, "80")
        _set_cached_balance(session, standard_accounts["rent"].id, "-5")

        batch = reconciliation_service.reconcile_all_account_balances(company_id)

        assert batch.total_accounts == len(standard_accounts)
        assert batch.reconciled_count == 2
        assert batch.unchanged_count == len(standard_accounts) - 2
        assert batch.failed_count == 0
        assert batch.total_drift == D("25.00")
        assert [r.account_code for r in batch.results] == sorted(
            a.code for a in standard_accounts.values()
        )

    def test_type_filter(self, session, reconciliation_service, standard_accounts, funded_cash, company_id):
        _set_cached_balance(session, funded_cash.id, "80")

        batch = reconciliation_service.reconcile_all_account_balances(
            company_id, account_types=["revenue", AccountType.EXPENSE]
        )

        assert batch.total_accounts == 5
        assert batch.reconciled_count == 0
        assert {r.account_code for r in batch.results} == {"4000", "4100", "4900", "5000", "5100"}

    def test_batch_locks_all_accounts_up_front(
        self, monkeypatch, reconciliation_service, standard_accounts, company_id,
    ):
        calls = []
        original = AccountService.lock_accounts

        def recording_lock(self, company_id, account_ids, require_active=True):
            account_ids = list(account_ids)
            calls.append((account_ids, require_active))
            return original(self, company_id, account_ids, require_active)

        monkeypatch.setattr(AccountService, "lock_accounts", recording_lock)

        reconciliation_service.reconcile_all_account_balances(company_id)

        assert len(calls) == 1
        locked_ids, require_active = calls[0]
        assert set(locked_ids) == {a.id for a in standard_accounts.values()}
        assert require_active is False

    def test_failure_does_not_abort_batch(
        self, session, monkeypatch, captured_logs, reconciliation_service, account_service,
        standard_accounts, funded_cash, company_id,
    ):
        _set_cached_balance(session, funded_cash.id, "80")
        original = ReconciliationService._reconcile

        def flaky(self, company_id, account):
            if account.code == "1100":
                raise RuntimeError("connection dropped")
            return original(self, company_id, account)

        monkeypatch.setattr(ReconciliationService, "_reconcile", flaky)

        batch = reconciliation_service.reconcile_all_account_balances(company_id)

        assert batch.failed_count == 1
        failure = batch.failures[0]
        assert failure.account_code == "1100"
        assert failure.error_type == "RuntimeError"
        assert failure.message == "connection dropped"
        assert batch.reconciled_count == 1
        assert batch.total_accounts == len(standard_accounts)
        assert account_service.get_account(company_id, funded_cash.id).balance == D("100.00")

        failed = [r for r in captured_logs() if r["message"] == "account_reconcile_failed"]
        assert failed[0]["account_code"] == "1100"
        assert failed[0]["exc_type"] == "RuntimeError"

    def test_empty_company(self, reconciliation_service):
        batch = reconciliation_service.reconcile_all_account_balances(uuid4())
        assert batch.total_accounts == 0
        assert batch.total_drift == 0


class TestReconcileScript:

    @pytest.fixture
    def script(self):
        spec = importlib.util.spec_from_file_location("reconcile_balances", SCRIPT_PATH)
        module = importlib.util.module_from_spec(spec)
        spec.loader.exec_module(module)
        return module

    @pytest.fixture
    def file_database(self, tmp_path, monkeypatch):
        """A file-backed database; the test session's engine is restored afterwards."""
        monkeypatch.setattr(engine_module, "_engine", engine_module._engine)
        monkeypatch.setattr(engine_module, "_SessionFactory", engine_module._SessionFactory)
        monkeypatch.delenv("LEDGER_KERNEL_CONFIG", raising=False)
        url = f"sqlite:///{tmp_path / 'ledger.db'}"
        init_engine_from_url(url)
        create_tables()
        yield url
        engine_module.get_engine().dispose()

    def _seed(self, company_id, actor_id):
        with session_scope() as session:
            accounts = AccountService(session)
            cash = accounts.create_account(company_id, actor_id, "1000", "Cash", "asset")
            equity = accounts.create_account(company_id, actor_id, "3000", "Capital", "equity")
            JournalService(session).create_and_post_entry(
                company_id,
                actor_id,
                date(2025, 1, 2),
                [JournalLineInput.dr(cash.id, D("100")), JournalLineInput.cr(equity.id, D("100"))],
            )
            _set_cached_balance(session, cash.id, "70")
        return cash.id

    def _cached_balance(self, company_id, account_id):
        with session_scope() as session:
            return AccountService(session).get_account(company_id, account_id).balance

    def test_reconciles_and_verifies(self, script, file_database, capsys, test_actor_id):
        company = uuid4()
        cash_id = self._seed(company, test_actor_id)

        code = script.main(
            ["--company", str(company), "--database-url", file_database, "--verify"]
        )

        out = capsys.readouterr().out
        assert code == 0
        assert "Reconciled:       1" in out
        assert "All running balances replay exactly." in out
        assert self._cached_balance(company, cash_id) == D("100.00")

    def test_dry_run_rolls_back(self, script, file_database, capsys, test_actor_id):
        company = uuid4()
        cash_id = self._seed(company, test_actor_id)

        code = script.main(
            ["--company", str(company), "--database-url", file_database, "--dry-run"]
        )

        assert code == 0
        assert "Dry run: changes rolled back." in capsys.readouterr().out
        assert self._cached_balance(company, cash_id) == D("70.00")

    def test_repair_requires_verify(self, script):
        with pytest.raises(SystemExit):
            script.main(["--company", str(uuid4()), "--repair"])
