"""
Tests for Prometheus metrics fed by ledger events
"""

import pytest
from prometheus_client import CollectorRegistry

from transfer_ledger.storage import InMemoryStorage
from transfer_ledger.events import EventDispatcher
from transfer_ledger.accounts import AccountService
from transfer_ledger.transfers import TransferEngine
from transfer_ledger.metrics import LedgerMetrics
from transfer_ledger.errors import InsufficientFundsError, SameAccountError


class TestLedgerMetrics:

    def setup_method(self):
        storage = InMemoryStorage()
        dispatcher = EventDispatcher()
        self.metrics = LedgerMetrics().bind(dispatcher)
        self.accounts = AccountService(storage, dispatcher)
        self.engine = TransferEngine(storage, dispatcher)

    def test_accounts_counted(self):
        self.accounts.create_account("A", "100")
        self.accounts.create_account("B")
        assert self.metrics.get_sample("bank_accounts_total") == 2
        assert self.metrics.get_sample("bank_account_balance", {"account_number": "A"}) == 100.0

    def test_successful_transfer(self):
        """Test success counter, amount total and both balance gauges"""
        self.accounts.create_account("A", "100")
        self.accounts.create_account("B")
        self.engine.execute("A", "B", "40")

        assert self.metrics.get_sample("bank_transfers_total", {"status": "success"}) == 1
        assert self.metrics.get_sample("bank_transfer_amount_total") == 40.0
        assert self.metrics.get_sample("bank_account_balance", {"account_number": "A"}) == 60.0
        assert self.metrics.get_sample("bank_account_balance", {"account_number": "B"}) == 40.0

    def test_failed_transfers_by_kind(self):
        self.accounts.create_account("A", "100")
        self.accounts.create_account("B")
        with pytest.raises(InsufficientFundsError):
            self.engine.execute("A", "B", "500")
        with pytest.raises(SameAccountError):
            self.engine.execute("A", "A", "5")

        assert self.metrics.get_sample("bank_transfers_total", {"status": "failed"}) == 2
        assert self.metrics.get_sample("bank_transfer_failures_total", {"kind": "InsufficientFunds"}) == 1
        assert self.metrics.get_sample("bank_transfer_failures_total", {"kind": "SameAccount"}) == 1
        assert self.metrics.get_sample("bank_transfers_total", {"status": "success"}) == 0

    def test_deposit_updates_balance_gauge(self):
        account = self.accounts.create_account("A")
        self.accounts.deposit(account.id, "12.34")
        assert self.metrics.get_sample("bank_account_balance", {"account_number": "A"}) == pytest.approx(12.34)

    def test_registries_are_independent(self):
        other = LedgerMetrics(CollectorRegistry())
        self.accounts.create_account("A")
        assert other.get_sample("bank_accounts_total") == 0
        assert self.metrics.get_sample("bank_accounts_total") == 1

    def test_render(self):
        self.accounts.create_account("A", "1")
        text = self.metrics.render().decode()
        assert "bank_accounts_total 1.0" in text
        assert 'bank_account_balance{account_number="A"} 1.0' in text

    def test_observe_request(self):
        """Test request counter and latency histogram share method and endpoint labels"""
        self.metrics.observe_request("GET", "/api/accounts/{account_id}", 404, 0.02)
        self.metrics.observe_request("GET", "/api/accounts/{account_id}", 200, 0.5)

        labels = {"method": "GET", "endpoint": "/api/accounts/{account_id}"}
        assert self.metrics.get_sample("http_requests_total", dict(labels, status="404")) == 1
        assert self.metrics.get_sample("http_requests_total", dict(labels, status="200")) == 1
        assert self.metrics.get_sample("http_request_duration_seconds_count", labels) == 2
        assert self.metrics.get_sample("http_request_duration_seconds_sum", labels) == pytest.approx(0.52)
