"""
Tests for environment-driven configuration and storage selection
"""

import pytest

from transfer_ledger import config as config_module
from transfer_ledger.config import LedgerConfig, get_config, reload_config
from transfer_ledger.storage import InMemoryStorage, SQLiteStorage
from transfer_ledger.system import LedgerSystem, create_storage


class TestLedgerConfig:

    def test_defaults(self, monkeypatch):
        monkeypatch.delenv("LEDGER_API_PORT", raising=False)
        monkeypatch.delenv("LEDGER_DATABASE_PATH", raising=False)
        cfg = LedgerConfig(_env_file=None)
        assert cfg.api_port == 8081
        assert cfg.database_path == "./data/bank.db"
        assert cfg.best_effort_initial_deposit is False
        assert cfg.transfer_timeout_seconds is None

    def test_environment_overrides(self, monkeypatch):
        """Test LEDGER_ prefixed variables override defaults"""
        monkeypatch.setenv("LEDGER_API_PORT", "9090")
        monkeypatch.setenv("LEDGER_STORAGE_BACKEND", "memory")
        monkeypatch.setenv("LEDGER_BEST_EFFORT_INITIAL_DEPOSIT", "true")
        cfg = LedgerConfig(_env_file=None)
        assert cfg.api_port == 9090
        assert cfg.storage_backend == "memory"
        assert cfg.best_effort_initial_deposit is True

    def test_reload_config(self, monkeypatch):
        original = get_config()
        monkeypatch.setenv("LEDGER_SERVICE_NAME", "ledger-test")
        try:
            assert reload_config().service_name == "ledger-test"
            assert get_config().service_name == "ledger-test"
        finally:
            config_module.config = original


class TestStorageSelection:

    def test_memory_backend(self):
        assert isinstance(create_storage(LedgerConfig(storage_backend="memory")), InMemoryStorage)

    def test_sqlite_backend(self, tmp_path):
        db_path = tmp_path / "data" / "bank.db"
        storage = create_storage(LedgerConfig(storage_backend="sqlite", database_path=str(db_path)))
        assert isinstance(storage, SQLiteStorage)
        assert db_path.parent.exists()
        storage.close()

    def test_unknown_backend(self):
        with pytest.raises(ValueError):
            create_storage(LedgerConfig(storage_backend="postgres"))

    def test_system_wiring(self):
        system = LedgerSystem(config=LedgerConfig(storage_backend="memory", enable_metrics=False))
        assert system.metrics is None
        account = system.account_service.create_account("A", "10")
        system.account_service.create_account("B")
        transfer = system.transfer_engine.execute("A", "B", "10")
        assert transfer.from_account.id == account.id
        system.close()

    def test_best_effort_flag_reaches_service(self):
        system = LedgerSystem(config=LedgerConfig(storage_backend="memory", best_effort_initial_deposit=True))
        assert system.account_service.best_effort_initial_deposit is True
