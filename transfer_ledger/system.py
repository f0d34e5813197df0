"""
Ledger system wiring: one storage backend, one event dispatcher, and the
services that share them.
"""

from typing import Optional

from .accounts import AccountService
from .config import LedgerConfig, get_config
from .events import EventDispatcher
from .metrics import LedgerMetrics
from .storage import InMemoryStorage, SQLiteStorage, StorageInterface
from .transfers import TransferEngine


def create_storage(config: LedgerConfig) -> StorageInterface:
    """Build the storage backend named by the configuration"""
    backend = config.storage_backend.lower()
    if backend == "memory":
        return InMemoryStorage()
    if backend == "sqlite":
        return SQLiteStorage(config.database_path, busy_timeout=config.database_busy_timeout)
    raise ValueError(f"Unknown storage backend: {config.storage_backend}")


class LedgerSystem:
    """Ledger core with all components initialized"""

    def __init__(self, storage: Optional[StorageInterface] = None, config: Optional[LedgerConfig] = None):
        self.config = config or get_config()
        self.storage = storage or create_storage(self.config)
        self.event_dispatcher = EventDispatcher()

        self.metrics: Optional[LedgerMetrics] = None
        if self.config.enable_metrics:
            self.metrics = LedgerMetrics().bind(self.event_dispatcher)

        self.account_service = AccountService(
            self.storage,
            self.event_dispatcher,
            best_effort_initial_deposit=self.config.best_effort_initial_deposit
        )
        self.transfer_engine = TransferEngine(self.storage, self.event_dispatcher)

    def close(self) -> None:
        self.storage.close()
