"""
Ledger Metrics Module

Prometheus collectors fed by domain events. Each LedgerMetrics owns its own
CollectorRegistry, so several ledgers (or test cases) in one process never
share counters.
"""

from decimal import Decimal

from prometheus_client import CollectorRegistry, Counter, Gauge, Histogram, generate_latest

from .events import DomainEvent, EventDispatcher, EventPayload


class LedgerMetrics:
    """Transfer, account and HTTP request metrics in Prometheus text format"""

    def __init__(self, registry: CollectorRegistry = None):
        self.registry = registry or CollectorRegistry()

        self.accounts_total = Counter(
            "bank_accounts_total",
            "Total number of bank accounts created",
            registry=self.registry,
        )
        self.transfers_total = Counter(
            "bank_transfers_total",
            "Total number of transfers processed",
            ["status"],  # success, failed
            registry=self.registry,
        )
        self.transfer_failures_total = Counter(
            "bank_transfer_failures_total",
            "Failed transfers by error kind",
            ["kind"],
            registry=self.registry,
        )
        self.transfer_amount_total = Counter(
            "bank_transfer_amount_total",
            "Total amount transferred",
            registry=self.registry,
        )
        self.account_balance = Gauge(
            "bank_account_balance",
            "Current balance of bank accounts",
            ["account_number"],
            registry=self.registry,
        )

        # HTTP layer
        self.http_requests_total = Counter(
            "http_requests_total",
            "Total number of HTTP requests",
            ["method", "endpoint", "status"],
            registry=self.registry,
        )
        self.http_request_duration = Histogram(
            "http_request_duration_seconds",
            "HTTP request latencies in seconds",
            ["method", "endpoint"],
            buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
            registry=self.registry,
        )

    def observe_request(self, method: str, endpoint: str, status: int, duration: float) -> None:
        """Record one served HTTP request"""
        self.http_requests_total.labels(method, endpoint, str(status)).inc()
        self.http_request_duration.labels(method, endpoint).observe(duration)

    def bind(self, dispatcher: EventDispatcher) -> "LedgerMetrics":
        """Subscribe to the events this collector reacts to"""
        dispatcher.subscribe(DomainEvent.ACCOUNT_CREATED, self.on_account_created)
        dispatcher.subscribe(DomainEvent.BALANCE_UPDATED, self.on_balance_updated)
        dispatcher.subscribe(DomainEvent.TRANSFER_COMPLETED, self.on_transfer_completed)
        dispatcher.subscribe(DomainEvent.TRANSFER_FAILED, self.on_transfer_failed)
        return self

    def on_account_created(self, event: EventPayload) -> None:
        self.accounts_total.inc()
        self.on_balance_updated(event)

    def on_balance_updated(self, event: EventPayload) -> None:
        self.account_balance.labels(event.data["account_number"]).set(float(Decimal(event.data["balance"])))

    def on_transfer_completed(self, event: EventPayload) -> None:
        data = event.data
        self.transfers_total.labels("success").inc()
        # Prometheus samples are floats; the ledger itself never is
        self.transfer_amount_total.inc(float(Decimal(data["amount"])))
        self.account_balance.labels(data["from_account_number"]).set(float(Decimal(data["from_balance"])))
        self.account_balance.labels(data["to_account_number"]).set(float(Decimal(data["to_balance"])))

    def on_transfer_failed(self, event: EventPayload) -> None:
        self.transfers_total.labels("failed").inc()
        self.transfer_failures_total.labels(event.data["error_kind"]).inc()

    def get_sample(self, name: str, labels: dict = None) -> float:
        """Current value of one sample, 0.0 when absent"""
        value = self.registry.get_sample_value(name, labels or {})
        return value if value is not None else 0.0

    def render(self) -> bytes:
        """Metrics in Prometheus exposition format"""
        return generate_latest(self.registry)
