"""OpenTelemetry metrics and logs for the wallet service."""

import logging
import os
from decimal import Decimal

from opentelemetry import metrics
from opentelemetry._logs import set_logger_provider
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter
from opentelemetry.exporter.otlp.proto.http._log_exporter import OTLPLogExporter
from opentelemetry.sdk._logs import LoggerProvider, LoggingHandler
from opentelemetry.sdk._logs.export import BatchLogRecordProcessor
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource

from wallet._version import VERSION

logger = logging.getLogger(__name__)


# Module-level state
_initialized = False
_meter = None
_log_handler = None

# Counters (cumulative)
_transactions_total = None
_position_trades_total = None
_position_trade_value_total = None
_price_refresh_total = None

# Gauges (current state) - using ObservableGauge with callbacks
_gauge_callbacks = {}


def setup_telemetry() -> bool:
    """Initialize OpenTelemetry metrics and logs.

    Returns True if telemetry was initialized, False if disabled.
    """
    global _initialized, _meter, _log_handler
    global _transactions_total, _position_trades_total
    global _position_trade_value_total, _price_refresh_total

    if _initialized:
        return True

    if os.getenv("OTLP_ENABLED", "true").lower() == "false":
        return False

    otlp_endpoint = os.getenv("OTLP_ENDPOINT", "http://localhost:4318/v1/metrics")
    export_interval = int(os.getenv("OTLP_EXPORT_INTERVAL", "5000"))

    resource = Resource.create({
        "service.name": "wallet",
        "service.version": VERSION,
    })

    exporter = OTLPMetricExporter(endpoint=otlp_endpoint)
    reader = PeriodicExportingMetricReader(
        exporter,
        export_interval_millis=export_interval,
    )
    provider = MeterProvider(resource=resource, metric_readers=[reader])
    metrics.set_meter_provider(provider)

    _meter = metrics.get_meter("wallet", VERSION)

    _transactions_total = _meter.create_counter(
        "wallet_transactions_total",
        description="Ledger mutations by operation and transaction type",
        unit="1",
    )

    _position_trades_total = _meter.create_counter(
        "wallet_position_trades_total",
        description="Buys and sells applied to positions",
        unit="1",
    )

    _position_trade_value_total = _meter.create_counter(
        "wallet_position_trade_value_total",
        description="Cash value of buys and sells applied to positions",
        unit="currency",
    )

    _price_refresh_total = _meter.create_counter(
        "wallet_price_refresh_total",
        description="Position price refreshes by outcome",
        unit="1",
    )

    # === LOGS ===
    logs_endpoint = otlp_endpoint.replace("/v1/metrics", "/v1/logs")
    log_exporter = OTLPLogExporter(endpoint=logs_endpoint)
    logger_provider = LoggerProvider(resource=resource)
    logger_provider.add_log_record_processor(BatchLogRecordProcessor(log_exporter))
    set_logger_provider(logger_provider)

    _log_handler = LoggingHandler(
        level=logging.INFO,
        logger_provider=logger_provider,
    )

    _initialized = True
    return True


def get_log_handler() -> LoggingHandler | None:
    """Get the OTLP logging handler to attach to Python loggers."""
    return _log_handler


def is_enabled() -> bool:
    """Check if telemetry is initialized and enabled."""
    return _initialized


# --- Counter update functions ---

def record_transaction(operation: str, transaction_type: str) -> None:
    """Record a transaction being created, updated or deleted."""
    if not _initialized:
        return

    _transactions_total.add(1, {"operation": operation, "type": transaction_type})


def record_position_trade(side: str, category: str, quantity: Decimal, price: Decimal) -> None:
    """Record a buy or sell applied to a position."""
    if not _initialized:
        return

    attributes = {"side": side, "category": category}
    _position_trades_total.add(1, attributes)
    _position_trade_value_total.add(float(quantity * price), attributes)


def record_price_refresh(updated: int, skipped: int) -> None:
    """Record the outcome of a bulk price refresh."""
    if not _initialized:
        return

    if updated:
        _price_refresh_total.add(updated, {"outcome": "updated"})
    if skipped:
        _price_refresh_total.add(skipped, {"outcome": "skipped"})


# --- Gauge registration for observable metrics ---

def register_gauge_callback(name: str, callback, description: str, unit: str = "1") -> None:
    """Register a callback for an observable gauge.

    The callback should return an iterable of (value, attributes) tuples.
    """
    if not _initialized or _meter is None:
        return

    if name in _gauge_callbacks:
        return  # Already registered

    def wrapped_callback(options):
        try:
            observations = [metrics.Observation(value, attrs) for value, attrs in callback()]
        except Exception:
            logger.exception("Gauge callback failed", extra={"gauge": name})
            return []
        return observations

    _meter.create_observable_gauge(
        name,
        callbacks=[wrapped_callback],
        description=description,
        unit=unit,
    )
    _gauge_callbacks[name] = callback


# --- Portfolio metrics storage ---
# Latest values, exported as observable gauges
_portfolio_values: dict[int, float] = {}  # portfolio_id -> total_value
_portfolio_pnl: dict[int, float] = {}  # portfolio_id -> profit_loss


def _portfolio_value_callback():
    """Callback for wallet_portfolio_value gauge."""
    for portfolio_id, value in _portfolio_values.items():
        yield (value, {"portfolio_id": portfolio_id})


def _portfolio_pnl_callback():
    """Callback for wallet_portfolio_profit_loss gauge."""
    for portfolio_id, pnl in _portfolio_pnl.items():
        yield (pnl, {"portfolio_id": portfolio_id})


def setup_portfolio_metrics() -> None:
    """Register portfolio-related observable gauges.

    Call this after setup_telemetry().
    """
    if not _initialized or _meter is None:
        return

    register_gauge_callback(
        "wallet_portfolio_value",
        _portfolio_value_callback,
        "Market value of all positions in a portfolio",
        "currency",
    )

    register_gauge_callback(
        "wallet_portfolio_profit_loss",
        _portfolio_pnl_callback,
        "Profit/loss of a portfolio against its cost basis",
        "currency",
    )


def record_portfolio_value(portfolio_id: int, total_value: Decimal, profit_loss: Decimal) -> None:
    """Record the latest value of a portfolio.

    Called whenever a history snapshot is taken.
    """
    if not _initialized:
        return

    _portfolio_values[portfolio_id] = float(total_value)
    _portfolio_pnl[portfolio_id] = float(profit_loss)


def forget_portfolio(portfolio_id: int) -> None:
    """Stop exporting gauges for a deleted portfolio."""
    _portfolio_values.pop(portfolio_id, None)
    _portfolio_pnl.pop(portfolio_id, None)
