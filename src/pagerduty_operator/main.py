"""Main entry point for the PagerDuty operator.

The operator is wired from three pieces supplied by the deployment:
an ObjectStore (the cluster API), a ClientFactory (the PagerDuty API) and
the OperatorConfig read from the environment. ``run_operator`` connects
them to the reconciler and the dispatcher and runs until SIGTERM/SIGINT.
"""

from __future__ import annotations

import asyncio
import json
import logging
import signal
import sys
from datetime import UTC, datetime
from typing import Any

from .config import OperatorConfig
from .dispatcher import Dispatcher
from .metrics import OperatorMetrics
from .reconciler import Reconciler
from .service_client import ClientFactory
from .store import InMemoryObjectStore, ObjectStore

# LogRecord attributes that are not user-supplied extras
_RESERVED_RECORD_KEYS = frozenset(
    (
        "name",
        "msg",
        "args",
        "created",
        "filename",
        "funcName",
        "levelname",
        "levelno",
        "lineno",
        "module",
        "msecs",
        "pathname",
        "process",
        "processName",
        "relativeCreated",
        "stack_info",
        "exc_info",
        "exc_text",
        "thread",
        "threadName",
        "taskName",
        "message",
    )
)


class JsonFormatter(logging.Formatter):
    """Format logs as JSON for structured logging."""

    def format(self, record: logging.LogRecord) -> str:
        log_data: dict[str, Any] = {
            "timestamp": datetime.now(UTC).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }

        # Add extra fields from the record
        for key, value in record.__dict__.items():
            if key not in _RESERVED_RECORD_KEYS:
                log_data[key] = value

        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)

        return json.dumps(log_data, default=str)


def setup_logging(level: int = logging.INFO) -> None:
    """Configure structured logging with JSON output for production."""
    handler = logging.StreamHandler(sys.stdout)
    handler.setFormatter(JsonFormatter())

    root_logger = logging.getLogger()
    root_logger.addHandler(handler)
    root_logger.setLevel(level)

    # Reduce noise from HTTP libraries used by PagerDuty clients
    logging.getLogger("urllib3").setLevel(logging.WARNING)


async def run_operator(
    config: OperatorConfig,
    store: ObjectStore,
    client_factory: ClientFactory,
    metrics: OperatorMetrics | None = None,
    logger: logging.Logger | None = None,
    install_signal_handlers: bool = True,
) -> int:
    """Run the operator until a shutdown signal.

    Args:
        config: Validated operator configuration.
        store: Object store to reconcile. An InMemoryObjectStore is watched
            for changes; other stores must feed Dispatcher.handle_event.
        client_factory: Builds a PagerDuty client from an API key and ClientSettings.
        metrics: Metrics sink, created if omitted.
        logger: Logger for the operator.
        install_signal_handlers: Stop on SIGTERM/SIGINT.

    Returns:
        Exit code (0 for success, non-zero for failure).
    """
    logger = logger if logger is not None else logging.getLogger(__name__)
    metrics = metrics if metrics is not None else OperatorMetrics()

    reconciler = Reconciler(
        config=config,
        store=store,
        client_factory=client_factory,
        metrics=metrics,
        logger=logger.getChild("reconciler"),
    )
    dispatcher = Dispatcher(
        reconciler=reconciler,
        store=store,
        config=config,
        logger=logger.getChild("dispatcher"),
    )

    if isinstance(store, InMemoryObjectStore):
        store.watch(dispatcher.handle_event)

    if install_signal_handlers:
        loop = asyncio.get_running_loop()

        def signal_handler(sig: signal.Signals) -> None:
            logger.info("Received signal", extra={"signal": sig.name})
            dispatcher.shutdown()

        for sig in (signal.SIGTERM, signal.SIGINT):
            loop.add_signal_handler(sig, lambda s=sig: signal_handler(s))

    logger.info(
        "Starting PagerDuty operator",
        extra={
            "operator_namespace": config.operator_namespace,
            "workers": config.reconcile_workers,
            "fedramp": config.fedramp,
        },
    )

    try:
        await dispatcher.run()
    except Exception as e:
        logger.exception("Unhandled exception", extra={"error": str(e)})
        return 1

    logger.info("Operator stopped")
    return 0
