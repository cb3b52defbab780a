"""Pytest configuration and fixtures."""

import sys
from pathlib import Path

import pytest

# Add src to path for imports
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Add tests to path for pagerduty_mock imports
tests_path = Path(__file__).parent
sys.path.insert(0, str(tests_path))

from pagerduty_mock import MockPagerDuty, make_api_key_secret  # noqa: E402

from pagerduty_operator.config import OperatorConfig  # noqa: E402
from pagerduty_operator.metrics import OperatorMetrics  # noqa: E402
from pagerduty_operator.reconciler import Reconciler  # noqa: E402
from pagerduty_operator.store import InMemoryObjectStore  # noqa: E402


@pytest.fixture
def config() -> OperatorConfig:
    """Config with short timings for tests."""
    return OperatorConfig(
        api_timeout_seconds=5,
        retry_backoff_base_seconds=0.01,
        retry_backoff_max_seconds=0.05,
        incident_resolve_delay_seconds=0,
    )


@pytest.fixture
def store() -> InMemoryObjectStore:
    """Store pre-populated with the PagerDuty API key secret."""
    object_store = InMemoryObjectStore()
    object_store.create(make_api_key_secret())
    return object_store


@pytest.fixture
def pagerduty() -> MockPagerDuty:
    return MockPagerDuty()


@pytest.fixture
def metrics() -> OperatorMetrics:
    return OperatorMetrics()


@pytest.fixture
def reconciler(
    config: OperatorConfig,
    store: InMemoryObjectStore,
    pagerduty: MockPagerDuty,
    metrics: OperatorMetrics,
) -> Reconciler:
    return Reconciler(config, store, pagerduty.client_factory, metrics=metrics)
