"""PagerDuty mock for integration testing.

Provides an in-memory PagerDuty account and object builders so that the
reconciler and dispatcher can be exercised without network access.

Key Features:
- Shared account state across clients built by the factory
- Call recording for ordering assertions
- Error injection (next call or every call) per operation
- Open incidents that resolve after a number of polls

Usage:
    from pagerduty_mock import MockPagerDuty, make_cluster_deployment

    pagerduty = MockPagerDuty()
    reconciler = Reconciler(config, store, pagerduty.client_factory)
    await reconciler.reconcile("pagerduty-operator", "osd")
    assert pagerduty.call_count("create_service") == 1
"""

from .builders import (
    API_KEY,
    ESCALATION_POLICY,
    RULE_CONFIG_MAP_NAME,
    make_api_key_secret,
    make_cluster_deployment,
    make_integration,
    make_rule_config_map,
)
from .client import MockCall, MockPagerDuty, MockService, MockServiceClient

__all__ = [
    "API_KEY",
    "ESCALATION_POLICY",
    "RULE_CONFIG_MAP_NAME",
    "MockCall",
    "MockPagerDuty",
    "MockService",
    "MockServiceClient",
    "make_api_key_secret",
    "make_cluster_deployment",
    "make_integration",
    "make_rule_config_map",
]
