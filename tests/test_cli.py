"""Tests for the pdo CLI."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner
from test_manifests import CLUSTER_YAML, INTEGRATION_YAML

from pagerduty_operator.cli import cli


@pytest.fixture
def runner() -> CliRunner:
    return CliRunner()


@pytest.fixture
def manifests(tmp_path: Path) -> Path:
    (tmp_path / "integration.yaml").write_text(INTEGRATION_YAML)
    (tmp_path / "clusters.yaml").write_text(
        CLUSTER_YAML + "---\n" + CLUSTER_YAML.replace("cluster1", "cluster2").replace(
            '"true"', '"false"'
        )
    )
    return tmp_path


class TestValidate:
    def test_valid(self, runner: CliRunner, manifests: Path) -> None:
        result = runner.invoke(cli, ["validate", str(manifests)])

        assert result.exit_code == 0, result.output
        assert "1 PagerDutyIntegrations, 2 ClusterDeployments" in result.output
        assert "All manifests valid" in result.output

    def test_problems_fail(self, runner: CliRunner, tmp_path: Path) -> None:
        broken = INTEGRATION_YAML.replace("escalationPolicy: PEP1", 'escalationPolicy: ""')
        (tmp_path / "integration.yaml").write_text(broken)

        result = runner.invoke(cli, ["validate", str(tmp_path)])

        assert result.exit_code == 1
        assert "escalationPolicy is required" in result.output

    def test_load_error(self, runner: CliRunner, tmp_path: Path) -> None:
        (tmp_path / "bad.yaml").write_text("kind: Unknown\nmetadata:\n  name: x\n")

        result = runner.invoke(cli, ["validate", str(tmp_path)])

        assert result.exit_code == 1
        assert "Unknown kind" in result.output


class TestMatch:
    def test_text_report(self, runner: CliRunner, manifests: Path) -> None:
        result = runner.invoke(cli, ["match", str(manifests)])

        assert result.exit_code == 0, result.output
        assert "pagerduty-operator/osd: 1 cluster deployment(s)" in result.output
        assert "uhc-cluster1/cluster1" in result.output
        assert "cluster2" not in result.output

    def test_json_report(self, runner: CliRunner, manifests: Path) -> None:
        result = runner.invoke(cli, ["match", str(manifests), "--json"])

        report = json.loads(result.output)
        assert report["pagerduty-operator/osd"] == [
            {
                "cluster_deployment": "uhc-cluster1/cluster1",
                "service_name": "osd-cluster1.example.com-hive-cluster",
                "secret": "osd-cluster1-pd-secret",
                "config_map": "osd-cluster1-pd-config",
            }
        ]

    def test_fedramp_names(self, runner: CliRunner, manifests: Path) -> None:
        result = runner.invoke(cli, ["match", str(manifests), "--json", "--fedramp"])

        report = json.loads(result.output)
        assert report["pagerduty-operator/osd"][0]["service_name"] == "osd-cluster1"


def test_version(runner: CliRunner) -> None:
    result = runner.invoke(cli, ["--version"])
    assert "0.1.0" in result.output
