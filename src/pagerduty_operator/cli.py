"""PagerDuty Operator CLI (pdo).

Offline checks for PagerDutyIntegration and ClusterDeployment manifests.

Usage:
    pdo validate manifests/          # Parse manifests and check selectors
    pdo match manifests/             # Show which clusters each integration selects
    pdo match manifests/ --fedramp   # Same, with FedRAMP service names
"""

from __future__ import annotations

import json
from pathlib import Path

import click

from .config import CONFIG_MAP_SUFFIX, SECRET_SUFFIX, resource_name
from .manifests import ManifestLoadError, load_manifests
from .models import ClusterDeployment, KubeObject, PagerDutyIntegration
from .selector import SelectorError, integration_selector
from .service_client import ServiceParams


def _load(path: Path) -> list[KubeObject]:
    try:
        return load_manifests(path)
    except ManifestLoadError as e:
        raise click.ClickException(str(e)) from e


def _split(objects: list[KubeObject]) -> tuple[list[PagerDutyIntegration], list[ClusterDeployment]]:
    integrations = [o for o in objects if isinstance(o, PagerDutyIntegration)]
    cluster_deployments = [o for o in objects if isinstance(o, ClusterDeployment)]
    return integrations, cluster_deployments


@click.group()
@click.version_option(version="0.1.0", prog_name="pdo")
def cli() -> None:
    """PagerDuty Operator CLI.

    Validate manifests and preview which PagerDuty services an integration
    would manage, without touching a cluster or PagerDuty.
    """
    pass


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
def validate(path: Path) -> None:
    """Validate manifests and integration selectors."""
    objects = _load(path)
    integrations, cluster_deployments = _split(objects)

    problems: list[str] = []
    for integration in integrations:
        try:
            integration_selector(integration)
        except SelectorError as e:
            problems.append(f"{integration.namespace}/{integration.name}: {e}")
        if not integration.spec.escalation_policy:
            problems.append(
                f"{integration.namespace}/{integration.name}: escalationPolicy is required"
            )

    click.echo(
        f"Loaded {len(objects)} objects: {len(integrations)} PagerDutyIntegrations, "
        f"{len(cluster_deployments)} ClusterDeployments"
    )
    if problems:
        for problem in problems:
            click.echo(f"  ✗ {problem}", err=True)
        raise click.ClickException(f"{len(problems)} problem(s) found")

    click.echo("✓ All manifests valid")


@cli.command()
@click.argument("path", type=click.Path(exists=True, path_type=Path))
@click.option("--fedramp", is_flag=True, help="Use FedRAMP service naming")
@click.option("--json", "as_json", is_flag=True, help="Print JSON instead of text")
def match(path: Path, fedramp: bool, as_json: bool) -> None:
    """Show the cluster deployments each integration selects."""
    integrations, cluster_deployments = _split(_load(path))

    report: dict[str, list[dict[str, str]]] = {}
    for integration in integrations:
        key = f"{integration.namespace}/{integration.name}"
        try:
            selector = integration_selector(integration)
        except SelectorError as e:
            raise click.ClickException(f"{key}: {e}") from e

        prefix = integration.spec.service_prefix
        report[key] = [
            {
                "cluster_deployment": f"{cd.namespace}/{cd.name}",
                "service_name": ServiceParams.for_cluster(integration, cd, fedramp).name,
                "secret": resource_name(prefix, cd.name, SECRET_SUFFIX),
                "config_map": resource_name(prefix, cd.name, CONFIG_MAP_SUFFIX),
            }
            for cd in cluster_deployments
            if selector.matches(cd.labels) and not cd.being_deleted
        ]

    if as_json:
        click.echo(json.dumps(report, indent=2))
        return

    for key, matches in report.items():
        click.echo(f"{key}: {len(matches)} cluster deployment(s)")
        for entry in matches:
            click.echo(f"  {entry['cluster_deployment']} → {entry['service_name']}")


def main() -> None:
    """Entry point for the CLI."""
    cli()


if __name__ == "__main__":
    main()
