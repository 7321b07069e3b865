"""Click commands for running the controller and previewing its output.

    nscontroller run [--controller NAME ...] [--workers N]
    nscontroller render-policies NAMESPACE_JSON ENDPOINTS_JSON
"""

from __future__ import annotations

import asyncio
import json
from typing import Any

import click

from nscontroller import __version__
from nscontroller.config import KNOWN_CONTROLLERS, load_config
from nscontroller.models.config import LabelConfig
from nscontroller.models.resources import NamespaceSnapshot, subsets_from_endpoints
from nscontroller.sync.network import synthesize_network_policies


def _load_json(stream: Any, what: str) -> dict[str, Any]:
    try:
        data = json.load(stream)
    except json.JSONDecodeError as exc:
        raise click.BadParameter(f"not valid JSON: {exc}", param_hint=what) from exc
    if not isinstance(data, dict):
        raise click.BadParameter("expected a JSON object", param_hint=what)
    return data


@click.group()
@click.version_option(__version__, prog_name="nscontroller")
def cli() -> None:
    """Namespace label and network policy controller."""


@cli.command()
@click.option(
    "--controller",
    "controllers",
    multiple=True,
    type=click.Choice(KNOWN_CONTROLLERS),
    help="Controller to run (repeatable). Defaults to NSCONTROLLER_CONTROLLERS.",
)
@click.option("--workers", type=click.IntRange(1, 32), default=None, help="Workers per controller.")
def run(controllers: tuple[str, ...], workers: int | None) -> None:
    """Run the controllers until SIGTERM or SIGINT."""
    from nscontroller.app import main

    try:
        config = load_config()
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
    if controllers:
        config.controller.enabled = tuple(dict.fromkeys(controllers))
    if workers is not None:
        config.controller.workers = workers
    asyncio.run(main(config))


@cli.command("render-policies")
@click.argument("namespace_json", type=click.File("r"))
@click.argument("endpoints_json", type=click.File("r"))
@click.option("--label-domain", default=None, help="Label key domain. Defaults to NSCONTROLLER_LABEL_DOMAIN.")
def render_policies(namespace_json: Any, endpoints_json: Any, label_domain: str | None) -> None:
    """Print the NetworkPolicies a namespace would receive.

    NAMESPACE_JSON is a Namespace object and ENDPOINTS_JSON the
    default/kubernetes Endpoints object, both as returned by
    ``kubectl get -o json``. Use ``-`` to read one of them from stdin.
    Nothing is written to the cluster.
    """
    labels = LabelConfig(domain=label_domain) if label_domain else _configured_labels()
    namespace = NamespaceSnapshot.from_raw(_load_json(namespace_json, "NAMESPACE_JSON"))
    subsets = subsets_from_endpoints(_load_json(endpoints_json, "ENDPOINTS_JSON"))
    policies = synthesize_network_policies(namespace, subsets, labels)
    click.echo(json.dumps([p.to_dict() for p in policies], indent=2))


def _configured_labels() -> LabelConfig:
    try:
        return load_config().labels
    except ValueError as exc:
        raise click.ClickException(str(exc)) from exc
