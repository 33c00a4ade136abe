from __future__ import annotations

import asyncio
import json

import click
import jsonschema

from ..config.settings import get_settings
from ..core.triggers import parse_trigger
from ..incidents.pipeline import ClassificationPipeline
from ..logging import configure_logging
from ..schemas import validation


class _DryRunStore:
    async def create(self, incident):
        return incident


@click.group()
def cli():
    """Sim Race Steward CLI"""


@cli.command()
@click.option("--grace-timeout", default=8.0, show_default=True, help="Shutdown grace in seconds")
def serve(grace_timeout: float):
    """Run relay ingestion, classification and the live HTTP/websocket API."""
    from ..service import run_service

    settings = get_settings()
    configure_logging(settings.log_level)
    asyncio.run(run_service(settings, grace_timeout=grace_timeout))


@cli.command("print-config")
def print_config():
    """Print resolved settings and exit."""
    settings = get_settings()
    dump = settings.model_dump()
    if dump["nats"].get("password"):
        dump["nats"]["password"] = "***"
    click.echo(json.dumps(dump, indent=2))


@cli.command()
@click.argument("trigger_file", type=click.File("r"))
@click.option("--session-id", default=None, help="Session id (defaults to the payload's sessionId)")
def classify(trigger_file, session_id: str | None):
    """Classify a trigger JSON file offline and print the incident (nothing is persisted)."""
    payload = json.load(trigger_file)
    sid = session_id or payload.get("sessionId") or "offline"
    try:
        validation.validate("incident_trigger", {**payload, "sessionId": sid})
    except jsonschema.ValidationError as e:
        raise click.BadParameter(e.message, param_hint="TRIGGER_FILE") from e
    pipeline = ClassificationPipeline(_DryRunStore())
    incident = pipeline.classify(parse_trigger(payload), sid)
    click.echo(json.dumps(incident.to_dict(), indent=2))


if __name__ == "__main__":
    cli()
