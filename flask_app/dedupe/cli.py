"""
``flask dedupe`` commands for running scans outside the admin UI.
"""

from __future__ import annotations

import json

import click
from flask import current_app
from flask.cli import AppGroup

from config.dedupe import DedupeConfigError
from flask_app.dedupe import get_settings
from flask_app.dedupe.ledger import parse_entity_type
from flask_app.dedupe.scan_service import RESULT_KEYS, ScanOrchestrator
from flask_app.dedupe.validator import build_validator
from flask_app.models import EntityType

dedupe_cli = AppGroup("dedupe", help="Duplicate detection commands.")


def _format_summary(entity_type: EntityType, summary) -> str:
    if summary.error:
        return f"{RESULT_KEYS[entity_type]}: FAILED ({summary.error})"
    return (
        f"{RESULT_KEYS[entity_type]}: scanned={summary.scanned} candidates={summary.candidates} "
        f"saved={summary.saved} existing={summary.skipped_existing} "
        f"below_threshold={summary.below_threshold} discarded={summary.discarded} "
        f"validator_errors={summary.validator_errors}"
    )


@dedupe_cli.command("scan")
@click.option(
    "--entity",
    "entities",
    multiple=True,
    type=click.Choice([entity_type.value for entity_type in EntityType]),
    help="Entity type to scan; repeat for several. Defaults to all.",
)
@click.option(
    "--semantic/--no-semantic",
    default=False,
    help="Ask the configured semantic validator to judge name-similarity candidates.",
)
@click.option("--summary-json", is_flag=True, help="Emit the scan result as JSON.")
def scan_command(entities, semantic: bool, summary_json: bool):
    """Scan for duplicates and record new pending sets."""
    try:
        settings = get_settings()
    except DedupeConfigError as exc:
        raise click.ClickException(str(exc)) from exc

    entity_types = [parse_entity_type(value) for value in entities] or list(EntityType)
    validator = build_validator(settings) if semantic else None
    if semantic and validator is None:
        click.echo("No DEDUPE_VALIDATOR_URL configured; scanning without semantic validation.")

    result = ScanOrchestrator(settings=settings, validator=validator).scan(
        entity_types, use_semantic_validation=semantic
    )
    current_app.logger.info("Duplicate scan run via CLI", extra={"total_saved": result.total_saved})

    for entity_type, summary in result.summaries.items():
        click.echo(_format_summary(entity_type, summary))
    click.echo(result.message)
    if summary_json:
        click.echo(json.dumps(result.to_dict(), indent=2))

    if any(summary.error for summary in result.summaries.values()):
        raise click.ClickException("One or more entity types failed to scan.")


def register_dedupe_cli(app) -> None:
    if dedupe_cli.name in app.cli.commands:
        app.cli.commands.pop(dedupe_cli.name)
    app.cli.add_command(dedupe_cli)
