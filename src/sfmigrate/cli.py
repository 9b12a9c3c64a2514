from __future__ import annotations

import json
import logging
from pathlib import Path
from typing import Any, Dict, List, Optional

import click
from tqdm import tqdm

from . import __version__
from .api import ServiceConfig
from .env_loader import load_env_files
from .exceptions import SalesforceServiceError
from .logging_config import configure_logging
from .models import Operation, SObject
from .response import DeployResponse
from .service import SalesforceService, chunked

_logger = logging.getLogger(__name__)

# Load .env very early, so everything else sees env vars
load_env_files()

BULK_BATCH_SIZE = 10000


def _service() -> SalesforceService:
    try:
        return SalesforceService(ServiceConfig.from_env())
    except SalesforceServiceError as e:
        raise click.ClickException(str(e)) from None


def _load_records(path: Path) -> List[Dict[str, Any]]:
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except ValueError as e:
        raise click.BadParameter(f"{path} is not valid JSON: {e}") from None
    if not isinstance(data, list) or not all(isinstance(r, dict) for r in data):
        raise click.BadParameter(f"{path} must contain a JSON list of objects")
    return data


def _echo_response(dr: DeployResponse) -> None:
    click.echo(f"Succeeded: {dr.success_count}")
    click.echo(f"Failed:    {dr.error_count}")
    for msg in dr.errors:
        click.echo(msg, err=True)


@click.group(
    context_settings={"help_option_names": ["-h", "--help"]},
    invoke_without_command=True,
)
@click.version_option(__version__, "--version", prog_name="sfmigrate")
@click.option(
    "-v",
    "--verbose",
    "loglevel",
    flag_value=logging.INFO,
    default=None,
    help="Enable INFO logs.",
)
@click.option(
    "-vv",
    "--very-verbose",
    "loglevel",
    flag_value=logging.DEBUG,
    help="Enable DEBUG logs.",
)
@click.pass_context
def cli(ctx: click.Context, loglevel: Optional[int]) -> None:
    """Salesforce migration CLI. Reads SF_SERVER_URL and SF_SESSION_ID."""
    configure_logging(loglevel, wire_trace=ServiceConfig.from_env().any_trace)
    _logger.debug("CLI start, version=%s", __version__)
    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())


@cli.command("endpoints")
def cmd_endpoints() -> None:
    """Show the partner, metadata and bulk endpoints derived from SF_SERVER_URL."""
    svc = _service()
    try:
        bulk = svc.bulk_endpoint
    except SalesforceServiceError as e:
        raise click.ClickException(str(e)) from None
    click.echo(f"Partner:  {svc.server_url}")
    click.echo(f"Metadata: {svc.metadata_url}")
    click.echo(f"Bulk:     {bulk}")


@cli.command("query")
@click.argument("soql")
@click.option("--no-more", is_flag=True, help="Return only the first page of results.")
@click.option("--pretty", is_flag=True, help="Pretty-print JSON.")
def cmd_query(soql: str, no_more: bool, pretty: bool) -> None:
    """Run a SOQL query through the partner API."""
    svc = _service()
    try:
        records = svc.query(soql, follow_cursor=not no_more)
    except SalesforceServiceError as e:
        raise click.ClickException(str(e)) from None
    click.echo(json.dumps(records, indent=2 if pretty else None))


@cli.command("insert")
@click.argument("sobject")
@click.argument("records_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--all-or-none", is_flag=True, help="Roll back the whole call if any record fails.")
def cmd_insert(sobject: str, records_file: Path, all_or_none: bool) -> None:
    """Insert records from a JSON file."""
    records = [SObject(sobject, r) for r in _load_records(records_file)]
    svc = _service()
    try:
        dr = svc.insert(records, all_or_none=all_or_none)
    except SalesforceServiceError as e:
        raise click.ClickException(str(e)) from None
    _echo_response(dr)


@cli.command("upsert")
@click.argument("sobject")
@click.argument("external_id")
@click.argument("records_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
def cmd_upsert(sobject: str, external_id: str, records_file: Path) -> None:
    """Upsert records from a JSON file, matching on EXTERNAL_ID."""
    records = [SObject(sobject, r) for r in _load_records(records_file)]
    svc = _service()
    try:
        dr = svc.upsert(external_id, records)
    except SalesforceServiceError as e:
        raise click.ClickException(str(e)) from None
    _echo_response(dr)


@cli.command("bulk-load")
@click.argument("sobject")
@click.argument("records_file", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option(
    "--operation",
    type=click.Choice([op.value for op in Operation if op is not Operation.QUERY]),
    default=Operation.INSERT.value,
    show_default=True,
)
@click.option("--external-id", default=None, help="External id field for upserts.")
@click.option("--batch-size", default=BULK_BATCH_SIZE, show_default=True, type=click.IntRange(1))
def cmd_bulk_load(
    sobject: str,
    records_file: Path,
    operation: str,
    external_id: Optional[str],
    batch_size: int,
) -> None:
    """Load a JSON file through a bulk job: create, add batches, close."""
    records = _load_records(records_file)
    svc = _service()
    try:
        job_id = svc.create_job(sobject, external_id, Operation(operation))
        batches = list(chunked(records, batch_size))
        for batch in tqdm(batches, desc=f"Bulk {sobject}", unit="batch"):
            svc.attach_batch(job_id, batch)
        svc.close_job(job_id)
    except SalesforceServiceError as e:
        raise click.ClickException(str(e)) from None
    click.echo(f"Job {job_id}: {len(records)} records in {len(batches)} batch(es), closed.")


@cli.command("job-stale")
@click.argument("job_id")
def cmd_job_stale(job_id: str) -> None:
    """Report whether a bulk job is past its 12 hour lifetime."""
    svc = _service()
    try:
        stale = svc.is_job_stale(job_id)
    except SalesforceServiceError as e:
        raise click.ClickException(str(e)) from None
    click.echo(f"Job {job_id}: {'stale, create a new job' if stale else 'still usable'}")
