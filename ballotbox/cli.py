from pathlib import Path

import click
from flask import current_app
from flask.cli import AppGroup, with_appcontext

from .database import create_schema
from .errors import EmptyResult
from .services import get_audit_chain
from .services.audit_export import build_audit_export, verify_export

audit_cli = AppGroup("audit", help="Audit chain export and verification.")


@click.command("init-db")
@with_appcontext
def init_db_command():
    """Create tables and the audit chain head row."""
    create_schema()
    click.echo("Database initialised.")


@audit_cli.command("export")
@click.argument("directory", type=click.Path(file_okay=False, path_type=Path))
def export_command(directory: Path):
    """Write vote_audit.csv, admin_audit.csv and VERSION.txt into DIRECTORY."""
    chain = get_audit_chain()
    try:
        bundle = build_audit_export(chain, current_app.config["BUILD_COMMIT"])
    except EmptyResult as e:
        raise click.ClickException(e.message)

    directory.mkdir(parents=True, exist_ok=True)
    for name, body in bundle.files().items():
        (directory / name).write_text(body, encoding="utf-8")

    chain.safe_log_admin("AUDIT_EXPORTED", {"format": "csv", "vote_records": len(bundle.vote_audit)})
    click.echo(f"Exported {len(bundle.vote_audit)} vote audit records to {directory}")


@audit_cli.command("verify")
@click.argument("vote_audit_csv", type=click.Path(exists=True, dir_okay=False, path_type=Path))
@click.option("--hmac-key", envvar="AUDIT_HMAC_KEY", default=None,
              help="Also re-check each record's HMAC with this key.")
def verify_command(vote_audit_csv: Path, hmac_key):
    """Re-verify an exported vote_audit.csv without touching the database."""
    result = verify_export(vote_audit_csv.read_text(encoding="utf-8"), hmac_key=hmac_key)
    if result.ok:
        click.echo(f"OK: {result.checked} records, chain intact.")
        return
    raise click.ClickException(
        f"Chain broken at row {result.first_invalid_index} (id={result.first_invalid_id}): "
        f"{result.reason}; {len(result.untrusted_ids)} records untrusted."
    )


@audit_cli.command("reconcile")
def reconcile_command():
    """Compare redemptions with audit records in the live database."""
    report = get_audit_chain().reconcile()
    click.echo(", ".join(f"{k}={v}" for k, v in report.as_dict().items()))
    if not report.ok:
        raise click.ClickException("Audit records do not match redemptions.")


def register_cli(app) -> None:
    app.cli.add_command(init_db_command)
    app.cli.add_command(audit_cli)
