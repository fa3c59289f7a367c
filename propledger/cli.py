"""Flask CLI commands: `flask rent ...` and `flask vault ...`."""
import json

import click
from flask import current_app
from flask.cli import AppGroup

from propledger.errors import LedgerError
from propledger.services import vault

rent_cli = AppGroup("rent", help="Rent payments and distribution runs.")
vault_cli = AppGroup("vault", help="Vault maintenance.")


def _ledger(name):
    return current_app.extensions["propledger"][name]


@rent_cli.command("distribute")
@click.option("--property-id", "property_ids", type=int, multiple=True,
              help="Limit the run to these properties. Repeatable.")
@click.option("--dry-run", is_flag=True, help="Compute the distribution without writing anything.")
@click.option("--triggered-by", default="CRON", show_default=True)
def distribute(property_ids, dry_run, triggered_by):
    """Distribute every pending rent payment."""
    try:
        summary = _ledger("coordinator").run_distribution(
            property_ids=list(property_ids) or None, dry_run=dry_run, triggered_by=triggered_by,
        )
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(json.dumps(summary.serialize(), indent=2))
    if summary.errors:
        raise SystemExit(1)


@rent_cli.command("create-payment")
@click.argument("property_id", type=int)
@click.option("--start", "period_start", required=True, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--end", "period_end", required=True, type=click.DateTime(formats=["%Y-%m-%d"]))
@click.option("--gross", "gross_amount", required=True, help="Rent collected for the period.")
@click.option("--fee-percent", "fee_percent", default=None, help="Management fee percent (default from config).")
def create_payment(property_id, period_start, period_end, gross_amount, fee_percent):
    """Record a PENDING rent payment for PROPERTY_ID."""
    try:
        payment = _ledger("rent").create_rent_payment(
            property_id, period_start.date(), period_end.date(), gross_amount,
            management_fee_percent=fee_percent,
        )
    except (LedgerError, ValueError) as e:
        raise click.ClickException(getattr(e, "message", str(e)))
    click.echo(json.dumps(payment.serialize(), indent=2))


@vault_cli.command("reset")
@click.argument("user_id", type=int)
@click.option("--yes", is_flag=True, help="Skip the confirmation prompt.")
def reset(user_id, yes):
    """Zero every balance of USER_ID's vault (demo mode only)."""
    if not current_app.config.get("DEMO_MODE"):
        raise click.ClickException("Vault reset is only available in demo mode")
    if not yes:
        click.confirm(f"Reset vault of user {user_id}?", abort=True)
    try:
        account = vault.reset_vault(user_id)
    except LedgerError as e:
        raise click.ClickException(e.message)
    click.echo(f"Vault {account.id} of user {user_id} reset")


def register_cli(app):
    app.cli.add_command(rent_cli)
    app.cli.add_command(vault_cli)
