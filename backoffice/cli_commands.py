"""
Flask CLI commands for ledger maintenance.

Commands:
- flask init-db: Create missing tables
- flask recalculate-balances: Replay every current account
- flask check-stock-consistency [--material-id N] [--fix]: Compare stock against the ledger
- flask recalculate-recipe-costs [--average-costs]: Refresh recipe costs
"""
import click

from backoffice.database import create_schema, get_session
from backoffice.exceptions import BackofficeError
from backoffice.services import current_account_service, recipe_cost_service, stock_movement_service


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables that do not exist yet."""
        create_schema()
        click.echo(click.style('✅ Esquema creado', fg='green'))

    @app.cli.command('recalculate-balances')
    def recalculate_balances():
        """Replay every current account ledger and rewrite cached balances."""
        try:
            result = current_account_service.recalculate_all_balances(get_session())
        except BackofficeError as e:
            raise click.ClickException(e.message)

        click.echo(click.style('\n✅ Saldos recalculados', fg='green', bold=True))
        click.echo(f"   Cuentas: {result['updated_accounts']}")
        click.echo(f"   Transacciones: {result['total_transactions_processed']}")
        click.echo(f"   Pagos: {result['total_payments_processed']}")

    @app.cli.command('check-stock-consistency')
    @click.option('--material-id', type=int, default=None, help='Only check this material')
    @click.option('--fix', is_flag=True, help='Rewrite drifted stock rows to the ledger value')
    def check_stock_consistency(material_id, fix):
        """Compare material stock against the replayed movement ledger."""
        session = get_session()
        report = stock_movement_service.check_stock_consistency(session, material_id)
        inconsistent = [row for row in report if not row['is_consistent']]

        for row in inconsistent:
            click.echo(
                f"   material={row['material_id']} warehouse={row['warehouse_id']} "
                f"stock={row['current_stock']} ledger={row['ledger_stock']} diff={row['difference']}"
            )

        if not inconsistent:
            click.echo(click.style(f'✅ {len(report)} registros consistentes', fg='green'))
            return

        click.echo(click.style(f'⚠️  {len(inconsistent)} de {len(report)} registros inconsistentes', fg='yellow'))
        if fix:
            try:
                result = stock_movement_service.fix_stock_inconsistencies(session, material_id)
            except BackofficeError as e:
                raise click.ClickException(e.message)
            click.echo(click.style(f"✅ {result['fixed']} registros corregidos", fg='green'))

    @app.cli.command('recalculate-recipe-costs')
    @click.option('--average-costs', is_flag=True, help='Recompute material average costs first')
    def recalculate_recipe_costs(average_costs):
        """Recompute recipe costs from material average costs."""
        session = get_session()
        try:
            if average_costs:
                results = stock_movement_service.recalculate_average_costs(session)
                click.echo(f"   Costos promedio actualizados: {sum(1 for r in results if r['updated'])}")
            updated = recipe_cost_service.update_all_recipe_costs(session)
        except BackofficeError as e:
            raise click.ClickException(e.message)
        click.echo(click.style(f'✅ {updated} recetas recalculadas', fg='green'))
