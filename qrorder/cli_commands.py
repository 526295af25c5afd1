"""
Flask CLI commands for operators.

Commands:
- flask init-db: Create database tables
- flask reconcile-order: Re-verify an order's payment against Mercado Pago
"""

import click
from flask import current_app
from qrorder.database import create_all, get_session
from qrorder.exceptions import OrderingError
from qrorder.services.providers import build_reconciler
from qrorder.services.reconciliation_service import TRIGGER_CLI


def init_cli_commands(app):
    """Register CLI commands with Flask app."""

    @app.cli.command('init-db')
    def init_db_command():
        """Create all tables."""
        create_all(current_app)
        click.echo(click.style('✅ Tablas creadas', fg='green'))

    @app.cli.command('reconcile-order')
    @click.argument('order_id')
    @click.option('--payment-id', default=None, help='Mercado Pago payment id to check first')
    def reconcile_order(order_id, payment_id):
        """Re-verify ORDER_ID against Mercado Pago and apply the result."""
        db_session = get_session()
        try:
            outcome = build_reconciler(db_session).resolve_payment(
                order_id=order_id,
                payment_id=payment_id,
                trigger=TRIGGER_CLI,
            )
        except OrderingError as e:
            click.echo(click.style(f'❌ {e.message}', fg='red'))
            raise SystemExit(1)

        color = 'green' if outcome.status == 'paid' else 'yellow'
        click.echo(click.style(f'Pedido {order_id}: {outcome.status}', fg=color, bold=True))
        for key, value in outcome.to_dict().items():
            click.echo(f'   {key}: {value}')
