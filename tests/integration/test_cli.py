"""
Integration tests for operator CLI commands.
"""

from qrorder.models import Order


class TestReconcileOrderCommand:
    """flask reconcile-order"""

    def test_reconcile_paid_order(self, app, session, processor, notifier, make_order):
        order_id = make_order().id
        processor.add_payment(111, order_id)

        result = app.test_cli_runner().invoke(args=['reconcile-order', order_id, '--payment-id', '111'])

        assert result.exit_code == 0
        assert f'Pedido {order_id}: paid' in result.output
        assert session.get(Order, order_id).is_paid
        assert len(notifier.sent) == 1

    def test_nothing_to_apply(self, app, make_order):
        order_id = make_order().id

        result = app.test_cli_runner().invoke(args=['reconcile-order', order_id])

        assert result.exit_code == 0
        assert 'pending_verification' in result.output

    def test_unknown_order_exits_with_error(self, app):
        result = app.test_cli_runner().invoke(args=['reconcile-order', 'missing'])
        assert result.exit_code == 1


class TestInitDbCommand:
    """flask init-db"""

    def test_init_db_is_idempotent(self, app):
        result = app.test_cli_runner().invoke(args=['init-db'])

        assert result.exit_code == 0
        assert 'Tablas creadas' in result.output
