"""
Unit tests for the order confirmation email.
"""

import pytest

from qrorder.services import order_service
from qrorder.services.email_service import (
    OrderConfirmationMailer, build_confirmation_payload, render_order_confirmation, mail
)


@pytest.fixture
def paid_payload(session, make_order, restaurant):
    def _build(**kwargs):
        order = make_order(**kwargs)
        order_service.mark_paid(session, order.id, payment_id='1', payer_email='ana@example.com')
        session.refresh(order)
        return build_confirmation_payload(order, restaurant, 'ana@example.com', 'Ana García')
    return _build


@pytest.fixture
def mail_enabled(app):
    """Pass the enabled check; the Mail state itself stays suppressed so nothing leaves the process."""
    app.config['MAIL_SUPPRESS_SEND'] = False
    app.config['MAIL_SERVER'] = 'smtp.example.com'
    app.config['MAIL_USERNAME'] = 'mailer@example.com'
    return app


class TestBuildPayload:
    """Plain-data snapshot of a paid order."""

    def test_payload_fields(self, paid_payload, restaurant):
        payload = paid_payload()

        assert payload['payment_status'] == 'paid'
        assert payload['total_amount'] == '2200.00'
        assert payload['payer_name'] == 'Ana García'
        assert payload['restaurant_name'] == restaurant.name
        assert payload['primary_color'] == '#ff5722'
        assert payload['items'] == [{
            'name': 'Hamburguesa',
            'quantity': 2,
            'line_total': '2200.00',
            'special_instructions': None,
        }]
        assert payload['pickup_code'] is None

    def test_takeaway_payload_has_pickup_code(self, paid_payload):
        payload = paid_payload(takeaway=True)
        assert payload['is_takeaway'] is True
        assert len(payload['pickup_code']) == 5


class TestRender:
    """Subject and bodies."""

    def test_render_contains_order_details(self, paid_payload):
        payload = paid_payload()
        subject, text, html = render_order_confirmation(payload)

        assert f"#{payload['order_number']}" in subject
        assert 'La Parrilla de Prueba' in subject
        assert '$2.200,00' in text
        assert '¡Hola Ana García!' in text
        assert '2x Hamburguesa' in html

    def test_pickup_code_rendered_for_takeaway(self, paid_payload):
        payload = paid_payload(takeaway=True)
        _, text, html = render_order_confirmation(payload)

        assert payload['pickup_code'] in text
        assert 'Código de Retiro' in html

    def test_html_is_escaped(self, paid_payload):
        payload = paid_payload()
        payload['restaurant_name'] = '<script>alert(1)</script>'
        _, _, html = render_order_confirmation(payload)

        assert '<script>' not in html

    def test_sandbox_notice(self, paid_payload):
        payload = paid_payload()
        payload['sandbox_mode'] = True
        _, text, _ = render_order_confirmation(payload, original_recipient='ana@example.com')

        assert 'MODO SANDBOX' in text
        assert 'ana@example.com' in text


class TestOrderConfirmationMailer:
    """Delivery rules."""

    def test_unpaid_order_is_never_mailed(self, app, paid_payload):
        payload = paid_payload()
        payload['payment_status'] = 'unpaid'
        assert OrderConfirmationMailer().send_order_confirmation(payload) is False

    def test_suppressed_mail_is_skipped(self, app, paid_payload):
        assert OrderConfirmationMailer().send_order_confirmation(paid_payload()) is False

    def test_message_sent_to_payer(self, mail_enabled, paid_payload):
        payload = paid_payload()

        with mail.record_messages() as outbox:
            assert OrderConfirmationMailer().send_order_confirmation(payload) is True

        assert len(outbox) == 1
        assert outbox[0].recipients == ['ana@example.com']
        assert 'Pago confirmado' in outbox[0].subject

    def test_sandbox_override_redirects_recipient(self, mail_enabled, paid_payload):
        mail_enabled.config['SANDBOX_EMAIL_OVERRIDE'] = 'qa@example.com'
        payload = paid_payload()
        payload['sandbox_mode'] = True

        with mail.record_messages() as outbox:
            OrderConfirmationMailer().send_order_confirmation(payload)

        assert outbox[0].recipients == ['qa@example.com']

    def test_missing_email_is_skipped(self, mail_enabled, paid_payload):
        payload = paid_payload()
        payload['payer_email'] = None
        assert OrderConfirmationMailer().send_order_confirmation(payload) is False
