"""
Integration tests for payment confirmation: polling, client redirect and webhook.
All three paths must converge on the same single paid transition.
"""

import hashlib
import hmac
from urllib.parse import parse_qs, urlparse

import pytest

from qrorder.models import MPWebhookEvent, Order


def _webhook(client, payment_id, restaurant_id=None, event_id='evt-1', headers=None):
    url = f'/webhooks/mercadopago?data.id={payment_id}&type=payment'
    if restaurant_id:
        url += f'&restaurant_id={restaurant_id}'
    payload = {'id': event_id, 'type': 'payment', 'action': 'payment.updated', 'data': {'id': str(payment_id)}}
    return client.post(url, json=payload, headers=headers or {})


def _signature(secret, data_id, request_id, ts='1704900000'):
    manifest = f"id:{data_id};request-id:{request_id};ts:{ts};"
    return f"ts={ts},v1={hmac.new(secret.encode(), manifest.encode(), hashlib.sha256).hexdigest()}"


class TestPollingConfirmation:
    """POST /api/payments/confirm"""

    def test_confirm_approved_payment(self, client, session, processor, notifier, make_order):
        order = make_order()
        processor.add_payment(111, order.id)

        response = client.post('/api/payments/confirm', json={'orderId': order.id, 'paymentId': '111'})
        data = response.get_json()

        assert response.status_code == 200
        assert data['status'] == 'paid'
        assert data['orderNumber'] == order.order_number
        assert data['totalAmount'] == '2200.00'
        assert len(notifier.sent) == 1

    def test_client_reported_status_is_not_trusted(self, client, session, make_order):
        order = make_order()

        response = client.post('/api/payments/confirm', json={
            'order_id': order.id, 'payment_id': '999', 'payment_status': 'approved'
        })

        assert response.get_json()['status'] == 'pending_verification'
        assert not session.get(Order, order.id).is_paid

    def test_payment_and_table_resolve_the_order(self, client, processor, make_order, table):
        order = make_order()
        processor.add_payment(111, order.id)

        response = client.post('/api/payments/confirm', json={'paymentId': '111', 'tableId': table.id})

        assert response.get_json()['orderId'] == order.id

    def test_missing_identifiers(self, client):
        response = client.post('/api/payments/confirm', json={})
        assert response.status_code == 400

    def test_restaurant_without_credentials(self, client, session, restaurant, make_order):
        order = make_order()
        restaurant.mercadopago_access_token = None
        session.commit()

        response = client.post('/api/payments/confirm', json={'orderId': order.id})

        assert response.status_code == 503


class TestRedirectReturn:
    """GET /payments/return"""

    def test_return_reconciles_and_answers_json(self, client, session, processor, make_order):
        order = make_order()
        processor.add_payment(111, order.id)

        response = client.get(
            f'/payments/return?external_reference={order.id}&payment_id=111&status=approved'
        )

        assert response.status_code == 200
        assert response.get_json()['status'] == 'paid'
        assert session.get(Order, order.id).is_paid

    def test_null_payment_id_falls_back_to_search(self, client, processor, make_order):
        order = make_order()
        processor.add_payment(111, order.id)

        response = client.get(f'/payments/return?external_reference={order.id}&payment_id=null')

        assert response.get_json()['status'] == 'paid'
        assert processor.get_calls == []
        assert processor.search_calls == [order.id]

    def test_redirects_to_frontend(self, app, client, processor, make_order):
        app.config['FRONTEND_SUCCESS_URL'] = 'https://menu.example.com/success'
        order = make_order()
        processor.add_payment(111, order.id)

        response = client.get(
            f'/payments/return?external_reference={order.id}&collection_id=111&sid=session-a'
        )
        location = urlparse(response.headers['Location'])
        params = parse_qs(location.query)

        assert response.status_code == 302
        assert location.netloc == 'menu.example.com'
        assert params == {'status': ['paid'], 'order_id': [order.id], 'sid': ['session-a']}

    def test_rejected_payment(self, client, session, processor, make_order):
        order = make_order()
        processor.add_payment(111, order.id, status='rejected')

        response = client.get(f'/payments/return?external_reference={order.id}&payment_id=111')

        assert response.get_json()['status'] == 'cancelled'
        assert session.get(Order, order.id).payment_status == 'unpaid'


class TestWebhook:
    """POST /webhooks/mercadopago"""

    def test_webhook_marks_order_paid(self, client, session, processor, notifier, restaurant, make_order):
        order = make_order()
        processor.add_payment(111, order.id)

        response = _webhook(client, 111, restaurant.id)
        data = response.get_json()

        assert response.status_code == 200
        assert data['status'] == 'processed'
        assert data['outcome']['status'] == 'paid'
        assert session.get(Order, order.id).is_paid
        assert len(notifier.sent) == 1

    def test_redelivery_is_deduplicated(self, client, session, processor, notifier, restaurant, make_order):
        order = make_order()
        processor.add_payment(111, order.id)

        _webhook(client, 111, restaurant.id)
        response = _webhook(client, 111, restaurant.id)

        assert response.get_json() == {'status': 'duplicate'}
        assert session.query(MPWebhookEvent).count() == 1
        assert len(notifier.sent) == 1

    def test_all_paths_converge_on_one_notification(self, client, processor, notifier, restaurant, make_order):
        """Polling, redirect and webhook for the same payment: one write, one email."""
        order = make_order()
        processor.add_payment(111, order.id)

        client.post('/api/payments/confirm', json={'orderId': order.id, 'paymentId': '111'})
        client.get(f'/payments/return?external_reference={order.id}&payment_id=111')
        response = _webhook(client, 111, restaurant.id)

        assert response.get_json()['outcome']['status'] == 'paid'
        assert len(notifier.sent) == 1

    def test_unknown_payment_is_acknowledged(self, client, restaurant):
        response = _webhook(client, 404, restaurant.id)

        assert response.status_code == 200
        assert response.get_json()['status'] == 'ignored'

    def test_non_payment_topic(self, client):
        response = client.post('/webhooks/mercadopago', json={'type': 'plan', 'data': {'id': '1'}})
        assert response.get_json()['status'] == 'ignored'

    def test_invalid_json(self, client):
        response = client.post('/webhooks/mercadopago', data='{not json', content_type='application/json')
        assert response.status_code == 400

    def test_processing_error_still_answers_200(self, client, processor, restaurant, make_order):
        order = make_order()
        processor.add_payment(111, order.id)
        processor.fail_with = RuntimeError('boom')

        response = _webhook(client, 111, restaurant.id)

        assert response.status_code == 200
        assert response.get_json() == {'status': 'error'}


class TestWebhookSignature:
    """x-signature enforcement when MP_WEBHOOK_SECRET is set."""

    @pytest.fixture(autouse=True)
    def secret(self, app):
        app.config['MP_WEBHOOK_SECRET'] = 'shh'
        return 'shh'

    def test_missing_signature_is_401(self, client, restaurant):
        response = _webhook(client, 111, restaurant.id)
        assert response.status_code == 401

    def test_forged_signature_is_401(self, client, restaurant):
        headers = {'x-signature': _signature('wrong', '111', 'req-1'), 'x-request-id': 'req-1'}
        response = _webhook(client, 111, restaurant.id, headers=headers)
        assert response.status_code == 401

    def test_valid_signature_is_processed(self, client, processor, restaurant, make_order, secret):
        order = make_order()
        processor.add_payment(111, order.id)
        headers = {'x-signature': _signature(secret, '111', 'req-1'), 'x-request-id': 'req-1'}

        response = _webhook(client, 111, restaurant.id, headers=headers)

        assert response.status_code == 200
        assert response.get_json()['status'] == 'processed'


class TestMetricsEndpoint:
    """GET /metrics"""

    def test_reconciliation_counter_exposed(self, client, processor, make_order):
        order = make_order()
        processor.add_payment(111, order.id)
        client.post('/api/payments/confirm', json={'orderId': order.id, 'paymentId': '111'})

        response = client.get('/metrics')

        assert response.status_code == 200
        assert b'qrorder_payment_reconciliations_total' in response.data
