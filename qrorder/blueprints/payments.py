"""
Payment confirmation entry points (polling and client redirect).

Both are thin adapters around PaymentReconciler; the status they receive
from the client is passed along as a hint and never trusted.
"""
import logging
from urllib.parse import urlencode

from flask import Blueprint, current_app, jsonify, redirect, request

from qrorder.database import get_session
from qrorder.exceptions import InputError
from qrorder.models import DiningTable, Restaurant
from qrorder.services.providers import build_reconciler
from qrorder.services.reconciliation_service import TRIGGER_POLLING, TRIGGER_REDIRECT

logger = logging.getLogger(__name__)

payments_bp = Blueprint('payments', __name__)


def _field(data, camel: str, snake: str):
    value = data.get(camel)
    if value in (None, ''):
        value = data.get(snake)
    return value if value not in (None, '') else None


def _restaurant_for_table(db_session, table_id):
    if not table_id:
        return None
    table = db_session.get(DiningTable, table_id)
    if not table:
        return None
    return db_session.get(Restaurant, table.restaurant_id)


@payments_bp.route('/api/payments/confirm', methods=['POST'])
def confirm_payment():
    """
    Polling confirmation.

    Body: orderId, paymentId, tableId, paymentStatus (camelCase or snake_case).
    """
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InputError('Se esperaba un cuerpo JSON')

    db_session = get_session()
    order_id = _field(data, 'orderId', 'order_id')
    payment_id = _field(data, 'paymentId', 'payment_id')
    table_id = _field(data, 'tableId', 'table_id')

    restaurant = None
    if not order_id and payment_id:
        restaurant = _restaurant_for_table(db_session, table_id)

    outcome = build_reconciler(db_session).resolve_payment(
        order_id=order_id,
        payment_id=payment_id,
        restaurant=restaurant,
        trigger=TRIGGER_POLLING,
        hint_status=_field(data, 'paymentStatus', 'payment_status'),
    )
    return jsonify(outcome.to_dict()), 200


@payments_bp.route('/payments/return', methods=['GET'])
def payment_return():
    """
    Client redirect back from Mercado Pago.

    Query: external_reference, payment_id | collection_id, status | collection_status, sid.
    """
    args = request.args
    order_id = args.get('external_reference') or None
    payment_id = args.get('payment_id') or args.get('collection_id') or None
    hint_status = args.get('status') or args.get('collection_status') or None

    if payment_id in ('null', 'undefined'):
        payment_id = None

    outcome = build_reconciler(get_session()).resolve_payment(
        order_id=order_id,
        payment_id=payment_id,
        trigger=TRIGGER_REDIRECT,
        hint_status=hint_status,
    )

    frontend_url = current_app.config.get('FRONTEND_SUCCESS_URL')
    if frontend_url:
        params = {'status': outcome.status}
        if order_id:
            params['order_id'] = order_id
        if args.get('sid'):
            params['sid'] = args['sid']
        separator = '&' if '?' in frontend_url else '?'
        return redirect(f"{frontend_url}{separator}{urlencode(params)}", code=302)

    return jsonify(outcome.to_dict()), 200
