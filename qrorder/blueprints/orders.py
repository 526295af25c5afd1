"""Ordering API blueprint: client session, order creation, checkout and kitchen status."""
import logging
from datetime import datetime, timezone

from flask import Blueprint, request, jsonify

from qrorder.database import get_session
from qrorder.exceptions import ConfigurationError, InputError, UpstreamError
from qrorder.models import PaymentMethod
from qrorder.services import order_service
from qrorder.services.client_session import (
    attach_session_cookie, find_recent_paid_order, get_or_create_session_id
)
from qrorder.services.providers import build_checkout_service

logger = logging.getLogger(__name__)

orders_bp = Blueprint('orders', __name__, url_prefix='/api')


def _field(data: dict, camel: str, snake: str, default=None):
    """Read a body field sent either in camelCase or snake_case."""
    if camel in data:
        return data[camel]
    return data.get(snake, default)


def _json_body() -> dict:
    data = request.get_json(silent=True)
    if not isinstance(data, dict):
        raise InputError('Se esperaba un cuerpo JSON')
    return data


def _parse_items(raw_items):
    if not isinstance(raw_items, list):
        raise InputError('items debe ser una lista')
    items = []
    for raw in raw_items:
        if not isinstance(raw, dict):
            raise InputError('Cada producto debe ser un objeto')
        extras = _field(raw, 'extras', 'added_extras') or []
        if not isinstance(extras, list):
            raise InputError('extras debe ser una lista')
        items.append({
            'menu_item_id': _field(raw, 'menuItemId', 'menu_item_id'),
            'quantity': raw.get('quantity'),
            'special_instructions': _field(raw, 'specialInstructions', 'special_instructions'),
            'extras': [
                {
                    'extra_id': _field(ex, 'extraId', 'extra_id') if isinstance(ex, dict) else None,
                    'quantity': ex.get('quantity', 1) if isinstance(ex, dict) else None,
                }
                for ex in extras
            ],
        })
    return items


@orders_bp.route('/session', methods=['GET'])
def client_session():
    """Get or create the client session id (restores it from ``sid`` after a redirect)."""
    session_id, is_new = get_or_create_session_id(request)
    response = jsonify({'client_session_id': session_id, 'is_new': is_new})
    return attach_session_cookie(response, session_id)


@orders_bp.route('/orders', methods=['POST'])
def create_order():
    """
    Create an order from a cart.

    Body:
        restaurantId, tableId | takeaway, items[], paymentMethod, totalAmount,
        tipPercentage, notes, pickupTime, createPayment, returnUrl
    """
    data = _json_body()
    db_session = get_session()
    session_id, _ = get_or_create_session_id(request)

    payment_method = _field(data, 'paymentMethod', 'payment_method', PaymentMethod.MERCADOPAGO.value)

    order = order_service.create_order(
        db_session,
        restaurant_id=_field(data, 'restaurantId', 'restaurant_id'),
        items=_parse_items(data.get('items') or []),
        table_id=_field(data, 'tableId', 'table_id'),
        takeaway=bool(data.get('takeaway', False)),
        client_session_id=session_id,
        payment_method=payment_method,
        total_amount=_field(data, 'totalAmount', 'total_amount'),
        tip_percentage=_field(data, 'tipPercentage', 'tip_percentage'),
        notes=data.get('notes'),
        pickup_time=_field(data, 'pickupTime', 'pickup_time'),
    )

    body = {'order': order.to_dict(), 'client_session_id': session_id}

    create_payment = _field(data, 'createPayment', 'create_payment', False)
    if create_payment and payment_method == PaymentMethod.MERCADOPAGO.value:
        try:
            body['checkout'] = build_checkout_service(db_session).create_checkout(
                order.id, _field(data, 'returnUrl', 'return_url')
            )
        except (ConfigurationError, UpstreamError, InputError) as e:
            # The order is kept (unpaid) so the diner can retry the checkout
            logger.error(f"[ORDERS] Checkout failed for new order {order.id}: {e.message}")
            error_body = e.to_dict()
            error_body['order_id'] = order.id
            response = jsonify(error_body)
            response.status_code = e.status_code
            return attach_session_cookie(response, session_id)

    response = jsonify(body)
    response.status_code = 201
    return attach_session_cookie(response, session_id)


@orders_bp.route('/orders/<order_id>/checkout', methods=['POST'])
def create_checkout(order_id):
    """(Re)create the processor checkout session for an unpaid order."""
    data = request.get_json(silent=True) or {}
    result = build_checkout_service(get_session()).create_checkout(
        order_id, _field(data, 'returnUrl', 'return_url')
    )
    return jsonify(result), 200


@orders_bp.route('/orders/<order_id>/status', methods=['PATCH'])
def update_status(order_id):
    """Kitchen-facing status transition."""
    data = _json_body()
    new_status = data.get('status')
    if not new_status:
        raise InputError('status es requerido')

    order = order_service.transition_status(
        get_session(), order_id, new_status,
        expected_status=_field(data, 'expectedStatus', 'expected_status')
    )
    return jsonify({'order': order.to_dict()}), 200


@orders_bp.route('/orders/payment-success', methods=['GET'])
def payment_success():
    """
    Most recent paid order for this browser session, scoped to a table or
    to the restaurant's takeaway orders. ``since`` (ISO 8601) ignores older ones.
    """
    session_id, _ = get_or_create_session_id(request)
    restaurant_id = _field(request.args, 'restaurantId', 'restaurant_id')
    table_id = _field(request.args, 'tableId', 'table_id')

    if not restaurant_id and not table_id:
        raise InputError('restaurantId o tableId es requerido')

    since = None
    since_raw = request.args.get('since')
    if since_raw:
        try:
            since = datetime.fromisoformat(since_raw.replace('Z', '+00:00'))
        except ValueError:
            raise InputError('since debe ser una fecha ISO 8601')
        if since.tzinfo is not None:
            since = since.astimezone(timezone.utc)
        else:
            since = since.replace(tzinfo=timezone.utc)

    order = find_recent_paid_order(
        get_session(), session_id, restaurant_id=restaurant_id, table_id=table_id, since=since
    )
    if order is None:
        return jsonify({'order': None}), 200

    return jsonify({
        'order': {
            'orderId': order.id,
            'orderNumber': order.order_number,
            'totalAmount': str(order.total_amount),
            'pickupCode': order.pickup_code,
            'pickupTime': order.pickup_time,
        }
    }), 200
