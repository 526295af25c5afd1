"""
Webhooks Blueprint for Mercado Pago notifications.
Handles payment notifications for restaurant orders.
"""

import logging
from flask import Blueprint, request, jsonify, current_app
from qrorder.database import get_session
from qrorder.services.providers import build_webhook_service
from qrorder.services.webhook_service import verify_signature

logger = logging.getLogger(__name__)

webhooks_bp = Blueprint('webhooks', __name__, url_prefix='/webhooks')


def _data_id(payload: dict):
    """data.id from the query string (signed value) or the JSON body."""
    return (
        request.args.get('data.id')
        or (payload.get('data') or {}).get('id')
        or request.args.get('id')
    )


@webhooks_bp.route('/mercadopago', methods=['POST'])
def mercadopago_webhook():
    """
    Handle Mercado Pago webhook notifications.

    Always answers 200 once the delivery is authentic and parseable, so the
    processor stops retrying; failed events are re-run on redelivery.
    """
    payload = request.get_json(silent=True)
    if payload is None and request.get_data():
        logger.warning("[WEBHOOK] Invalid JSON payload")
        return jsonify({'error': 'Invalid JSON'}), 400
    payload = payload if isinstance(payload, dict) else {}

    secret = current_app.config.get('MP_WEBHOOK_SECRET')
    if secret:
        if not verify_signature(
            secret,
            request.headers.get('x-signature', ''),
            request.headers.get('x-request-id', ''),
            _data_id(payload),
        ):
            logger.warning("[WEBHOOK] Invalid MP webhook signature")
            return jsonify({'error': 'Invalid signature'}), 401
    else:
        logger.debug("[WEBHOOK] MP_WEBHOOK_SECRET not set, skipping signature verification")

    topic = payload.get('type') or payload.get('topic') or request.args.get('type') or request.args.get('topic')
    resource_id = _data_id(payload)

    logger.info(f"[WEBHOOK] Received MP webhook: type={topic}, action={payload.get('action')}, id={resource_id}")

    try:
        result = build_webhook_service(get_session()).process(
            payload,
            topic=topic,
            resource_id=resource_id,
            restaurant_id=request.args.get('restaurant_id'),
        )
    except Exception as e:
        logger.exception(f"[WEBHOOK] Error processing MP webhook: {e}")
        return jsonify({'status': 'error'}), 200

    return jsonify(result), 200
