"""Mercado Pago webhook intake: delivery log, dedupe and hand-off to the reconciler."""
import hashlib
import hmac
import json
import logging
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from qrorder.exceptions import OrderingError
from qrorder.models import MPWebhookEvent, Restaurant
from qrorder.services.reconciliation_service import TRIGGER_WEBHOOK

logger = logging.getLogger(__name__)

PAYMENT_TOPICS = ('payment',)


def parse_signature_header(header: str) -> Dict[str, str]:
    """``ts=1704900000,v1=abcdef...`` -> {'ts': ..., 'v1': ...}"""
    parts = {}
    for chunk in (header or '').split(','):
        key, sep, value = chunk.strip().partition('=')
        if sep:
            parts[key.strip()] = value.strip()
    return parts


def verify_signature(secret: str, signature_header: str, request_id: str, data_id: Optional[str]) -> bool:
    """
    Verify Mercado Pago's ``x-signature`` header.

    The signed manifest is ``id:<data.id>;request-id:<x-request-id>;ts:<ts>;``
    (segments whose value is missing are omitted).
    """
    parts = parse_signature_header(signature_header)
    ts = parts.get('ts')
    received = parts.get('v1')
    if not ts or not received:
        logger.warning("[WEBHOOK] Malformed or missing x-signature header")
        return False

    manifest = ''
    if data_id:
        manifest += f"id:{str(data_id).lower()};"
    if request_id:
        manifest += f"request-id:{request_id};"
    manifest += f"ts:{ts};"

    expected = hmac.new(secret.encode('utf-8'), manifest.encode('utf-8'), hashlib.sha256).hexdigest()
    return hmac.compare_digest(expected, received)


def build_dedupe_key(topic: str, payload: Dict[str, Any], resource_id: Optional[str]) -> str:
    mp_event_id = payload.get('id')
    dedupe_components = [
        topic,
        str(mp_event_id) if mp_event_id else '',
        str(resource_id) if resource_id else '',
        json.dumps(payload, sort_keys=True, default=str),
    ]
    return hashlib.sha256(':'.join(dedupe_components).encode()).hexdigest()


class WebhookService:
    """Record webhook deliveries idempotently and reconcile payment events."""

    def __init__(self, db_session: Session, reconciler):
        """
        Args:
            db_session: SQLAlchemy session
            reconciler: PaymentReconciler
        """
        self.db = db_session
        self.reconciler = reconciler

    def resolve_restaurant(self, restaurant_id: Optional[str], payload: Dict[str, Any]) -> Optional[Restaurant]:
        """Restaurant from the notification_url query parameter, else from the payload user_id."""
        if restaurant_id:
            restaurant = self.db.get(Restaurant, restaurant_id)
            if restaurant:
                return restaurant
            logger.warning(f"[WEBHOOK] Unknown restaurant_id in notification url: {restaurant_id}")

        user_id = payload.get('user_id')
        if user_id:
            return self.db.query(Restaurant).filter(
                Restaurant.mercadopago_user_id == str(user_id)
            ).first()
        return None

    def process(self, payload: Dict[str, Any], topic: Optional[str] = None, resource_id: Optional[str] = None,
                restaurant_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Process a webhook delivery (idempotent).

        Returns:
            dict with 'status' (processed | deferred | ignored | duplicate) and, when
            reconciled, the reconciliation 'outcome'

        Raises:
            Exception: Unexpected errors (the event is left as FAILED and re-run on redelivery)
        """
        topic = topic or payload.get('type') or payload.get('topic') or 'unknown'
        resource_id = resource_id or (payload.get('data') or {}).get('id')
        resource_id = str(resource_id) if resource_id else None

        dedupe_key = build_dedupe_key(topic, payload, resource_id)

        event = self.db.query(MPWebhookEvent).filter(
            MPWebhookEvent.dedupe_key == dedupe_key
        ).first()

        if event and event.is_terminal:
            logger.info(f"[WEBHOOK] Webhook already processed: {dedupe_key[:16]}...")
            return {'status': 'duplicate'}

        if event is None:
            event = MPWebhookEvent(
                topic=topic,
                mp_event_id=str(payload.get('id')) if payload.get('id') else None,
                resource_id=resource_id,
                restaurant_id=restaurant_id,
                payload_json=payload,
                dedupe_key=dedupe_key,
                status=MPWebhookEvent.STATUS_RECEIVED,
            )
            try:
                self.db.add(event)
                self.db.commit()
            except IntegrityError:
                # Race condition: another worker already recorded it
                self.db.rollback()
                logger.warning(f"[WEBHOOK] Webhook dedupe conflict (race): {dedupe_key[:16]}...")
                return {'status': 'duplicate'}
        else:
            logger.info(f"[WEBHOOK] Re-running {event.status} event {dedupe_key[:16]}...")

        if topic not in PAYMENT_TOPICS or not resource_id:
            logger.info(f"[WEBHOOK] Ignoring topic={topic} resource={resource_id}")
            self._finish(event, MPWebhookEvent.STATUS_IGNORED, 'unsupported_topic')
            return {'status': 'ignored', 'type': topic}

        try:
            restaurant = self.resolve_restaurant(restaurant_id, payload)
            if restaurant is not None:
                event.restaurant_id = restaurant.id

            outcome = self.reconciler.resolve_payment(
                payment_id=resource_id,
                restaurant=restaurant,
                trigger=TRIGGER_WEBHOOK,
            )
        except OrderingError as e:
            # Unresolvable notification (unknown order/restaurant, no credentials): acknowledge it
            logger.warning(f"[WEBHOOK] Payment {resource_id} not reconcilable: {e.message}")
            self._finish(event, MPWebhookEvent.STATUS_IGNORED, type(e).__name__)
            return {'status': 'ignored', 'reason': e.message}
        except Exception as e:
            logger.error(f"[WEBHOOK] Error processing webhook: {e}")
            self.db.rollback()
            self._finish(event, MPWebhookEvent.STATUS_FAILED, 'error')
            raise

        if outcome.is_final:
            self._finish(event, MPWebhookEvent.STATUS_PROCESSED, outcome.status)
            return {'status': 'processed', 'outcome': outcome.to_dict()}

        # No terminal proof yet: keep the event re-runnable on redelivery
        self._finish(event, MPWebhookEvent.STATUS_DEFERRED, outcome.status)
        return {'status': 'deferred', 'outcome': outcome.to_dict()}

    def _finish(self, event: MPWebhookEvent, status: str, outcome: str):
        event.status = status
        event.outcome = outcome
        event.processed_at = datetime.now(timezone.utc)
        self.db.commit()
