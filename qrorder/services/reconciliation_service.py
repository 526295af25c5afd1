"""
Payment reconciliation.

Polling confirmation, the processor webhook and the client redirect all
funnel into ``PaymentReconciler.resolve_payment``. The processor API is the
only source of truth: webhook bodies and redirect query parameters are
hints and never mark an order paid by themselves.
"""
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.orm import Session

from qrorder.exceptions import (
    ConflictResolved, ConfigurationError, InputError, UpstreamError, VerificationInconclusive
)
from qrorder.metrics import payment_reconciliations_total, order_notifications_total
from qrorder.models import Order, Restaurant
from qrorder.services import order_service
from qrorder.services.email_service import build_confirmation_payload
from qrorder.services.mercadopago_service import MercadoPagoService

logger = logging.getLogger(__name__)

TRIGGER_POLLING = 'polling'
TRIGGER_WEBHOOK = 'webhook'
TRIGGER_REDIRECT = 'redirect'
TRIGGER_CLI = 'cli'

STATUS_PAID = 'paid'
STATUS_PENDING = 'pending'
STATUS_CANCELLED = 'cancelled'
STATUS_PENDING_VERIFICATION = 'pending_verification'


class PaymentOutcome:
    """Result of a reconciliation attempt, serialized for the three adapters."""

    MESSAGES = {
        STATUS_PAID: 'Payment confirmed via API verification',
        STATUS_PENDING: 'Payment is still pending',
        STATUS_CANCELLED: 'Payment was not approved',
        STATUS_PENDING_VERIFICATION: 'Awaiting webhook/API confirmation',
    }

    def __init__(self, status: str, order: Optional[Order] = None, payment_method: Optional[str] = None,
                 changed: bool = False, message: Optional[str] = None):
        self.status = status
        self.order = order
        self.payment_method = payment_method
        # True only for the invocation whose conditional write moved the row
        self.changed = changed
        self.message = message or self.MESSAGES[status]

    @property
    def is_final(self) -> bool:
        return self.status in (STATUS_PAID, STATUS_CANCELLED)

    def to_dict(self) -> Dict[str, Any]:
        data = {'status': self.status, 'message': self.message}
        if self.order is not None and self.is_final:
            data.update({
                'orderId': self.order.id,
                'orderNumber': self.order.order_number,
                'totalAmount': str(self.order.total_amount),
            })
            if self.status == STATUS_PAID:
                data['pickupCode'] = self.order.pickup_code or None
                if self.payment_method:
                    data['paymentMethod'] = self.payment_method
        return data

    def __repr__(self):
        order_id = self.order.id if self.order is not None else None
        return f"<PaymentOutcome(status={self.status}, order={order_id}, changed={self.changed})>"


def extract_payer(payment: Dict[str, Any]):
    """Return (email, name) from a processor payment, falling back to additional_info.payer."""
    payer = payment.get('payer') or {}
    fallback = (payment.get('additional_info') or {}).get('payer') or {}

    email = payer.get('email') or fallback.get('email') or None

    name = f"{payer.get('first_name') or ''} {payer.get('last_name') or ''}".strip()
    if not name:
        name = f"{fallback.get('first_name') or ''} {fallback.get('last_name') or ''}".strip()

    return email, name or None


class PaymentReconciler:
    """Verify a payment against the processor and apply the at-most-once transition."""

    def __init__(self, db_session: Session, processor_factory: Optional[Callable[[str], Any]] = None,
                 notifier=None):
        """
        Args:
            db_session: SQLAlchemy session
            processor_factory: Callable(access_token) -> processor client
            notifier: Object with ``send_order_confirmation(payload) -> bool`` (optional)
        """
        self.db = db_session
        self.processor_factory = processor_factory or MercadoPagoService
        self.notifier = notifier

    def resolve_payment(
        self,
        order_id: Optional[str] = None,
        payment_id: Optional[str] = None,
        restaurant: Optional[Restaurant] = None,
        trigger: str = TRIGGER_POLLING,
        hint_status: Optional[str] = None,
    ) -> PaymentOutcome:
        """
        Resolve an order's payment state from the processor.

        Raises:
            InputError: The order could not be determined
            NotFoundError: The order does not exist
            ConfigurationError: The restaurant has no processor credentials
        """
        payment_id = str(payment_id) if payment_id else None
        outcome = self._resolve(order_id, payment_id, restaurant, trigger, hint_status)
        payment_reconciliations_total.labels(trigger=trigger, outcome=outcome.status).inc()
        logger.info(f"[RECONCILE] trigger={trigger} order={order_id} payment={payment_id} -> {outcome!r}")
        return outcome

    def _resolve(self, order_id, payment_id, restaurant, trigger, hint_status) -> PaymentOutcome:
        if hint_status:
            logger.info(f"[RECONCILE] Client-reported status '{hint_status}' is a hint only ({trigger})")

        prefetched = None

        # 1. Resolve the order from the payment when only a payment id is known
        if not order_id and payment_id:
            if restaurant is None or not restaurant.has_processor_credentials:
                raise InputError('No se pudo determinar el pedido para este pago')
            try:
                prefetched = self.processor_factory(restaurant.mercadopago_access_token).get_payment(payment_id)
            except UpstreamError as e:
                logger.error(f"[RECONCILE] Could not fetch payment {payment_id} to resolve its order: {e}")
                prefetched = None
            if prefetched:
                order_id = prefetched.get('external_reference') or None

        if not order_id:
            raise InputError('No se pudo determinar el pedido')

        # 2. Load the order; paid is terminal
        order = order_service.get_order(self.db, str(order_id))
        if order.is_paid:
            return PaymentOutcome(STATUS_PAID, order, order.mercadopago_payment_method,
                                  message='Payment already confirmed')

        owner = self.db.get(Restaurant, order.restaurant_id)
        if restaurant is not None and restaurant.id != order.restaurant_id:
            logger.warning(
                f"[RECONCILE] Restaurant {restaurant.id} does not own order {order.id}; "
                f"using owner {order.restaurant_id}"
            )
            prefetched = None
        if not owner or not owner.has_processor_credentials:
            logger.error(f"[RECONCILE] Restaurant {order.restaurant_id} has no Mercado Pago credentials")
            raise ConfigurationError()

        # 3. Verify against the processor
        try:
            payment = self._find_payment(owner, order, payment_id, prefetched)
        except UpstreamError as e:
            logger.error(f"[RECONCILE] Processor unreachable for order {order.id}: {e}")
            return PaymentOutcome(STATUS_PENDING_VERIFICATION, order)
        except VerificationInconclusive as e:
            logger.info(f"[RECONCILE] {e.message} (order {order.id})")
            return PaymentOutcome(STATUS_PENDING_VERIFICATION, order)

        # 4. Branch on the verified status
        status = (payment.get('status') or '').lower()
        if status == 'approved':
            return self._apply_approved(order, owner, payment)
        if status in ('pending', 'in_process'):
            logger.info(
                f"[RECONCILE] Payment {payment.get('id')} for order {order.id} is {status}; ledger unchanged"
            )
            return PaymentOutcome(STATUS_PENDING, order)
        if status in ('rejected', 'cancelled'):
            changed = order_service.mark_customer_cancelled(self.db, order.id)
            self.db.refresh(order)
            return PaymentOutcome(STATUS_CANCELLED, order, changed=changed)

        logger.warning(f"[RECONCILE] Unhandled payment status '{status}' for order {order.id}")
        return PaymentOutcome(STATUS_PENDING_VERIFICATION, order)

    def _find_payment(self, restaurant, order, payment_id, prefetched) -> Dict[str, Any]:
        """
        Direct lookup by payment id, then the newest approved payment for the order.

        Raises:
            VerificationInconclusive: No payment proves anything yet
        """
        processor = self.processor_factory(restaurant.mercadopago_access_token)

        payment = prefetched
        if payment is None and payment_id:
            try:
                payment = processor.get_payment(payment_id)
            except UpstreamError as e:
                logger.warning(f"[RECONCILE] Direct lookup of payment {payment_id} failed, trying search: {e}")
                payment = None

        if payment is not None and str(payment.get('external_reference') or '') != order.id:
            logger.warning(
                f"[RECONCILE] Payment {payment.get('id')} references "
                f"'{payment.get('external_reference')}', not order {order.id}; ignoring it"
            )
            payment = None

        if payment is not None:
            return payment

        results = processor.search_payments_by_reference(order.id)
        approved = [p for p in results if (p.get('status') or '').lower() == 'approved']
        if approved:
            approved.sort(key=lambda p: p.get('date_created') or '', reverse=True)
            logger.info(f"[RECONCILE] Found approved payment {approved[0].get('id')} by search for order {order.id}")
            return approved[0]

        raise VerificationInconclusive("No approved payment found")

    def _apply_approved(self, order: Order, restaurant: Restaurant, payment: Dict[str, Any]) -> PaymentOutcome:
        payer_email, payer_name = extract_payer(payment)
        payment_method = payment.get('payment_method_id')

        changed = True
        try:
            order_service.mark_paid(
                self.db,
                order.id,
                payment_id=payment.get('id'),
                collection_id=payment.get('collection_id'),
                payment_method=payment_method,
                payer_email=payer_email,
                payer_name=payer_name,
            )
        except ConflictResolved:
            # Another invocation won the race; report its result
            changed = False

        self.db.refresh(order)

        if changed:
            self._notify(order, restaurant, payer_email, payer_name)
        else:
            logger.info(f"[RECONCILE] Order {order.id} already resolved by another invocation, not notifying")

        if not order.is_paid:
            return PaymentOutcome(STATUS_PENDING_VERIFICATION, order)
        return PaymentOutcome(STATUS_PAID, order, payment_method, changed=changed)

    def _notify(self, order: Order, restaurant: Restaurant, payer_email: Optional[str], payer_name: Optional[str]):
        """Dispatch the confirmation; failures never unwind the payment write."""
        if not payer_email:
            logger.info(f"[RECONCILE] Cannot send email for order {order.id} - payer email not available")
            order_notifications_total.labels(result='no_email').inc()
            return
        if self.notifier is None:
            logger.info(f"[RECONCILE] No notifier configured, skipping email for order {order.id}")
            order_notifications_total.labels(result='skipped').inc()
            return

        try:
            payload = build_confirmation_payload(order, restaurant, payer_email, payer_name)
            sent = self.notifier.send_order_confirmation(payload)
        except Exception as e:
            logger.exception(f"[RECONCILE] Confirmation email failed for order {order.id}: {e}")
            order_notifications_total.labels(result='failed').inc()
            return

        order_notifications_total.labels(result='sent' if sent else 'skipped').inc()
