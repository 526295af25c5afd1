"""Checkout service: turn an audited order into a Mercado Pago preference."""
import logging
from typing import Any, Callable, Dict, Optional
from urllib.parse import urlencode, urlparse, urlunparse, parse_qsl

from flask import current_app, has_app_context
from sqlalchemy.orm import Session

from qrorder.exceptions import ConfigurationError, InputError, NotFoundError
from qrorder.models import Order, Restaurant
from qrorder.services import order_service
from qrorder.services.mercadopago_service import MercadoPagoService
from qrorder.services.pricing_service import audit_order_pricing

logger = logging.getLogger(__name__)

LOCAL_HOSTS = ('localhost', '127.0.0.1')


def _with_session_param(return_url: str, client_session_id: Optional[str]) -> str:
    """Append ``sid`` so the session survives the processor redirect hop."""
    if not client_session_id:
        return return_url
    parts = urlparse(return_url)
    query = [(k, v) for k, v in parse_qsl(parts.query, keep_blank_values=True) if k != 'sid']
    query.append(('sid', client_session_id))
    return urlunparse(parts._replace(query=urlencode(query)))


def _is_local(return_url: str) -> bool:
    return urlparse(return_url).hostname in LOCAL_HOSTS


class CheckoutService:
    """Create processor checkout sessions for orders (restaurant credentials)."""

    def __init__(self, db_session: Session, processor_factory: Optional[Callable[[str], Any]] = None):
        """
        Initialize checkout service.

        Args:
            db_session: SQLAlchemy session
            processor_factory: Callable(access_token) -> processor client
        """
        self.db = db_session
        self.processor_factory = processor_factory or MercadoPagoService

    def _config(self, name, default=None):
        if has_app_context():
            return current_app.config.get(name, default)
        return default

    def create_checkout(self, order_id: str, return_url: str) -> Dict[str, Any]:
        """
        Audit the order, correct its total if needed and create a preference.

        Returns:
            {'preference_id', 'checkout_url', 'sandbox_mode'}

        Raises:
            NotFoundError: Order not found
            InputError: Empty order, already paid, missing return URL
            ConfigurationError: Restaurant without Mercado Pago credentials
            UpstreamError: Processor error (order stays unpaid and retryable)
        """
        if not return_url:
            raise InputError('returnUrl es requerido')

        order = self.db.get(Order, order_id) if order_id else None
        if not order:
            raise NotFoundError(f'Pedido {order_id} no encontrado')
        if not order.items:
            raise InputError('El pedido no tiene productos')
        if order.is_paid:
            raise InputError('El pedido ya fue pagado')

        restaurant = self.db.get(Restaurant, order.restaurant_id)
        if not restaurant or not restaurant.has_processor_credentials:
            logger.error(f"[CHECKOUT] Restaurant {order.restaurant_id} has no Mercado Pago credentials")
            raise ConfigurationError()

        audit = audit_order_pricing(self.db, order.id)
        if audit.needs_correction:
            # Persist the audited figure before any money is requested
            order_service.apply_pricing_correction(self.db, order.id, audit.final_total)

        currency = self._config('MP_CURRENCY_ID', 'ARS')
        items = [
            {
                'id': line.menu_item_id,
                'title': line.title,
                'quantity': line.quantity,
                'unit_price': float(line.unit_price),
                'currency_id': currency,
            }
            for line in audit.lines
        ]
        if audit.tip > 0:
            items.append({
                'title': 'Propina',
                'quantity': 1,
                'unit_price': float(audit.tip),
                'currency_id': currency,
            })

        back_url = _with_session_param(return_url, order.client_session_id)
        base_url = (self._config('PUBLIC_BASE_URL', '') or '').rstrip('/')
        notification_url = f"{base_url}/webhooks/mercadopago?{urlencode({'restaurant_id': restaurant.id})}"

        preference_data = {
            'items': items,
            'external_reference': order.id,
            'payment_methods': {
                'excluded_payment_methods': [],
                'excluded_payment_types': [],
                'installments': 1,
            },
            'back_urls': {
                'success': back_url,
                'failure': back_url,
                'pending': back_url,
            },
            'binary_mode': True,
            'notification_url': notification_url,
            'statement_descriptor': f"ORDER #{order.order_number}",
        }
        if not _is_local(return_url):
            preference_data['auto_return'] = 'approved'

        logger.info(
            f"[CHECKOUT] Creating preference for order {order.id} "
            f"(#{order.order_number}) total={audit.final_total} tip={audit.tip}"
        )

        processor = self.processor_factory(restaurant.mercadopago_access_token)
        preference = processor.create_preference(preference_data)

        collector_id = preference.get('collector_id')
        if collector_id and not restaurant.mercadopago_user_id:
            restaurant.mercadopago_user_id = str(collector_id)
            self.db.commit()
            logger.info(f"[CHECKOUT] Learned collector id {collector_id} for restaurant {restaurant.id}")

        order_service.attach_preference(self.db, order.id, preference['id'])

        sandbox = bool(restaurant.mercadopago_sandbox_mode)
        checkout_url = preference.get('sandbox_init_point') if sandbox else preference.get('init_point')

        return {
            'preference_id': preference['id'],
            'checkout_url': checkout_url,
            'sandbox_mode': sandbox,
            'total_amount': str(audit.final_total),
            'suspicious_tip': audit.suspicious_tip,
        }
