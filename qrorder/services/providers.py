"""Build request-scoped services from what the app factory registered on ``app.extensions``."""
from flask import current_app

from qrorder.services.checkout_service import CheckoutService
from qrorder.services.mercadopago_service import MercadoPagoService
from qrorder.services.reconciliation_service import PaymentReconciler
from qrorder.services.webhook_service import WebhookService


def get_processor_factory():
    return current_app.extensions.get('processor_factory', MercadoPagoService)


def get_notifier():
    return current_app.extensions.get('order_notifier')


def build_checkout_service(db_session) -> CheckoutService:
    return CheckoutService(db_session, processor_factory=get_processor_factory())


def build_reconciler(db_session) -> PaymentReconciler:
    return PaymentReconciler(db_session, processor_factory=get_processor_factory(), notifier=get_notifier())


def build_webhook_service(db_session) -> WebhookService:
    return WebhookService(db_session, build_reconciler(db_session))
