"""
Email service for order confirmations.
Uses Flask-Mail for SMTP integration with UTF-8 support.
"""
import logging
import threading
from typing import Any, Dict, Optional

from flask import current_app
from flask_mail import Mail, Message
from markupsafe import escape

from qrorder.models import PaymentStatus
from qrorder.utils.formatters import money_ar

logger = logging.getLogger(__name__)

mail = Mail()

DEFAULT_PRIMARY_COLOR = '#059669'


def init_mail(app):
    """Initialize Flask-Mail with app."""
    mail.init_app(app)


def _mail_enabled() -> bool:
    """
    Check if mail is properly configured and enabled.
    Prevents 500 errors in dev or misconfigured environments.
    """
    cfg = current_app.config
    return bool(
        not cfg.get("MAIL_SUPPRESS_SEND", False)
        and cfg.get("MAIL_SERVER")
        and cfg.get("MAIL_USERNAME")
    )


def build_confirmation_payload(order, restaurant, payer_email: str, payer_name: Optional[str] = None) -> Dict[str, Any]:
    """
    Snapshot everything the confirmation email needs as plain data,
    so it can be rendered outside the request/session that produced it.
    """
    items = []
    for item in order.items:
        line_total = item.unit_price * item.quantity
        for extra in item.added_extras:
            line_total += extra.unit_price * extra.quantity
        items.append({
            'name': item.menu_item.name if item.menu_item else 'Producto',
            'quantity': item.quantity,
            'line_total': str(line_total),
            'special_instructions': item.special_instructions,
        })

    return {
        'order_id': order.id,
        'order_number': order.order_number,
        'payment_status': order.payment_status,
        'total_amount': str(order.total_amount),
        'payer_email': payer_email,
        'payer_name': payer_name,
        'is_takeaway': order.is_takeaway,
        'pickup_code': order.pickup_code if order.is_takeaway else None,
        'items': items,
        'restaurant_name': restaurant.name if restaurant else 'Restaurant',
        'restaurant_logo': restaurant.logo_url if restaurant else None,
        'cover_image_url': restaurant.cover_image_url if restaurant else None,
        'primary_color': (restaurant.primary_color if restaurant else None) or DEFAULT_PRIMARY_COLOR,
        'sandbox_mode': bool(restaurant.mercadopago_sandbox_mode) if restaurant else False,
    }


def render_order_confirmation(payload: Dict[str, Any], original_recipient: Optional[str] = None):
    """Return (subject, text_body, html_body)."""
    color = escape(payload['primary_color'])
    restaurant_name = escape(payload['restaurant_name'])
    order_number = payload['order_number']
    total = money_ar(payload['total_amount'])

    subject = f"✅ Pago confirmado - Pedido #{order_number} - {payload['restaurant_name']}"

    item_lines = []
    item_rows = []
    for item in payload['items']:
        notes = f" ({item['special_instructions']})" if item.get('special_instructions') else ''
        item_lines.append(f"• {item['quantity']}x {item['name']} - {money_ar(item['line_total'])}{notes}")
        item_rows.append(
            f"<tr><td>{item['quantity']}x {escape(item['name'])}"
            f"{escape(notes)}</td><td align=\"right\">{money_ar(item['line_total'])}</td></tr>"
        )

    greeting = f"¡Hola {payload['payer_name']}!" if payload.get('payer_name') else "¡Hola!"

    logo_html = ''
    if payload.get('restaurant_logo'):
        logo_html = (
            f'<img src="{escape(payload["restaurant_logo"])}" alt="{restaurant_name}" '
            f'style="max-height: 60px; margin-bottom: 10px;">'
        )

    pickup_html = ''
    pickup_text = ''
    if payload.get('is_takeaway') and payload.get('pickup_code'):
        pickup_code = escape(payload['pickup_code'])
        pickup_html = f"""
            <div style="background-color: #fff3e0; padding: 20px; border-radius: 8px; border-left: 4px solid {color};">
                <h3>Código de Retiro</h3>
                <div style="font-family: 'Courier New', monospace; font-size: 32px; font-weight: bold;
                            letter-spacing: 8px; color: {color}; text-align: center;">
                    {pickup_code}
                </div>
                <p style="font-size: 12px; color: #666;">
                    Presentá este código al personal del restaurante para retirar tu pedido.
                </p>
            </div>
        """
        pickup_text = f"\nTu código de retiro es: {payload['pickup_code']}\n"

    sandbox_html = ''
    sandbox_text = ''
    if payload.get('sandbox_mode'):
        sandbox_html = f"""
            <div style="background-color: #fff3cd; padding: 15px; border-radius: 8px; border: 1px solid #ffeaa7;">
                <p style="margin: 0; color: #856404; font-size: 14px;">
                    🧪 Email de prueba (modo sandbox). Destinatario original: {escape(original_recipient or '-')}
                </p>
            </div>
        """
        sandbox_text = f"\n[MODO SANDBOX] Destinatario original: {original_recipient or '-'}\n"

    html_body = f"""
    <!DOCTYPE html>
    <html>
    <head>
        <meta charset="UTF-8">
    </head>
    <body style="font-family: Arial, sans-serif; color: #333;">
        <div style="max-width: 600px; margin: auto; padding: 20px;">
            <div style="text-align: center;">
                {logo_html}
                <h1>¡Pago Confirmado!</h1>
                <p>Pedido #{order_number}</p>
            </div>
            <h2>{escape(greeting)}</h2>
            <p>Tu pago ha sido procesado exitosamente. Aquí tienes los detalles de tu pedido:</p>
            <div style="background-color: #f8f9fa; padding: 20px; border-radius: 8px;">
                <p><strong>Número de Pedido:</strong> {order_number}</p>
                <p><strong>Restaurant:</strong> {restaurant_name}</p>
                <p><strong>Total Pagado:</strong> {total}</p>
            </div>
            <table width="100%" cellpadding="6" cellspacing="0">
                {''.join(item_rows)}
            </table>
            {pickup_html}
            <div style="background-color: #e3f2fd; padding: 20px; border-radius: 8px; border-left: 4px solid {color};">
                <p>💡 <strong>Importante:</strong> Guardá este número de pedido ({order_number}) para cualquier consulta.</p>
            </div>
            {sandbox_html}
        </div>
    </body>
    </html>
    """

    text_body = f"""
{greeting}

Tu pago en {payload['restaurant_name']} fue confirmado.
Pedido #{order_number}
Total pagado: {total}

{chr(10).join(item_lines)}
{pickup_text}{sandbox_text}
Guardá este número de pedido para cualquier consulta.
"""
    return subject, text_body, html_body


class OrderConfirmationMailer:
    """Send the "payment confirmed" email to the payer."""

    def send_order_confirmation(self, payload: Dict[str, Any]) -> bool:
        """
        Send (or schedule) the confirmation email.

        Returns:
            True if sent or scheduled, False if skipped or failed
        """
        if payload.get('payment_status') != PaymentStatus.PAID.value:
            logger.error(
                f"[EMAIL] Order {payload.get('order_id')} payment_status is "
                f"'{payload.get('payment_status')}', not 'paid'. Email will not be sent."
            )
            return False

        if current_app.config.get('NOTIFICATIONS_ASYNC', False):
            app = current_app._get_current_object()
            thread = threading.Thread(
                target=self._deliver_in_context,
                args=(app, payload),
                name=f"order-confirmation-{payload.get('order_id')}",
                daemon=True,
            )
            thread.start()
            logger.info(f"[EMAIL] Confirmation for order #{payload.get('order_number')} scheduled")
            return True

        return self.deliver(payload)

    def _deliver_in_context(self, app, payload: Dict[str, Any]):
        with app.app_context():
            self.deliver(payload)

    def deliver(self, payload: Dict[str, Any]) -> bool:
        to_email = payload.get('payer_email')
        try:
            if not to_email:
                logger.info(f"[EMAIL] No payer email for order {payload.get('order_id')}, skipping")
                return False

            original_recipient = None
            if payload.get('sandbox_mode') and current_app.config.get('SANDBOX_EMAIL_OVERRIDE'):
                original_recipient = to_email
                to_email = current_app.config['SANDBOX_EMAIL_OVERRIDE']
                logger.info(f"[EMAIL] Sandbox mode: redirecting confirmation from {original_recipient} to {to_email}")

            if not _mail_enabled():
                logger.warning(f"[MAIL DISABLED] Order confirmation skipped for {to_email}")
                return False

            subject, text_body, html_body = render_order_confirmation(payload, original_recipient)
            msg = Message(
                subject=subject,
                recipients=[to_email],
                body=text_body,
                html=html_body,
            )

            logger.info(f"[EMAIL] Sending confirmation for order #{payload.get('order_number')} to {to_email}")
            mail.send(msg)
            logger.info(f"[EMAIL] ✓ Order confirmation sent to {to_email}")
            return True

        except Exception as e:
            logger.exception(f"[EMAIL] ✗ Error sending order confirmation to {to_email}: {e}")
            return False
