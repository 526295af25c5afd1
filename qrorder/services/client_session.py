"""
Client session guard.

The client session id is an opaque per-browser token used to scope which
orders a browser sees confirmations for. It is forgeable and NOT a
credential: it never authorizes reading or changing anything beyond the
confirmation notices of the orders it tagged.
"""
import logging
import uuid
from datetime import datetime
from typing import Optional

from flask import current_app

from qrorder.models import Order, PaymentStatus

logger = logging.getLogger(__name__)

SESSION_HEADER = 'X-Client-Session'
SESSION_QUERY_PARAM = 'sid'
MAX_SESSION_ID_LENGTH = 64


def _clean(value: Optional[str]) -> Optional[str]:
    if not value:
        return None
    value = value.strip()
    if not value or len(value) > MAX_SESSION_ID_LENGTH:
        return None
    return value


def get_or_create_session_id(request):
    """
    Return (session_id, is_new).

    Lookup order: ``sid`` query parameter (restores a session lost across the
    processor redirect), ``X-Client-Session`` header, cookie, else a new UUID4.
    """
    cookie_name = current_app.config.get('CLIENT_SESSION_COOKIE', 'tpay_client_session_id')

    from_url = _clean(request.args.get(SESSION_QUERY_PARAM))
    if from_url:
        return from_url, False

    from_header = _clean(request.headers.get(SESSION_HEADER))
    if from_header:
        return from_header, False

    from_cookie = _clean(request.cookies.get(cookie_name))
    if from_cookie:
        return from_cookie, False

    return str(uuid.uuid4()), True


def attach_session_cookie(response, session_id: str):
    """Persist the session id in a cookie on the response."""
    response.set_cookie(
        current_app.config.get('CLIENT_SESSION_COOKIE', 'tpay_client_session_id'),
        session_id,
        max_age=current_app.config.get('CLIENT_SESSION_MAX_AGE'),
        httponly=False,
        samesite='Lax',
        secure=not current_app.debug and not current_app.testing,
    )
    return response


def is_event_for_session(order, session_id: Optional[str]) -> bool:
    """
    An order notification belongs to this browser only when both ids are
    present and equal. Orders without a session id never match.
    """
    if order is None or not session_id:
        return False
    order_session = getattr(order, 'client_session_id', None)
    if not order_session:
        return False
    return order_session == session_id


def find_recent_paid_order(session, client_session_id: Optional[str], restaurant_id: Optional[str] = None,
                           table_id: Optional[str] = None, since: Optional[datetime] = None):
    """
    Most recently updated paid order for this client session, scoped to a
    table (dine-in) or a restaurant's takeaway orders.
    """
    if not client_session_id or not (restaurant_id or table_id):
        return None

    query = session.query(Order).filter(
        Order.payment_status == PaymentStatus.PAID.value,
        Order.client_session_id.isnot(None),
        Order.client_session_id == client_session_id,
    )

    if table_id:
        query = query.filter(Order.table_id == table_id)
    else:
        query = query.filter(Order.restaurant_id == restaurant_id, Order.table_id.is_(None))

    if since is not None:
        query = query.filter(Order.updated_at >= since)

    order = query.order_by(Order.updated_at.desc()).first()

    # double-check with the same predicate the realtime path uses
    if order is not None and not is_event_for_session(order, client_session_id):
        logger.warning(f"[SESSION] Query returned order {order.id} for a different session")
        return None
    return order
