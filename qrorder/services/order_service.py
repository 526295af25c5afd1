"""
Order ledger: durable orders and every write that touches their payment state.

All payment-status writes are single conditional UPDATEs so that the three
confirmation paths (polling, webhook, redirect) can race safely.
"""
import logging
import secrets
from datetime import datetime, timedelta, timezone
from decimal import Decimal, InvalidOperation
from typing import Any, Dict, List, Optional

from flask import current_app, has_app_context
from sqlalchemy import case, func
from sqlalchemy.exc import IntegrityError

from qrorder.exceptions import ConflictResolved, InputError, LimitExceeded, NotFoundError
from qrorder.metrics import order_limit_rejections_total, price_corrections_total
from qrorder.models import (
    DiningTable, MenuItem, MenuItemExtra, Order, OrderItem, OrderItemExtra,
    OrderStatus, PaymentMethod, PaymentStatus, PAYABLE_STATUSES, Restaurant
)
from qrorder.services.schedule_service import is_restaurant_open
from qrorder.utils.formatters import to_money

logger = logging.getLogger(__name__)

PICKUP_CODE_ALPHABET = 'ABCDEFGHJKLMNPQRSTUVWXYZ23456789'
PICKUP_CODE_LENGTH = 5

# Two creations at one restaurant can read the same max(order_number)
ORDER_NUMBER_ATTEMPTS = 5

# Statuses that no longer count against the active-order cap
INACTIVE_FOR_LIMIT = (
    OrderStatus.CANCELLED.value,
    OrderStatus.DELIVERED.value,
    OrderStatus.COMPLETED.value,
)

# Kitchen-facing transitions (payment writes go through mark_paid)
ALLOWED_TRANSITIONS = {
    OrderStatus.PENDING.value: {
        OrderStatus.PAID.value, OrderStatus.PREPARATION.value,
        OrderStatus.CANCELLED.value, OrderStatus.CUSTOMER_CANCELLED.value,
    },
    OrderStatus.PAID.value: {OrderStatus.PREPARATION.value, OrderStatus.CANCELLED.value},
    OrderStatus.PREPARATION.value: {OrderStatus.READY_TO_DELIVER.value, OrderStatus.CANCELLED.value},
    OrderStatus.READY_TO_DELIVER.value: {OrderStatus.DELIVERED.value, OrderStatus.COMPLETED.value},
}


def _config(name, default):
    if has_app_context():
        return current_app.config.get(name, default)
    return default


def generate_pickup_code() -> str:
    """Short human-readable code (no 0/O/1/I) shown at the takeaway counter."""
    return ''.join(secrets.choice(PICKUP_CODE_ALPHABET) for _ in range(PICKUP_CODE_LENGTH))


def next_order_number(session, restaurant_id: str) -> int:
    current = session.query(func.max(Order.order_number)).filter(
        Order.restaurant_id == restaurant_id
    ).scalar()
    return (current or 0) + 1


def _is_order_number_clash(error: IntegrityError) -> bool:
    return 'order_number' in str(error.orig)


def _commit_with_order_number(session, order: Order):
    """
    Number the order and commit it, re-reading the number when another
    creation at the same restaurant committed it first.

    Raises:
        IntegrityError: Any other constraint, or still clashing after ORDER_NUMBER_ATTEMPTS
    """
    for attempt in range(1, ORDER_NUMBER_ATTEMPTS + 1):
        order.order_number = next_order_number(session, order.restaurant_id)
        try:
            session.add(order)
            session.commit()
            return
        except IntegrityError as e:
            session.rollback()
            if attempt == ORDER_NUMBER_ATTEMPTS or not _is_order_number_clash(e):
                raise
            logger.warning(
                f"[ORDERS] Order number {order.order_number} taken at restaurant "
                f"{order.restaurant_id}, retrying ({attempt}/{ORDER_NUMBER_ATTEMPTS})"
            )
        except Exception:
            session.rollback()
            raise


def enforce_active_order_limit(session, restaurant_id: str, client_session_id: Optional[str],
                               now: Optional[datetime] = None):
    """
    Reject a new order when this client session already has too many active ones.

    Active = created within the window and not cancelled/delivered/completed.
    Soft limit: two concurrent creations can both pass the check.

    Raises:
        LimitExceeded: ACTIVE_ORDER_LIMIT or more active orders in the window
    """
    if not client_session_id:
        return

    limit = int(_config('ACTIVE_ORDER_LIMIT', 5))
    window = int(_config('ACTIVE_ORDER_WINDOW_MINUTES', 60))
    since = (now or datetime.now(timezone.utc)) - timedelta(minutes=window)

    active = session.query(func.count(Order.id)).filter(
        Order.restaurant_id == restaurant_id,
        Order.client_session_id == client_session_id,
        Order.created_at >= since,
        ~Order.status.in_(INACTIVE_FOR_LIMIT)
    ).scalar()

    if active >= limit:
        order_limit_rejections_total.inc()
        logger.warning(
            f"[ORDERS] Active order limit hit: restaurant={restaurant_id} "
            f"session={client_session_id} active={active}"
        )
        raise LimitExceeded(limit)


def _positive_int(value, field: str) -> int:
    try:
        number = int(value)
    except (TypeError, ValueError):
        raise InputError(f'{field} debe ser un número entero')
    if number <= 0 or str(value).strip() not in (str(number), f'{number}.0'):
        raise InputError(f'{field} debe ser un entero mayor a 0')
    return number


def _parse_amount(value, field: str) -> Decimal:
    try:
        amount = to_money(value)
    except (InvalidOperation, ValueError, TypeError):
        raise InputError(f'{field} inválido')
    if amount < 0:
        raise InputError(f'{field} no puede ser negativo')
    return amount


def create_order(
    session,
    restaurant_id: str,
    items: List[Dict[str, Any]],
    table_id: Optional[str] = None,
    takeaway: bool = False,
    client_session_id: Optional[str] = None,
    payment_method: str = PaymentMethod.MERCADOPAGO.value,
    total_amount=None,
    tip_percentage=None,
    notes: Optional[str] = None,
    pickup_time: Optional[str] = None,
    now: Optional[datetime] = None,
) -> Order:
    """
    Persist a cart as an order (status=pending, payment_status=unpaid).

    Args:
        items: [{'menu_item_id', 'quantity', 'special_instructions'?, 'extras'?: [{'extra_id', 'quantity'}]}]
        total_amount: Client-declared total (stored, re-audited before checkout)
        tip_percentage: Used to derive the total when none is declared

    Raises:
        NotFoundError: Restaurant or table not found
        InputError: Invalid cart, table/takeaway mismatch, restaurant closed
        LimitExceeded: Active-order cap for this session
    """
    restaurant = session.get(Restaurant, restaurant_id) if restaurant_id else None
    if not restaurant:
        raise NotFoundError('Restaurante no encontrado')

    if bool(table_id) == bool(takeaway):
        raise InputError('El pedido debe ser para una mesa o para llevar (no ambos)')

    if payment_method not in {m.value for m in PaymentMethod}:
        raise InputError(f'Método de pago inválido: {payment_method}')

    if not items:
        raise InputError('El carrito está vacío')

    table = None
    if table_id:
        table = session.query(DiningTable).filter(
            DiningTable.id == table_id,
            DiningTable.restaurant_id == restaurant.id
        ).first()
        if not table:
            raise NotFoundError('Mesa no encontrada')
        if not table.qr_active:
            raise InputError('Esta mesa no está aceptando pedidos')

    enforce_active_order_limit(session, restaurant.id, client_session_id, now=now)

    if takeaway and _config('ENFORCE_TAKEAWAY_HOURS', True):
        if not is_restaurant_open(session, restaurant, now):
            raise InputError('El restaurante está cerrado en este momento')

    # Validate the cart against the catalog in batch
    parsed = []
    for raw in items:
        menu_item_id = raw.get('menu_item_id')
        if not menu_item_id:
            raise InputError('Cada producto debe indicar menu_item_id')
        extras = [
            (ex.get('extra_id'), _positive_int(ex.get('quantity', 1), 'La cantidad del extra'))
            for ex in (raw.get('extras') or [])
        ]
        if any(not extra_id for extra_id, _ in extras):
            raise InputError('Cada extra debe indicar extra_id')
        parsed.append({
            'menu_item_id': menu_item_id,
            'quantity': _positive_int(raw.get('quantity'), 'La cantidad'),
            'special_instructions': raw.get('special_instructions'),
            'extras': extras,
        })

    menu_item_ids = {line['menu_item_id'] for line in parsed}
    menu_items = {
        mi.id: mi for mi in session.query(MenuItem).filter(
            MenuItem.id.in_(menu_item_ids),
            MenuItem.restaurant_id == restaurant.id
        ).all()
    }
    if len(menu_items) != len(menu_item_ids):
        raise InputError('Uno o más productos no pertenecen a este restaurante')
    for mi in menu_items.values():
        if not mi.is_orderable:
            raise InputError(f'El producto "{mi.name}" no está disponible')

    extra_ids = {extra_id for line in parsed for extra_id, _ in line['extras']}
    extras_by_id = {}
    if extra_ids:
        extras_by_id = {
            ex.id: ex for ex in session.query(MenuItemExtra).filter(
                MenuItemExtra.id.in_(extra_ids)
            ).all()
        }

    order = Order(
        restaurant_id=restaurant.id,
        table_id=table.id if table else None,
        pickup_code=generate_pickup_code() if takeaway else None,
        pickup_time=pickup_time if takeaway else None,
        client_session_id=client_session_id,
        status=OrderStatus.PENDING.value,
        payment_status=PaymentStatus.UNPAID.value,
        payment_method=payment_method,
        notes=notes,
    )

    subtotal = Decimal('0.00')
    for line in parsed:
        menu_item = menu_items[line['menu_item_id']]
        order_item = OrderItem(
            menu_item_id=menu_item.id,
            quantity=line['quantity'],
            unit_price=menu_item.price,
            special_instructions=line['special_instructions'],
        )
        subtotal += Decimal(str(menu_item.price)) * line['quantity']
        for extra_id, extra_qty in line['extras']:
            extra = extras_by_id.get(extra_id)
            if extra is None or extra.menu_item_id != menu_item.id:
                raise InputError('Uno o más extras no corresponden al producto')
            order_item.added_extras.append(OrderItemExtra(
                extra_id=extra.id,
                quantity=extra_qty,
                unit_price=extra.price,
            ))
            subtotal += Decimal(str(extra.price)) * extra_qty
        order.items.append(order_item)

    if total_amount is not None:
        order.total_amount = _parse_amount(total_amount, 'El total')
    else:
        tip = _parse_amount(tip_percentage or 0, 'El porcentaje de propina')
        order.total_amount = to_money(subtotal * (1 + tip / 100))

    _commit_with_order_number(session, order)

    logger.info(
        f"[ORDERS] Order #{order.order_number} created: id={order.id} "
        f"restaurant={restaurant.id} total={order.total_amount} "
        f"{'takeaway ' + order.pickup_code if takeaway else 'table ' + str(table.table_number)}"
    )
    return order


def get_order(session, order_id: str) -> Order:
    """Raises NotFoundError when the order does not exist."""
    order = session.get(Order, order_id) if order_id else None
    if not order:
        raise NotFoundError(f'Pedido {order_id} no encontrado')
    return order


def mark_paid(
    session,
    order_id: str,
    payment_id: Optional[str] = None,
    collection_id: Optional[str] = None,
    payment_method: Optional[str] = None,
    payer_email: Optional[str] = None,
    payer_name: Optional[str] = None,
):
    """
    Single conditional UPDATE to paid. Also moves the kitchen status
    pending/customer_cancelled -> paid in the same statement.

    Raises:
        ConflictResolved: No row changed (already paid by another invocation, or missing)
    """
    values = {
        Order.payment_status: PaymentStatus.PAID.value,
        Order.status: case(
            (Order.status.in_([OrderStatus.PENDING.value, OrderStatus.CUSTOMER_CANCELLED.value]),
             OrderStatus.PAID.value),
            else_=Order.status
        ),
        Order.updated_at: datetime.now(timezone.utc),
    }
    if payment_id:
        values[Order.mercadopago_payment_id] = str(payment_id)
    if collection_id:
        values[Order.mercadopago_collection_id] = str(collection_id)
    if payment_method:
        values[Order.mercadopago_payment_method] = payment_method
    if payer_email:
        values[Order.payer_email] = payer_email
    if payer_name:
        values[Order.payer_name] = payer_name

    rowcount = _conditional_update(session, (
        Order.id == order_id,
        Order.payment_status.in_(PAYABLE_STATUSES),
    ), values)

    if rowcount == 0:
        logger.info(f"[ORDERS] mark_paid on order {order_id} changed no row (already resolved)")
        raise ConflictResolved(order_id)

    logger.info(f"[ORDERS] Order {order_id} marked paid (payment {payment_id})")


def _conditional_update(session, filters, values) -> int:
    """Run one UPDATE ... WHERE and commit it; returns the affected row count."""
    try:
        rowcount = session.query(Order).filter(*filters).update(values, synchronize_session=False)
        session.commit()
    except Exception:
        session.rollback()
        raise
    return rowcount


def mark_customer_cancelled(session, order_id: str) -> bool:
    """
    pending -> customer_cancelled after a rejected/cancelled payment.
    payment_status is left untouched so the diner can retry.
    """
    rowcount = _conditional_update(session, (
        Order.id == order_id,
        Order.status == OrderStatus.PENDING.value,
        Order.payment_status != PaymentStatus.PAID.value,
    ), {
        Order.status: OrderStatus.CUSTOMER_CANCELLED.value,
        Order.updated_at: datetime.now(timezone.utc),
    })

    if rowcount:
        logger.info(f"[ORDERS] Order {order_id} marked customer_cancelled")
    return rowcount > 0


def apply_pricing_correction(session, order_id: str, new_total) -> bool:
    """Overwrite total_amount with the audited figure (never on a paid order)."""
    new_total = to_money(new_total)
    rowcount = _conditional_update(session, (
        Order.id == order_id,
        Order.payment_status != PaymentStatus.PAID.value,
    ), {
        Order.total_amount: new_total,
        Order.updated_at: datetime.now(timezone.utc),
    })

    if rowcount:
        price_corrections_total.inc()
        logger.warning(f"[ORDERS] Order {order_id} total corrected to {new_total}")
    return rowcount > 0


def attach_preference(session, order_id: str, preference_id: str):
    """Keep only the latest checkout session id on the order."""
    _conditional_update(session, (Order.id == order_id,), {
        Order.mercadopago_preference_id: preference_id,
        Order.updated_at: datetime.now(timezone.utc),
    })


def transition_status(session, order_id: str, new_status: str, expected_status: Optional[str] = None) -> Order:
    """
    Kitchen-facing status change, validated against ALLOWED_TRANSITIONS and
    applied conditionally on the current status.

    Only ``status`` is written. Moving a cash order to ``paid`` records that
    the table settled at the counter; payment_status stays with mark_paid.

    Raises:
        NotFoundError: Unknown order
        InputError: Transition not allowed
        ConflictResolved: Status changed concurrently
    """
    order = get_order(session, order_id)
    current = expected_status or order.status

    if new_status not in {s.value for s in OrderStatus}:
        raise InputError(f'Estado inválido: {new_status}')
    if new_status not in ALLOWED_TRANSITIONS.get(current, set()):
        raise InputError(f'Transición no permitida: {current} -> {new_status}')
    if new_status == OrderStatus.PAID.value and not order.is_paid and \
            order.payment_method != PaymentMethod.CASH.value:
        raise InputError('Solo los pedidos en efectivo pueden marcarse pagados manualmente')

    rowcount = _conditional_update(session, (
        Order.id == order_id,
        Order.status == current,
    ), {
        Order.status: new_status,
        Order.updated_at: datetime.now(timezone.utc),
    })

    if rowcount == 0:
        raise ConflictResolved(order_id)

    session.refresh(order)
    logger.info(f"[ORDERS] Order {order_id} status {current} -> {new_status}")
    return order
