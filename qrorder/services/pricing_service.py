"""
Pricing audit: recompute what an order is worth from the live catalog.

The client-declared total and the price snapshots stored on order lines are
never trusted; only ``MenuItem.price`` / ``MenuItemExtra.price`` are.
"""
import logging
from decimal import Decimal
from typing import Dict, List, Optional

from flask import current_app, has_app_context
from sqlalchemy.orm import joinedload

from qrorder.exceptions import InputError, NotFoundError
from qrorder.metrics import suspicious_tips_total
from qrorder.models import Order, OrderItem, MenuItem, MenuItemExtra
from qrorder.utils.formatters import to_money

logger = logging.getLogger(__name__)

DEFAULT_TOLERANCE = Decimal('0.05')
DEFAULT_SUSPICIOUS_TIP_RATIO = Decimal('0.5')


def _setting(name: str, default: Decimal) -> Decimal:
    if has_app_context():
        value = current_app.config.get(name)
        if value not in (None, ''):
            return Decimal(str(value))
    return default


class AuditedLine:
    """One order line re-priced against the catalog."""

    def __init__(self, order_item_id, menu_item_id, title, quantity, line_total):
        self.order_item_id = order_item_id
        self.menu_item_id = menu_item_id
        self.title = title
        self.quantity = quantity
        self.line_total = line_total

    @property
    def unit_price(self) -> Decimal:
        """Per-unit price charged by the processor (line total spread over quantity)."""
        return to_money(self.line_total / self.quantity)


class PricingAudit:
    """Result of auditing an order against current catalog prices."""

    def __init__(self, order_id: str, lines: List[AuditedLine], reported_total: Decimal,
                 tolerance: Decimal = DEFAULT_TOLERANCE,
                 suspicious_ratio: Decimal = DEFAULT_SUSPICIOUS_TIP_RATIO):
        self.order_id = order_id
        self.lines = lines
        self.reported_total = to_money(reported_total)
        self.calculated_total = to_money(sum((line.line_total for line in lines), Decimal('0')))
        self.tolerance = tolerance

        if self.reported_total > self.calculated_total:
            self.tip = self.reported_total - self.calculated_total
        else:
            self.tip = Decimal('0.00')

        self.suspicious_tip = (
            self.tip > 0 and self.tip > self.calculated_total * suspicious_ratio
        )

    @property
    def final_total(self) -> Decimal:
        return to_money(self.calculated_total + self.tip)

    @property
    def needs_correction(self) -> bool:
        """True when the stored total differs from the audited one beyond tolerance."""
        return abs(self.final_total - self.reported_total) > self.tolerance

    def to_dict(self) -> Dict:
        return {
            'order_id': self.order_id,
            'calculated_total': str(self.calculated_total),
            'reported_total': str(self.reported_total),
            'tip': str(self.tip),
            'final_total': str(self.final_total),
            'suspicious_tip': self.suspicious_tip,
            'lines': [
                {
                    'menu_item_id': line.menu_item_id,
                    'title': line.title,
                    'quantity': line.quantity,
                    'unit_price': str(line.unit_price),
                }
                for line in self.lines
            ],
        }


def audit_order_pricing(session, order_id: str, reported_total: Optional[Decimal] = None) -> PricingAudit:
    """
    Re-price every line of an order with current catalog prices.

    line total = item price x quantity + sum(extra price x extra quantity)

    Args:
        session: SQLAlchemy session
        order_id: Order to audit
        reported_total: Total to compare against (defaults to the stored total_amount)

    Raises:
        NotFoundError: Order does not exist
        InputError: A line references an item/extra missing from this restaurant's catalog
    """
    order = session.query(Order).options(
        joinedload(Order.items).joinedload(OrderItem.added_extras)
    ).filter(Order.id == order_id).first()

    if not order:
        raise NotFoundError(f'Pedido {order_id} no encontrado')

    menu_item_ids = {item.menu_item_id for item in order.items}
    extra_ids = {ex.extra_id for item in order.items for ex in item.added_extras}

    menu_items = {}
    if menu_item_ids:
        menu_items = {
            mi.id: mi for mi in session.query(MenuItem).filter(
                MenuItem.id.in_(menu_item_ids),
                MenuItem.restaurant_id == order.restaurant_id
            ).all()
        }

    extras = {}
    if extra_ids:
        extras = {
            ex.id: ex for ex in session.query(MenuItemExtra).filter(
                MenuItemExtra.id.in_(extra_ids)
            ).all()
        }

    lines = []
    for item in order.items:
        menu_item = menu_items.get(item.menu_item_id)
        if menu_item is None:
            logger.error(
                f"[PRICING] Order {order.id}: menu item {item.menu_item_id} "
                f"not in catalog of restaurant {order.restaurant_id}"
            )
            raise InputError('Uno o más productos del pedido ya no están disponibles')

        title = menu_item.name
        line_total = Decimal(str(menu_item.price)) * item.quantity
        for added in item.added_extras:
            extra = extras.get(added.extra_id)
            if extra is None or extra.menu_item_id != menu_item.id:
                logger.error(
                    f"[PRICING] Order {order.id}: extra {added.extra_id} "
                    f"does not belong to menu item {menu_item.id}"
                )
                raise InputError('Uno o más extras del pedido no son válidos')
            line_total += Decimal(str(extra.price)) * added.quantity
            title += f" + {extra.name}"

        lines.append(AuditedLine(
            order_item_id=item.id,
            menu_item_id=menu_item.id,
            title=title,
            quantity=item.quantity,
            line_total=line_total,
        ))

    audit = PricingAudit(
        order_id=order.id,
        lines=lines,
        reported_total=order.total_amount if reported_total is None else reported_total,
        tolerance=_setting('PRICE_TOLERANCE', DEFAULT_TOLERANCE),
        suspicious_ratio=_setting('SUSPICIOUS_TIP_RATIO', DEFAULT_SUSPICIOUS_TIP_RATIO),
    )

    if audit.suspicious_tip:
        suspicious_tips_total.inc()
        logger.warning(
            f"[PRICING] Suspicious tip on order {order.id}: tip={audit.tip} "
            f"calculated={audit.calculated_total} reported={audit.reported_total}"
        )

    if audit.needs_correction:
        logger.warning(
            f"[PRICING] Price mismatch on order {order.id}: reported={audit.reported_total} "
            f"audited={audit.final_total}"
        )

    return audit
