"""
Unit tests for the pricing audit.
"""

import pytest
from decimal import Decimal

from qrorder.exceptions import InputError, NotFoundError
from qrorder.models import Order, OrderItem
from qrorder.services.pricing_service import audit_order_pricing


class TestAuditOrderPricing:
    """Totals are always recomputed from catalog prices."""

    def test_calculated_total_uses_catalog_prices(self, session, make_order):
        """2 x 1000 + 1 x 200 cheese = 2200."""
        order = make_order()
        audit = audit_order_pricing(session, order.id)

        assert audit.calculated_total == Decimal('2200.00')
        assert audit.tip == Decimal('0.00')
        assert audit.needs_correction is False
        assert audit.lines[0].title == 'Hamburguesa + Queso'
        assert audit.lines[0].unit_price == Decimal('1100.00')

    def test_extras_are_multiplied_by_extra_quantity_only(self, session, make_order, menu):
        """Extra quantity is independent from the line quantity."""
        order = make_order(items=[{
            'menu_item_id': menu.burger.id,
            'quantity': 3,
            'extras': [{'extra_id': menu.cheese.id, 'quantity': 2}],
        }])
        audit = audit_order_pricing(session, order.id)

        assert audit.calculated_total == Decimal('3400.00')

    def test_snapshot_prices_are_not_trusted(self, session, make_order):
        """Tampered unit_price snapshots do not change what gets charged."""
        order = make_order()
        session.query(OrderItem).filter(OrderItem.order_id == order.id).update({OrderItem.unit_price: 1})
        session.commit()

        audit = audit_order_pricing(session, order.id)
        assert audit.calculated_total == Decimal('2200.00')

    def test_catalog_price_change_is_picked_up(self, session, make_order, menu):
        order = make_order()
        menu.burger.price = Decimal('1500.00')
        session.commit()

        audit = audit_order_pricing(session, order.id)
        assert audit.calculated_total == Decimal('3200.00')
        assert audit.needs_correction is True

    def test_lower_reported_total_needs_correction(self, session, make_order):
        """Client declared 1 peso: corrected up to the audited total."""
        order = make_order(total_amount='1.00')
        audit = audit_order_pricing(session, order.id)

        assert audit.reported_total == Decimal('1.00')
        assert audit.tip == Decimal('0.00')
        assert audit.final_total == Decimal('2200.00')
        assert audit.needs_correction is True

    def test_higher_reported_total_is_treated_as_tip(self, session, make_order):
        order = make_order(total_amount='2420.00')
        audit = audit_order_pricing(session, order.id)

        assert audit.tip == Decimal('220.00')
        assert audit.final_total == Decimal('2420.00')
        assert audit.suspicious_tip is False
        assert audit.needs_correction is False

    def test_tip_above_half_is_flagged_not_blocked(self, session, make_order):
        order = make_order(total_amount='5000.00')
        audit = audit_order_pricing(session, order.id)

        assert audit.tip == Decimal('2800.00')
        assert audit.suspicious_tip is True
        assert audit.final_total == Decimal('5000.00')

    def test_difference_within_tolerance_is_not_corrected(self, session, make_order):
        order = make_order(total_amount='2199.96')
        audit = audit_order_pricing(session, order.id)

        assert audit.needs_correction is False

    def test_unknown_order(self, session):
        with pytest.raises(NotFoundError):
            audit_order_pricing(session, 'missing-order')

    def test_item_removed_from_catalog_is_rejected(self, session, make_order, menu):
        """A line whose menu item is gone is never charged at zero."""
        order = make_order()
        item = session.query(OrderItem).filter(OrderItem.order_id == order.id).first()
        item.menu_item_id = menu.foreign.id
        session.commit()

        with pytest.raises(InputError):
            audit_order_pricing(session, order.id)

    def test_reported_total_argument_overrides_stored_total(self, session, make_order):
        order = make_order()
        audit = audit_order_pricing(session, order.id, reported_total=Decimal('100'))

        assert audit.needs_correction is True
        assert session.get(Order, order.id).total_amount == Decimal('2200.00')
