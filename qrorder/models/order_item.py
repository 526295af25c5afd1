"""Order line models."""
from sqlalchemy import Column, String, Integer, Text, Numeric, ForeignKey, CheckConstraint
from sqlalchemy.orm import relationship
from qrorder.database import Base
from qrorder.models.base import new_id


class OrderItem(Base):
    """
    Order line. ``unit_price`` is a snapshot taken at order time and is
    never used to decide what gets charged.
    """

    __tablename__ = 'order_item'

    id = Column(String(36), primary_key=True, default=new_id)
    order_id = Column(String(36), ForeignKey('orders.id', ondelete='CASCADE'), nullable=False, index=True)
    menu_item_id = Column(String(36), ForeignKey('menu_item.id'), nullable=False)
    quantity = Column(Integer, nullable=False)
    unit_price = Column(Numeric(10, 2), nullable=False)
    special_instructions = Column(Text, nullable=True)

    # Relationships
    order = relationship('Order', back_populates='items')
    menu_item = relationship('MenuItem')
    added_extras = relationship('OrderItemExtra', back_populates='order_item', cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_order_item_quantity'),
    )

    def __repr__(self):
        return f"<OrderItem(id={self.id}, menu_item_id={self.menu_item_id}, qty={self.quantity})>"

    def to_dict(self):
        return {
            'menu_item_id': self.menu_item_id,
            'quantity': self.quantity,
            'unit_price': str(self.unit_price),
            'special_instructions': self.special_instructions,
            'extras': [
                {'extra_id': ex.extra_id, 'quantity': ex.quantity, 'unit_price': str(ex.unit_price)}
                for ex in self.added_extras
            ],
        }


class OrderItemExtra(Base):
    """Extra added to an order line (price snapshot, same non-trust rule)."""

    __tablename__ = 'order_item_added_extra'

    id = Column(String(36), primary_key=True, default=new_id)
    order_item_id = Column(String(36), ForeignKey('order_item.id', ondelete='CASCADE'), nullable=False, index=True)
    extra_id = Column(String(36), ForeignKey('menu_item_extra.id'), nullable=False)
    quantity = Column(Integer, nullable=False, default=1)
    unit_price = Column(Numeric(10, 2), nullable=False, default=0)

    order_item = relationship('OrderItem', back_populates='added_extras')
    extra = relationship('MenuItemExtra')

    __table_args__ = (
        CheckConstraint('quantity > 0', name='check_order_extra_quantity'),
    )
