"""Order model."""
import enum
from sqlalchemy import (
    Column, String, Integer, Text, Numeric, DateTime, ForeignKey,
    CheckConstraint, UniqueConstraint, Index
)
from sqlalchemy.orm import relationship
from qrorder.database import Base
from qrorder.models.base import new_id, utcnow


class OrderStatus(str, enum.Enum):
    """Kitchen-facing order status."""
    PENDING = 'pending'
    PAID = 'paid'
    PREPARATION = 'preparation'
    READY_TO_DELIVER = 'ready_to_deliver'
    DELIVERED = 'delivered'
    COMPLETED = 'completed'
    CANCELLED = 'cancelled'
    CUSTOMER_CANCELLED = 'customer_cancelled'


class PaymentStatus(str, enum.Enum):
    """Payment status. Moves forward only; PAID is terminal."""
    UNPAID = 'unpaid'
    PENDING = 'pending'
    PAID = 'paid'


class PaymentMethod(str, enum.Enum):
    CASH = 'cash'
    MERCADOPAGO = 'mercadopago'


TERMINAL_ORDER_STATUSES = frozenset({
    OrderStatus.CANCELLED.value,
    OrderStatus.CUSTOMER_CANCELLED.value,
    OrderStatus.COMPLETED.value,
    OrderStatus.DELIVERED.value,
})

# Payment statuses a "mark paid" write is allowed to start from
PAYABLE_STATUSES = (PaymentStatus.UNPAID.value, PaymentStatus.PENDING.value)


def _enum_values(enum_cls):
    return ', '.join(f"'{member.value}'" for member in enum_cls)


class Order(Base):
    """
    A customer's purchase, bound to a table or placed as takeaway.

    Takeaway orders carry a ``pickup_code`` and no ``table_id``.
    """

    __tablename__ = 'orders'

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey('restaurant.id'), nullable=False, index=True)
    table_id = Column(String(36), ForeignKey('dining_table.id'), nullable=True, index=True)
    pickup_code = Column(String(10), nullable=True)
    pickup_time = Column(String(20), nullable=True)
    client_session_id = Column(String(64), nullable=True, index=True)

    order_number = Column(Integer, nullable=False)
    status = Column(String(30), nullable=False, default=OrderStatus.PENDING.value)
    payment_status = Column(String(20), nullable=False, default=PaymentStatus.UNPAID.value)
    payment_method = Column(String(30), nullable=False, default=PaymentMethod.MERCADOPAGO.value)
    total_amount = Column(Numeric(10, 2), nullable=False, default=0)
    notes = Column(Text, nullable=True)

    # Mercado Pago correlation
    mercadopago_preference_id = Column(String(100), nullable=True)
    mercadopago_payment_id = Column(String(64), nullable=True, index=True)
    mercadopago_collection_id = Column(String(64), nullable=True)
    mercadopago_payment_method = Column(String(50), nullable=True)
    payer_email = Column(String(255), nullable=True)
    payer_name = Column(String(255), nullable=True)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    restaurant = relationship('Restaurant')
    table = relationship('DiningTable')
    items = relationship('OrderItem', back_populates='order', cascade='all, delete-orphan')

    __table_args__ = (
        CheckConstraint(f"status IN ({_enum_values(OrderStatus)})", name='check_order_status'),
        CheckConstraint(f"payment_status IN ({_enum_values(PaymentStatus)})", name='check_order_payment_status'),
        CheckConstraint(
            "(table_id IS NULL) <> (pickup_code IS NULL)",
            name='check_table_xor_pickup_code'
        ),
        UniqueConstraint('restaurant_id', 'order_number', name='uq_order_number_per_restaurant'),
        Index('ix_orders_session_window', 'restaurant_id', 'client_session_id', 'created_at'),
    )

    def __repr__(self):
        return (
            f"<Order(id={self.id}, number={self.order_number}, status={self.status}, "
            f"payment_status={self.payment_status})>"
        )

    @property
    def is_takeaway(self):
        return self.table_id is None

    @property
    def is_paid(self):
        return self.payment_status == PaymentStatus.PAID.value

    @property
    def is_terminal(self):
        return self.status in TERMINAL_ORDER_STATUSES

    def to_dict(self):
        """Convert to dictionary for JSON serialization."""
        return {
            'id': self.id,
            'restaurant_id': self.restaurant_id,
            'table_id': self.table_id,
            'pickup_code': self.pickup_code,
            'pickup_time': self.pickup_time,
            'order_number': self.order_number,
            'status': self.status,
            'payment_status': self.payment_status,
            'payment_method': self.payment_method,
            'total_amount': str(self.total_amount),
            'mercadopago_preference_id': self.mercadopago_preference_id,
            'created_at': self.created_at.isoformat() if self.created_at else None,
            'updated_at': self.updated_at.isoformat() if self.updated_at else None,
            'items': [item.to_dict() for item in self.items],
        }
