"""Dining table model (one QR code per table)."""
from sqlalchemy import Column, String, Integer, Boolean, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from qrorder.database import Base
from qrorder.models.base import new_id, utcnow


class DiningTable(Base):
    """Dining table."""

    __tablename__ = 'dining_table'

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey('restaurant.id'), nullable=False, index=True)
    table_number = Column(Integer, nullable=False)
    capacity = Column(Integer, nullable=False, default=4)
    qr_code_id = Column(String(64), nullable=False, unique=True, default=new_id)
    qr_active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    restaurant = relationship('Restaurant', back_populates='tables')

    def __repr__(self):
        return f"<DiningTable(id={self.id}, number={self.table_number})>"
