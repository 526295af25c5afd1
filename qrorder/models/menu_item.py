"""Menu catalog models. Read-only for the ordering core."""
from sqlalchemy import Column, String, Text, Boolean, Numeric, DateTime, ForeignKey
from sqlalchemy.orm import relationship
from qrorder.database import Base
from qrorder.models.base import new_id, utcnow


class MenuItem(Base):
    """Menu item. ``price`` is the authoritative current price."""

    __tablename__ = 'menu_item'

    id = Column(String(36), primary_key=True, default=new_id)
    restaurant_id = Column(String(36), ForeignKey('restaurant.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    description = Column(Text, nullable=True)
    price = Column(Numeric(10, 2), nullable=False)
    enabled = Column(Boolean, nullable=False, default=True)
    available = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    restaurant = relationship('Restaurant', back_populates='menu_items')
    extras = relationship('MenuItemExtra', back_populates='menu_item', cascade='all, delete-orphan')

    def __repr__(self):
        return f"<MenuItem(id={self.id}, name='{self.name}', price={self.price})>"

    @property
    def is_orderable(self):
        return bool(self.enabled and self.available)


class MenuItemExtra(Base):
    """Optional add-on for a menu item (extra cheese, bacon...)."""

    __tablename__ = 'menu_item_extra'

    id = Column(String(36), primary_key=True, default=new_id)
    menu_item_id = Column(String(36), ForeignKey('menu_item.id'), nullable=False, index=True)
    name = Column(String(200), nullable=False)
    price = Column(Numeric(10, 2), nullable=False, default=0)
    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)

    menu_item = relationship('MenuItem', back_populates='extras')

    def __repr__(self):
        return f"<MenuItemExtra(id={self.id}, name='{self.name}', price={self.price})>"
