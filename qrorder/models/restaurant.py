"""Restaurant model - each business that publishes a QR menu."""
from sqlalchemy import Column, String, Boolean, DateTime
from sqlalchemy.orm import relationship
from qrorder.database import Base
from qrorder.models.base import new_id, utcnow


class Restaurant(Base):
    """Restaurant with its Mercado Pago credentials and email branding."""

    __tablename__ = 'restaurant'

    id = Column(String(36), primary_key=True, default=new_id)
    name = Column(String(200), nullable=False)
    email = Column(String(255), nullable=True)
    timezone = Column(String(64), nullable=False, default='America/Argentina/Buenos_Aires')

    # Branding used by the confirmation email
    logo_url = Column(String(500), nullable=True)
    cover_image_url = Column(String(500), nullable=True)
    primary_color = Column(String(20), nullable=True)

    # Mercado Pago Integration
    mercadopago_access_token = Column(String(255), nullable=True)
    mercadopago_public_key = Column(String(255), nullable=True)
    # collector id, learned from the first preference; webhooks carry it as user_id
    mercadopago_user_id = Column(String(64), nullable=True, index=True)
    mercadopago_sandbox_mode = Column(Boolean, nullable=False, default=False)

    created_at = Column(DateTime(timezone=True), nullable=False, default=utcnow)
    updated_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, onupdate=utcnow)

    # Relationships
    tables = relationship('DiningTable', back_populates='restaurant')
    menu_items = relationship('MenuItem', back_populates='restaurant')

    def __repr__(self):
        return f"<Restaurant(id={self.id}, name='{self.name}')>"

    @property
    def has_processor_credentials(self):
        """Check if the restaurant can create Mercado Pago checkouts."""
        return bool(self.mercadopago_access_token)
