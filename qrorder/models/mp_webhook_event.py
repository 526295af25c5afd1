"""Inbound Mercado Pago notifications, one row per dedupe key."""
from sqlalchemy import Column, BigInteger, Integer, String, DateTime, JSON
from qrorder.database import Base
from qrorder.models.base import utcnow


class MPWebhookEvent(Base):
    """
    Webhook delivery log used to answer redeliveries without re-running them.

    PROCESSED and IGNORED are final. DEFERRED (order not found yet) and
    FAILED rows are picked up again when Mercado Pago retries.
    """
    __tablename__ = 'mp_webhook_event'

    STATUS_RECEIVED = 'RECEIVED'
    STATUS_PROCESSED = 'PROCESSED'
    STATUS_DEFERRED = 'DEFERRED'
    STATUS_IGNORED = 'IGNORED'
    STATUS_FAILED = 'FAILED'

    TERMINAL_STATUSES = (STATUS_PROCESSED, STATUS_IGNORED)

    id = Column(BigInteger().with_variant(Integer, 'sqlite'), primary_key=True, autoincrement=True)
    topic = Column(String(50), nullable=False, index=True)
    mp_event_id = Column(String(100))
    resource_id = Column(String(100), index=True)
    restaurant_id = Column(String(36), nullable=True)
    payload_json = Column(JSON, nullable=False)
    dedupe_key = Column(String(64), nullable=False, unique=True)
    received_at = Column(DateTime(timezone=True), nullable=False, default=utcnow, index=True)
    processed_at = Column(DateTime(timezone=True))
    status = Column(String(20), nullable=False, default=STATUS_RECEIVED, index=True)
    outcome = Column(String(30), nullable=True)

    def __repr__(self):
        return f"<MPWebhookEvent {self.topic}:{self.resource_id} {self.status}>"

    def to_dict(self):
        stamp = lambda value: value.isoformat() if value else None
        return {
            'id': self.id,
            'topic': self.topic,
            'mp_event_id': self.mp_event_id,
            'resource_id': self.resource_id,
            'restaurant_id': self.restaurant_id,
            'payload': self.payload_json,
            'dedupe_key': self.dedupe_key,
            'received_at': stamp(self.received_at),
            'processed_at': stamp(self.processed_at),
            'status': self.status,
            'outcome': self.outcome,
        }

    @property
    def is_processed(self):
        return self.status == self.STATUS_PROCESSED

    @property
    def is_terminal(self):
        """True once a redelivery should be answered as a duplicate."""
        return self.status in self.TERMINAL_STATUSES
