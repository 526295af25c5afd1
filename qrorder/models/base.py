"""Column defaults shared by every model."""
import uuid
from datetime import datetime, timezone


def new_id():
    """Opaque primary key (UUID4 string)."""
    return str(uuid.uuid4())


def utcnow():
    return datetime.now(timezone.utc)
