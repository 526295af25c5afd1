"""Custom exceptions for the ordering and payment reconciliation core."""


class OrderingError(Exception):
    """Base exception for all application errors."""
    def __init__(self, message="An internal error occurred", status_code=500, payload=None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.payload = payload

    def to_dict(self):
        rv = dict(self.payload or ())
        rv['message'] = self.message
        rv['status'] = 'error'
        rv['error'] = type(self).__name__
        return rv


class InputError(OrderingError):
    """Missing or unresolvable identifiers / invalid cart. Not retryable without new input."""
    def __init__(self, message, status_code=400, payload=None):
        super().__init__(message, status_code, payload)


class NotFoundError(InputError):
    """Raised when an order, restaurant or table does not exist."""
    def __init__(self, message="Resource not found", payload=None):
        super().__init__(message, 404, payload)


class ConfigurationError(OrderingError):
    """Restaurant is missing processor credentials. Operator-fixable."""
    def __init__(self, message="Payment credentials not configured", payload=None):
        super().__init__(message, 503, payload)


class UpstreamError(OrderingError):
    """Processor API unreachable or returned an unexpected shape. Retryable."""
    def __init__(self, message="Payment processor unavailable", payload=None, upstream_status=None):
        super().__init__(message, 502, payload)
        self.upstream_status = upstream_status


class ConflictResolved(OrderingError):
    """
    A conditional write lost a race because another invocation already
    applied the terminal state. Callers treat this as success.
    """
    def __init__(self, order_id):
        super().__init__(f"Order {order_id} was already resolved by another invocation", 409)
        self.order_id = order_id


class LimitExceeded(OrderingError):
    """Abuse cap hit for this client session."""
    def __init__(self, limit, payload=None):
        message = (
            f"Alcanzaste el límite de {limit} pedidos activos. "
            "Esperá a que tus pedidos anteriores sean entregados o completados."
        )
        super().__init__(message, 429, payload)
        self.limit = limit


class VerificationInconclusive(OrderingError):
    """No proof of payment yet. Never escalated to paid."""
    def __init__(self, message="Awaiting webhook/API confirmation"):
        super().__init__(message, 202)
