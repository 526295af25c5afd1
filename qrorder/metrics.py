"""
Prometheus collectors for the ordering service.

Two groups live here: per-request HTTP timing and the counters the order
and payment services bump. The scrape endpoint is blueprints/metrics.py.
"""
from flask import g, request
from prometheus_client import Counter, Histogram, Gauge, CollectorRegistry
from prometheus_client import multiprocess, REGISTRY
import time
import os

# Gunicorn workers share samples through PROMETHEUS_MULTIPROC_DIR
MULTIPROCESS_MODE = bool(os.environ.get('PROMETHEUS_MULTIPROC_DIR'))

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
    # Collectors must not register themselves; the collector above reads the files
    _metric_registry = None
else:
    registry = REGISTRY
    _metric_registry = REGISTRY

LATENCY_BUCKETS = (0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0)

http_requests_total = Counter(
    'http_requests_total',
    'Requests served, by route and status code',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'http_request_duration_seconds',
    'Time spent serving a request',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=LATENCY_BUCKETS
)

http_requests_in_flight = Gauge(
    'http_requests_in_flight',
    'Requests currently being served',
    registry=_metric_registry
)


# Ordering and payment counters
payment_reconciliations_total = Counter(
    'qrorder_payment_reconciliations_total',
    'Payment reconciliation attempts by trigger and outcome',
    ['trigger', 'outcome'],
    registry=_metric_registry
)

price_corrections_total = Counter(
    'qrorder_price_corrections_total',
    'Orders whose stored total was corrected by the pricing audit',
    registry=_metric_registry
)

suspicious_tips_total = Counter(
    'qrorder_suspicious_tips_total',
    'Checkouts whose tip exceeded the suspicious ratio of the audited subtotal',
    registry=_metric_registry
)

order_limit_rejections_total = Counter(
    'qrorder_order_limit_rejections_total',
    'Order creations rejected by the active-order cap',
    registry=_metric_registry
)

order_notifications_total = Counter(
    'qrorder_order_notifications_total',
    'Order confirmation dispatch results',
    ['result'],
    registry=_metric_registry
)


def setup_metrics_instrumentation(app):
    """Hook request timing into ``app``. Called once from the factory."""

    @app.before_request
    def _start_timer():
        g.request_started_at = time.perf_counter()
        http_requests_in_flight.inc()

    @app.after_request
    def _observe(response):
        started = g.get('request_started_at')
        if started is None:
            return response
        endpoint = request.endpoint or 'unknown'
        try:
            http_request_duration_seconds.labels(request.method, endpoint).observe(
                time.perf_counter() - started
            )
            http_requests_total.labels(request.method, endpoint, response.status_code).inc()
        except Exception as e:
            app.logger.warning(f"[METRICS] could not record {endpoint}: {e}")
        return response

    @app.teardown_request
    def _finish(exc):
        # Runs on unhandled errors too, so the gauge never drifts upward
        if g.pop('request_started_at', None) is not None:
            http_requests_in_flight.dec()
