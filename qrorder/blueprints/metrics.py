"""Scrape endpoint for Prometheus."""
from flask import Blueprint, Response
from prometheus_client import generate_latest, CONTENT_TYPE_LATEST

from qrorder.metrics import registry

metrics_bp = Blueprint('metrics', __name__)


@metrics_bp.route('/metrics')
def metrics():
    """
    Expose HTTP timings and the ordering/payment counters.

    Unauthenticated: keep it reachable only from the monitoring network.
    """
    return Response(generate_latest(registry), mimetype=CONTENT_TYPE_LATEST)
