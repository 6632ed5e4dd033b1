"""
Prometheus metrics blueprint.

Exposes /metrics with HTTP request metrics and back-office counters
(approvals, posted adjustments, balance replays). Restrict it to the
monitoring network in production.
"""
from flask import Blueprint, Response, request, g
from prometheus_client import Counter, Histogram, Gauge, generate_latest, CollectorRegistry, CONTENT_TYPE_LATEST
from prometheus_client import multiprocess, REGISTRY
import time
import os

metrics_bp = Blueprint('metrics', __name__)

# Multi-process mode under Gunicorn
MULTIPROCESS_MODE = os.environ.get('PROMETHEUS_MULTIPROC_DIR') is not None

if MULTIPROCESS_MODE:
    registry = CollectorRegistry()
    multiprocess.MultiProcessCollector(registry)
else:
    registry = REGISTRY

_metric_registry = registry if not MULTIPROCESS_MODE else None

# HTTP Request Metrics
http_requests_total = Counter(
    'backoffice_http_requests_total',
    'Total HTTP requests',
    ['method', 'endpoint', 'http_status'],
    registry=_metric_registry
)

http_request_duration_seconds = Histogram(
    'backoffice_http_request_duration_seconds',
    'HTTP request latency in seconds',
    ['method', 'endpoint'],
    registry=_metric_registry,
    buckets=(0.005, 0.01, 0.025, 0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0)
)

http_requests_in_flight = Gauge(
    'backoffice_http_requests_in_flight',
    'Number of HTTP requests currently being processed',
    registry=_metric_registry
)

# Domain Metrics
stock_counts_approved_total = Counter(
    'backoffice_stock_counts_approved_total',
    'Stock counts approved',
    registry=_metric_registry
)

stock_adjustments_posted_total = Counter(
    'backoffice_stock_adjustments_posted_total',
    'Stock adjustments posted by count approvals',
    registry=_metric_registry
)

balance_recalculations_total = Counter(
    'backoffice_balance_recalculations_total',
    'Current account balance replays',
    ['scope'],
    registry=_metric_registry
)


def setup_metrics_instrumentation(app):
    """Register before/after request hooks that feed the HTTP metrics."""

    @app.before_request
    def before_request_metrics():
        g._prometheus_metrics_start_time = time.time()
        http_requests_in_flight.inc()

    @app.after_request
    def after_request_metrics(response):
        if hasattr(g, '_prometheus_metrics_start_time'):
            duration = time.time() - g._prometheus_metrics_start_time
            endpoint = request.endpoint or 'unknown'

            http_request_duration_seconds.labels(
                method=request.method,
                endpoint=endpoint
            ).observe(duration)

            http_requests_total.labels(
                method=request.method,
                endpoint=endpoint,
                http_status=response.status_code
            ).inc()

            http_requests_in_flight.dec()

        return response


@metrics_bp.route('/metrics')
def metrics():
    """Prometheus metrics endpoint (unauthenticated, internal use only)."""
    data = generate_latest(registry)
    return Response(data, mimetype=CONTENT_TYPE_LATEST)
