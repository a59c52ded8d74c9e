"""Prometheus metrics instrumentation for interpretation sessions.

Exposes metrics for monitoring session counts, utterance outcomes and
upstream stability. Metrics are exposed via HTTP on METRICS_PORT when it
is non-zero.

Metrics exported:
- interpreter_active_sessions: Gauge of currently registered sessions
- interpreter_utterances_total: Counter of finalized utterances by outcome
- interpreter_upstream_disconnects_total: Counter of unexpected upstream closes
- interpreter_translation_latency_seconds: Histogram from transcript-final to translation-final

Usage:
    from interpreter.services.metrics import start_metrics_server, utterances_total

    start_metrics_server(port=8001)
    utterances_total.labels(outcome='translated').inc()
"""

from prometheus_client import Histogram, Counter, Gauge, start_http_server
import logging

logger = logging.getLogger(__name__)

active_sessions_gauge = Gauge(
    'interpreter_active_sessions',
    'Number of currently registered interpretation sessions'
)

utterances_total = Counter(
    'interpreter_utterances_total',
    'Finalized utterances',
    labelnames=['outcome']  # outcome: translated, unsupported, repeat, failed
)

upstream_disconnects_total = Counter(
    'interpreter_upstream_disconnects_total',
    'Unexpected upstream channel closures'
)

translation_latency = Histogram(
    'interpreter_translation_latency_seconds',
    'Time from transcript finalization to translation finalization',
    labelnames=['target_language']
)


def start_metrics_server(port: int = 8001):
    """Start Prometheus metrics HTTP server."""
    try:
        start_http_server(port)
        logger.info(f"✅ Metrics server started on port {port}")
    except Exception as e:
        logger.error(f"❌ Failed to start metrics server: {e}")
