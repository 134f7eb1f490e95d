"""Prometheus metrics for the call and messaging coordination layer.

Metrics exported:
- telecare_sessions_total: Sessions handed out, by outcome (created, reused)
- telecare_session_persist_failures_total: Best-effort descriptor writes that failed
- telecare_conversations_total: Direct/group lookups, by outcome (created, reused)
- telecare_poll_failures_total: Poll ticks that failed, by error kind
- telecare_messages_sent_total: Message sends, by final status
- telecare_call_state_transitions_total: Call state machine transitions, by target status

Usage:
    from telecare.services.metrics import start_metrics_server, sessions_total

    start_metrics_server(port=8001)
    sessions_total.labels(outcome='reused').inc()
"""

from prometheus_client import Counter, start_http_server
import logging

logger = logging.getLogger(__name__)

sessions_total = Counter(
    'telecare_sessions_total',
    'Video sessions handed out',
    labelnames=['outcome']  # outcome: created, reused
)

session_persist_failures = Counter(
    'telecare_session_persist_failures_total',
    'Session descriptor writes that failed (non-fatal)'
)

conversations_total = Counter(
    'telecare_conversations_total',
    'Conversation create-or-find results',
    labelnames=['type', 'outcome']  # outcome: created, reused
)

poll_failures = Counter(
    'telecare_poll_failures_total',
    'Message poll ticks that failed',
    labelnames=['kind']
)

messages_sent = Counter(
    'telecare_messages_sent_total',
    'Chat message sends',
    labelnames=['status']  # status: sent, failed
)

call_state_transitions = Counter(
    'telecare_call_state_transitions_total',
    'Call state machine transitions',
    labelnames=['status']
)


def start_metrics_server(port: int = 8001):
    """Start Prometheus metrics HTTP server."""
    try:
        start_http_server(port)
        logger.info(f"Metrics server started on port {port}")
    except OSError as e:
        logger.error(f"Failed to start metrics server: {e}")
