"""Prometheus collectors for the AskBoard service.

Exposed through `/metrics` by the forum app.
"""

from __future__ import annotations

from prometheus_client import Counter, Gauge

__all__ = [
    "events_broadcast",
    "ws_clients",
    "ws_dropped",
    "store_errors",
]

events_broadcast = Counter("askboard_events_broadcast_total", "Events fanned out to subscribers", ["event"])

ws_clients = Gauge("askboard_ws_clients", "Currently connected WebSocket subscribers")

ws_dropped = Counter("askboard_ws_dropped_total", "Subscribers dropped because their queue was full")

store_errors = Counter("askboard_store_errors_total", "Store operations that failed", ["kind"])

