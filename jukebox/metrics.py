"""Prometheus metric definitions for Jukebox.

The exporter only listens when ``METRICS_PORT`` is configured.
"""
from __future__ import annotations

from prometheus_client import Counter, Gauge, start_http_server

tracks_played_total = Counter(
    "jukebox_tracks_played_total",
    "Total tracks started across all guilds",
)
playback_errors_total = Counter(
    "jukebox_playback_errors_total",
    "Stream construction and playback errors",
)
queue_size = Gauge(
    "jukebox_queue_size",
    "Pending songs per guild",
    ["guild_id"],
)
voice_connections = Gauge(
    "jukebox_voice_connections",
    "Number of active voice connections",
)
idle_disconnects_total = Counter(
    "jukebox_idle_disconnects_total",
    "Sessions torn down by the idle timer",
)


def start_metrics_server(port: int = 9090) -> None:
    start_http_server(port)
