from __future__ import annotations

from prometheus_client import Counter, Gauge

STREAM_REQUESTS = Counter(
    "sftp_stream_requests_total",
    "Stream read responses by HTTP status.",
    ["status"],
)
WORKERS_STARTED = Counter(
    "sftp_stream_workers_started_total",
    "Resource workers spawned.",
)
CONFIG_GENERATION = Gauge(
    "sftp_stream_configuration_generation",
    "Generation of the active connection configuration.",
)
