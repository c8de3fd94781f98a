"""Monitoring configuration for the progress tracker."""
from prometheus_client import Counter, Gauge, Histogram, start_http_server

# Session metrics
active_sessions = Gauge(
    "lingotrack_active_sessions",
    "Number of learning sessions currently active",
)

sessions_started = Counter(
    "lingotrack_sessions_started_total",
    "Total number of learning sessions started",
    ["mode"],
)

sessions_ended = Counter(
    "lingotrack_sessions_ended_total",
    "Total number of learning sessions ended",
    ["reason"],
)

recovery_outcomes = Counter(
    "lingotrack_recovery_outcomes_total",
    "Outcomes of session recovery checks at startup",
    ["outcome"],  # none, resumable, expired, recovered
)

# Learning metrics
answers_recorded = Counter(
    "lingotrack_answers_recorded_total",
    "Total number of keyword answers recorded",
    ["correct"],
)

keywords_mastered = Counter(
    "lingotrack_keywords_mastered_total",
    "Total number of keywords that crossed the mastery threshold",
)

# Sync metrics
sync_attempts = Counter(
    "lingotrack_sync_attempts_total",
    "Total number of progress sync attempts",
)

sync_failures = Counter(
    "lingotrack_sync_failures_total",
    "Total number of failed progress sync operations",
    ["operation"],
)

sync_duration = Histogram(
    "lingotrack_sync_duration_seconds",
    "Duration of remote progress fetches in seconds",
    buckets=[0.1, 0.5, 1.0, 2.0, 5.0, 10.0],
)

# Store metrics
store_operations = Counter(
    "lingotrack_store_operations_total",
    "Total number of key/value store operations",
    ["operation_type"],
)


def start_monitoring(port: int = 9090) -> None:
    """Start the Prometheus metrics server."""
    start_http_server(port)
