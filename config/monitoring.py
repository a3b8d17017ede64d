# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Logging and metrics configuration"""

    MONITORING_ENABLED = os.environ.get("MONITORING_ENABLED", "false").lower() == "true"

    # Logging Configuration
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'
    LOG_DIR = os.environ.get("LOG_DIR", "logs")
    LOG_FILE_MAX_BYTES = int(os.environ.get("LOG_FILE_MAX_BYTES", 10485760))  # 10MB
    LOG_FILE_BACKUP_COUNT = int(os.environ.get("LOG_FILE_BACKUP_COUNT", 10))

    # Console and File Logging
    ENABLE_FILE_LOGGING = os.environ.get("ENABLE_FILE_LOGGING", "true").lower() == "true"
    ENABLE_CONSOLE_LOGGING = os.environ.get("ENABLE_CONSOLE_LOGGING", "true").lower() == "true"

    APP_NAME = os.environ.get("APP_NAME", "records")
    APP_VERSION = os.environ.get("APP_VERSION", "1.0.0")


class DevelopmentMonitoringConfig(MonitoringConfig):
    """Development-specific monitoring configuration"""

    LOG_LEVEL = "DEBUG"
    LOG_FORMAT = "text"  # More readable in development
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = True


class ProductionMonitoringConfig(MonitoringConfig):
    """Production-specific monitoring configuration"""

    LOG_LEVEL = "INFO"
    LOG_FORMAT = "json"  # Structured logging for production
    ENABLE_FILE_LOGGING = True
    ENABLE_CONSOLE_LOGGING = False  # Usually handled by container orchestration


class TestingMonitoringConfig(MonitoringConfig):
    """Testing-specific monitoring configuration"""

    MONITORING_ENABLED = False
    LOG_LEVEL = "WARNING"
    LOG_FORMAT = "text"
    ENABLE_FILE_LOGGING = False
    ENABLE_CONSOLE_LOGGING = False


class DedupeMonitoring:
    """Prometheus metric helpers for duplicate scans and merges."""

    SCAN_CANDIDATES = Counter(
        "dedupe_scan_candidates_total",
        "Candidate pairs produced by the generator.",
        labelnames=("entity_type", "match_type"),
    )
    SCAN_SAVED = Counter(
        "dedupe_scan_saved_total",
        "Duplicate sets persisted by scans.",
        labelnames=("entity_type",),
    )
    SCAN_LATENCY = Histogram(
        "dedupe_scan_seconds",
        "Wall time of a scan for one entity type.",
        labelnames=("entity_type", "status"),
        buckets=(0.1, 0.5, 1, 2, 5, 10, 30, 60, 120, 300),
    )
    VALIDATOR_CALLS = Counter(
        "dedupe_validator_calls_total",
        "Semantic validator calls by outcome.",
        labelnames=("outcome",),
    )
    MERGE_COUNTER = Counter(
        "dedupe_merge_total",
        "Merge and undo attempts by outcome.",
        labelnames=("entity_type", "operation", "status"),
    )
    MERGE_LATENCY = Histogram(
        "dedupe_merge_seconds",
        "Latency histogram for merge transactions.",
        labelnames=("entity_type",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )

    @classmethod
    def record_candidates(cls, entity_type: str, match_type: str, count: int = 1) -> None:
        cls.SCAN_CANDIDATES.labels(entity_type=entity_type, match_type=match_type).inc(count)

    @classmethod
    def record_scan(cls, entity_type: str, status: str, duration_seconds: float, saved: int) -> None:
        cls.SCAN_LATENCY.labels(entity_type=entity_type, status=status).observe(max(duration_seconds, 0.0))
        if saved:
            cls.SCAN_SAVED.labels(entity_type=entity_type).inc(saved)

    @classmethod
    def record_validator(cls, outcome: str) -> None:
        cls.VALIDATOR_CALLS.labels(outcome=outcome).inc()

    @classmethod
    def record_merge(cls, entity_type: str, operation: str, status: str, duration_seconds: float | None = None) -> None:
        cls.MERGE_COUNTER.labels(entity_type=entity_type, operation=operation, status=status).inc()
        if duration_seconds is not None and operation == "merge" and status == "success":
            cls.MERGE_LATENCY.labels(entity_type=entity_type).observe(max(duration_seconds, 0.0))
