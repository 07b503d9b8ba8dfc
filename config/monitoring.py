# config/monitoring.py

import os

from prometheus_client import Counter, Histogram


class MonitoringConfig:
    """Monitoring and logging configuration"""

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

    # Application Info
    APP_NAME = os.environ.get("APP_NAME", "mdm-engine")
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


class MdmMonitoring:
    """Prometheus metric helpers for the deduplication and merge engine."""

    DUPLICATE_SEARCH_COUNTER = Counter(
        "mdm_duplicate_searches_total",
        "Total duplicate candidate searches.",
        labelnames=("status",),
    )
    DUPLICATE_SEARCH_LATENCY = Histogram(
        "mdm_duplicate_search_seconds",
        "Latency histogram for duplicate candidate searches.",
        labelnames=("status",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5, 10),
    )
    DUPLICATE_CANDIDATES = Histogram(
        "mdm_duplicate_candidates_returned",
        "Number of candidates returned per duplicate search.",
        buckets=(0, 1, 2, 5, 10, 25, 50, 100, 250),
    )

    MERGE_COUNTER = Counter(
        "mdm_merges_total",
        "Merge attempts by outcome.",
        labelnames=("outcome",),
    )
    UNMERGE_COUNTER = Counter(
        "mdm_unmerges_total",
        "Unmerge attempts by outcome.",
        labelnames=("outcome",),
    )
    MERGE_LATENCY = Histogram(
        "mdm_merge_seconds",
        "Latency histogram for merge and unmerge transactions.",
        labelnames=("operation",),
        buckets=(0.01, 0.05, 0.1, 0.25, 0.5, 1, 2, 5),
    )

    QUALITY_SCORE = Histogram(
        "mdm_quality_score",
        "Distribution of computed party quality scores.",
        buckets=(10, 20, 30, 40, 50, 60, 70, 80, 90, 100),
    )

    @classmethod
    def record_duplicate_search(cls, *, duration_seconds: float, status: str, result_count: int):
        cls.DUPLICATE_SEARCH_COUNTER.labels(status=status).inc()
        cls.DUPLICATE_SEARCH_LATENCY.labels(status=status).observe(max(duration_seconds, 0.0))
        if status == "success":
            cls.DUPLICATE_CANDIDATES.observe(float(max(result_count, 0)))

    @classmethod
    def record_merge(cls, *, duration_seconds: float, outcome: str):
        cls.MERGE_COUNTER.labels(outcome=outcome).inc()
        cls.MERGE_LATENCY.labels(operation="merge").observe(max(duration_seconds, 0.0))

    @classmethod
    def record_unmerge(cls, *, duration_seconds: float, outcome: str):
        cls.UNMERGE_COUNTER.labels(outcome=outcome).inc()
        cls.MERGE_LATENCY.labels(operation="unmerge").observe(max(duration_seconds, 0.0))

    @classmethod
    def record_quality_score(cls, score: int):
        cls.QUALITY_SCORE.observe(float(max(0, min(100, score))))
