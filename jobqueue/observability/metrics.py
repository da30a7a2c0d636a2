"""
Prometheus metrics collection.
"""

from prometheus_client import (
    REGISTRY,
    CollectorRegistry,
    Counter,
    Gauge,
)

from jobqueue.constants import (
    METRIC_JOB_OUTCOMES,
    METRIC_JOBS_CLAIMED,
    METRIC_JOBS_SCHEDULED,
    METRIC_LEASE_LOST,
    METRIC_LEASE_RECOVERED,
    METRIC_QUEUE_DEPTH,
    METRIC_STORE_ERRORS,
)

# Global metrics instance
_metrics: "MetricsCollector | None" = None


class MetricsCollector:
    """
    Prometheus metrics collector for the job queue.

    Collects metrics for:
    - Queue depth by status
    - Job scheduling and claims
    - Job outcomes (done, retried, dead-lettered)
    - Lost and recovered leases
    - Store failures
    """

    def __init__(self, registry: CollectorRegistry | None = None):
        """
        Initialize the metrics collector.

        Args:
            registry: Optional custom registry. Uses default if not provided.
        """
        self._registry = registry or REGISTRY

        self.queue_depth = Gauge(
            METRIC_QUEUE_DEPTH,
            "Number of jobs by status",
            ["queue", "status"],
            registry=self._registry,
        )

        self.jobs_scheduled = Counter(
            METRIC_JOBS_SCHEDULED,
            "Total number of jobs scheduled",
            ["queue", "job_type"],
            registry=self._registry,
        )

        self.jobs_claimed = Counter(
            METRIC_JOBS_CLAIMED,
            "Total number of successful claims",
            ["queue", "job_type"],
            registry=self._registry,
        )

        self.job_outcomes = Counter(
            METRIC_JOB_OUTCOMES,
            "Total number of resolved attempts by outcome",
            ["queue", "job_type", "outcome"],
            registry=self._registry,
        )

        self.lease_lost = Counter(
            METRIC_LEASE_LOST,
            "Total number of operations rejected because the lease was lost",
            ["operation"],
            registry=self._registry,
        )

        self.lease_recovered = Counter(
            METRIC_LEASE_RECOVERED,
            "Total number of abandoned leases resolved by the sweep",
            ["queue", "outcome"],
            registry=self._registry,
        )

        self.store_errors = Counter(
            METRIC_STORE_ERRORS,
            "Total number of failed document store operations",
            ["operation"],
            registry=self._registry,
        )

    def record_job_scheduled(self, queue: str, job_type: str) -> None:
        """Record a job submission."""
        self.jobs_scheduled.labels(queue=queue, job_type=job_type).inc()

    def record_job_claimed(self, queue: str, job_type: str) -> None:
        """Record a successful claim."""
        self.jobs_claimed.labels(queue=queue, job_type=job_type).inc()

    def record_job_outcome(self, queue: str, job_type: str, outcome: str) -> None:
        """Record how an attempt was resolved."""
        self.job_outcomes.labels(queue=queue, job_type=job_type, outcome=outcome).inc()

    def record_lease_lost(self, operation: str) -> None:
        """Record a rejected heartbeat, complete or fail."""
        self.lease_lost.labels(operation=operation).inc()

    def record_lease_recovered(self, queue: str, outcome: str, count: int = 1) -> None:
        """Record abandoned leases resolved by the sweep."""
        if count:
            self.lease_recovered.labels(queue=queue, outcome=outcome).inc(count)

    def record_store_error(self, operation: str) -> None:
        """Record a failed store operation."""
        self.store_errors.labels(operation=operation).inc()

    def update_queue_depth(self, queue: str, counts: dict[str, int]) -> None:
        """Update the per-status gauges for a queue."""
        for status, count in counts.items():
            self.queue_depth.labels(queue=queue, status=status).set(count)


def setup_metrics() -> MetricsCollector:
    """
    Set up and return the metrics collector.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics


def get_metrics() -> MetricsCollector:
    """
    Get the metrics collector instance, creating it on first use.

    Returns:
        MetricsCollector: The metrics collector instance.
    """
    if _metrics is None:
        return setup_metrics()
    return _metrics
