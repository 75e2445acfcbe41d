"""
Observability for the data source.

Provides:
- OpenTelemetry spans around query execution
- Query metrics with percentile latencies, retry and reconnect counters
- Prometheus text exposition of those metrics
"""

import logging
import statistics
import time
from collections import defaultdict, deque
from contextlib import contextmanager
from typing import Any, Iterator, Optional

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource, SERVICE_NAME
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor, ConsoleSpanExporter

logger = logging.getLogger(__name__)


# ============================================================================
# OpenTelemetry Tracing
# ============================================================================

class Tracer:
    """
    Thin wrapper around an OpenTelemetry tracer.

    Spans are only recorded when ``enabled``; otherwise ``span`` yields None.
    Without a configured SDK provider OpenTelemetry itself is a no-op.
    """

    def __init__(self, service_name: str = "scylladb-orm", enabled: bool = False):
        self.service_name = service_name
        self.enabled = enabled
        self._tracer = trace.get_tracer(__name__) if enabled else None

    @contextmanager
    def span(self, name: str, attributes: Optional[dict[str, Any]] = None) -> Iterator[Any]:
        """
        Create a traced span for an operation.

        Args:
            name: Span name (e.g., "scylladb_orm.execute")
            attributes: Span attributes
        """
        if not self.enabled or self._tracer is None:
            yield None
            return

        with self._tracer.start_as_current_span(name) as span:
            for key, value in (attributes or {}).items():
                # OpenTelemetry only accepts primitive attribute values
                span.set_attribute(key, value if isinstance(value, (str, int, float, bool)) else str(value))

            try:
                yield span
                span.set_status(trace.Status(trace.StatusCode.OK))
            except Exception as e:
                span.set_status(trace.Status(trace.StatusCode.ERROR, str(e)))
                span.record_exception(e)
                raise


def configure_tracing(service_name: str, exporter: Any = None) -> TracerProvider:
    """
    Install an SDK tracer provider as the global provider.

    OpenTelemetry accepts the global provider only once per process.

    Args:
        service_name: Service name reported on every span
        exporter: Span exporter (defaults to the console exporter)

    Returns:
        The installed provider, e.g. to ``force_flush()`` before reading spans
    """
    resource = Resource(attributes={SERVICE_NAME: service_name})
    provider = TracerProvider(resource=resource)
    provider.add_span_processor(BatchSpanProcessor(exporter or ConsoleSpanExporter()))
    trace.set_tracer_provider(provider)
    logger.info(f"OpenTelemetry tracing initialized for {service_name}")
    return provider


# ============================================================================
# Query Metrics
# ============================================================================

class PercentileTracker:
    """
    Track percentile latencies over a sliding window.
    """

    def __init__(self, window_size: int = 1000, percentiles: list[float] | None = None):
        self.window_size = window_size
        self.percentiles = percentiles or [0.5, 0.95, 0.99]
        self.samples: deque[float] = deque(maxlen=window_size)

    def record(self, value: float):
        self.samples.append(value)

    def get_percentiles(self) -> dict[str, float]:
        if not self.samples:
            return {f"p{int(p * 100)}": 0.0 for p in self.percentiles}

        ordered = sorted(self.samples)
        result = {}
        for p in self.percentiles:
            index = min(int(p * len(ordered)), len(ordered) - 1)
            result[f"p{int(p * 100)}"] = ordered[index]
        return result

    def get_stats(self) -> dict[str, Any]:
        if not self.samples:
            return {"count": 0, "mean": 0.0, "min": 0.0, "max": 0.0, **self.get_percentiles()}

        return {
            "count": len(self.samples),
            "mean": statistics.fmean(self.samples),
            "min": min(self.samples),
            "max": max(self.samples),
            **self.get_percentiles(),
        }


class QueryMetrics:
    """
    In-process metrics for query execution.

    Tracks:
    - Latency percentiles per operation
    - Query and error counts, error types
    - Retries and reconnects performed by the data source
    """

    def __init__(self, percentiles: list[float] | None = None):
        self.percentiles = percentiles or [0.5, 0.95, 0.99]
        self.latencies: dict[str, PercentileTracker] = defaultdict(
            lambda: PercentileTracker(percentiles=self.percentiles)
        )
        self.operation_counts: dict[str, int] = defaultdict(int)
        self.error_counts: dict[str, int] = defaultdict(int)
        self.error_types: dict[str, int] = defaultdict(int)
        self.retries = 0
        self.reconnects = 0
        self.start_time = time.time()

    def record_query(self, operation: str, latency_ms: float, success: bool = True, error_type: str | None = None):
        """
        Record one query attempt.

        Args:
            operation: Statement kind (e.g. 'select', 'insert', 'delete')
            latency_ms: Attempt latency in milliseconds
            success: Whether the attempt succeeded
            error_type: Exception class name if it failed
        """
        self.latencies[operation].record(latency_ms)
        self.operation_counts[operation] += 1
        if not success:
            self.error_counts[operation] += 1
            if error_type:
                self.error_types[error_type] += 1

    def record_retry(self):
        self.retries += 1

    def record_reconnect(self):
        self.reconnects += 1

    def get_stats(self) -> dict[str, Any]:
        total_queries = sum(self.operation_counts.values())
        total_errors = sum(self.error_counts.values())

        return {
            "uptime_seconds": time.time() - self.start_time,
            "total_queries": total_queries,
            "total_errors": total_errors,
            "error_rate": total_errors / total_queries if total_queries > 0 else 0.0,
            "retries": self.retries,
            "reconnects": self.reconnects,
            "operations": dict(self.operation_counts),
            "error_types": dict(self.error_types),
            "latencies": {
                operation: tracker.get_stats()
                for operation, tracker in self.latencies.items()
            },
        }

    def reset(self):
        """Reset all counters."""
        self.latencies.clear()
        self.operation_counts.clear()
        self.error_counts.clear()
        self.error_types.clear()
        self.retries = 0
        self.reconnects = 0
        self.start_time = time.time()

    def export_prometheus(self) -> str:
        """
        Export metrics in Prometheus text format.
        """
        lines = []

        for operation, count in self.operation_counts.items():
            lines.append(f'scylladb_orm_queries_total{{operation="{operation}"}} {count}')

        for operation, count in self.error_counts.items():
            lines.append(f'scylladb_orm_errors_total{{operation="{operation}"}} {count}')

        for operation, tracker in self.latencies.items():
            for percentile_name, value in tracker.get_percentiles().items():
                lines.append(
                    f'scylladb_orm_latency_ms{{'
                    f'operation="{operation}",percentile="{percentile_name}"'
                    f'}} {value}'
                )

        lines.append(f"scylladb_orm_retries_total {self.retries}")
        lines.append(f"scylladb_orm_reconnects_total {self.reconnects}")

        return "\n".join(lines)
