"""
Tests for logging and observability (structured logs, metrics, tracing).
"""

import json
import logging
import sys

import pytest
from cassandra import InvalidRequest
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter
from opentelemetry.trace import StatusCode

from scylladb_orm import (
    DataSource,
    OrmQueryError,
    PerformanceLogger,
    QueryMetrics,
    StructuredFormatter,
    Tracer,
    configure_tracing,
    setup_logging,
)
from scylladb_orm.logging_utils import operation_var
from scylladb_orm.observability import PercentileTracker


def make_record(message="hello", **extra):
    record = logging.LogRecord("scylladb_orm.test", logging.INFO, __file__, 1, message, (), None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.mark.unit
class TestStructuredFormatter:
    """JSON log output."""

    def test_basic_fields(self):
        payload = json.loads(StructuredFormatter().format(make_record()))

        assert payload["level"] == "INFO"
        assert payload["logger"] == "scylladb_orm.test"
        assert payload["message"] == "hello"
        assert "timestamp" in payload

    def test_extra_fields_included(self):
        payload = json.loads(StructuredFormatter().format(make_record(table="employees", duration_ms=1.5)))

        assert payload["table"] == "employees"
        assert payload["duration_ms"] == 1.5

    def test_operation_from_context(self):
        token = operation_var.set("find_by")
        try:
            payload = json.loads(StructuredFormatter().format(make_record()))
        finally:
            operation_var.reset(token)

        assert payload["operation"] == "find_by"

    def test_exception_info(self):
        try:
            raise ValueError("bad")
        except ValueError:
            record = logging.LogRecord("x", logging.ERROR, __file__, 1, "failed", (), sys.exc_info())

        payload = json.loads(StructuredFormatter().format(record))
        assert "ValueError: bad" in payload["exception"]


@pytest.mark.unit
class TestPerformanceLogger:
    """Operation timing."""

    @pytest.mark.asyncio
    async def test_success(self, caplog):
        logger = logging.getLogger("scylladb_orm.test_perf")

        with caplog.at_level(logging.DEBUG, logger="scylladb_orm.test_perf"):
            async with PerformanceLogger("find", logger, table="employees") as perf:
                assert operation_var.get() == "find"

        assert perf.duration_ms is not None
        assert operation_var.get() == ""
        events = [r.event for r in caplog.records]
        assert events == ["operation_start", "operation_completed"]
        assert caplog.records[-1].table == "employees"

    @pytest.mark.asyncio
    async def test_failure_logged_and_propagated(self, caplog):
        logger = logging.getLogger("scylladb_orm.test_perf")

        with caplog.at_level(logging.DEBUG, logger="scylladb_orm.test_perf"):
            with pytest.raises(RuntimeError):
                async with PerformanceLogger("save", logger):
                    raise RuntimeError("boom")

        failed = caplog.records[-1]
        assert failed.levelno == logging.WARNING
        assert failed.event == "operation_failed"
        assert failed.error_type == "RuntimeError"

    def test_setup_logging(self):
        setup_logging(level="DEBUG", format="json")
        package_logger = logging.getLogger("scylladb_orm")

        assert package_logger.level == logging.DEBUG
        assert len(package_logger.handlers) == 1
        assert isinstance(package_logger.handlers[0].formatter, StructuredFormatter)

        setup_logging(level="WARNING", format="text")
        assert len(package_logger.handlers) == 1
        assert not isinstance(package_logger.handlers[0].formatter, StructuredFormatter)

        for handler in package_logger.handlers[:]:
            package_logger.removeHandler(handler)
        package_logger.setLevel(logging.NOTSET)


@pytest.mark.unit
class TestQueryMetrics:
    """Counters, percentiles and Prometheus export."""

    def test_percentiles(self):
        tracker = PercentileTracker(percentiles=[0.5, 0.99])
        for value in range(1, 101):
            tracker.record(float(value))

        percentiles = tracker.get_percentiles()
        assert percentiles["p50"] == 51.0
        assert percentiles["p99"] == 100.0

    def test_empty_tracker(self):
        stats = PercentileTracker().get_stats()
        assert stats["count"] == 0
        assert stats["p95"] == 0.0

    def test_stats(self):
        metrics = QueryMetrics()
        metrics.record_query("select", 2.0)
        metrics.record_query("select", 4.0, success=False, error_type="InvalidRequest")
        metrics.record_query("insert", 1.0)
        metrics.record_retry()
        metrics.record_reconnect()

        stats = metrics.get_stats()
        assert stats["total_queries"] == 3
        assert stats["total_errors"] == 1
        assert stats["error_rate"] == pytest.approx(1 / 3)
        assert stats["operations"] == {"select": 2, "insert": 1}
        assert stats["error_types"] == {"InvalidRequest": 1}
        assert stats["retries"] == 1
        assert stats["reconnects"] == 1
        assert stats["latencies"]["select"]["mean"] == 3.0

    def test_reset(self):
        metrics = QueryMetrics()
        metrics.record_query("select", 1.0)
        metrics.record_retry()
        metrics.reset()

        stats = metrics.get_stats()
        assert stats["total_queries"] == 0
        assert stats["retries"] == 0
        assert stats["error_rate"] == 0.0

    def test_export_prometheus(self):
        metrics = QueryMetrics()
        metrics.record_query("select", 2.0)
        metrics.record_query("delete", 1.0, success=False, error_type="WriteTimeout")
        metrics.record_retry()

        output = metrics.export_prometheus()
        assert 'scylladb_orm_queries_total{operation="select"} 1' in output
        assert 'scylladb_orm_errors_total{operation="delete"} 1' in output
        assert 'scylladb_orm_latency_ms{operation="select",percentile="p50"} 2.0' in output
        assert "scylladb_orm_retries_total 1" in output
        assert "scylladb_orm_reconnects_total 0" in output


@pytest.mark.unit
class TestTracer:
    """Span helper."""

    def test_disabled_yields_none(self):
        tracer = Tracer(enabled=False)

        with tracer.span("scylladb_orm.execute", {"db.statement": "SELECT 1"}) as span:
            assert span is None

    def test_enabled_propagates_errors(self):
        tracer = Tracer(enabled=True)

        with pytest.raises(ValueError):
            with tracer.span("scylladb_orm.execute", {"db.params": [1, 2]}):
                raise ValueError("failed")

    def test_enabled_span(self):
        tracer = Tracer(enabled=True)

        with tracer.span("scylladb_orm.execute", {"db.operation": "select"}) as span:
            assert span is not None


@pytest.fixture(scope="module")
def span_exporter():
    """
    SDK provider with an in-memory exporter, installed once.

    OpenTelemetry only accepts one global provider per process.
    """
    exporter = InMemorySpanExporter()
    provider = configure_tracing("scylladb-orm-tests", exporter=exporter)
    return provider, exporter


@pytest.mark.unit
class TestQueryTracing:
    """Spans recorded by DataSource.execute_query."""

    @pytest.fixture
    def traced_data_source(self, connection_config, fake_cluster):
        return DataSource(connection_config, cluster_factory=lambda config: fake_cluster, enable_tracing=True)

    def execute_spans(self, span_exporter):
        provider, exporter = span_exporter
        provider.force_flush()
        return [span for span in exporter.get_finished_spans() if span.name == "scylladb_orm.execute"]

    @pytest.mark.asyncio
    async def test_successful_query_span(self, span_exporter, traced_data_source, fake_session):
        span_exporter[1].clear()
        fake_session.queue([{"id": 1}])

        await traced_data_source.execute_query("SELECT * FROM employees WHERE id = ?", [1])
        await traced_data_source.shutdown()

        spans = self.execute_spans(span_exporter)
        assert len(spans) == 1
        assert spans[0].attributes["db.statement"] == "SELECT * FROM employees WHERE id = ?"
        assert spans[0].attributes["db.operation"] == "select"
        assert spans[0].status.status_code == StatusCode.OK
        assert spans[0].resource.attributes["service.name"] == "scylladb-orm-tests"

    @pytest.mark.asyncio
    async def test_failed_query_span(self, span_exporter, traced_data_source, fake_session):
        span_exporter[1].clear()
        fake_session.queue(InvalidRequest("unconfigured table nope"))

        with pytest.raises(OrmQueryError):
            await traced_data_source.execute_query("SELECT * FROM nope")
        await traced_data_source.shutdown()

        spans = self.execute_spans(span_exporter)
        assert len(spans) == 1
        assert spans[0].status.status_code == StatusCode.ERROR
        assert spans[0].events[0].name == "exception"

    @pytest.mark.asyncio
    async def test_disabled_tracing_records_nothing(self, span_exporter, connected_data_source):
        span_exporter[1].clear()

        await connected_data_source.execute_query("SELECT * FROM employees")

        assert self.execute_spans(span_exporter) == []
