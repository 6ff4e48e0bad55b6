"""Pytest fixtures wiring the Fibonacci components to in-memory telemetry."""

from typing import Callable, Dict

import pytest
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import InMemoryMetricReader
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor
from opentelemetry.sdk.trace.export.in_memory_span_exporter import InMemorySpanExporter

from fibonacci.computation import ATTR_VALID_N, COUNTER_NAME, InstrumentedFibonacci
from fibonacci.handler import FibonacciHandler
from telemetry.manager import OtelManager


@pytest.fixture
def span_exporter() -> InMemorySpanExporter:
    return InMemorySpanExporter()


@pytest.fixture
def metric_reader() -> InMemoryMetricReader:
    return InMemoryMetricReader()


@pytest.fixture
def tracer_provider(span_exporter: InMemorySpanExporter) -> TracerProvider:
    provider = TracerProvider()
    provider.add_span_processor(SimpleSpanProcessor(span_exporter))
    return provider


@pytest.fixture
def telemetry(tracer_provider: TracerProvider, metric_reader: InMemoryMetricReader) -> OtelManager:
    """Telemetry provider backed by in-memory span and metric collection."""
    meter_provider = MeterProvider(metric_readers=[metric_reader])
    return OtelManager(
        "test-fibonacci", tracer_provider=tracer_provider, meter_provider=meter_provider
    )


@pytest.fixture
def computation(telemetry: OtelManager) -> InstrumentedFibonacci:
    return InstrumentedFibonacci(telemetry)


@pytest.fixture
def handler(computation: InstrumentedFibonacci) -> FibonacciHandler:
    return FibonacciHandler(computation)


@pytest.fixture
def invocation_counts(metric_reader: InMemoryMetricReader) -> Callable[[], Dict[bool, int]]:
    """Callable returning the fibonacci.invocations counter value per valid label."""

    def collect() -> Dict[bool, int]:
        counts: Dict[bool, int] = {}
        data = metric_reader.get_metrics_data()
        if data is None:
            return counts
        for resource_metrics in data.resource_metrics:
            for scope_metrics in resource_metrics.scope_metrics:
                for metric in scope_metrics.metrics:
                    if metric.name != COUNTER_NAME:
                        continue
                    for point in metric.data.data_points:
                        counts[point.attributes[ATTR_VALID_N]] = point.value
        return counts

    return collect
