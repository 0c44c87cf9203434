"""Prometheus exposition of dynamic vectors using prometheus_client."""
from typing import Iterable
from prometheus_client import (
    Counter, Gauge, Histogram,
    CollectorRegistry, start_http_server
)
from prometheus_client.core import Metric
from prometheus_client.registry import Collector
import logging

from dynvec.config import PrometheusExporterConfig
from dynvec.vector import Descriptor, Vector

logger = logging.getLogger(__name__)


def family_name(desc: Descriptor) -> str:
    """Metric family name; counter samples carry the ``_total`` suffix."""
    if desc.type == "counter" and desc.name.endswith("_total"):
        return desc.name[:-len("_total")]
    return desc.name


class VectorCollector(Collector):
    """Adapts a vector to the prometheus_client collector protocol."""

    def __init__(self, vector: Vector):
        self.vector = vector

    def describe(self) -> Iterable[Metric]:
        desc = self.vector.describe()
        yield Metric(family_name(desc), desc.help, desc.type)

    def collect(self) -> Iterable[Metric]:
        desc = self.vector.describe()
        family = Metric(family_name(desc), desc.help, desc.type)

        for metric in self.vector.collect():
            metric.write(family)

        yield family


def register_vector(registry: CollectorRegistry, vector: Vector) -> VectorCollector:
    """Register a vector with the given registry and return its collector."""
    collector = VectorCollector(vector)
    registry.register(collector)
    logger.info(f"Registered dynamic vector: {vector.name} ({vector.metric_type})")
    return collector


def start_exporter(config: PrometheusExporterConfig, registry: CollectorRegistry):
    """Start Prometheus HTTP server."""
    try:
        start_http_server(
            config.port,
            addr=config.bind_address,
            registry=registry
        )
        logger.info(
            f"Prometheus exporter listening on "
            f"{config.bind_address}:{config.port}/metrics"
        )
    except Exception as e:
        logger.error(f"Failed to start Prometheus HTTP server: {e}")
        raise


class SelfMetrics:
    """Self-monitoring metrics for vector housekeeping."""

    def __init__(self, registry=None, prefix=""):
        if registry is None:
            registry = CollectorRegistry()

        self.gc_deleted_total = Counter(
            f"{prefix}gc_deleted_total",
            "Total number of instances deleted by garbage collection",
            ["vector"],
            registry=registry
        )

        self.gc_limit_exceeded_total = Counter(
            f"{prefix}gc_limit_exceeded_total",
            "Total number of resets caused by exceeding the max length",
            ["vector"],
            registry=registry
        )

        self.capacity_rejections_total = Counter(
            f"{prefix}capacity_rejections_total",
            "Total number of label sets rejected because a vector was full",
            ["vector"],
            registry=registry
        )

        self.gc_duration_seconds = Histogram(
            f"{prefix}gc_duration_seconds",
            "Duration of each garbage collection sweep in seconds",
            buckets=[0.0001, 0.0005, 0.001, 0.005, 0.01, 0.05, 0.1, 0.5, 1.0],
            registry=registry
        )

        self.vector_length = Gauge(
            f"{prefix}vector_length",
            "Number of instances held by a vector",
            ["vector"],
            registry=registry
        )

    def record_gc(self, vector: str, deleted: int, limit_exceeded: bool):
        """Record the outcome of a vector's garbage collection."""
        self.gc_deleted_total.labels(vector=vector).inc(deleted)
        if limit_exceeded:
            self.gc_limit_exceeded_total.labels(vector=vector).inc()

    def record_capacity_rejection(self, vector: str):
        self.capacity_rejections_total.labels(vector=vector).inc()

    def record_gc_duration(self, duration: float):
        self.gc_duration_seconds.observe(duration)

    def set_vector_length(self, vector: str, length: int):
        self.vector_length.labels(vector=vector).set(length)
