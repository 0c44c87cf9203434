"""Counter, gauge and histogram instances and their vectors."""
from abc import abstractmethod
from functools import partial
from typing import Dict, List, Optional, Sequence, Tuple
import threading
import time
import weakref

from prometheus_client import Histogram
from prometheus_client.utils import INF, floatToGoString

from dynvec.config import VectorOpts
from dynvec.vector import Descriptor, Metric, Vector

# (name suffix, extra labels, value)
Sample = Tuple[str, Dict[str, str], float]


class Unit(Metric):
    """Base for metric instances stored in a vector."""

    def __init__(self, vector: Vector, label_values: List[str]):
        # Weak so an instance never keeps its vector alive.
        self._vector = weakref.ref(vector)
        # Registry the values were positioned against. A reset swaps the
        # vector's registry, never this one, whose keys only grow.
        self._registry = vector.registry
        self.label_values = list(label_values)
        self._last = time.time()
        self._lock = threading.Lock()

    @property
    def desc(self) -> Optional[Descriptor]:
        vector = self._vector()
        if vector is None:
            return None
        return vector.describe()

    @property
    def labels(self) -> Dict[str, str]:
        """Full label set, constant labels included."""
        return self._registry.expand(self.label_values)

    def last_edit(self) -> float:
        with self._lock:
            return self._last

    def write(self, family) -> None:
        labels = self.labels

        with self._lock:
            samples = self._samples()

        for suffix, extra, value in samples:
            family.add_sample(family.name + suffix, {**labels, **extra}, value)

    def _touch(self):
        self._last = time.time()

    @abstractmethod
    def _samples(self) -> List[Sample]:
        """Kind-specific samples, called with the value lock held."""


class CounterUnit(Unit):
    """Monotonically increasing value."""

    def __init__(self, vector: Vector, label_values: List[str]):
        super().__init__(vector, label_values)
        self._value = 0.0

    def inc(self, amount: float = 1):
        """Increment counter by the given amount."""
        if amount < 0:
            raise ValueError('Counters can only be incremented by non-negative amounts.')

        with self._lock:
            self._value += amount
            self._touch()

    def add(self, amount: float):
        self.inc(amount)

    def get(self) -> float:
        with self._lock:
            return self._value

    def _samples(self) -> List[Sample]:
        return [("_total", {}, self._value)]


class GaugeUnit(Unit):
    """Value that can go up and down."""

    def __init__(self, vector: Vector, label_values: List[str]):
        super().__init__(vector, label_values)
        self._value = 0.0

    def set(self, value: float):
        with self._lock:
            self._value = float(value)
            self._touch()

    def add(self, amount: float):
        with self._lock:
            self._value += amount
            self._touch()

    def sub(self, amount: float):
        self.add(-amount)

    def inc(self, amount: float = 1):
        self.add(amount)

    def dec(self, amount: float = 1):
        self.add(-amount)

    def set_to_current_time(self):
        self.set(time.time())

    def get(self) -> float:
        with self._lock:
            return self._value

    def _samples(self) -> List[Sample]:
        return [("", {}, self._value)]


class HistogramUnit(Unit):
    """Bucketed observations with running sum and count."""

    def __init__(self, vector: Vector, label_values: List[str], buckets: Sequence[float]):
        super().__init__(vector, label_values)
        self.upper_bounds = list(buckets)
        self._buckets = [0] * len(self.upper_bounds)
        self._sum = 0.0

    def observe(self, amount: float):
        """Count the observation in the first bucket whose bound is >= amount."""
        with self._lock:
            self._sum += amount
            for i, bound in enumerate(self.upper_bounds):
                if amount <= bound:
                    self._buckets[i] += 1
                    break
            self._touch()

    def _samples(self) -> List[Sample]:
        samples: List[Sample] = []
        cumulative = 0
        for bound, count in zip(self.upper_bounds, self._buckets):
            cumulative += count
            samples.append(("_bucket", {"le": floatToGoString(bound)}, cumulative))
        samples.append(("_count", {}, cumulative))
        samples.append(("_sum", {}, self._sum))
        return samples


class CounterVector(Vector):
    metric_type = "counter"

    def __init__(self, opts: VectorOpts):
        super().__init__(opts, CounterUnit)


class GaugeVector(Vector):
    metric_type = "gauge"

    def __init__(self, opts: VectorOpts):
        super().__init__(opts, GaugeUnit)


class HistogramVector(Vector):
    metric_type = "histogram"
    reserved_labels = frozenset({"le"})

    def __init__(self, opts: VectorOpts):
        self.buckets = prepare_buckets(opts.buckets or Histogram.DEFAULT_BUCKETS)
        super().__init__(opts, partial(HistogramUnit, buckets=self.buckets))


def prepare_buckets(buckets: Sequence[float]) -> List[float]:
    """Sort bucket bounds and make sure the last one is +Inf."""
    bounds = sorted(float(b) for b in buckets)
    if not bounds or bounds[-1] != INF:
        bounds.append(INF)
    return bounds


def create_vector(opts: VectorOpts) -> Vector:
    """Factory function to create the vector for a configured metric type."""
    if opts.type == "counter":
        return CounterVector(opts)
    elif opts.type == "gauge":
        return GaugeVector(opts)
    elif opts.type == "histogram":
        return HistogramVector(opts)
    else:
        raise ValueError(f"Unknown metric type: {opts.type}")
