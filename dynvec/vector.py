"""
Dynamic metric vector.

A vector keeps one metric instance per unique label combination. Label keys
do not have to be declared up front: any key seen in a label map is added to
the vector's label registry, and instances created before the key existed
keep their identity. Instances that are not updated within ``expire_s`` are
hidden from collection and removed by ``gc``; a vector that grows beyond
``max_length`` is cleared on the next ``gc``.
"""
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Callable, Dict, Iterator, List, Optional, Tuple
import logging
import time

from dynvec.config import VectorOpts
from dynvec.curry import CurriedVector
from dynvec.labels import LabelRegistry, validate_label_names
from dynvec.rwlock import RWLock

logger = logging.getLogger(__name__)


class DynamicVectorError(ValueError):
    """Base class for vector usage errors."""


class CapacityExceededError(DynamicVectorError):
    """Creating a new instance would push the vector beyond its max length."""

    def __init__(self, name: str, max_length: int):
        super().__init__(f"vector {name} exceeds length limit {max_length}")
        self.name = name
        self.max_length = max_length


class LabelValuesError(DynamicVectorError):
    """More positional label values than known label keys."""


class InvalidLabelNameError(DynamicVectorError):
    """A newly discovered label key is invalid, reserved or a constant label."""


@dataclass(frozen=True)
class Descriptor:
    """Schema of a vector as seen by the collection protocol."""
    name: str
    help: str
    type: str
    const_labels: Dict[str, str] = field(default_factory=dict)
    variable_labels: Tuple[str, ...] = ()

    @property
    def label_names(self) -> List[str]:
        names = [key for key in self.variable_labels if key not in self.const_labels]
        return names + sorted(self.const_labels)


@dataclass
class GCStats:
    """Result of one garbage collection pass."""
    deleted: int = 0
    limit_exceeded: bool = False


class Metric(ABC):
    """Capabilities a vector needs from the instances it stores."""

    @property
    @abstractmethod
    def desc(self) -> Optional[Descriptor]:
        """Descriptor of the owning vector."""

    @abstractmethod
    def last_edit(self) -> float:
        """Epoch seconds of the last value mutation."""

    @abstractmethod
    def write(self, family) -> None:
        """Append this instance's samples to a prometheus_client metric family."""


MetricConstructor = Callable[["Vector", List[str]], Metric]


class Vector:
    """Concurrent store of metric instances keyed by label combination."""

    metric_type = "unknown"

    # Label names that may not be used as dynamic keys
    reserved_labels = frozenset()

    def __init__(self, opts: VectorOpts, constructor: MetricConstructor):
        self.name = opts.fq_name
        self.help = opts.help
        self.expire_s = opts.expire_s
        self.max_length = opts.max_length

        self._const_labels = dict(opts.const_labels)
        self._constructor = constructor
        self._lock = RWLock()

        # Count remembered after a cardinality reset, reported by length()
        # until the next instance is created.
        self._pseudo_length = 0

        self._reset()

    def get_metric_with(self, labels: Dict[str, str]) -> Metric:
        """
        Return the instance for ``labels``, creating it on first access.

        Raises:
            CapacityExceededError: the vector is over its max length and
                ``labels`` does not match an existing instance
            InvalidLabelNameError: ``labels`` introduces an invalid key
        """
        labels = _normalize(labels)

        with self._lock.read_locked():
            metric = self._get(labels)
        if metric is not None:
            return metric

        with self._lock.write_locked():
            # Another caller may have created it while we waited.
            metric = self._get(labels)
            if metric is not None:
                return metric

            if self.max_length > 0 and len(self._metrics) > self.max_length:
                logger.warning(f"Vector {self.name} over length limit {self.max_length}, rejecting {labels}")
                raise CapacityExceededError(self.name, self.max_length)

            return self._create(labels)

    def get_metric_with_label_values(self, *values: str) -> Metric:
        """Like get_metric_with, with values in the order of known label keys."""
        with self._lock.read_locked():
            if len(values) > len(self._registry.keys):
                raise LabelValuesError(
                    f"{len(values)} label values given, vector {self.name} "
                    f"knows {len(self._registry.keys)} label keys"
                )
            labels = self._registry.pair([str(v) for v in values])

        return self.get_metric_with(labels)

    def labels(self, *values: str, **labels: str) -> Metric:
        """Return the instance for the given labels, prometheus_client style."""
        if values and labels:
            raise ValueError("Can't pass both *values and **labels")

        if values:
            return self.get_metric_with_label_values(*values)

        return self.get_metric_with(labels)

    def curry_with(self, labels: Dict[str, str]) -> CurriedVector:
        """Return a view of this vector with ``labels`` pre-bound."""
        return CurriedVector(self, labels)

    def delete(self, labels: Dict[str, str]) -> bool:
        """
        Delete the instance whose labels equal ``labels`` on every known key.

        Returns:
            True if an instance was deleted
        """
        labels = _normalize(labels)

        with self._lock.write_locked():
            if not self._registry.includes(labels):
                return False

            return self._metrics.pop(self._registry.hash(labels), None) is not None

    def delete_label_values(self, *values: str) -> bool:
        """Like delete, with values in the order of known label keys."""
        with self._lock.read_locked():
            if len(values) > len(self._registry.keys):
                return False
            labels = self._registry.pair([str(v) for v in values])

        return self.delete(labels)

    def reset(self):
        """Delete all instances and forget every dynamic label key."""
        with self._lock.write_locked():
            self._reset()

    def gc(self) -> GCStats:
        """
        Delete expired instances, then clear the vector if it is still over
        its max length.

        The returned count includes the instances dropped by a cardinality
        reset.
        """
        stats = GCStats()

        with self._lock.write_locked():
            if self.expire_s:
                now = time.time()
                expired = [
                    h for h, metric in self._metrics.items()
                    if now - metric.last_edit() > self.expire_s
                ]
                for h in expired:
                    del self._metrics[h]
                stats.deleted = len(expired)

            if self.max_length > 0 and len(self._metrics) > self.max_length:
                self._pseudo_length = len(self._metrics)
                self._reset()
                stats.deleted += self._pseudo_length
                stats.limit_exceeded = True

        return stats

    def collect(self) -> Iterator[Metric]:
        """Iterate over live instances, or nothing if over the length limit."""
        with self._lock.read_locked():
            if self._exceeds_max_length():
                return iter(())

            if not self.expire_s:
                live = list(self._metrics.values())
            else:
                now = time.time()
                live = [
                    metric for metric in self._metrics.values()
                    if now - metric.last_edit() <= self.expire_s
                ]

        return iter(live)

    def describe(self) -> Descriptor:
        with self._lock.read_locked():
            return self._desc

    @property
    def registry(self) -> LabelRegistry:
        """Current label registry; replaced by a reset."""
        return self._registry

    def expand(self, values: List[str]) -> Dict[str, str]:
        """Full label map of an instance, constant labels included."""
        with self._lock.read_locked():
            return self._registry.expand(values)

    def length(self) -> int:
        with self._lock.read_locked():
            return self._length()

    def __len__(self) -> int:
        return self.length()

    def _get(self, labels: Dict[str, str]) -> Optional[Metric]:
        if not self._registry.includes(labels):
            return None

        return self._metrics.get(self._registry.hash(labels))

    def _create(self, labels: Dict[str, str]) -> Metric:
        new_keys = [key for key in labels if key not in self._registry.index]
        if new_keys and (
            not validate_label_names(new_keys)
            or self.reserved_labels.intersection(new_keys)
            or self._const_labels.keys() & set(new_keys)
        ):
            raise InvalidLabelNameError(f"Invalid label names for vector {self.name}: {new_keys}")

        values, discovered = self._registry.observe(labels)
        if discovered:
            self._desc = self._build_desc()
            logger.debug(f"Vector {self.name} label keys now {self._registry.keys}")

        metric = self._constructor(self, values)
        self._metrics[self._registry.hash(labels)] = metric
        self._pseudo_length = 0

        return metric

    def _reset(self):
        self._metrics: Dict[int, Metric] = {}
        self._registry = LabelRegistry(self._const_labels)
        self._desc = self._build_desc()

    def _build_desc(self) -> Descriptor:
        return Descriptor(
            name=self.name,
            help=self.help,
            type=self.metric_type,
            const_labels=dict(self._registry.constant),
            variable_labels=tuple(self._registry.keys),
        )

    def _length(self) -> int:
        if self._pseudo_length > 0:
            return self._pseudo_length
        return len(self._metrics)

    def _exceeds_max_length(self) -> bool:
        return self.max_length > 0 and self._length() > self.max_length


def _normalize(labels: Dict[str, str]) -> Dict[str, str]:
    return {str(key): str(value) for key, value in labels.items()}
