"""Tests for the dynamic vector store."""
import threading
import time

import pytest

from dynvec.config import VectorOpts
from dynvec.vector import (
    CapacityExceededError, Descriptor, InvalidLabelNameError,
    LabelValuesError, Metric, Vector
)


class FakeMetric(Metric):
    """Minimal instance recording its constructor arguments."""

    def __init__(self, vector, label_values):
        self.vector = vector
        self.label_values = label_values
        self.last = time.time()

    @property
    def desc(self):
        return self.vector.describe()

    def last_edit(self) -> float:
        return self.last

    def touch(self):
        self.last = time.time()

    def write(self, family) -> None:
        family.add_sample(family.name, self.vector.expand(self.label_values), 1.0)


def create_vector(expire_s: float = 0, max_length: int = 0) -> Vector:
    return Vector(
        VectorOpts(
            name="vector",
            help="testing",
            const_labels={"label1": "value1", "label2": "value2"},
            expire_s=expire_s,
            max_length=max_length,
        ),
        FakeMetric,
    )


def test_get_metric_with():
    v = create_vector()

    m1 = v.get_metric_with({"label3": "value3"})
    m2 = v.get_metric_with({"label4": "value4"})
    m3 = v.get_metric_with({"label3": "value3"})

    assert m1.vector is v
    assert m2.vector is v
    assert m1.label_values == ["value3"]
    assert m2.label_values == ["", "value4"]
    assert m1 is m3


def test_get_metric_with_unknown_key_padding():
    """Label maps agreeing on every known key resolve to the same instance."""
    v = create_vector()

    m1 = v.get_metric_with({"a": "1"})
    v.get_metric_with({"b": "2"})

    assert v.get_metric_with({"a": "1", "b": ""}) is m1
    assert v.get_metric_with({"a": "1"}) is m1


def test_new_key_keeps_existing_identities():
    v = create_vector()

    m1 = v.get_metric_with({"path": "/x"})
    m2 = v.get_metric_with({"path": "/y"})
    v.get_metric_with({"path": "/x", "user": "1"})

    assert v.get_metric_with({"path": "/x"}) is m1
    assert v.get_metric_with({"path": "/y"}) is m2
    assert v.length() == 3


def test_get_metric_with_limit():
    v = create_vector(max_length=1)

    v.get_metric_with({"a": "1"})
    v.get_metric_with({"a": "2"})
    assert v.length() == 2

    with pytest.raises(CapacityExceededError):
        v.get_metric_with({"b": "1"})


def test_capacity_error_leaves_state_untouched():
    v = create_vector(max_length=1)
    m1 = v.get_metric_with({"a": "1"})
    v.get_metric_with({"a": "2"})
    desc = v.describe()

    with pytest.raises(CapacityExceededError):
        v.get_metric_with({"b": "1"})

    assert v.describe() is desc
    assert v.describe().variable_labels == ("a",)
    # Existing instances stay reachable
    assert v.get_metric_with({"a": "1"}) is m1


def test_invalid_label_name():
    v = create_vector()

    with pytest.raises(InvalidLabelNameError):
        v.get_metric_with({"bad-name": "x"})

    assert v.length() == 0
    assert v.describe().variable_labels == ()


def test_label_values_are_stringified():
    v = create_vector()

    m1 = v.get_metric_with({"code": 200})
    assert v.get_metric_with({"code": "200"}) is m1


def test_get_metric_with_label_values():
    v = create_vector()
    m1 = v.get_metric_with({"label3": "value3"})
    m2 = v.get_metric_with({"label4": "value4"})

    assert v.get_metric_with_label_values("value3") is m1
    assert v.get_metric_with_label_values("", "value4") is m2

    with pytest.raises(LabelValuesError):
        v.get_metric_with_label_values("a", "b", "c")


def test_labels_sugar():
    v = create_vector()

    m1 = v.labels(method="GET")
    assert v.labels("GET") is m1

    with pytest.raises(ValueError):
        v.labels("GET", method="GET")


def test_length():
    v = create_vector()
    assert v.length() == 0

    v.get_metric_with({"label3": "value3"})
    assert v.length() == 1

    v.get_metric_with({"label4": "value4"})
    assert len(v) == 2

    v.get_metric_with({"label3": "value3"})
    assert v.length() == 2


def test_reset():
    v = create_vector()

    m1 = v.get_metric_with({"label3": "value3"})
    v.reset()

    assert v.describe().variable_labels == ()
    m2 = v.get_metric_with({"label3": "value3"})
    assert v.length() == 1
    assert m1 is not m2


def test_delete():
    v = create_vector()

    v.get_metric_with({})
    v.get_metric_with({"label3": "value3"})
    v.get_metric_with({"label3": "value4"})
    v.get_metric_with({"label4": "value4"})

    assert v.delete({"label3": "value4"})
    assert not v.delete({"label3": "value4"})
    assert not v.delete({"label5": "value4"})

    assert v.length() == 3


def test_delete_is_exact():
    v = create_vector()
    v.get_metric_with({"a": "1", "b": "2"})

    assert not v.delete({"a": "1"})
    assert v.delete({"a": "1", "b": "2"})
    assert v.length() == 0


def test_delete_then_recreate_gives_new_instance():
    v = create_vector()
    m1 = v.get_metric_with({"a": "1"})

    assert v.delete({"a": "1"})
    assert v.get_metric_with({"a": "1"}) is not m1


def test_delete_label_values():
    v = create_vector()
    v.get_metric_with({"a": "1"})

    assert not v.delete_label_values("1", "extra")
    assert v.delete_label_values("1")
    assert not v.delete_label_values("1")


def test_collect():
    v = create_vector()

    v.get_metric_with({"label3": "value3"})
    v.get_metric_with({"label3": "value4"})
    v.get_metric_with({"label4": "value4"})

    assert len(list(v.collect())) == 3


def test_collect_expire():
    v = create_vector(expire_s=0.05)

    v.get_metric_with({"label3": "value3"})
    v.get_metric_with({"label3": "value4"})
    v.get_metric_with({"label4": "value4"})

    time.sleep(0.1)

    assert list(v.collect()) == []


def test_collect_keeps_recently_touched():
    v = create_vector(expire_s=0.05)

    stale = v.get_metric_with({"path": "/stale"})
    fresh = v.get_metric_with({"path": "/fresh"})

    time.sleep(0.1)
    fresh.touch()

    collected = list(v.collect())
    assert fresh in collected
    assert stale not in collected


def test_collect_expire_with_constant_labels():
    v = Vector(
        VectorOpts(name="vector", const_labels={"env": "prod"}, expire_s=0.05),
        FakeMetric,
    )
    v.get_metric_with({"path": "/x"})

    collected = list(v.collect())
    assert len(collected) == 1
    assert v.expand(collected[0].label_values) == {"env": "prod", "path": "/x"}

    time.sleep(0.1)
    assert list(v.collect()) == []


def test_collect_exceed_max_length():
    v = create_vector(max_length=1)

    v.get_metric_with({"label3": "value3"})
    v.get_metric_with({"label3": "value4"})
    with pytest.raises(CapacityExceededError):
        v.get_metric_with({"label4": "value4"})

    assert list(v.collect()) == []


def test_describe():
    v = create_vector()

    d1 = v.describe()
    assert isinstance(d1, Descriptor)
    assert d1.name == "vector"
    assert d1.const_labels == {"label1": "value1", "label2": "value2"}

    v.get_metric_with({"label3": "value3"})
    d2 = v.describe()
    assert d1 != d2

    v.get_metric_with({"label3": "value4"})
    d3 = v.describe()
    assert d3 == d2

    v.get_metric_with({"label4": "value4"})
    d4 = v.describe()
    assert d3 != d4
    assert d4.variable_labels == ("label3", "label4")
    assert d4.label_names == ["label3", "label4", "label1", "label2"]


def test_metric_desc_follows_vector():
    v = create_vector()
    m = v.get_metric_with({"label3": "value3"})

    assert m.desc is v.describe()


def test_fq_name():
    v = Vector(VectorOpts(namespace="app", subsystem="http", name="requests_total"), FakeMetric)
    assert v.name == "app_http_requests_total"


def test_gc_expire():
    v = create_vector(expire_s=0.05)

    v.get_metric_with({})
    v.get_metric_with({"label3": "value3"})

    assert v.gc().deleted == 0
    assert v.length() == 2

    time.sleep(0.1)
    assert v.gc().deleted == 2
    assert v.length() == 0


def test_gc_without_expire_keeps_everything():
    v = create_vector()
    v.get_metric_with({"a": "1"})

    stats = v.gc()
    assert stats.deleted == 0
    assert not stats.limit_exceeded
    assert v.length() == 1


def test_gc_limit_exceeded():
    v = create_vector(max_length=1)

    v.get_metric_with({})
    stats = v.gc()
    assert stats.deleted == 0
    assert not stats.limit_exceeded
    assert v.length() == 1

    v.get_metric_with({"label3": "value3"})
    stats = v.gc()
    assert stats.deleted == 2
    assert stats.limit_exceeded

    # The pre-reset size is reported until something new is created
    assert v.length() == 2
    assert list(v.collect()) == []
    assert v.describe().variable_labels == ()

    # A second pass has nothing left to delete
    stats = v.gc()
    assert stats.deleted == 0
    assert not stats.limit_exceeded

    m = v.get_metric_with({"label3": "value3"})
    assert v.length() == 1
    assert list(v.collect()) == [m]


def test_gc_expired_and_over_limit():
    v = create_vector(expire_s=0.05)

    v.get_metric_with({"a": "1"})
    time.sleep(0.1)
    v.get_metric_with({"a": "2"})
    v.get_metric_with({"a": "3"})
    v.get_metric_with({"a": "4"})

    # Lower the cap after the fact so the vector is over it
    v.max_length = 1
    stats = v.gc()
    # One expired instance, then three removed by the reset
    assert stats.deleted == 4
    assert stats.limit_exceeded
    assert v.length() == 3


def test_concurrent_get_metric_with_converges():
    v = create_vector()
    results = []
    barrier = threading.Barrier(8)

    def worker():
        barrier.wait()
        results.append(v.get_metric_with({"path": "/same"}))

    threads = [threading.Thread(target=worker) for _ in range(8)]
    for t in threads:
        t.start()
    for t in threads:
        t.join()

    assert len(results) == 8
    assert all(m is results[0] for m in results)
    assert v.length() == 1


def test_concurrent_creation_and_gc():
    v = create_vector(max_length=50)
    errors = []

    def writer(n):
        for i in range(100):
            try:
                v.get_metric_with({"worker": str(n), "i": str(i)})
            except CapacityExceededError:
                pass
            except Exception as e:
                errors.append(e)

    threads = [threading.Thread(target=writer, args=(n,)) for n in range(4)]
    for t in threads:
        t.start()
    for _ in range(10):
        v.gc()
    for t in threads:
        t.join()

    assert errors == []


def test_constant_label_key_rejected_as_dynamic_key():
    v = create_vector()

    with pytest.raises(InvalidLabelNameError):
        v.get_metric_with({"label1": "other"})

    assert v.length() == 0
    assert v.describe().variable_labels == ()


def test_registry_replaced_by_reset():
    v = create_vector()
    v.get_metric_with({"a": "1"})
    registry = v.registry

    v.reset()

    assert v.registry is not registry
    assert registry.keys == ["a"]
    assert v.registry.keys == []
