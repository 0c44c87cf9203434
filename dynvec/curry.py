"""Vector view with some labels bound in advance."""
from typing import Dict


class CurriedVector:
    """
    Delegates to a vector after merging a fixed label map into every call.

    Labels passed to a call override the bound ones.
    """

    def __init__(self, vector, labels: Dict[str, str]):
        self.vector = vector
        self.bound_labels = dict(labels)

    def get_metric_with(self, labels: Dict[str, str]):
        return self.vector.get_metric_with(self._merge(labels))

    def labels(self, **labels: str):
        return self.get_metric_with(labels)

    def delete(self, labels: Dict[str, str]) -> bool:
        return self.vector.delete(self._merge(labels))

    def curry_with(self, labels: Dict[str, str]) -> "CurriedVector":
        return CurriedVector(self.vector, self._merge(labels))

    def _merge(self, labels: Dict[str, str]) -> Dict[str, str]:
        merged = dict(self.bound_labels)
        merged.update(labels)
        return merged
