"""Label registry: stable positions for label keys discovered at runtime."""
from typing import Dict, List, Optional, Tuple
import hashlib
import re

LABEL_NAME_RE = re.compile(r'^[a-zA-Z_][a-zA-Z0-9_]*$')

# Separates label values before hashing. Trailing separators are trimmed so a
# key appended later does not change the identity of existing label sets.
SEPARATOR = b"\x00"


class LabelRegistry:
    """
    Maps dynamic label keys to positions and derives label-set identities.

    The registry is not thread-safe on its own; the owning vector guards it
    with its store lock.
    """

    def __init__(self, constant: Optional[Dict[str, str]] = None):
        self.constant: Dict[str, str] = dict(constant or {})
        self.keys: List[str] = []
        self.index: Dict[str, int] = {}

    def add(self, key: str) -> int:
        """Append a new key and return its position."""
        position = len(self.keys)
        self.keys.append(key)
        self.index[key] = position
        return position

    def observe(self, labels: Dict[str, str]) -> Tuple[List[str], bool]:
        """
        Translate a label map into a positional value vector.

        Unknown keys are assigned the next free position. Known keys missing
        from the map get an empty value.

        Returns:
            Tuple of the value vector and whether any new key was discovered
        """
        values = [""] * len(self.keys)
        discovered = False

        for key, value in labels.items():
            position = self.index.get(key)
            if position is None:
                self.add(key)
                values.append(value)
                discovered = True
            else:
                values[position] = value

        return values, discovered

    def hash(self, labels: Dict[str, str]) -> int:
        """Hash the values of all known keys in position order."""
        buf = SEPARATOR.join(labels.get(key, "").encode("utf-8") for key in self.keys)
        digest = hashlib.blake2b(buf.rstrip(SEPARATOR), digest_size=8).digest()
        return int.from_bytes(digest, "big")

    def pair(self, values: List[str]) -> Dict[str, str]:
        """Pair positional values with known keys, without constant labels."""
        return dict(zip(self.keys, values))

    def expand(self, values: List[str]) -> Dict[str, str]:
        """Build the full label map for a value vector, constants included."""
        labels = {
            key: values[i] if i < len(values) else ""
            for i, key in enumerate(self.keys)
        }
        labels.update(self.constant)
        return labels

    def includes(self, labels: Dict[str, str]) -> bool:
        """Check whether every key of ``labels`` is already known."""
        if len(labels) > len(self.index):
            return False

        return all(key in self.index for key in labels)


def validate_label_names(labels) -> bool:
    """
    Validate label names are Prometheus-safe.

    Label names must match [a-zA-Z_][a-zA-Z0-9_]* and must not use the
    reserved ``__`` prefix.
    """
    for name in labels:
        if not LABEL_NAME_RE.match(name) or name.startswith("__"):
            return False

    return True
