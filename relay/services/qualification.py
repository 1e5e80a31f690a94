from dataclasses import dataclass
from typing import Iterable, List


@dataclass(frozen=True)
class LabelPredicate:
    """
    Qualification rule over a message's current labels.

    A message qualifies when it carries every required label. With no
    required labels every message qualifies.
    """

    required: frozenset = frozenset()

    @classmethod
    def of(cls, labels: Iterable[str]) -> "LabelPredicate":
        return cls(frozenset(labels))

    def matches(self, labels: Iterable[str]) -> bool:
        return self.required.issubset(labels)

    def missing(self, labels: Iterable[str]) -> List[str]:
        """Required labels absent from `labels`, sorted for stable logs."""
        return sorted(self.required.difference(labels))
