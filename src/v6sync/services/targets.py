"""Common interface of everything a reconciliation pass can update."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from typing import Optional

from v6sync.core.validation import NetworkPrefix


@dataclass(frozen=True)
class TargetState:
    """What a target currently holds, as read in this pass.

    Attributes:
        values: Normalised prefixes found (cloud rule source, ipset entries)
        complete: False when supporting structure is missing (no ipset, no
            rich rule) and a write is needed even if the values match
    """
    values: frozenset[str]
    complete: bool = True

    def in_sync(self, prefix: NetworkPrefix) -> bool:
        return self.complete and self.values == frozenset({str(prefix)})

    def describe(self) -> Optional[str]:
        """Value shown as "previous" in reports."""
        if not self.values:
            return None
        return ", ".join(sorted(self.values))


class ReconciliationTarget(ABC):
    """A firewall holding one copy of the prefix."""

    kind: str = "target"

    @property
    @abstractmethod
    def identity(self) -> str:
        """Stable, human-readable name of the target."""

    @abstractmethod
    def read_current(self) -> TargetState:
        """Read the target's state from its source of truth."""

    @abstractmethod
    def write(self, prefix: NetworkPrefix) -> None:
        """Make the target hold exactly ``prefix``."""

    def __repr__(self) -> str:
        return f"<{type(self).__name__} {self.identity}>"
