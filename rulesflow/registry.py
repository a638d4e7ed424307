from __future__ import annotations

"""Named registries for rule sets and service adapters."""

from typing import Dict, Generic, Iterator, TypeVar

from rulesflow.conditions import RuleSet
from rulesflow.services import AdapterConfig

T = TypeVar("T")


class Registry(Generic[T]):
    """Container mapping unique names to registered entries."""

    kind = "Entry"

    def __init__(self) -> None:
        self._entries: Dict[str, T] = {}

    def register(self, name: str, entry: T) -> None:
        """Register an entry under the provided name."""

        if name in self._entries:
            raise ValueError(f"{self.kind} '{name}' is already registered.")
        self._entries[name] = entry

    def get(self, name: str) -> T:
        """Retrieve a registered entry by name."""

        try:
            return self._entries[name]
        except KeyError as exc:
            raise KeyError(f"{self.kind} '{name}' is not registered.") from exc

    def has(self, name: str) -> bool:
        """Check whether a name is already registered."""

        return name in self._entries

    def unregister(self, name: str) -> None:
        """Remove a registered entry."""

        self._entries.pop(name, None)

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)


class RuleSetRegistry(Registry[RuleSet]):
    kind = "Rule set"

    def add(self, rule_set: RuleSet) -> None:
        """Register ``rule_set`` under its own id."""

        self.register(rule_set.id, rule_set)


class AdapterRegistry(Registry[AdapterConfig]):
    kind = "Adapter"

    def add(self, adapter: AdapterConfig) -> None:
        """Register ``adapter`` under its own id."""

        self.register(adapter.id, adapter)


__all__ = ["AdapterRegistry", "Registry", "RuleSetRegistry"]
