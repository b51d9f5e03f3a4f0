"""
cohort_config.tier2_reliability.persistence
────────────────────────────────────────────
Cohort persistence abstraction. Holds, per player, the last settled
eligibility map and the raw treatment values the player was last served.
That pair is what keeps A/B assignment stable across sessions.

Reads return None until the backing store has loaded the player's data.
None ("not loaded yet") is distinct from {} ("loaded, nothing stored").

Backed by: the host's player-profile store; InMemoryCohortPersistence for
dev and tests.
"""
from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any, Protocol, runtime_checkable

from cohort_config.tier0_core.values import Value


@runtime_checkable
class CohortPersistence(Protocol):
    def get_eligibility(self, player_id: str) -> Mapping[str, bool] | None: ...

    def set_eligibility(self, player_id: str, eligibility: Mapping[str, bool]) -> None: ...

    def get_enrolled_values(self, player_id: str) -> Mapping[str, Value] | None: ...

    def set_enrolled_values(self, player_id: str, values: Mapping[str, Value]) -> None: ...


class _PlayerRecord:
    __slots__ = ("eligibility", "enrolled_values")

    def __init__(self) -> None:
        self.eligibility: dict[str, bool] | None = None
        self.enrolled_values: dict[str, Any] | None = None


class InMemoryCohortPersistence:
    """
    Dict-backed store for local dev and tests.

    Players are "not loaded" until load() is called for them, mirroring a
    profile store that loads asynchronously after the player joins. Writes
    for a player that was never loaded create the record.
    """

    def __init__(self) -> None:
        self._records: dict[str, _PlayerRecord] = {}
        self.writes: list[tuple[str, str, dict[str, Any]]] = []

    def load(
        self,
        player_id: str,
        *,
        eligibility: Mapping[str, bool] | None = None,
        enrolled_values: Mapping[str, Value] | None = None,
    ) -> None:
        """Mark a player's data as loaded, seeding it (empty when omitted)."""
        record = self._records.setdefault(player_id, _PlayerRecord())
        record.eligibility = dict(eligibility or {})
        record.enrolled_values = copy.deepcopy(dict(enrolled_values or {}))

    def get_eligibility(self, player_id: str) -> Mapping[str, bool] | None:
        record = self._records.get(player_id)
        if record is None or record.eligibility is None:
            return None
        return dict(record.eligibility)

    def set_eligibility(self, player_id: str, eligibility: Mapping[str, bool]) -> None:
        record = self._records.setdefault(player_id, _PlayerRecord())
        record.eligibility = dict(eligibility)
        self.writes.append(("eligibility", player_id, dict(eligibility)))

    def get_enrolled_values(self, player_id: str) -> Mapping[str, Value] | None:
        record = self._records.get(player_id)
        if record is None or record.enrolled_values is None:
            return None
        return copy.deepcopy(record.enrolled_values)

    def set_enrolled_values(self, player_id: str, values: Mapping[str, Value]) -> None:
        record = self._records.setdefault(player_id, _PlayerRecord())
        record.enrolled_values = copy.deepcopy(dict(values))
        self.writes.append(("enrolled_values", player_id, copy.deepcopy(dict(values))))


__all__ = ["CohortPersistence", "InMemoryCohortPersistence"]
