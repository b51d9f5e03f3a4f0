"""
cohort_config.tier2_reliability.writer
───────────────────────────────────────
Outbound persistence queue. Resolution and eligibility passes never write to
persistence themselves: they enqueue a full-overwrite snapshot here, and the
writer flushes the queue on a later scheduling turn.

Pending writes coalesce per (kind, player): only the newest snapshot is
written. A failing write is logged and counted; the engine re-enqueues on
the next detected drift rather than retrying.
"""
from __future__ import annotations

import copy
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from cohort_config.tier0_core import metrics
from cohort_config.tier0_core.logging import get_logger
from cohort_config.tier1_runtime.scheduler import Scheduler
from cohort_config.tier2_reliability.persistence import CohortPersistence

log = get_logger(__name__)

WriteKind = Literal["eligibility", "enrolled_values"]


@dataclass(frozen=True)
class WriteRequest:
    kind: WriteKind
    player_id: str
    data: Mapping[str, Any]


class PersistenceWriter:
    def __init__(self, persistence: CohortPersistence, scheduler: Scheduler) -> None:
        self._persistence = persistence
        self._scheduler = scheduler
        self._pending: dict[tuple[str, str], WriteRequest] = {}
        self._flush_scheduled = False

    @property
    def pending(self) -> list[WriteRequest]:
        return list(self._pending.values())

    def schedule_eligibility(self, player_id: str, eligibility: Mapping[str, bool]) -> None:
        self._enqueue(WriteRequest("eligibility", player_id, dict(eligibility)))

    def schedule_enrolled_values(self, player_id: str, values: Mapping[str, Any]) -> None:
        self._enqueue(WriteRequest("enrolled_values", player_id, copy.deepcopy(dict(values))))

    def _enqueue(self, request: WriteRequest) -> None:
        # Re-inserting moves the key to the end, so flush order follows the newest write.
        key = (request.kind, request.player_id)
        self._pending.pop(key, None)
        self._pending[key] = request
        if not self._flush_scheduled:
            self._scheduler.defer(self.flush)
            self._flush_scheduled = True

    def flush(self) -> int:
        """Write every pending request. Returns the number written successfully."""
        self._flush_scheduled = False
        batch, self._pending = list(self._pending.values()), {}
        written = 0
        for request in batch:
            try:
                if request.kind == "eligibility":
                    self._persistence.set_eligibility(request.player_id, request.data)
                else:
                    self._persistence.set_enrolled_values(request.player_id, request.data)
            except Exception:
                log.exception(
                    "persistence.write_failed",
                    kind=request.kind,
                    player_id=request.player_id,
                )
                metrics.persistence_writes(kind=request.kind, status="error").inc()
                continue
            written += 1
            metrics.persistence_writes(kind=request.kind, status="ok").inc()
        return written


__all__ = ["WriteKind", "WriteRequest", "PersistenceWriter"]
