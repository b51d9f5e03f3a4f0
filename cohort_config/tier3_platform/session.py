"""
cohort_config.tier3_platform.session
─────────────────────────────────────
One player's config session: override set, eligibility state machine,
resolved config and enrolled-values snapshot, all created on start and
discarded on stop.

Every input change runs the same two steps synchronously, in order:
trigger eligibility (a no-op once settled), then re-resolve. Persistence
writes produced along the way go to the service's PersistenceWriter and
happen on a later scheduling turn.
"""
from __future__ import annotations

import copy
from collections.abc import Mapping
from types import MappingProxyType
from typing import TYPE_CHECKING, Callable

from cohort_config.tier0_core.logging import get_logger
from cohort_config.tier0_core.values import Value, equals
from cohort_config.tier3_platform.eligibility import PlayerEligibility, evaluate_cohort
from cohort_config.tier3_platform.remote import Unsubscribe
from cohort_config.tier3_platform.resolver import resolve

if TYPE_CHECKING:
    from cohort_config.service import ConfigService

log = get_logger(__name__)

ConfigListener = Callable[[dict[str, Value]], None]


class PlayerSession:
    def __init__(self, service: "ConfigService", player_id: str) -> None:
        self.player_id = player_id
        self._service = service
        self._overrides: dict[str, Value] = {}
        self._resolved: dict[str, Value] | None = None
        self._enrolled: dict[str, Value] = {}
        self._listeners: list[ConfigListener] = []
        self._unsubscribes: list[Unsubscribe] = []
        self._closed = False
        self.eligibility = PlayerEligibility(
            player_id,
            compute=self._compute_eligibility,
            on_settled=self._on_settled,
        )

    # ── lifecycle ─────────────────────────────────────────────────────────────

    def open(self) -> None:
        remote = self._service.remote
        if remote is not None:
            self._unsubscribes.append(
                remote.on_player_update(self.player_id, self.refresh)
            )
        self.refresh()

    def close(self) -> None:
        """Detach listeners and drop all per-player state in one step."""
        if self._closed:
            return
        self._closed = True
        for unsubscribe in self._unsubscribes:
            unsubscribe()
        self._unsubscribes.clear()
        self.eligibility.close()
        self._listeners.clear()
        self._overrides = {}
        self._resolved = None
        self._enrolled = {}

    @property
    def closed(self) -> bool:
        return self._closed

    # ── inputs ────────────────────────────────────────────────────────────────

    def refresh(self) -> None:
        """Re-trigger eligibility, then re-resolve. Ignored after close()."""
        if self._closed:
            return
        try:
            self.eligibility.trigger()
        finally:
            self._resolve()

    def set_override(self, key: str, value: Value | None) -> None:
        overrides = dict(self._overrides)
        if value is None:
            overrides.pop(key, None)
        else:
            overrides[key] = copy.deepcopy(value)
        self._overrides = overrides
        log.info("override.set", player_id=self.player_id, key=key, removed=value is None)
        self._resolve()

    # ── outputs ───────────────────────────────────────────────────────────────

    @property
    def overrides(self) -> Mapping[str, Value]:
        return MappingProxyType(self._overrides)

    @property
    def enrolled(self) -> Mapping[str, Value]:
        return MappingProxyType(self._enrolled)

    def resolved(self) -> dict[str, Value]:
        return copy.deepcopy(self._resolved or {})

    def subscribe(self, listener: ConfigListener) -> Unsubscribe:
        self._listeners.append(listener)

        def _unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return _unsubscribe

    # ── internals ─────────────────────────────────────────────────────────────

    def _compute_eligibility(self) -> dict[str, bool] | None:
        service = self._service
        return evaluate_cohort(
            self.player_id,
            service.registry.all(),
            service.evaluators,
            service.persistence,
            service.get_server_wide_value,
            service.settings.pending_policy,
        )

    def _on_settled(self, eligibility: Mapping[str, bool]) -> None:
        writer = self._service.writer
        if writer is not None:
            writer.schedule_eligibility(self.player_id, eligibility)

    def _resolve(self) -> None:
        if self._closed:
            return
        service = self._service
        resolution = resolve(
            self.player_id,
            service.registry.all(),
            overrides=self._overrides,
            eligibility=self.eligibility.snapshot,
            server_value=service.server_value,
            remote=service.remote,
            studio_mode=service.settings.studio_mode,
        )
        self._enrolled = resolution.enrolled

        persister = service.enrollment_persister
        if persister is not None and self.eligibility.is_settled:
            persister.observe(self.player_id, resolution.enrolled)

        if self._resolved is not None and equals(self._resolved, resolution.values):
            return
        self._resolved = resolution.values
        for listener in list(self._listeners):
            listener(copy.deepcopy(resolution.values))


__all__ = ["ConfigListener", "PlayerSession"]
