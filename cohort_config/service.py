"""
cohort_config.service
──────────────────────
ConfigService — the process-wide context that owns the key registry,
evaluator registry, persistence and remote collaborators, and every active
player session.

Usage::

    service = ConfigService(remote=remote_source, persistence=profile_store)
    service.register_key("featureEnabled", {
        "scope": "player",
        "replicated": True,
        "default_value": False,
        "test_value": True,
        "eligibility": {"kind": "newPlayer"},
    })
    service.register_evaluator("newPlayer", is_new_player)
    service.init()

    service.start(player_id)              # on player join
    service.get_value("featureEnabled", player_id)
    service.stop(player_id)               # on player leave

Instances are fully isolated from each other; get_service() returns a lazily
created default instance for callers that want one per process.
"""
from __future__ import annotations

import copy
from collections.abc import Mapping
from typing import Any

from cohort_config.tier0_core import metrics
from cohort_config.tier0_core.config import CohortSettings, get_settings
from cohort_config.tier0_core.errors import (
    CohortConfigError,
    InvalidOverrideScopeError,
    SessionNotInitializedError,
    ValidationError,
)
from cohort_config.tier0_core.keys import KeyDefinition, KeyRegistry
from cohort_config.tier0_core.logging import get_logger
from cohort_config.tier0_core.values import Value
from cohort_config.tier1_runtime.scheduler import Scheduler, make_scheduler
from cohort_config.tier2_reliability.persistence import CohortPersistence
from cohort_config.tier2_reliability.writer import PersistenceWriter
from cohort_config.tier3_platform.eligibility import (
    EligibilityState,
    Evaluator,
    EvaluatorRegistry,
)
from cohort_config.tier3_platform.remote import (
    RemoteConfigSource,
    SupportsTestingValues,
    Unsubscribe,
)
from cohort_config.tier3_platform.resolver import EnrollmentPersister, control_value
from cohort_config.tier3_platform.session import ConfigListener, PlayerSession

log = get_logger(__name__)


class ConfigService:
    def __init__(
        self,
        *,
        settings: CohortSettings | None = None,
        remote: RemoteConfigSource | None = None,
        persistence: CohortPersistence | None = None,
        scheduler: Scheduler | None = None,
    ) -> None:
        self.settings = settings or get_settings()
        self.registry = KeyRegistry()
        self.evaluators = EvaluatorRegistry()
        self.remote = remote
        self.scheduler = scheduler or make_scheduler(self.settings.scheduler_backend)
        self._persistence: CohortPersistence | None = None
        self.writer: PersistenceWriter | None = None
        self.enrollment_persister: EnrollmentPersister | None = None
        self._server_values: dict[str, Value | None] = {}
        self._sessions: dict[str, PlayerSession] = {}
        self._unsubscribe_server: Unsubscribe | None = None
        self._initialized = False
        if persistence is not None:
            self.set_persistence(persistence)

    # ── Registration ──────────────────────────────────────────────────────────

    def register_key(self, name: str, definition: KeyDefinition | Mapping[str, Any]) -> KeyDefinition:
        key = self.registry.register(name, definition)
        if self.remote is not None:
            self._server_values[name] = self.remote.fetch_server_value(name)
        # Active sessions must keep covering every registered key.
        self._refresh_sessions()
        return key

    def get_key(self, name: str) -> KeyDefinition:
        return self.registry.get(name)

    def get_all_keys(self) -> Mapping[str, KeyDefinition]:
        return self.registry.all()

    def register_evaluator(self, kind: str, evaluator: Evaluator) -> None:
        self.evaluators.register(kind, evaluator)

    @property
    def persistence(self) -> CohortPersistence | None:
        return self._persistence

    def set_persistence(self, persistence: CohortPersistence | None) -> None:
        self._persistence = persistence
        if persistence is None:
            self.writer = None
            self.enrollment_persister = None
            return
        self.writer = PersistenceWriter(persistence, self.scheduler)
        self.enrollment_persister = EnrollmentPersister(persistence, self.writer)

    # ── Lifecycle ─────────────────────────────────────────────────────────────

    def init(self) -> None:
        """Subscribe to server-wide updates and load the initial values. Idempotent."""
        if self._initialized:
            return
        self._initialized = True

        if self.settings.studio_mode and isinstance(self.remote, SupportsTestingValues):
            for name, key in self.registry.all().items():
                if key.test_value is not None:
                    self.remote.set_testing_value(name, key.test_value)

        if self.remote is not None:
            self._unsubscribe_server = self.remote.on_server_update(self._on_server_update)
        self.refresh_server_values()
        log.info(
            "service.initialized",
            keys=len(self.registry),
            studio_mode=self.settings.studio_mode,
            persistence=self._persistence is not None,
        )

    def shutdown(self) -> None:
        """Stop every session and detach from the remote source."""
        for player_id in list(self._sessions):
            self.stop(player_id)
        if self._unsubscribe_server is not None:
            self._unsubscribe_server()
            self._unsubscribe_server = None
        self._initialized = False
        log.info("service.shutdown")

    def start(self, player_id: str) -> PlayerSession:
        """Open a session for ``player_id``. Returns the existing one if already active."""
        existing = self._sessions.get(player_id)
        if existing is not None:
            log.warning("session.already_started", player_id=player_id)
            return existing
        if not self._initialized:
            self.init()

        session = PlayerSession(self, player_id)
        self._sessions[player_id] = session
        metrics.active_sessions().inc()
        try:
            session.open()
        except Exception:
            self._discard(player_id)
            raise
        log.info(
            "session.started",
            player_id=player_id,
            eligibility=session.eligibility.state.value,
        )
        return session

    def stop(self, player_id: str) -> bool:
        """Tear down the player's session. Returns False if none was active."""
        if player_id not in self._sessions:
            return False
        self._discard(player_id)
        log.info("session.stopped", player_id=player_id)
        return True

    def _discard(self, player_id: str) -> None:
        session = self._sessions.pop(player_id)
        session.close()
        metrics.active_sessions().dec()

    def is_active(self, player_id: str) -> bool:
        return player_id in self._sessions

    def session(self, player_id: str) -> PlayerSession:
        session = self._sessions.get(player_id)
        if session is None:
            raise SessionNotInitializedError(player_id)
        return session

    # ── Server-wide values ────────────────────────────────────────────────────

    def refresh_server_values(self) -> None:
        for name in self.registry.all():
            self._server_values[name] = (
                self.remote.fetch_server_value(name) if self.remote is not None else None
            )

    def server_value(self, name: str) -> Value | None:
        """Raw server-wide value for ``name`` from the last refresh (None = unset)."""
        if name not in self._server_values and self.remote is not None:
            self._server_values[name] = self.remote.fetch_server_value(name)
        return self._server_values.get(name)

    def get_server_wide_value(self, name: str) -> Value:
        """The control value: server-wide value, else default, reconciled with the default."""
        return control_value(self.registry.get(name), self.server_value(name))

    def _on_server_update(self) -> None:
        self.refresh_server_values()
        self._refresh_sessions()

    def _refresh_sessions(self) -> None:
        """
        Refresh every active session. One session failing (e.g. an evaluator
        kind not registered yet) does not stop the rest; it stays pending and
        is retried on its next trigger.
        """
        for session in list(self._sessions.values()):
            try:
                session.refresh()
            except CohortConfigError:
                log.exception("session.refresh_failed", player_id=session.player_id)

    # ── Per-player API ────────────────────────────────────────────────────────

    def get_resolved_config(self, player_id: str) -> dict[str, Value]:
        return self.session(player_id).resolved()

    def set_override(self, player_id: str, key: str, value: Value | None) -> None:
        """Override ``key`` for one player; ``None`` removes the override."""
        definition = self.registry.get(key)
        if not definition.is_player_scoped:
            raise InvalidOverrideScopeError(key)
        self.session(player_id).set_override(key, value)

    def get_overrides(self, player_id: str) -> Mapping[str, Value]:
        return self.session(player_id).overrides

    def get_value(self, key: str, player_id: str | None = None) -> Value:
        definition = self.registry.get(key)
        if not definition.is_player_scoped:
            return self.get_server_wide_value(key)
        if player_id is None:
            raise ValidationError(
                user_message=f"A player id is required for player-scoped config key {key!r}",
                fields={"player_id": "required"},
            )
        value = self.session(player_id).resolved().get(key)
        if value is None:
            return copy.deepcopy(definition.default_value)
        return value

    def get_boolean(self, key: str, player_id: str | None = None) -> bool:
        return bool(self.get_value(key, player_id))

    def get_number(self, key: str, player_id: str | None = None) -> Value:
        """The stored value, unconverted: ints stay ints."""
        return self.get_value(key, player_id)

    def get_replicated_config(self, player_id: str) -> dict[str, Value]:
        resolved = self.get_resolved_config(player_id)
        return {
            name: resolved.get(name)
            for name, key in self.registry.all().items()
            if key.replicated
        }

    def subscribe(self, player_id: str, listener: ConfigListener) -> Unsubscribe:
        """Call ``listener`` with the new resolved config whenever it changes."""
        return self.session(player_id).subscribe(listener)

    def reevaluate(self, player_id: str) -> EligibilityState:
        """
        Force an eligibility trigger and re-resolution for one player, e.g.
        after the host finished loading the player's persisted data.
        """
        session = self.session(player_id)
        session.refresh()
        return session.eligibility.state

    def get_eligibility_state(self, player_id: str) -> tuple[EligibilityState, Mapping[str, bool] | None]:
        eligibility = self.session(player_id).eligibility
        return eligibility.state, eligibility.snapshot


# ── Default instance ──────────────────────────────────────────────────────────

_service: ConfigService | None = None


def get_service() -> ConfigService:
    global _service
    if _service is None:
        _service = ConfigService()
    return _service


def _reset_service() -> None:
    """For tests — shut down and drop the default instance."""
    global _service
    if _service is not None:
        _service.shutdown()
    _service = None


__all__ = ["ConfigService", "get_service"]
