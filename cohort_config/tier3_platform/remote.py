"""
cohort_config.tier3_platform.remote
────────────────────────────────────
Remote-config source abstraction. Supplies server-wide (control) values and
per-player (treatment) values, and notifies subscribers when a refresh makes
new values available. Fetching and refresh are the transport's business; the
engine only reads the current snapshot and listens for updates.

Backed by: the host's remote-config service, or InMemoryRemoteConfig in
dev and tests.
"""
from __future__ import annotations

import copy
from collections import defaultdict
from typing import Any, Callable, Protocol, runtime_checkable

from cohort_config.tier0_core.values import Value

Listener = Callable[[], None]
Unsubscribe = Callable[[], None]


# ── Protocol ───────────────────────────────────────────────────────────────

@runtime_checkable
class RemoteConfigSource(Protocol):
    def fetch_server_value(self, key: str) -> Value | None: ...

    def fetch_player_value(self, key: str, player_id: str) -> Value | None: ...

    def on_server_update(self, listener: Listener) -> Unsubscribe: ...

    def on_player_update(self, player_id: str, listener: Listener) -> Unsubscribe: ...


@runtime_checkable
class SupportsTestingValues(Protocol):
    """Sources that can pin a value while running in studio mode."""

    def set_testing_value(self, key: str, value: Value) -> None: ...


# ── In-memory provider (dev/test) ──────────────────────────────────────────

class InMemoryRemoteConfig:
    """
    Dict-backed source. Values change only through the setters; publish
    updates explicitly (or pass publish=True) to notify listeners, the same
    way a real transport signals "update available".
    """

    def __init__(
        self,
        server_values: dict[str, Any] | None = None,
        player_values: dict[str, dict[str, Any]] | None = None,
    ) -> None:
        self._server: dict[str, Any] = dict(server_values or {})
        self._players: dict[str, dict[str, Any]] = defaultdict(dict)
        for player_id, values in (player_values or {}).items():
            self._players[player_id].update(values)
        self._testing: dict[str, Any] = {}
        self._server_listeners: list[Listener] = []
        self._player_listeners: dict[str, list[Listener]] = defaultdict(list)

    # ── reads ──────────────────────────────────────────────────────────────

    def fetch_server_value(self, key: str) -> Value | None:
        if key in self._testing:
            return copy.deepcopy(self._testing[key])
        return copy.deepcopy(self._server.get(key))

    def fetch_player_value(self, key: str, player_id: str) -> Value | None:
        return copy.deepcopy(self._players.get(player_id, {}).get(key))

    # ── writes ─────────────────────────────────────────────────────────────

    def set_server_value(self, key: str, value: Value | None, *, publish: bool = False) -> None:
        if value is None:
            self._server.pop(key, None)
        else:
            self._server[key] = copy.deepcopy(value)
        if publish:
            self.publish_server_update()

    def set_player_value(
        self, player_id: str, key: str, value: Value | None, *, publish: bool = False
    ) -> None:
        if value is None:
            self._players[player_id].pop(key, None)
        else:
            self._players[player_id][key] = copy.deepcopy(value)
        if publish:
            self.publish_player_update(player_id)

    def set_testing_value(self, key: str, value: Value) -> None:
        self._testing[key] = copy.deepcopy(value)

    # ── notifications ──────────────────────────────────────────────────────

    def on_server_update(self, listener: Listener) -> Unsubscribe:
        self._server_listeners.append(listener)
        return lambda: _discard(self._server_listeners, listener)

    def on_player_update(self, player_id: str, listener: Listener) -> Unsubscribe:
        listeners = self._player_listeners[player_id]
        listeners.append(listener)
        return lambda: _discard(listeners, listener)

    def publish_server_update(self) -> None:
        for listener in list(self._server_listeners):
            listener()

    def publish_player_update(self, player_id: str) -> None:
        for listener in list(self._player_listeners.get(player_id, ())):
            listener()

    def listener_count(self, player_id: str | None = None) -> int:
        if player_id is None:
            return len(self._server_listeners)
        return len(self._player_listeners.get(player_id, ()))


def _discard(listeners: list[Listener], listener: Listener) -> None:
    if listener in listeners:
        listeners.remove(listener)


__all__ = [
    "Listener",
    "Unsubscribe",
    "RemoteConfigSource",
    "SupportsTestingValues",
    "InMemoryRemoteConfig",
]
