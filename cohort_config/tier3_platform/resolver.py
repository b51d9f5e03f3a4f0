"""
cohort_config.tier3_platform.resolver
──────────────────────────────────────
Per-player value resolution and enrollment drift detection.

Precedence for a player-scoped key, first applicable wins:
  1. the player's override
  2. the key's test value, in studio mode
  3. the per-player treatment value, when the player is eligible and the
     remote source has one
  4. the control value (server-wide value, else the default)

Every served value is reconciled with the key's default so newly added
nested default fields always appear. Server-scoped keys always resolve to
their control value.
"""
from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any, Callable

from cohort_config.tier0_core import metrics
from cohort_config.tier0_core.keys import KeyDefinition
from cohort_config.tier0_core.logging import get_logger
from cohort_config.tier0_core.values import Value, equals, reconcile, resolve_or_default
from cohort_config.tier2_reliability.persistence import CohortPersistence
from cohort_config.tier2_reliability.writer import PersistenceWriter
from cohort_config.tier3_platform.remote import RemoteConfigSource

log = get_logger(__name__)


@dataclass
class Resolution:
    """Output of one resolution pass."""
    values: dict[str, Value] = field(default_factory=dict)
    # Raw (pre-reconcile) treatment values served this pass, by key.
    enrolled: dict[str, Value] = field(default_factory=dict)


def control_value(key: KeyDefinition, server_value: Value | None) -> Value:
    return resolve_or_default(server_value, key.default_value)


def resolve(
    player_id: str,
    keys: Mapping[str, KeyDefinition],
    *,
    overrides: Mapping[str, Value],
    eligibility: Mapping[str, bool] | None,
    server_value: Callable[[str], Value | None],
    remote: RemoteConfigSource | None,
    studio_mode: bool = False,
) -> Resolution:
    """
    Compute the full config for one player.

    ``eligibility`` is None while the player's eligibility is pending; every
    experiment key then serves its control value.
    """
    metrics.resolutions().inc()
    resolution = Resolution()

    for name, key in keys.items():
        if not key.is_player_scoped:
            resolution.values[name] = control_value(key, server_value(name))
            continue

        override = overrides.get(name)
        if override is not None:
            resolution.values[name] = reconcile(override, key.default_value)
            continue

        if studio_mode and key.test_value is not None:
            resolution.values[name] = reconcile(key.test_value, key.default_value)
            continue

        control = control_value(key, server_value(name))
        value = control
        if eligibility is not None and eligibility.get(name) and remote is not None:
            treatment = remote.fetch_player_value(name, player_id)
            if treatment is not None:
                value = reconcile(treatment, key.default_value)
                resolution.enrolled[name] = treatment
        resolution.values[name] = value

    return resolution


class EnrollmentPersister:
    """
    Compares each pass's enrolled snapshot with the stored one and schedules
    a full-overwrite write when they differ. Nothing is written while the
    stored snapshot is absent (not loaded yet).
    """

    def __init__(self, persistence: CohortPersistence, writer: PersistenceWriter) -> None:
        self._persistence = persistence
        self._writer = writer

    def observe(self, player_id: str, enrolled: Mapping[str, Any]) -> bool:
        """Returns True when a write was scheduled."""
        stored = self._persistence.get_enrolled_values(player_id)
        if stored is None or equals(stored, enrolled):
            return False
        log.info(
            "enrollment.drift",
            player_id=player_id,
            keys=sorted(set(stored) | set(enrolled)),
        )
        self._writer.schedule_enrolled_values(player_id, enrolled)
        return True


__all__ = ["Resolution", "control_value", "resolve", "EnrollmentPersister"]
