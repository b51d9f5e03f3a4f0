"""
cohort_config.tier0_core.keys
──────────────────────────────
Key definitions and the key registry. A key names one config value, its
scope (server-wide or per player), its default, an optional test value
served in studio mode, and an optional eligibility spec that gates the
per-player treatment value behind an A/B evaluator.

Definitions are immutable once registered and live as long as the registry
that owns them (one per ConfigService).
"""
from __future__ import annotations

import copy
import enum
from collections.abc import Mapping
from dataclasses import dataclass, field
from types import MappingProxyType
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from cohort_config.tier0_core.errors import DuplicateKeyError, UnknownKeyError
from cohort_config.tier0_core.values import Value
from cohort_config.tier1_runtime.validate import validate_input


class KeyScope(str, enum.Enum):
    SERVER = "server"
    PLAYER = "player"


@dataclass(frozen=True)
class EligibilitySpec:
    """Selects an evaluator by ``kind``; ``params`` are opaque to the engine."""
    kind: str
    params: Mapping[str, Any] = field(default_factory=lambda: MappingProxyType({}))


@dataclass(frozen=True)
class KeyDefinition:
    name: str
    scope: KeyScope
    default_value: Value
    replicated: bool = False
    test_value: Value = None
    eligibility: EligibilitySpec | None = None

    @property
    def is_player_scoped(self) -> bool:
        return self.scope is KeyScope.PLAYER


# ── Input schema ──────────────────────────────────────────────────────────────

class _EligibilityInput(BaseModel):
    model_config = ConfigDict(extra="allow")

    kind: str = Field(min_length=1)


class KeyDefinitionInput(BaseModel):
    """Mapping form of a key definition, as found in manifests."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    scope: KeyScope
    replicated: bool = False
    default_value: Any = Field(alias="defaultValue")
    test_value: Any = Field(alias="testValue", default=None)
    eligibility: _EligibilityInput | None = None

    def to_definition(self, name: str) -> KeyDefinition:
        eligibility = None
        if self.eligibility is not None:
            # {"kind": ..., "params": {...}} and {"kind": ..., "days": 3} are both accepted
            extra = dict(self.eligibility.model_extra or {})
            params = dict(extra.pop("params", None) or {})
            params.update(extra)
            eligibility = EligibilitySpec(
                kind=self.eligibility.kind,
                params=MappingProxyType(params),
            )
        return KeyDefinition(
            name=name,
            scope=self.scope,
            replicated=self.replicated,
            default_value=self.default_value,
            test_value=self.test_value,
            eligibility=eligibility,
        )


# ── Registry ──────────────────────────────────────────────────────────────────

class KeyRegistry:
    """Holds key definitions by name. Registration is write-once per name."""

    def __init__(self) -> None:
        self._keys: dict[str, KeyDefinition] = {}

    def register(
        self, name: str, definition: KeyDefinition | Mapping[str, Any]
    ) -> KeyDefinition:
        """
        Register ``definition`` under ``name``.

        ``definition`` may be a KeyDefinition or a plain mapping, e.g.
        ``{"scope": "player", "default_value": False,
        "eligibility": {"kind": "newPlayer"}}``.
        """
        if name in self._keys:
            raise DuplicateKeyError(name)

        if not isinstance(definition, KeyDefinition):
            parsed = validate_input(KeyDefinitionInput, definition, context=f"config key {name!r}")
            definition = parsed.to_definition(name)

        key = _detached(definition, name)
        self._keys[name] = key
        return key

    def register_many(self, manifest: Mapping[str, KeyDefinition | Mapping[str, Any]]) -> list[KeyDefinition]:
        """Register every entry of a ``{name: definition}`` manifest, in order."""
        return [self.register(name, definition) for name, definition in manifest.items()]

    def get(self, name: str) -> KeyDefinition:
        key = self._keys.get(name)
        if key is None:
            raise UnknownKeyError(name)
        return key

    def all(self) -> Mapping[str, KeyDefinition]:
        return MappingProxyType(self._keys)

    def __contains__(self, name: object) -> bool:
        return name in self._keys

    def __len__(self) -> int:
        return len(self._keys)


def _detached(key: KeyDefinition, name: str) -> KeyDefinition:
    """Copy of ``key`` under ``name`` that shares no mutable state with the caller."""
    return KeyDefinition(
        name=name,
        scope=KeyScope(key.scope),
        replicated=key.replicated,
        default_value=copy.deepcopy(key.default_value),
        test_value=copy.deepcopy(key.test_value),
        eligibility=key.eligibility,
    )


__all__ = [
    "KeyScope",
    "EligibilitySpec",
    "KeyDefinition",
    "KeyDefinitionInput",
    "KeyRegistry",
]
