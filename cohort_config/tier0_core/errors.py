"""
cohort_config.tier0_core.errors
────────────────────────────────
Error taxonomy for the config/cohort engine. Every error here signals a
programmer or configuration mistake and is raised immediately. Transient
conditions (collaborator data not loaded yet) are never errors; they surface
as the pending eligibility state instead.

Raising a CohortConfigError automatically reports it if an error backend is
configured.

Select via:    COHORT_ERROR_BACKEND=sentry|none
"""
from __future__ import annotations

import os
from typing import Any


# ── Base error ────────────────────────────────────────────────────────────────

class CohortConfigError(Exception):
    """
    Base class for all cohort_config errors. Every error has:
    - code: stable machine-readable string (snake_case)
    - user_message: safe to surface to operators and tooling
    - detail: internal context
    """

    code: str = "internal_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "An unexpected error occurred.",
        detail: str | None = None,
        **metadata: Any,
    ) -> None:
        self.code = code or self.__class__.code
        self.user_message = user_message
        self.detail = detail or user_message
        self.metadata = metadata
        super().__init__(self.detail)
        _capture(self)

    def to_dict(self) -> dict:
        return {
            "error": {
                "code": self.code,
                "message": self.user_message,
                **({"metadata": self.metadata} if self.metadata else {}),
            }
        }


# ── Typed error classes ───────────────────────────────────────────────────────

class DuplicateKeyError(CohortConfigError):
    """A config key with the same name is already registered."""
    code = "duplicate_key"

    def __init__(self, key: str) -> None:
        super().__init__(
            user_message=f"Config key {key!r} is already registered",
            key=key,
        )


class UnknownKeyError(CohortConfigError):
    """Lookup of a config key that was never registered."""
    code = "unknown_key"

    def __init__(self, key: str) -> None:
        super().__init__(user_message=f"Invalid config key: {key!r}", key=key)


class UnknownEligibilityKindError(CohortConfigError):
    """A key's eligibility spec names a kind with no registered evaluator."""
    code = "unknown_eligibility_kind"

    def __init__(self, kind: str) -> None:
        super().__init__(
            user_message=f"Unknown eligibility kind: {kind!r}",
            kind=kind,
        )


class InvalidOverrideScopeError(CohortConfigError):
    """Overrides only apply to player-scoped keys."""
    code = "invalid_override_scope"

    def __init__(self, key: str) -> None:
        super().__init__(
            user_message=f"Cannot override server-scoped config key: {key!r}",
            key=key,
        )


class SessionNotInitializedError(CohortConfigError):
    """Operation on a player that has no active session."""
    code = "session_not_initialized"

    def __init__(self, player_id: str) -> None:
        super().__init__(
            user_message=f"No active config session for player: {player_id!r}",
            player_id=player_id,
        )


class ValidationError(CohortConfigError):
    """Input validation failure (malformed key definition, missing argument)."""
    code = "validation_error"

    def __init__(
        self,
        code: str | None = None,
        user_message: str = "Validation failed.",
        fields: dict | None = None,
        **metadata: Any,
    ) -> None:
        self.fields = fields or {}
        super().__init__(code, user_message, **metadata)

    def to_dict(self) -> dict:
        d = super().to_dict()
        if self.fields:
            d["error"]["fields"] = self.fields
        return d


class ConfigurationError(CohortConfigError):
    """Misconfiguration detected at startup."""
    code = "configuration_error"


# ── Error capture backend ─────────────────────────────────────────────────────

def _capture(error: CohortConfigError) -> None:
    """Send error to configured backend. Called automatically by CohortConfigError.__init__."""
    backend = os.getenv("COHORT_ERROR_BACKEND", "none").lower()
    if backend == "sentry":
        _capture_sentry(error)


def _capture_sentry(error: CohortConfigError) -> None:
    import sentry_sdk

    sentry_sdk.capture_message(
        str(error),
        level="error",
        extras={"code": error.code, **error.metadata},
    )


def configure_sentry(dsn: str, **kwargs: Any) -> None:
    """Initialize Sentry — call once at application startup."""
    import sentry_sdk
    sentry_sdk.init(dsn=dsn, **kwargs)
    os.environ["COHORT_ERROR_BACKEND"] = "sentry"


__all__ = [
    "CohortConfigError",
    "DuplicateKeyError",
    "UnknownKeyError",
    "UnknownEligibilityKindError",
    "InvalidOverrideScopeError",
    "SessionNotInitializedError",
    "ValidationError",
    "ConfigurationError",
    "configure_sentry",
]
