"""Tests for tier0_core modules."""
from __future__ import annotations

import pytest

from cohort_config.tier0_core.errors import (
    CohortConfigError,
    DuplicateKeyError,
    InvalidOverrideScopeError,
    SessionNotInitializedError,
    UnknownEligibilityKindError,
    UnknownKeyError,
    ValidationError,
)
from cohort_config.tier0_core.keys import (
    EligibilitySpec,
    KeyDefinition,
    KeyRegistry,
    KeyScope,
)
from cohort_config.tier0_core.values import equals, reconcile, resolve_or_default


# ── errors ─────────────────────────────────────────────────────────────────

class TestErrors:
    def test_duplicate_key_has_code(self):
        e = DuplicateKeyError("featureEnabled")
        assert e.code == "duplicate_key"
        assert "featureEnabled" in str(e)
        assert e.metadata == {"key": "featureEnabled"}

    def test_all_errors_share_base(self):
        for err in (
            DuplicateKeyError("k"),
            UnknownKeyError("k"),
            UnknownEligibilityKindError("newPlayer"),
            InvalidOverrideScopeError("k"),
            SessionNotInitializedError("p1"),
        ):
            assert isinstance(err, CohortConfigError)

    def test_to_dict(self):
        d = UnknownKeyError("missing").to_dict()
        assert d["error"]["code"] == "unknown_key"
        assert d["error"]["metadata"] == {"key": "missing"}

    def test_validation_error_with_fields(self):
        e = ValidationError(user_message="Invalid input", fields={"scope": "bad"})
        assert e.fields == {"scope": "bad"}
        assert e.to_dict()["error"]["fields"] == {"scope": "bad"}

    def test_configure_sentry_routes_capture(self, monkeypatch):
        import sentry_sdk

        from cohort_config.tier0_core.errors import configure_sentry

        inits, captured = [], []
        monkeypatch.setenv("COHORT_ERROR_BACKEND", "none")
        monkeypatch.setattr(sentry_sdk, "init", lambda **kw: inits.append(kw))
        monkeypatch.setattr(
            sentry_sdk, "capture_message", lambda msg, **kw: captured.append((msg, kw))
        )

        UnknownKeyError("before")
        assert captured == []

        configure_sentry("https://key@sentry.example/1", environment="test")
        assert inits == [{"dsn": "https://key@sentry.example/1", "environment": "test"}]

        UnknownKeyError("after")
        assert len(captured) == 1
        assert captured[0][1]["extras"] == {"code": "unknown_key", "key": "after"}


# ── values ─────────────────────────────────────────────────────────────────

class TestEquals:
    def test_scalars(self):
        assert equals(5, 5)
        assert equals("a", "a")
        assert not equals(5, 7)

    def test_booleans_are_not_numbers(self):
        assert not equals(True, 1)
        assert not equals(0, False)

    def test_extra_key_on_either_side(self):
        a = {"x": 1}
        b = {"x": 1, "y": 2}
        assert not equals(a, b)
        assert not equals(b, a)

    def test_nested(self):
        assert equals({"a": {"b": [1, {"c": 2}]}}, {"a": {"b": [1, {"c": 2}]}})
        assert not equals({"a": {"b": [1, 2]}}, {"a": {"b": [1, 3]}})

    def test_none_entry_equals_missing_entry(self):
        assert equals({"x": 1, "y": None}, {"x": 1})

    def test_mapping_vs_scalar(self):
        assert not equals({"x": 1}, 1)
        assert not equals([], {})

    @pytest.mark.parametrize("value", [0, "s", None, [1, 2], {"a": {"b": 1}}])
    def test_reflexive_and_symmetric(self, value):
        other = {"a": 1}
        assert equals(value, value)
        assert equals(value, other) == equals(other, value)


class TestReconcile:
    def test_fills_missing_fields(self):
        assert reconcile({"x": 1}, {"x": 1, "y": 2}) == {"x": 1, "y": 2}

    def test_nested_fill(self):
        default = {"a": {"b": 0, "c": 3}, "d": 4}
        assert reconcile({"a": {"b": 1}}, default) == {"a": {"b": 1, "c": 3}, "d": 4}

    def test_keeps_keys_absent_from_default(self):
        assert reconcile({"extra": True}, {"x": 1}) == {"extra": True, "x": 1}

    def test_scalars_pass_through(self):
        assert reconcile(5, {"a": 1}) == 5
        assert reconcile({"a": 1}, 5) == {"a": 1}
        assert reconcile({"a": 1}, {"a": {"b": 2}}) == {"a": 1}

    def test_does_not_mutate_inputs(self):
        value = {"a": {"b": 1}}
        default = {"a": {"b": 0, "c": 3}, "list": [1]}
        result = reconcile(value, default)
        result["a"]["c"] = 99
        result["list"].append(2)
        assert value == {"a": {"b": 1}}
        assert default == {"a": {"b": 0, "c": 3}, "list": [1]}

    def test_idempotent(self):
        default = {"a": {"b": 0, "c": 3}, "d": 4}
        once = reconcile({"a": {"b": 1}}, default)
        assert reconcile(once, default) == once

    def test_resolve_or_default(self):
        assert resolve_or_default(None, {"x": 1}) == {"x": 1}
        assert resolve_or_default({"y": 2}, {"x": 1}) == {"x": 1, "y": 2}


# ── keys ───────────────────────────────────────────────────────────────────

class TestKeyRegistry:
    def test_register_mapping(self):
        registry = KeyRegistry()
        key = registry.register("featureEnabled", {
            "scope": "player",
            "replicated": True,
            "defaultValue": False,
            "testValue": True,
            "eligibility": {"kind": "newPlayer", "days": 3},
        })
        assert key.scope is KeyScope.PLAYER
        assert key.default_value is False
        assert key.test_value is True
        assert key.eligibility.kind == "newPlayer"
        assert key.eligibility.params["days"] == 3
        assert registry.get("featureEnabled") == key

    def test_register_definition(self):
        registry = KeyRegistry()
        registry.register("maxPets", KeyDefinition(
            name="maxPets", scope=KeyScope.SERVER, default_value=3,
        ))
        assert registry.get("maxPets").default_value == 3
        assert not registry.get("maxPets").is_player_scoped

    def test_duplicate_fails(self):
        registry = KeyRegistry()
        registry.register("k", {"scope": "server", "default_value": 1})
        with pytest.raises(DuplicateKeyError):
            registry.register("k", {"scope": "server", "default_value": 2})
        assert registry.get("k").default_value == 1

    def test_unknown_key(self):
        with pytest.raises(UnknownKeyError):
            KeyRegistry().get("nope")

    def test_invalid_scope_raises_validation_error(self):
        with pytest.raises(ValidationError) as exc_info:
            KeyRegistry().register("k", {"scope": "global", "default_value": 1})
        assert "scope" in exc_info.value.fields

    def test_missing_default_raises_validation_error(self):
        with pytest.raises(ValidationError):
            KeyRegistry().register("k", {"scope": "player"})

    def test_all_is_read_only(self):
        registry = KeyRegistry()
        registry.register("k", {"scope": "player", "default_value": 1})
        keys = registry.all()
        assert list(keys) == ["k"]
        with pytest.raises(TypeError):
            keys["other"] = keys["k"]  # type: ignore[index]

    def test_registered_default_is_detached(self):
        default = {"x": 1}
        registry = KeyRegistry()
        registry.register("k", {"scope": "player", "default_value": default})
        default["x"] = 2
        assert registry.get("k").default_value == {"x": 1}

    def test_register_many(self):
        registry = KeyRegistry()
        registry.register_many({
            "a": {"scope": "server", "default_value": 1},
            "b": {"scope": "player", "default_value": 2,
                  "eligibility": {"kind": "cohort", "params": {"percent": 10}}},
        })
        assert len(registry) == 2
        spec = registry.get("b").eligibility
        assert isinstance(spec, EligibilitySpec)
        assert spec.kind == "cohort"
        assert dict(spec.params) == {"percent": 10}


# ── config ─────────────────────────────────────────────────────────────────

class TestSettings:
    def test_defaults(self, monkeypatch):
        from cohort_config.tier0_core.config import CohortSettings
        monkeypatch.delenv("COHORT_SCHEDULER_BACKEND", raising=False)
        s = CohortSettings(environment="test")
        assert s.pending_policy == "deny"
        assert s.studio_mode is False
        assert s.scheduler_backend == "asyncio"
        assert s.is_test

    def test_reads_environment(self, monkeypatch):
        from cohort_config.tier0_core.config import get_settings, _reset_settings
        monkeypatch.setenv("COHORT_STUDIO_MODE", "true")
        monkeypatch.setenv("COHORT_PENDING_POLICY", "defer")
        _reset_settings()
        s = get_settings()
        assert s.studio_mode is True
        assert s.pending_policy == "defer"

    def test_rejects_unknown_environment(self):
        from pydantic import ValidationError as PydanticValidationError
        from cohort_config.tier0_core.config import CohortSettings
        with pytest.raises(PydanticValidationError):
            CohortSettings(environment="moon")


# ── metrics ────────────────────────────────────────────────────────────────

class TestMetrics:
    def test_labelled_counter_and_gauge(self):
        from prometheus_client import REGISTRY

        from cohort_config.tier0_core import metrics

        labels = {**metrics._DEFAULT_LABEL_VALUES, "kind": "eligibility", "status": "ok"}
        before = REGISTRY.get_sample_value("cohort_persistence_writes_total", labels) or 0.0
        metrics.persistence_writes(kind="eligibility", status="ok").inc()
        assert REGISTRY.get_sample_value("cohort_persistence_writes_total", labels) == before + 1

        gauge_before = REGISTRY.get_sample_value(
            "cohort_active_sessions", metrics._DEFAULT_LABEL_VALUES
        ) or 0.0
        metrics.active_sessions().inc()
        metrics.active_sessions().dec()
        assert REGISTRY.get_sample_value(
            "cohort_active_sessions", metrics._DEFAULT_LABEL_VALUES
        ) == gauge_before

    def test_start_metrics_server_port(self, monkeypatch):
        from cohort_config.tier0_core import metrics

        ports = []
        monkeypatch.setattr(metrics, "start_http_server", ports.append)
        monkeypatch.setenv("COHORT_METRICS_PORT", "9105")
        metrics.start_metrics_server()
        metrics.start_metrics_server(9200)
        assert ports == [9105, 9200]
