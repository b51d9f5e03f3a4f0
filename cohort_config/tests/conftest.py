"""
cohort_config test configuration.

All tests run against in-memory collaborators and a manual scheduler — no
external services and no running event loop required.
"""
from __future__ import annotations

import os

import pytest

# ── Force test settings ────────────────────────────────────────────────────
# These must be set before any cohort_config modules are imported.

os.environ.setdefault("APP_ENV", "test")
os.environ.setdefault("COHORT_ERROR_BACKEND", "none")
os.environ.setdefault("COHORT_SCHEDULER_BACKEND", "manual")
os.environ.setdefault("COHORT_LOG_LEVEL", "WARNING")


# ── Fixtures ───────────────────────────────────────────────────────────────

@pytest.fixture(autouse=True)
def reset_module_singletons():
    """Drop cached settings and the default service between tests."""
    from cohort_config.service import _reset_service
    from cohort_config.tier0_core.config import _reset_settings

    _reset_settings()
    yield
    _reset_service()
    _reset_settings()


@pytest.fixture
def settings():
    from cohort_config.tier0_core.config import CohortSettings
    return CohortSettings(environment="test", scheduler_backend="manual")


@pytest.fixture
def scheduler():
    from cohort_config.tier1_runtime.scheduler import ManualScheduler
    return ManualScheduler()


@pytest.fixture
def remote():
    from cohort_config.tier3_platform.remote import InMemoryRemoteConfig
    return InMemoryRemoteConfig()


@pytest.fixture
def persistence():
    from cohort_config.tier2_reliability.persistence import InMemoryCohortPersistence
    return InMemoryCohortPersistence()


@pytest.fixture
def service(settings, remote, scheduler):
    """A ConfigService with no persistence; tests attach one when needed."""
    from cohort_config.service import ConfigService
    svc = ConfigService(settings=settings, remote=remote, scheduler=scheduler)
    yield svc
    svc.shutdown()


class Switch:
    """Evaluator whose answer tests can flip; counts its calls."""

    def __init__(self, answer=True) -> None:
        self.answer = answer
        self.calls: list[str] = []

    def __call__(self, player_id: str):
        self.calls.append(player_id)
        return self.answer


@pytest.fixture
def switch():
    return Switch()
