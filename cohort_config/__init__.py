"""
cohort_config
─────────────
Stable top-level exports. Import from here, not from sub-modules directly.
Every name exported here is part of the public API and subject to semver.
"""
from cohort_config.tier0_core.logging import get_logger
from cohort_config.tier0_core.errors import (
    CohortConfigError,
    DuplicateKeyError,
    UnknownKeyError,
    UnknownEligibilityKindError,
    InvalidOverrideScopeError,
    SessionNotInitializedError,
    ValidationError,
    ConfigurationError,
)
from cohort_config.tier0_core.config import CohortSettings, get_settings
from cohort_config.tier0_core.keys import EligibilitySpec, KeyDefinition, KeyRegistry, KeyScope
from cohort_config.tier0_core.values import equals, reconcile

from cohort_config.tier1_runtime.scheduler import AsyncioScheduler, ManualScheduler, Scheduler

from cohort_config.tier2_reliability.persistence import CohortPersistence, InMemoryCohortPersistence

from cohort_config.tier3_platform.eligibility import (
    EligibilityOutcome,
    EligibilityState,
    percentage_rollout,
)
from cohort_config.tier3_platform.remote import InMemoryRemoteConfig, RemoteConfigSource

from cohort_config.service import ConfigService, get_service

__version__ = "0.1.0"
__all__ = [
    # service
    "ConfigService", "get_service",
    # logging
    "get_logger",
    # errors
    "CohortConfigError", "DuplicateKeyError", "UnknownKeyError",
    "UnknownEligibilityKindError", "InvalidOverrideScopeError",
    "SessionNotInitializedError", "ValidationError", "ConfigurationError",
    # settings
    "CohortSettings", "get_settings",
    # keys
    "EligibilitySpec", "KeyDefinition", "KeyRegistry", "KeyScope",
    # values
    "equals", "reconcile",
    # scheduling
    "Scheduler", "AsyncioScheduler", "ManualScheduler",
    # persistence
    "CohortPersistence", "InMemoryCohortPersistence",
    # eligibility
    "EligibilityOutcome", "EligibilityState", "percentage_rollout",
    # remote
    "RemoteConfigSource", "InMemoryRemoteConfig",
]
