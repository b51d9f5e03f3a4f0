"""
cohort_config.tier3_platform.eligibility
─────────────────────────────────────────
Cohort eligibility: which player-scoped experiment keys a player is enrolled
in for this session.

Evaluators are registered per eligibility ``kind`` and answer, per player,
ELIGIBLE, INELIGIBLE or PENDING (not enough data yet). With persistence
configured, a player who was enrolled last session stays enrolled for as long
as the stored treatment value still differs from the current control value;
once the two match, the experiment is treated as ended (or rolled back) and
the evaluator is asked again.

A player's eligibility settles at most once per session and is then frozen.
Until it settles, every trigger re-runs the whole pass; a single PENDING
answer (or absent persistence data) leaves the pass pending with nothing
partially settled.
"""
from __future__ import annotations

import enum
import hashlib
from collections.abc import Mapping
from types import MappingProxyType
from typing import Callable, Union

from cohort_config.tier0_core import metrics
from cohort_config.tier0_core.config import PendingPolicy
from cohort_config.tier0_core.errors import UnknownEligibilityKindError, ValidationError
from cohort_config.tier0_core.keys import EligibilitySpec, KeyDefinition
from cohort_config.tier0_core.logging import get_logger
from cohort_config.tier0_core.values import Value, equals
from cohort_config.tier2_reliability.persistence import CohortPersistence

log = get_logger(__name__)


class EligibilityOutcome(enum.Enum):
    ELIGIBLE = "eligible"
    INELIGIBLE = "ineligible"
    PENDING = "pending"

    @classmethod
    def coerce(cls, raw: "EligibilityOutcome | bool | None") -> "EligibilityOutcome":
        """Accept evaluator answers as outcomes or as True / False / None."""
        if isinstance(raw, cls):
            return raw
        if raw is None:
            return cls.PENDING
        if raw is True:
            return cls.ELIGIBLE
        if raw is False:
            return cls.INELIGIBLE
        raise ValidationError(
            user_message=f"Eligibility evaluator returned {raw!r}; "
            "expected an EligibilityOutcome, True, False or None",
        )


class EligibilityState(enum.Enum):
    UNINITIALIZED = "uninitialized"
    PENDING = "pending"
    SETTLED = "settled"


EvaluatorResult = Union[EligibilityOutcome, bool, None]
Evaluator = Callable[[str], EvaluatorResult]


# ── Evaluator registry ────────────────────────────────────────────────────────

class EvaluatorRegistry:
    def __init__(self) -> None:
        self._evaluators: dict[str, Evaluator] = {}

    def register(self, kind: str, evaluator: Evaluator) -> None:
        """Register (or replace) the evaluator for ``kind``."""
        if kind in self._evaluators:
            log.info("eligibility.evaluator_replaced", kind=kind)
        self._evaluators[kind] = evaluator

    def get(self, kind: str) -> Evaluator:
        evaluator = self._evaluators.get(kind)
        if evaluator is None:
            raise UnknownEligibilityKindError(kind)
        return evaluator

    def evaluate(self, spec: EligibilitySpec, player_id: str) -> EligibilityOutcome:
        return EligibilityOutcome.coerce(self.get(spec.kind)(player_id))


def percentage_rollout(salt: str, percent: float) -> Evaluator:
    """
    Evaluator that enrolls a stable ``percent`` of players.

    Deterministic bucketing via SHA-256 of (salt, player_id): the same player
    always lands in the same bucket for the same salt, with no external
    service involved.
    """
    if not 0 <= percent <= 100:
        raise ValueError(f"percent must be within [0, 100], got {percent!r}")

    def _evaluate(player_id: str) -> EligibilityOutcome:
        h = hashlib.sha256(f"{salt}:{player_id}".encode()).hexdigest()
        bucket = int(h[:8], 16) / 0x100000000  # [0, 1)
        if bucket * 100 < percent:
            return EligibilityOutcome.ELIGIBLE
        return EligibilityOutcome.INELIGIBLE

    return _evaluate


# ── Cohort evaluation pass ────────────────────────────────────────────────────

def evaluate_cohort(
    player_id: str,
    keys: Mapping[str, KeyDefinition],
    evaluators: EvaluatorRegistry,
    persistence: CohortPersistence | None,
    control_value: Callable[[str], Value],
    pending_policy: PendingPolicy = "deny",
) -> dict[str, bool] | None:
    """
    Run one eligibility pass for ``player_id``.

    Returns the eligibility map for every player-scoped key, or None when the
    pass is pending. Server-scoped keys never appear in the map.
    """
    player_keys = [key for key in keys.values() if key.is_player_scoped]

    if persistence is None:
        eligible: dict[str, bool] = {}
        for key in player_keys:
            if key.eligibility is None:
                eligible[key.name] = True
                continue
            outcome = evaluators.evaluate(key.eligibility, player_id)
            if outcome is EligibilityOutcome.PENDING and pending_policy == "defer":
                return None
            eligible[key.name] = outcome is EligibilityOutcome.ELIGIBLE
        return eligible

    stored_eligibility = persistence.get_eligibility(player_id)
    if stored_eligibility is None:
        return None
    stored_enrolled = persistence.get_enrolled_values(player_id)
    if stored_enrolled is None:
        return None

    eligible = {}
    for key in player_keys:
        if key.eligibility is None:
            eligible[key.name] = True
            continue

        stored_value = stored_enrolled.get(key.name)
        if stored_eligibility.get(key.name) is True and stored_value is not None:
            if not equals(stored_value, control_value(key.name)):
                # Still being served a treatment that differs from control.
                eligible[key.name] = True
                continue
            # Treatment now matches control: the experiment ended or rolled back.

        outcome = evaluators.evaluate(key.eligibility, player_id)
        if outcome is EligibilityOutcome.PENDING:
            return None
        eligible[key.name] = outcome is EligibilityOutcome.ELIGIBLE
    return eligible


# ── Per-player state machine ──────────────────────────────────────────────────

class PlayerEligibility:
    """
    UNINITIALIZED → PENDING → SETTLED for one player session.

    ``compute`` runs one evaluation pass (None = pending). ``on_settled`` is
    called exactly once, with the frozen map, on the transition to SETTLED.
    """

    def __init__(
        self,
        player_id: str,
        compute: Callable[[], dict[str, bool] | None],
        on_settled: Callable[[Mapping[str, bool]], None] | None = None,
    ) -> None:
        self.player_id = player_id
        self._compute = compute
        self._on_settled = on_settled
        self._state = EligibilityState.UNINITIALIZED
        self._snapshot: Mapping[str, bool] | None = None
        self._closed = False

    @property
    def state(self) -> EligibilityState:
        return self._state

    @property
    def snapshot(self) -> Mapping[str, bool] | None:
        """The frozen map once settled, otherwise None."""
        return self._snapshot

    @property
    def is_settled(self) -> bool:
        return self._state is EligibilityState.SETTLED

    def trigger(self) -> bool:
        """
        Attempt evaluation unless already settled or closed.
        Returns True only on the call that settles.
        """
        if self._closed or self._state is EligibilityState.SETTLED:
            return False

        result = self._compute()
        if result is None:
            self._state = EligibilityState.PENDING
            metrics.eligibility_pending().inc()
            log.debug("eligibility.pending", player_id=self.player_id)
            return False

        self._snapshot = MappingProxyType(dict(result))
        self._state = EligibilityState.SETTLED
        enrolled = sum(1 for value in result.values() if value)
        metrics.eligibility_settled(outcome="eligible").inc(enrolled)
        metrics.eligibility_settled(outcome="ineligible").inc(len(result) - enrolled)
        log.info(
            "eligibility.settled",
            player_id=self.player_id,
            eligible=sorted(k for k, v in result.items() if v),
            ineligible=sorted(k for k, v in result.items() if not v),
        )
        if self._on_settled is not None:
            self._on_settled(self._snapshot)
        return True

    def close(self) -> None:
        self._closed = True
        self._on_settled = None


__all__ = [
    "EligibilityOutcome",
    "EligibilityState",
    "Evaluator",
    "EvaluatorRegistry",
    "percentage_rollout",
    "evaluate_cohort",
    "PlayerEligibility",
]
