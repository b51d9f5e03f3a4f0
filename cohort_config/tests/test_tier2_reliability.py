"""Tests for tier2_reliability modules (persistence, writer)."""
from __future__ import annotations

import asyncio

import pytest
from prometheus_client import REGISTRY

from cohort_config.tier0_core import metrics
from cohort_config.tier1_runtime.scheduler import AsyncioScheduler
from cohort_config.tier2_reliability.persistence import (
    CohortPersistence,
    InMemoryCohortPersistence,
)
from cohort_config.tier2_reliability.writer import PersistenceWriter


class FailingPersistence(InMemoryCohortPersistence):
    def __init__(self) -> None:
        super().__init__()
        self.fail = True

    def set_eligibility(self, player_id, eligibility):
        if self.fail:
            raise ConnectionError("profile store unavailable")
        super().set_eligibility(player_id, eligibility)


# ── persistence ────────────────────────────────────────────────────────────

class TestInMemoryPersistence:
    def test_absent_until_loaded(self, persistence):
        assert persistence.get_eligibility("p1") is None
        assert persistence.get_enrolled_values("p1") is None
        persistence.load("p1")
        assert persistence.get_eligibility("p1") == {}
        assert persistence.get_enrolled_values("p1") == {}

    def test_load_seeds_data(self, persistence):
        persistence.load("p1", eligibility={"k": True}, enrolled_values={"k": {"x": 1}})
        assert persistence.get_eligibility("p1") == {"k": True}
        assert persistence.get_enrolled_values("p1") == {"k": {"x": 1}}

    def test_reads_are_copies(self, persistence):
        persistence.load("p1", enrolled_values={"k": {"x": 1}})
        persistence.get_enrolled_values("p1")["k"]["x"] = 2
        assert persistence.get_enrolled_values("p1") == {"k": {"x": 1}}

    def test_satisfies_protocol(self, persistence):
        assert isinstance(persistence, CohortPersistence)


# ── writer ─────────────────────────────────────────────────────────────────

class TestPersistenceWriter:
    def test_writes_happen_on_a_later_turn(self, persistence, scheduler):
        writer = PersistenceWriter(persistence, scheduler)
        writer.schedule_eligibility("p1", {"k": True})
        assert persistence.get_eligibility("p1") is None
        scheduler.run_pending()
        assert persistence.get_eligibility("p1") == {"k": True}

    def test_coalesces_to_newest_snapshot(self, persistence, scheduler):
        writer = PersistenceWriter(persistence, scheduler)
        writer.schedule_enrolled_values("p1", {"k": 1})
        writer.schedule_enrolled_values("p1", {"k": 2})
        assert scheduler.pending == 1
        scheduler.run_pending()
        assert persistence.writes == [("enrolled_values", "p1", {"k": 2})]

    def test_snapshot_is_copied_at_schedule_time(self, persistence, scheduler):
        writer = PersistenceWriter(persistence, scheduler)
        values = {"k": {"x": 1}}
        writer.schedule_enrolled_values("p1", values)
        values["k"]["x"] = 99
        scheduler.run_pending()
        assert persistence.get_enrolled_values("p1") == {"k": {"x": 1}}

    def test_players_and_kinds_are_independent(self, persistence, scheduler):
        writer = PersistenceWriter(persistence, scheduler)
        writer.schedule_eligibility("p1", {"k": True})
        writer.schedule_enrolled_values("p1", {"k": 1})
        writer.schedule_eligibility("p2", {"k": False})
        assert len(writer.pending) == 3
        scheduler.run_pending()
        assert len(persistence.writes) == 3

    def test_failed_write_is_logged_not_raised(self, scheduler):
        persistence = FailingPersistence()
        writer = PersistenceWriter(persistence, scheduler)
        writer.schedule_eligibility("p1", {"k": True})
        writer.schedule_enrolled_values("p1", {"k": 1})
        assert writer.flush() == 1
        assert persistence.get_eligibility("p1") is None
        assert persistence.get_enrolled_values("p1") == {"k": 1}

    def test_reschedules_after_failure(self, scheduler):
        persistence = FailingPersistence()
        writer = PersistenceWriter(persistence, scheduler)
        writer.schedule_eligibility("p1", {"k": True})
        scheduler.run_pending()
        persistence.fail = False
        writer.schedule_eligibility("p1", {"k": True})
        scheduler.run_pending()
        assert persistence.get_eligibility("p1") == {"k": True}

    def test_failed_write_counts_as_error(self, scheduler):
        labels = {**metrics._DEFAULT_LABEL_VALUES, "kind": "eligibility", "status": "error"}
        before = REGISTRY.get_sample_value("cohort_persistence_writes_total", labels) or 0.0
        writer = PersistenceWriter(FailingPersistence(), scheduler)
        writer.schedule_eligibility("p1", {"k": True})
        scheduler.run_pending()
        after = REGISTRY.get_sample_value("cohort_persistence_writes_total", labels)
        assert after == before + 1

    def test_recovers_when_defer_fails(self):
        persistence = InMemoryCohortPersistence()
        writer = PersistenceWriter(persistence, AsyncioScheduler())

        # No running loop: the deferral fails but the request stays queued.
        with pytest.raises(RuntimeError):
            writer.schedule_eligibility("p1", {"k": True})
        assert len(writer.pending) == 1

        async def _later() -> None:
            writer.schedule_eligibility("p2", {"k": False})
            await asyncio.sleep(0)
            await asyncio.sleep(0)

        asyncio.run(_later())
        assert persistence.get_eligibility("p1") == {"k": True}
        assert persistence.get_eligibility("p2") == {"k": False}
        assert writer.pending == []
