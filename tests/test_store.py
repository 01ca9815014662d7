"""
Unit tests for core/assessment/store.py

Tests cover:
- Version-checked status writes on the in-memory store
- retry_on_conflict / update_status retry behaviour
"""
import pytest

import sys
import os
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from core.assessment.models import Assessment, AssessmentSpec
from core.assessment.store import (
    AssessmentExistsError,
    AssessmentNotFoundError,
    ConflictError,
    InMemoryAssessmentStore,
    retry_on_conflict,
    update_status,
)


def no_sleep(_):
    pass


def new_store(*names):
    store = InMemoryAssessmentStore()
    for n in names:
        store.create(Assessment(name=n, spec=AssessmentSpec(profile="development")))
    return store


class TestInMemoryStore:
    """Test the in-memory store's versioning and copy semantics"""

    def test_create_sets_version(self):
        """New assessments start at resource version 1"""
        store = new_store()
        created = store.create(Assessment(name="a"))
        assert created.resource_version == 1
        assert store.get("a").resource_version == 1

    def test_duplicate_create(self):
        """Creating an existing name raises AssessmentExistsError"""
        store = new_store("a")
        with pytest.raises(AssessmentExistsError):
            store.create(Assessment(name="a"))

    def test_get_missing(self):
        """Unknown names raise AssessmentNotFoundError"""
        with pytest.raises(AssessmentNotFoundError):
            new_store().get("missing")

    def test_update_bumps_version(self):
        """Each status write increments the resource version"""
        store = new_store("a")
        a = store.get("a")
        a.status.message = "hello"
        updated = store.update_status(a)
        assert updated.resource_version == 2
        assert store.get("a").status.message == "hello"

    def test_stale_write_conflicts(self):
        """Writing from an outdated copy raises ConflictError"""
        store = new_store("a")
        first = store.get("a")
        second = store.get("a")

        first.status.message = "first"
        store.update_status(first)

        second.status.message = "second"
        with pytest.raises(ConflictError):
            store.update_status(second)
        assert store.get("a").status.message == "first"

    def test_status_write_does_not_touch_spec(self):
        """Status updates never change the desired state"""
        store = new_store("a")
        a = store.get("a")
        a.spec.profile = "production"
        a.status.message = "x"
        store.update_status(a)
        assert store.get("a").spec.profile == "development"

    def test_reads_are_copies(self):
        """Mutating a read copy does not change the stored assessment"""
        store = new_store("a")
        store.get("a").status.message = "mutated"
        assert store.get("a").status.message == ""


class TestRetryOnConflict:
    """Test the conflict retry policy (5 attempts, 10ms, 10% jitter by default)"""

    def test_succeeds_after_conflicts(self):
        """Conflicts are retried until the closure succeeds"""
        calls = []

        def fn():
            calls.append(1)
            if len(calls) < 3:
                raise ConflictError("busy")
            return "ok"

        assert retry_on_conflict(fn, attempts=5, sleep=no_sleep) == "ok"
        assert len(calls) == 3

    def test_gives_up_after_attempts(self):
        """The last ConflictError is re-raised after the final attempt"""
        calls = []

        def fn():
            calls.append(1)
            raise ConflictError("busy")

        with pytest.raises(ConflictError):
            retry_on_conflict(fn, attempts=5, sleep=no_sleep)
        assert len(calls) == 5

    def test_other_errors_are_not_retried(self):
        """Only conflicts are retried"""
        calls = []

        def fn():
            calls.append(1)
            raise RuntimeError("db down")

        with pytest.raises(RuntimeError):
            retry_on_conflict(fn, sleep=no_sleep)
        assert len(calls) == 1

    def test_sleeps_between_attempts(self):
        """Waits are the base delay plus up to jitter * delay"""
        delays = []

        def fn():
            if len(delays) < 2:
                raise ConflictError("busy")
            return True

        retry_on_conflict(fn, delay=0.01, jitter=0.1, sleep=delays.append)
        assert len(delays) == 2
        assert all(0.01 <= d <= 0.011 for d in delays)

    def test_no_jitter_waits_fixed_delay(self):
        """Zero jitter = exactly the base delay"""
        delays = []

        def fn():
            if len(delays) < 3:
                raise ConflictError("busy")
            return True

        retry_on_conflict(fn, delay=0.02, jitter=0.0, sleep=delays.append)
        assert delays == [0.02, 0.02, 0.02]

    def test_no_sleep_after_last_attempt(self):
        """There is no wait after the final conflicting attempt"""
        delays = []

        def fn():
            raise ConflictError("busy")

        with pytest.raises(ConflictError):
            retry_on_conflict(fn, attempts=3, sleep=delays.append)
        assert len(delays) == 2


class TestUpdateStatus:
    """Test the re-fetch, mutate, write helper"""

    def test_mutation_applied_to_latest(self):
        """The mutation is applied to the latest stored copy, not the caller's stale one"""
        store = new_store("a")
        stale = store.get("a")

        # a concurrent writer moves the version on
        other = store.get("a")
        other.status.message = "other"
        store.update_status(other)

        def mutate(latest):
            latest.status.phase = "Running"

        updated = update_status(store, stale.name, mutate, sleep=no_sleep)
        assert updated.status.phase == "Running"
        # the concurrent write is preserved because the mutation ran on a fresh copy
        assert updated.status.message == "other"

    def test_conflict_exhaustion_propagates(self):
        """Conflicts on every attempt propagate to the caller"""
        store = new_store("a")

        def mutate(latest):
            # bump the stored version behind the caller's back every time
            interloper = store.get("a")
            store.update_status(interloper)
            latest.status.message = "never written"

        with pytest.raises(ConflictError):
            update_status(store, "a", mutate, attempts=3, sleep=no_sleep)
        assert store.get("a").status.message == ""
