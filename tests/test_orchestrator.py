"""
Tests for scanner.orchestrator — dedup, coverage, reconciliation, region
failure isolation, deadlines and parallel region workers.

Uses an in-memory image source (no boto3).
"""

from __future__ import annotations

import logging
import os
import sys
import threading

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from scanner.errors import ImageResolutionError, RegionUnavailable
from scanner.models import (
    CATEGORIES,
    PRIVATE,
    UNKNOWN,
    UNVERIFIED,
    VERIFIED,
    ImageMetadata,
    Instance,
)
from scanner.orchestrator import (
    IMAGE_ANALYZING,
    IMAGE_CACHED,
    IMAGE_CLASSIFIED,
    IMAGE_UNRESOLVED,
    REGION_ABANDONED,
    REGION_SKIPPED,
    REGION_STARTED,
    Deadline,
    run_scan,
)
from scanner.report import summarize
from scanner.session import ScanSession


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

class FakeSource:
    """In-memory image source recording every call."""

    def __init__(self, instances, images, failing_regions=(), transient_images=()):
        self._instances = instances  # region -> [(instance_id, image_id)]
        self._images = images  # image_id -> ImageMetadata (missing = not found)
        self._failing = set(failing_regions)
        self._transient = set(transient_images)
        self._lock = threading.Lock()
        self.resolve_calls: list[str] = []
        self.list_calls: list[str] = []

    def list_instances(self, region):
        with self._lock:
            self.list_calls.append(region)
        if region in self._failing:
            raise RegionUnavailable(region, "UnauthorizedOperation")
        return [
            Instance(instance_id=iid, region=region, image_id=ami)
            for iid, ami in self._instances.get(region, [])
        ]

    def resolve_image(self, region, image_id):
        with self._lock:
            self.resolve_calls.append(image_id)
        if image_id in self._transient:
            raise ImageResolutionError(image_id, "RequestLimitExceeded")
        return self._images.get(image_id)


def _scenario_source(**kwargs) -> FakeSource:
    return FakeSource(
        instances={
            "region-a": [("i-1", "ami-1"), ("i-2", "ami-2")],
            "region-b": [("i-3", "ami-1"), ("i-4", "ami-3")],
        },
        images={
            "ami-1": ImageMetadata(public=True, owner_alias="amazon", owner_id="137112412989"),
            "ami-2": ImageMetadata(public=True, owner_alias="", owner_id="999999999999"),
        },
        **kwargs,
    )


def _ids(session: ScanSession, category: str) -> set[str]:
    return set(session.buckets[category])


# =========================================================================
# Tests: end-to-end scenario
# =========================================================================

class TestEndToEnd:

    def test_two_region_scenario(self):
        session = run_scan(_scenario_source(), ["region-a", "region-b"], ScanSession())

        summary = summarize(session)
        assert summary.total_instances == 4
        assert summary.total_images == 3
        assert _ids(session, VERIFIED) == {"ami-1"}
        assert _ids(session, UNVERIFIED) == {"ami-2"}
        assert _ids(session, UNKNOWN) == {"ami-3"}
        assert _ids(session, PRIVATE) == set()

    def test_first_region_owns_record(self):
        session = run_scan(_scenario_source(), ["region-a", "region-b"], ScanSession())
        assert session.buckets[VERIFIED]["ami-1"].region == "region-a"

    def test_returns_given_session(self):
        session = ScanSession()
        assert run_scan(_scenario_source(), ["region-a"], session) is session


# =========================================================================
# Tests: invariants
# =========================================================================

class TestInvariants:

    def test_each_image_resolved_once(self):
        source = FakeSource(
            instances={
                "r1": [("i-1", "ami-x"), ("i-2", "ami-x"), ("i-3", "ami-y")],
                "r2": [("i-4", "ami-x"), ("i-5", "ami-y")],
            },
            images={
                "ami-x": ImageMetadata(public=False),
                "ami-y": ImageMetadata(public=True, owner_alias="amazon"),
            },
        )
        run_scan(source, ["r1", "r2"], ScanSession())
        assert sorted(source.resolve_calls) == ["ami-x", "ami-y"]

    def test_every_image_in_exactly_one_bucket(self):
        session = run_scan(_scenario_source(), ["region-a", "region-b"], ScanSession())
        buckets = session.buckets
        all_ids = [image_id for c in CATEGORIES for image_id in buckets[c]]
        assert len(all_ids) == len(set(all_ids)) == session.distinct_images

    def test_counts_reconcile(self):
        session = run_scan(_scenario_source(), ["region-a", "region-b"], ScanSession())
        s = summarize(session)
        assert s.private + s.verified + s.unknown + s.unverified == s.total_images
        assert s.total_images <= s.total_instances

    def test_transient_error_becomes_unknown(self, caplog):
        source = _scenario_source(transient_images={"ami-2"})
        with caplog.at_level(logging.WARNING, logger="scanner.orchestrator"):
            session = run_scan(source, ["region-a"], ScanSession())
        assert _ids(session, UNKNOWN) == {"ami-2"}
        assert "ami-2" in caplog.text

    def test_empty_region(self):
        source = FakeSource(instances={"r1": []}, images={})
        session = run_scan(source, ["r1"], ScanSession())
        assert summarize(session) == (0, 0, 0, 0, 0, 0)


# =========================================================================
# Tests: region failure isolation
# =========================================================================

class TestRegionFailure:

    def test_failed_region_does_not_stop_others(self):
        source = FakeSource(
            instances={
                "a": [("i-1", "ami-a")],
                "b": [("i-2", "ami-b")],
                "c": [("i-3", "ami-c")],
            },
            images={
                "ami-a": ImageMetadata(public=True, owner_alias="amazon"),
                "ami-b": ImageMetadata(public=True, owner_alias="amazon"),
                "ami-c": ImageMetadata(public=False),
            },
            failing_regions={"b"},
        )
        events = []
        session = run_scan(source, ["a", "b", "c"], ScanSession(), on_event=events.append)

        assert _ids(session, VERIFIED) == {"ami-a"}
        assert _ids(session, PRIVATE) == {"ami-c"}
        assert session.total_instances == 2
        skipped = [e for e in events if e.kind == REGION_SKIPPED]
        assert [e.region for e in skipped] == ["b"]
        assert "UnauthorizedOperation" in skipped[0].detail

    def test_failed_region_logged(self, caplog):
        source = FakeSource(instances={}, images={}, failing_regions={"b"})
        with caplog.at_level(logging.WARNING, logger="scanner.orchestrator"):
            run_scan(source, ["b"], ScanSession())
        assert "Skipping region b" in caplog.text


# =========================================================================
# Tests: events
# =========================================================================

class TestEvents:

    def test_event_sequence(self):
        events = []
        run_scan(_scenario_source(), ["region-a", "region-b"], ScanSession(), on_event=events.append)
        kinds = [(e.kind, e.image_id) for e in events]
        assert kinds == [
            (REGION_STARTED, None),
            (IMAGE_ANALYZING, "ami-1"),
            (IMAGE_CLASSIFIED, "ami-1"),
            (IMAGE_ANALYZING, "ami-2"),
            (IMAGE_CLASSIFIED, "ami-2"),
            (REGION_STARTED, None),
            (IMAGE_CACHED, "ami-1"),
            (IMAGE_ANALYZING, "ami-3"),
            (IMAGE_UNRESOLVED, "ami-3"),
        ]

    def test_event_positions(self):
        events = []
        run_scan(_scenario_source(), ["region-b"], ScanSession(), on_event=events.append)
        unresolved = [e for e in events if e.kind == IMAGE_UNRESOLVED][0]
        assert (unresolved.position, unresolved.total) == (2, 2)
        assert unresolved.instance_id == "i-4"
        assert unresolved.category == UNKNOWN

    def test_classified_event_carries_category(self):
        events = []
        run_scan(_scenario_source(), ["region-a"], ScanSession(), on_event=events.append)
        classified = {e.image_id: e.category for e in events if e.kind == IMAGE_CLASSIFIED}
        assert classified == {"ami-1": VERIFIED, "ami-2": UNVERIFIED}


# =========================================================================
# Tests: trusted accounts
# =========================================================================

class TestTrustedAccounts:

    def test_trusted_publisher_verified(self):
        session = run_scan(
            _scenario_source(), ["region-a"], ScanSession(),
            trusted_accounts={"999999999999"},
        )
        assert _ids(session, VERIFIED) == {"ami-1", "ami-2"}
        assert _ids(session, UNVERIFIED) == set()


# =========================================================================
# Tests: deadline
# =========================================================================

class TestDeadline:

    def test_expired_deadline_abandons_regions(self):
        now = [100.0]
        deadline = Deadline(0, clock=lambda: now[0])
        source = _scenario_source()
        events = []
        session = run_scan(
            source, ["region-a", "region-b"], ScanSession(),
            on_event=events.append, deadline=deadline,
        )
        assert source.list_calls == []
        assert [e.region for e in events if e.kind == REGION_ABANDONED] == ["region-a", "region-b"]
        assert summarize(session) == (0, 0, 0, 0, 0, 0)

    def test_deadline_mid_region(self):
        now = [0.0]
        deadline = Deadline(10, clock=lambda: now[0])
        source = _scenario_source()

        def on_event(event):
            # Time runs out once the first image has been classified.
            if event.kind == IMAGE_CLASSIFIED:
                now[0] = 20.0

        session = run_scan(source, ["region-a", "region-b"], ScanSession(), on_event=on_event, deadline=deadline)
        assert source.resolve_calls == ["ami-1"]
        assert session.distinct_images == 1
        s = summarize(session)
        assert s.private + s.verified + s.unknown + s.unverified == s.total_images

    def test_remaining_never_negative(self):
        now = [0.0]
        deadline = Deadline(10, clock=lambda: now[0])
        assert deadline.remaining() == 10
        now[0] = 25.0
        assert deadline.remaining() == 0.0

    def test_deadline_not_expired(self):
        deadline = Deadline(60, clock=lambda: 0.0)
        assert not deadline.expired()
        deadline.check()


# =========================================================================
# Tests: parallel region workers
# =========================================================================

class TestParallel:

    def test_parallel_scan_matches_sequential(self):
        sequential = summarize(run_scan(_scenario_source(), ["region-a", "region-b"], ScanSession()))
        parallel = summarize(run_scan(
            _scenario_source(), ["region-a", "region-b"], ScanSession(), max_workers=4,
        ))
        assert parallel == sequential

    def test_parallel_dedup_many_regions(self):
        regions = [f"r{i}" for i in range(16)]
        source = FakeSource(
            instances={r: [(f"i-{r}-{n}", f"ami-{n}") for n in range(5)] for r in regions},
            images={f"ami-{n}": ImageMetadata(public=True, owner_alias="amazon") for n in range(5)},
        )
        session = run_scan(source, regions, ScanSession(), max_workers=8)
        assert sorted(source.resolve_calls) == [f"ami-{n}" for n in range(5)]
        assert session.total_instances == 80
        assert session.distinct_images == 5

    def test_unexpected_worker_error_propagates(self):
        class Broken(FakeSource):
            def resolve_image(self, region, image_id):
                raise KeyError(image_id)

        source = Broken(instances={"a": [("i-1", "ami-1")], "b": []}, images={})
        with pytest.raises(KeyError):
            run_scan(source, ["a", "b"], ScanSession(), max_workers=2)
