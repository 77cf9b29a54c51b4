"""Tests for the offline face cache."""

import json

import pytest

from conftest import FakeClock, FakeDetector, make_face, make_image
from facecue.collaborators import KnownPerson
from facecue.matching.geometry import fingerprint_from_observation
from facecue.matching.offline import CachedFaceRecord, CacheLimits, OfflineMatcher
from facecue.matching.types import MatchSource

DAY = 24 * 60 * 60


def record(person_id, created_at, face=None):
    return CachedFaceRecord(
        person_id=person_id,
        person_name=person_id.title(),
        relationship="friend",
        fingerprint=fingerprint_from_observation(face or make_face()),
        created_at=created_at,
    )


@pytest.fixture
def cache_path(tmp_path):
    return tmp_path / "cache" / "faces.json"


class TestAdd:
    """Tests for caching faces."""

    def test_add_with_observation(self, alice, image, clock):
        """Test that a record uses the display name and a thumbnail."""
        matcher = OfflineMatcher(clock=clock)
        stored = matcher.add(alice, image, make_face())
        assert stored.person_name == "Ally"
        assert stored.relationship == "daughter"
        assert stored.thumbnail
        assert stored.created_at == clock.now
        assert len(matcher) == 1

    def test_add_detects_when_no_observation(self, alice, image):
        """Test that the detector is used when no face is given."""
        detector = FakeDetector()
        matcher = OfflineMatcher(detector=detector)
        assert matcher.add(alice, image) is not None
        assert detector.calls == 1

    def test_add_without_face(self, alice, image):
        """Test that nothing is cached when no face is found."""
        matcher = OfflineMatcher(detector=FakeDetector([]))
        assert matcher.add(alice, image) is None
        assert not matcher.has_cache


class TestLimits:
    """Tests for cache eviction."""

    def test_per_person_limit_keeps_newest(self, clock):
        """Test that six inserts for one person keep the newest five."""
        matcher = OfflineMatcher(clock=clock)
        for i in range(6):
            matcher.insert(record("alice", created_at=clock.now + i))
        kept = matcher.records_for("alice")
        assert len(kept) == 5
        assert min(r.created_at for r in kept) == clock.now + 1

    def test_total_limit(self, clock):
        """Test that the newest 50 records survive overall."""
        matcher = OfflineMatcher(clock=clock)
        for i in range(60):
            matcher.insert(record(f"person{i}", created_at=clock.now + i))
        assert len(matcher) == 50
        assert matcher.records[0].person_id == "person10"

    def test_custom_limits(self, clock):
        """Test that limits are configurable."""
        matcher = OfflineMatcher(clock=clock, limits=CacheLimits(max_per_person=2, max_total=3))
        for i in range(3):
            matcher.insert(record("alice", created_at=clock.now + i))
        for i in range(3):
            matcher.insert(record("bob", created_at=clock.now + 10 + i))
        assert len(matcher.records_for("alice")) == 1
        assert len(matcher.records_for("bob")) == 2

    def test_expired_records_dropped_on_insert(self, clock):
        """Test that stale records are purged when inserting."""
        matcher = OfflineMatcher(clock=clock)
        matcher.insert(record("alice", created_at=clock.now))
        clock.advance(8 * DAY)
        matcher.insert(record("bob", created_at=clock.now))
        assert [r.person_id for r in matcher.records] == ["bob"]


class TestPersistence:
    """Tests for the JSON cache file."""

    def test_survives_reload(self, cache_path, clock):
        """Test that records are written and read back."""
        matcher = OfflineMatcher(cache_path, clock=clock)
        stored = record("alice", created_at=clock.now)
        matcher.insert(stored)

        reloaded = OfflineMatcher(cache_path, clock=clock)
        assert reloaded.records == [stored]

    def test_stale_records_pruned_on_load(self, cache_path, clock):
        """Test that an eight-day-old record is dropped and the file rewritten."""
        cache_path.parent.mkdir(parents=True)
        old = record("alice", created_at=clock.now - 8 * DAY)
        fresh = record("bob", created_at=clock.now - DAY)
        cache_path.write_text(json.dumps([old.to_dict(), fresh.to_dict()]))

        matcher = OfflineMatcher(cache_path, clock=clock)
        assert [r.person_id for r in matcher.records] == ["bob"]
        assert len(json.loads(cache_path.read_text())) == 1

    def test_corrupt_file_loads_empty(self, cache_path):
        """Test that an unreadable cache does not raise."""
        cache_path.parent.mkdir(parents=True)
        cache_path.write_text("{not json")
        assert len(OfflineMatcher(cache_path)) == 0

    def test_clear_person(self, cache_path, clock):
        """Test that removing a person persists."""
        matcher = OfflineMatcher(cache_path, clock=clock)
        matcher.insert(record("alice", created_at=clock.now))
        matcher.insert(record("bob", created_at=clock.now))
        assert matcher.clear_person("alice") == 1
        assert [r.person_id for r in OfflineMatcher(cache_path, clock=clock).records] == ["bob"]

    def test_clear(self, cache_path, clock):
        """Test that clearing empties the file."""
        matcher = OfflineMatcher(cache_path, clock=clock)
        matcher.insert(record("alice", created_at=clock.now))
        matcher.clear()
        assert json.loads(cache_path.read_text()) == []


class TestMatch:
    """Tests for offline matching."""

    def test_identical_face_matches(self, clock, image):
        """Test that an identical fingerprint matches at 100."""
        matcher = OfflineMatcher(clock=clock)
        stored = record("alice", created_at=clock.now)
        matcher.insert(stored)

        match = matcher.match(image, make_face())
        assert match.person_id == "alice"
        assert match.similarity == pytest.approx(100.0)
        assert match.record_id == stored.record_id
        assert match.source == MatchSource.OFFLINE

    def test_best_record_wins(self, clock, image):
        """Test that the closest record is chosen."""
        matcher = OfflineMatcher(clock=clock)
        matcher.insert(record("alice", created_at=clock.now, face=make_face(eye_gap=0.4)))
        matcher.insert(record("bob", created_at=clock.now, face=make_face(eye_gap=0.3)))
        assert matcher.match(image, make_face(eye_gap=0.4)).person_id == "alice"

    def test_dissimilar_face_misses(self, clock, image):
        """Test that similarity at or under the threshold is no match."""
        matcher = OfflineMatcher(clock=clock)
        matcher.insert(record("alice", created_at=clock.now))
        assert matcher.match(image, make_face(eye_gap=0.2, nose_y=0.7)) is None
        assert matcher.get_stats()["misses"] == 1

    def test_empty_cache(self, image):
        """Test that an empty cache never matches."""
        assert OfflineMatcher().match(image, make_face()) is None

    def test_no_detector_no_observation(self, clock):
        """Test that matching without a face returns None."""
        matcher = OfflineMatcher(clock=clock)
        matcher.insert(record("alice", created_at=clock.now))
        assert matcher.match(make_image()) is None

    def test_offline_mode_flag(self):
        """Test the offline mode toggle."""
        matcher = OfflineMatcher()
        matcher.set_offline_mode(True)
        assert matcher.offline_mode
        assert matcher.get_stats()["offline_mode"] is True


class TestRecord:
    """Tests for cached record serialization."""

    def test_dict_round_trip(self):
        """Test persistence form."""
        stored = record("alice", created_at=123.0)
        assert CachedFaceRecord.from_dict(stored.to_dict()) == stored

    def test_person_fields(self):
        """Test that name and relationship are denormalized."""
        person = KnownPerson("p1", "Carol King", relationship="sister")
        matcher = OfflineMatcher()
        stored = matcher.add(person, make_image(), make_face())
        assert (stored.person_name, stored.relationship) == ("Carol King", "sister")
