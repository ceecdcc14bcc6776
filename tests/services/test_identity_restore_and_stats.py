# FILE: tests/services/test_identity_restore_and_stats.py
"""
Unit tests for start-up restore, confidence-based confirmation and statistics.
"""
import logging
from datetime import datetime, timedelta, timezone

import pytest

from identity_matcher.domains.reid.entities.person_identity import IdentitySeed
from identity_matcher.domains.reid.services.identity_matcher import PersonIdentityMatcher

PERSON_A = [1.0, 0.0, 0.0, 0.0]
PERSON_B = [0.0, 1.0, 0.0, 0.0]


def make_seed(global_id: str, db_id: int, vector, created_at: datetime, **kwargs) -> IdentitySeed:
    return IdentitySeed(
        global_id=global_id,
        db_id=db_id,
        representative_vector=vector,
        created_at=created_at,
        last_seen_at=kwargs.pop("last_seen_at", created_at),
        **kwargs,
    )


def test_restore_identities(matcher: PersonIdentityMatcher, clock):
    seeds = [
        make_seed("stored-a", 11, PERSON_A, clock.now - timedelta(hours=2), sighting_count=5, cameras=["c01", "c02"]),
        make_seed("stored-bad", 12, [1.0, 0.0], clock.now - timedelta(hours=1)),
    ]

    assert matcher.restore_identities(seeds) == 1

    assert matcher.get_db_id("stored-a") == 11
    assert matcher.get_db_id("stored-bad") is None
    assert matcher.get_active_identity_count() == 1
    assert matcher.get_confirmed_identity_count() == 1
    assert matcher.get_camera_identity_count("c02") == 1
    assert matcher.get_global_unique_count() == 0
    assert matcher.get_session_unique_count() == 0
    assert matcher.get_today_unique_count() == 1

    snapshot = matcher.get_identity("stored-a")
    assert snapshot.is_from_persistence is True
    assert snapshot.sighting_count == 5

    assert matcher.get_or_create_identity(PERSON_A, camera_id="c01") == "stored-a"
    assert matcher.get_identity("stored-a").sighting_count == 6


def test_restore_skips_known_identities(matcher: PersonIdentityMatcher, clock):
    seed = make_seed("stored-a", 11, PERSON_A, clock.now - timedelta(hours=2))
    assert matcher.restore_identities([seed]) == 1
    assert matcher.restore_identities([seed]) == 0
    assert matcher.get_statistics()["total_identities"] == 1


def test_restore_treats_naive_timestamps_as_utc(matcher: PersonIdentityMatcher):
    seed = make_seed("stored-a", 11, PERSON_A, datetime(2026, 3, 14, 8, 0, 0))
    matcher.restore_identities([seed])
    assert matcher.get_identity("stored-a").created_at == datetime(2026, 3, 14, 8, 0, 0, tzinfo=timezone.utc)


def test_restored_identity_expires_like_any_other(matcher: PersonIdentityMatcher, clock):
    matcher.restore_identities([make_seed("stored-a", 11, PERSON_A, clock.now - timedelta(hours=2))])
    assert matcher.cleanup_expired(timedelta(minutes=10)) == 1
    assert matcher.get_active_identity_count() == 0


@pytest.fixture
def confidence_matcher(clock) -> PersonIdentityMatcher:
    return PersonIdentityMatcher(
        feature_dimension=4,
        similarity_threshold=0.9,
        confirmation_threshold=3,
        enable_confidence_confirmation=True,
        min_confidence_for_confirmation=0.5,
        min_high_confidence_detections=2,
        clock=clock,
    )


def test_confidence_confirmation(confidence_matcher: PersonIdentityMatcher):
    confidence_matcher.get_or_create_identity(PERSON_A, detection_confidence=0.9)
    assert confidence_matcher.get_confirmed_identity_count() == 0

    confidence_matcher.get_or_create_identity(PERSON_A, detection_confidence=0.3)
    assert confidence_matcher.get_confirmed_identity_count() == 0

    confidence_matcher.get_or_create_identity(PERSON_B, detection_confidence=0.95)
    confidence_matcher.get_or_create_identity(PERSON_B, detection_confidence=0.8)
    assert confidence_matcher.get_confirmed_identity_count() == 1


def test_confidence_confirmation_disabled_by_default(matcher: PersonIdentityMatcher):
    matcher.get_or_create_identity(PERSON_A, detection_confidence=0.99)
    matcher.get_or_create_identity(PERSON_A, detection_confidence=0.99)
    assert matcher.get_confirmed_identity_count() == 0


def test_statistics(matcher: PersonIdentityMatcher, clock):
    gid_a = matcher.get_or_create_identity(PERSON_A, camera_id="c01")
    matcher.get_or_create_identity(PERSON_A, camera_id="c02")
    matcher.get_or_create_identity(PERSON_A, camera_id="c02")
    matcher.set_db_id(gid_a, 1)
    clock.advance(minutes=5)
    matcher.get_or_create_identity(PERSON_B, camera_id="c03")

    stats = matcher.get_statistics()

    assert stats["total_identities"] == 2
    assert stats["active_identities"] == 2
    assert stats["confirmed_identities"] == 1
    assert stats["from_persistence"] == 1
    assert stats["currently_active"] == 1
    assert stats["active_cameras"] == 3
    assert stats["global_unique"] == 2
    assert stats["session_number"] == 0
    assert stats["session_unique"] == 2
    assert stats["tracked_tracks"] == 0
    assert datetime.fromisoformat(stats["session_started_at"]).tzinfo is not None


def test_restore_keeps_most_recent_within_capacity(clock, caplog):
    matcher = PersonIdentityMatcher(
        feature_dimension=4, similarity_threshold=0.9, max_identities_in_memory=2, clock=clock
    )
    day_start = clock.now - timedelta(hours=6)
    seeds = [
        make_seed("oldest", 1, PERSON_A, day_start, last_seen_at=clock.now - timedelta(hours=3)),
        make_seed("busy", 2, PERSON_B, day_start, last_seen_at=clock.now - timedelta(hours=1), sighting_count=9),
        make_seed("quiet", 3, [0.0, 0.0, 1.0, 0.0], day_start, last_seen_at=clock.now - timedelta(hours=1)),
        make_seed("newest", 4, [0.0, 0.0, 0.0, 1.0], day_start, last_seen_at=clock.now - timedelta(minutes=5)),
    ]

    with caplog.at_level(logging.WARNING):
        assert matcher.restore_identities(seeds) == 2

    assert matcher.get_db_id("newest") == 4
    assert matcher.get_db_id("busy") == 2
    assert matcher.get_identity("quiet") is None
    assert matcher.get_identity("oldest") is None
    assert matcher.get_today_unique_count() == 2
    assert "Skipped 2 persisted identities" in caplog.text


def test_restore_counts_existing_identities_against_capacity(clock):
    matcher = PersonIdentityMatcher(
        feature_dimension=4, similarity_threshold=0.9, max_identities_in_memory=1, clock=clock
    )
    matcher.get_or_create_identity(PERSON_A)

    assert matcher.restore_identities([make_seed("stored-b", 2, PERSON_B, clock.now - timedelta(hours=1))]) == 0
    assert matcher.get_statistics()["total_identities"] == 1


def windowed_confidence_matcher(clock, window: timedelta) -> PersonIdentityMatcher:
    return PersonIdentityMatcher(
        feature_dimension=4,
        similarity_threshold=0.9,
        confirmation_threshold=10,
        enable_confidence_confirmation=True,
        min_confidence_for_confirmation=0.5,
        min_high_confidence_detections=2,
        high_confidence_window=window,
        clock=clock,
    )


def test_confidence_confirmation_needs_detections_within_window(clock):
    confidence_matcher = windowed_confidence_matcher(clock, timedelta(seconds=10))
    confidence_matcher.get_or_create_identity(PERSON_A, detection_confidence=0.9)
    clock.advance(seconds=11)
    confidence_matcher.get_or_create_identity(PERSON_A, detection_confidence=0.9)
    assert confidence_matcher.get_confirmed_identity_count() == 0

    clock.advance(seconds=5)
    confidence_matcher.get_or_create_identity(PERSON_A, detection_confidence=0.9)
    assert confidence_matcher.get_confirmed_identity_count() == 1


def test_confidence_confirmation_is_sticky(clock):
    matcher = windowed_confidence_matcher(clock, timedelta(seconds=2))
    matcher.get_or_create_identity(PERSON_A, detection_confidence=0.9)
    clock.advance(seconds=1)
    matcher.get_or_create_identity(PERSON_A, detection_confidence=0.9)
    assert matcher.get_confirmed_identity_count() == 1

    # Only low-confidence sightings from here on; the window empties but confirmation holds.
    clock.advance(minutes=1)
    matcher.get_or_create_identity(PERSON_A, detection_confidence=0.1)
    assert matcher.get_confirmed_identity_count() == 1
