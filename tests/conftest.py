"""
Global fixtures for the identity matcher test suite.
"""
from datetime import datetime, timedelta, timezone

import pytest

from identity_matcher.core.config import Settings
from identity_matcher.domains.reid.services.identity_matcher import PersonIdentityMatcher


class FakeClock:
    """Controllable, timezone-aware UTC clock."""

    def __init__(self, start: datetime):
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> datetime:
        self.now += timedelta(**kwargs)
        return self.now


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2026, 3, 14, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def test_settings() -> Settings:
    return Settings(
        APP_NAME="Identity Matcher Test",
        REID_FEATURE_DIMENSION=4,
        REID_SIMILARITY_THRESHOLD=0.9,
        REID_GALLERY_EMA_ALPHA=0.9,
        REID_CONFIRMATION_SIGHTINGS=3,
        START_IDENTITY_CLEANUP=False,
        LOAD_IDENTITIES_ON_STARTUP=False,
    )


@pytest.fixture
def matcher(clock: FakeClock) -> PersonIdentityMatcher:
    """Four-dimensional matcher with a 0.9 cosine threshold."""
    return PersonIdentityMatcher(
        feature_dimension=4,
        similarity_threshold=0.9,
        confirmation_threshold=3,
        ema_alpha=0.9,
        clock=clock,
    )
