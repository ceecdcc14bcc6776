"""
Person identity entity for cross-camera re-identification.

`PersonIdentity` is the mutable record owned by the matcher's registry; it is
only ever touched while the registry lock is held. Readers receive an
`IdentitySnapshot` instead.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from identity_matcher.domains.reid.entities.bounding_box import BoundingBox
from identity_matcher.domains.reid.entities.feature_vector import FeatureVector
from identity_matcher.shared.types import CameraID, DbID, GlobalID


@dataclass
class PersonIdentity:
    """Registry record for one distinguishable person."""

    global_id: GlobalID
    representative_vector: FeatureVector
    created_at: datetime
    last_seen_at: datetime
    per_camera_last_seen: Dict[CameraID, datetime] = field(default_factory=dict)
    sighting_count: int = 1
    db_id: Optional[DbID] = None
    active: bool = True

    first_camera_id: Optional[CameraID] = None
    last_camera_id: Optional[CameraID] = None
    last_bounding_box: Optional[BoundingBox] = None
    max_confidence: float = 0.0
    # Lifetime total; confirmation looks only at recent_high_confidence.
    high_confidence_count: int = 0
    recent_high_confidence: List[datetime] = field(default_factory=list)
    confirmed_by_confidence: bool = False
    session_number: int = 0
    is_from_persistence: bool = False
    # Loaded from storage at start-up rather than created by this process.
    is_restored: bool = False

    def __post_init__(self):
        """Validate person identity."""
        if not self.global_id:
            raise ValueError("Global ID cannot be empty")

        if self.sighting_count < 1:
            raise ValueError("Sighting count must be at least 1")

        if self.last_seen_at < self.created_at:
            raise ValueError("last_seen_at cannot precede created_at")

    def record_sighting(
        self,
        timestamp: datetime,
        camera_id: Optional[CameraID],
        bounding_box: Optional[BoundingBox],
        confidence: float,
        high_confidence_threshold: float,
        high_confidence_window: Optional[timedelta] = None,
    ) -> int:
        """
        Bump timestamps and counters for a successful match.

        Returns the number of high-confidence sightings within `high_confidence_window`.
        """
        self.sighting_count += 1
        self.touch(timestamp, camera_id)
        if bounding_box is not None:
            self.last_bounding_box = bounding_box
        return self.record_confidence(confidence, high_confidence_threshold, timestamp, high_confidence_window)

    def touch(self, timestamp: datetime, camera_id: Optional[CameraID]) -> None:
        # Timestamps never move backwards, even with a skewed caller clock.
        if timestamp > self.last_seen_at:
            self.last_seen_at = timestamp
        if camera_id is not None:
            previous = self.per_camera_last_seen.get(camera_id)
            if previous is None or timestamp > previous:
                self.per_camera_last_seen[camera_id] = timestamp
            self.last_camera_id = camera_id
            if self.first_camera_id is None:
                self.first_camera_id = camera_id

    def record_confidence(
        self,
        confidence: float,
        high_confidence_threshold: float,
        timestamp: Optional[datetime] = None,
        window: Optional[timedelta] = None,
    ) -> int:
        timestamp = timestamp or self.last_seen_at
        if window is not None:
            cutoff = timestamp - window
            self.recent_high_confidence = [t for t in self.recent_high_confidence if t >= cutoff]
        if confidence > 0:
            self.max_confidence = max(self.max_confidence, confidence)
            if confidence >= high_confidence_threshold:
                self.high_confidence_count += 1
                self.recent_high_confidence.append(timestamp)
        return len(self.recent_high_confidence)

    @property
    def cameras_seen(self) -> List[CameraID]:
        return sorted(self.per_camera_last_seen)

    def to_snapshot(self) -> "IdentitySnapshot":
        return IdentitySnapshot(
            global_id=self.global_id,
            representative_vector=self.representative_vector.to_list(),
            created_at=self.created_at,
            last_seen_at=self.last_seen_at,
            per_camera_last_seen=dict(self.per_camera_last_seen),
            sighting_count=self.sighting_count,
            db_id=self.db_id,
            active=self.active,
            first_camera_id=self.first_camera_id,
            last_camera_id=self.last_camera_id,
            last_bounding_box=self.last_bounding_box.to_xyxy() if self.last_bounding_box else None,
            max_confidence=self.max_confidence,
            is_from_persistence=self.is_from_persistence,
        )


class IdentitySnapshot(BaseModel):
    """Read-only copy of an identity handed to callers outside the lock."""
    model_config = ConfigDict(frozen=True)

    global_id: GlobalID
    representative_vector: List[float]
    created_at: datetime
    last_seen_at: datetime
    per_camera_last_seen: Dict[CameraID, datetime] = Field(default_factory=dict)
    sighting_count: int
    db_id: Optional[DbID] = None
    active: bool
    first_camera_id: Optional[CameraID] = None
    last_camera_id: Optional[CameraID] = None
    last_bounding_box: Optional[tuple] = Field(None, description="(x1, y1, x2, y2) of the latest sighting.")
    max_confidence: float = 0.0
    is_from_persistence: bool = False


class IdentitySeed(BaseModel):
    """Persisted identity used to warm the registry at start-up."""

    global_id: GlobalID
    db_id: DbID
    representative_vector: List[float] = Field(..., min_length=1)
    created_at: datetime
    last_seen_at: datetime
    sighting_count: int = Field(default=1, ge=1)
    cameras: List[CameraID] = Field(default_factory=list)
