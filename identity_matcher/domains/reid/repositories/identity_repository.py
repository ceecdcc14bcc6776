"""
Identity repository interface.

Abstract interface for durable storage of person identities. The matcher never
calls it directly; the assignment service and the application start-up do,
outside the registry lock.
"""
from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from identity_matcher.domains.reid.entities.bounding_box import BoundingBox
from identity_matcher.domains.reid.entities.person_identity import IdentitySeed, IdentitySnapshot
from identity_matcher.shared.types import CameraID, DbID


class AbstractIdentityRepository(ABC):
    """
    Abstract identity repository interface.

    Implementations own the database session; failures are raised to the
    caller, which logs them and carries on.
    """

    @abstractmethod
    async def save_identity(self, snapshot: IdentitySnapshot) -> DbID:
        """
        Persist a newly created identity.

        Args:
            snapshot: Identity state at creation time

        Returns:
            Database row id to correlate with the global id
        """
        pass

    @abstractmethod
    async def record_sighting(
        self,
        db_id: DbID,
        camera_id: Optional[CameraID],
        bounding_box: Optional[BoundingBox],
        confidence: float,
    ) -> None:
        """
        Append a detection row for an already persisted identity.

        Args:
            db_id: Database row id of the identity
            camera_id: Camera the person was seen on
            bounding_box: Detection box, if any
            confidence: Detector confidence
        """
        pass

    @abstractmethod
    async def load_recent_identities(self, since: datetime) -> List[IdentitySeed]:
        """
        Load identities seen since the given time.

        Args:
            since: Lower bound on last_seen_at

        Returns:
            Seeds for `PersonIdentityMatcher.restore_identities`
        """
        pass
