"""
Per-frame identity assignment.

Feeds each detected person of a frame through the matcher and schedules
persistence of new identities as background tasks. Database writes happen
outside the registry lock; once a write succeeds the returned row id is
correlated with `set_db_id`. A failed write is logged and the identity stays
usable in memory, to be retried on its next sighting.
"""
import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Sequence, Set

from identity_matcher.domains.reid.entities.bounding_box import BoundingBox
from identity_matcher.domains.reid.entities.person_identity import IdentitySnapshot
from identity_matcher.domains.reid.errors import IdentityNotFoundError
from identity_matcher.domains.reid.models.base_reid_model import PersonFeatures
from identity_matcher.domains.reid.repositories.identity_repository import AbstractIdentityRepository
from identity_matcher.domains.reid.services.identity_matcher import PersonIdentityMatcher
from identity_matcher.shared.types import CameraID, DbID, GlobalID, TrackID

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class IdentityAssignment:
    global_id: GlobalID
    is_new: bool
    camera_id: Optional[CameraID]
    track_id: Optional[TrackID] = None
    bounding_box: Optional[BoundingBox] = None
    confidence: float = 0.0
    db_id: Optional[DbID] = None


class IdentityAssignmentService:
    """Assigns global identities to the detections of one frame at a time."""

    def __init__(
        self,
        matcher: PersonIdentityMatcher,
        repository: Optional[AbstractIdentityRepository] = None,
        record_sightings: bool = True,
    ):
        self._matcher = matcher
        self._repository = repository
        self._record_sightings = record_sightings
        self._pending: Set[asyncio.Task] = set()
        self._persisting: Set[GlobalID] = set()

        logger.info(
            f"IdentityAssignmentService initialized (persistence: {'enabled' if repository else 'disabled'})"
        )

    @property
    def pending_writes(self) -> int:
        return len(self._pending)

    async def assign(
        self,
        camera_id: Optional[CameraID],
        detections: Sequence[PersonFeatures],
    ) -> List[IdentityAssignment]:
        """
        Resolve every detection of a frame to a global identity.

        Args:
            camera_id: Camera the frame came from; overrides per-detection camera ids
            detections: Feature vectors and sighting context for each detected person

        Returns:
            One assignment per detection, in input order
        """
        assignments: List[IdentityAssignment] = []

        for detection in detections:
            detection_camera = camera_id if camera_id is not None else detection.camera_id
            # Matching is CPU-bound and takes a thread lock; keep the event loop free.
            resolution = await asyncio.to_thread(
                self._matcher.resolve_identity,
                detection.vector,
                detection_camera,
                detection.bounding_box,
                detection.confidence,
                detection.track_id,
            )
            global_id = resolution.global_id
            snapshot = resolution.snapshot
            db_id = snapshot.db_id

            assignments.append(IdentityAssignment(
                global_id=global_id,
                is_new=resolution.created,
                camera_id=detection_camera,
                track_id=detection.track_id,
                bounding_box=detection.bounding_box,
                confidence=detection.confidence,
                db_id=db_id,
            ))

            if self._repository is None:
                continue
            if db_id is None:
                if global_id not in self._persisting:
                    self._persisting.add(global_id)
                    self._schedule(self._persist_identity(global_id, snapshot))
            elif self._record_sightings:
                self._schedule(self._persist_sighting(
                    db_id, detection_camera, detection.bounding_box, detection.confidence
                ))

        if assignments:
            new_count = sum(1 for a in assignments if a.is_new)
            logger.debug(f"Camera {camera_id}: assigned {len(assignments)} detections ({new_count} new)")
        return assignments

    async def drain(self) -> None:
        """Wait for all scheduled persistence writes to finish."""
        if self._pending:
            await asyncio.gather(*list(self._pending), return_exceptions=True)

    def _schedule(self, coro) -> None:
        task = asyncio.create_task(coro)
        self._pending.add(task)
        task.add_done_callback(self._pending.discard)

    async def _persist_identity(self, global_id: GlobalID, snapshot: IdentitySnapshot) -> None:
        try:
            db_id = await self._repository.save_identity(snapshot)
            self._matcher.set_db_id(global_id, db_id)
            logger.info(f"Persisted identity {global_id} as row {db_id}")
        except IdentityNotFoundError:
            logger.warning(f"Identity {global_id} disappeared before its db id could be recorded")
        except Exception as e:
            logger.error(f"Failed to persist identity {global_id}: {e}", exc_info=True)
        finally:
            self._persisting.discard(global_id)

    async def _persist_sighting(
        self,
        db_id: DbID,
        camera_id: Optional[CameraID],
        bounding_box: Optional[BoundingBox],
        confidence: float,
    ) -> None:
        try:
            await self._repository.record_sighting(db_id, camera_id, bounding_box, confidence)
        except Exception as e:
            logger.warning(f"Failed to record sighting for row {db_id}: {e}")
