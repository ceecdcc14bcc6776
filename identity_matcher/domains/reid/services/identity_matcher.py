"""
Person identity matcher: the process-wide registry of global person identities.

Every detection pipeline (one per streaming camera or video job) feeds feature
vectors into `resolve_identity` / `get_or_create_identity`; a background
sweeper calls `cleanup_expired`; statistics handlers poll the counters. A
single readers-writer lock guards the whole registry:

- exclusive: resolve_identity, get_or_create_identity, update_identity,
  set_db_id, cleanup_expired, clear_all_identities, clear_camera_identities,
  start_new_session, restore_identities, close
- shared: try_match, get_db_id, get_identity, get_statistics and all counters

Each exclusive operation runs its similarity scan and the mutation it informs
without interleaving, so two concurrent detections of the same person can never
produce two identities. Nothing performs I/O while holding the lock.

Only active identities live in the search index, so a scan costs
O(active identities x D). Deactivated records stay known for
`inactive_retention` and are then dropped by `cleanup_expired`; the record
count is capped at `max_identities_in_memory`.

Merge policy on rematch: the stored vector becomes an exponential moving
average, `alpha * stored + (1 - alpha) * new`, re-normalised to unit length.
With alpha close to 1 the representative drifts slowly, so a long session
follows gradual appearance changes (lighting, pose) without a single bad crop
hijacking the identity. alpha = 0 replaces the vector outright.
"""
import logging
import uuid
from datetime import date, datetime, timedelta, timezone
from typing import Any, Callable, Dict, Iterable, List, NamedTuple, Optional

import numpy as np

from identity_matcher.core.config import Settings
from identity_matcher.domains.reid.entities.bounding_box import BoundingBox
from identity_matcher.domains.reid.entities.feature_vector import FeatureVector, VectorLike
from identity_matcher.domains.reid.entities.person_identity import (
    IdentitySeed,
    IdentitySnapshot,
    PersonIdentity,
)
from identity_matcher.domains.reid.errors import IdentityNotFoundError, InvalidVectorError
from identity_matcher.domains.reid.services.match_stability import MatchStabilityTracker
from identity_matcher.domains.reid.services.similarity import (
    GalleryCandidate,
    MatchResult,
    NO_MATCH_SIMILARITY,
    score_gallery,
    select_best_match,
)
from identity_matcher.shared.types import CameraID, DbID, GlobalID, TrackID
from identity_matcher.utils.rwlock import ReadWriteLock

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _as_utc(timestamp: datetime) -> datetime:
    if timestamp.tzinfo is None:
        return timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc)


class IdentityResolution(NamedTuple):
    """Outcome of one detection, captured under the same lock that decided it."""
    global_id: GlobalID
    created: bool
    snapshot: IdentitySnapshot


class PersonIdentityMatcher:
    """
    Concurrent, similarity-based registry of global person identities.

    Construct one instance per process and hand it to every caller; it holds no
    module-level state.
    """

    def __init__(
        self,
        feature_dimension: int,
        similarity_threshold: float = 0.80,
        confirmation_threshold: int = 3,
        ema_alpha: float = 0.9,
        currently_active_window: timedelta = timedelta(seconds=30),
        match_stability_frames: int = 1,
        match_stability_reset: timedelta = timedelta(seconds=2),
        enable_confidence_confirmation: bool = False,
        min_confidence_for_confirmation: float = 0.25,
        min_high_confidence_detections: int = 1,
        high_confidence_window: timedelta = timedelta(seconds=10),
        inactive_retention: timedelta = timedelta(hours=1),
        max_identities_in_memory: int = 5000,
        clock: Optional[Clock] = None,
    ):
        """
        Args:
            feature_dimension: Embedding dimension D; fixed for the matcher's lifetime
            similarity_threshold: Minimum cosine similarity to treat two vectors as the same person
            confirmation_threshold: Sightings required before an identity counts as confirmed
            ema_alpha: Weight kept by the stored vector on rematch (0 replaces outright)
            currently_active_window: Recentness window for per-camera "currently visible" counts
            match_stability_frames: Consecutive frames before a track may switch identity (1 disables)
            match_stability_reset: Idle time after which a track's stability state is discarded
            enable_confidence_confirmation: Also confirm identities with enough high-confidence sightings
            min_confidence_for_confirmation: Detection confidence counted as "high"
            min_high_confidence_detections: High-confidence sightings within the window needed for confirmation
            high_confidence_window: Window over which high-confidence sightings are counted
            inactive_retention: How long a deactivated record stays known before cleanup drops it
            max_identities_in_memory: Upper bound on records held, active or not
            clock: Returns the current time; defaults to timezone-aware UTC now
        """
        if feature_dimension <= 0:
            raise ValueError("feature_dimension must be positive")
        if not -1.0 <= similarity_threshold <= 1.0:
            raise ValueError("similarity_threshold must be in [-1, 1]")
        if confirmation_threshold < 1:
            raise ValueError("confirmation_threshold must be at least 1")
        if not 0.0 <= ema_alpha < 1.0:
            raise ValueError("ema_alpha must be in [0, 1)")
        if inactive_retention < timedelta(0):
            raise ValueError("inactive_retention must not be negative")
        if max_identities_in_memory < 1:
            raise ValueError("max_identities_in_memory must be at least 1")

        self.feature_dimension = feature_dimension
        self.similarity_threshold = similarity_threshold
        self.confirmation_threshold = confirmation_threshold
        self.ema_alpha = ema_alpha
        self.currently_active_window = currently_active_window
        self.enable_confidence_confirmation = enable_confidence_confirmation
        self.min_confidence_for_confirmation = min_confidence_for_confirmation
        self.min_high_confidence_detections = min_high_confidence_detections
        self.high_confidence_window = high_confidence_window
        self.inactive_retention = inactive_retention
        self.max_identities_in_memory = max_identities_in_memory
        self._clock: Clock = clock or utc_now

        self._lock = ReadWriteLock()
        # All known records, and the subset that takes part in matching.
        self._identities: Dict[GlobalID, PersonIdentity] = {}
        self._active: Dict[GlobalID, PersonIdentity] = {}
        self._stability = MatchStabilityTracker(match_stability_frames, match_stability_reset)
        self._created_count = 0
        self._created_per_day: Dict[date, int] = {}
        self._session_number = 0
        self._session_created = 0
        self._session_started_at = self._now()

        logger.info(
            f"PersonIdentityMatcher initialized. Dimension: {feature_dimension}, "
            f"threshold: {similarity_threshold:.3f}, EMA alpha: {ema_alpha}, "
            f"confirmation sightings: {confirmation_threshold}, stability frames: {match_stability_frames}, "
            f"max in memory: {max_identities_in_memory}"
        )

    @classmethod
    def from_settings(cls, settings: Settings, clock: Optional[Clock] = None) -> "PersonIdentityMatcher":
        return cls(
            feature_dimension=settings.REID_FEATURE_DIMENSION,
            similarity_threshold=settings.REID_SIMILARITY_THRESHOLD,
            confirmation_threshold=settings.REID_CONFIRMATION_SIGHTINGS,
            ema_alpha=settings.REID_GALLERY_EMA_ALPHA,
            currently_active_window=settings.currently_active_window,
            match_stability_frames=settings.REID_MATCH_STABILITY_FRAMES,
            match_stability_reset=timedelta(seconds=settings.REID_MATCH_STABILITY_RESET_SECONDS),
            enable_confidence_confirmation=settings.ENABLE_CONFIDENCE_CONFIRMATION,
            min_confidence_for_confirmation=settings.MIN_CONFIDENCE_FOR_CONFIRMATION,
            min_high_confidence_detections=settings.MIN_HIGH_CONFIDENCE_DETECTIONS,
            high_confidence_window=settings.high_confidence_window,
            inactive_retention=settings.inactive_retention,
            max_identities_in_memory=settings.REID_MAX_IDENTITIES_IN_MEMORY,
            clock=clock,
        )

    # --- Matching ---

    def resolve_identity(
        self,
        vector: VectorLike,
        camera_id: Optional[CameraID] = None,
        bounding_box: Optional[BoundingBox] = None,
        detection_confidence: float = 0.0,
        track_id: Optional[TrackID] = None,
    ) -> IdentityResolution:
        """
        Resolve a detection to a global identity, creating one if nothing matches.

        Matching is global across cameras; `camera_id` only feeds per-camera
        statistics. `track_id` enables per-track match stability when the
        matcher was configured with more than one stability frame. Whether the
        identity was created and its state right after this sighting are taken
        inside the same exclusive section as the decision.
        """
        query = self._prepare_vector(vector)

        with self._lock.write_locked():
            now = self._now()
            result = self._search(query)
            decision = result.global_id if result.found else None

            target = decision
            bind_track = False
            track_key = (camera_id, track_id) if track_id is not None and self._stability.enabled else None
            if track_key is not None:
                stable_id = self._stability.resolve(track_key, decision, now)
                if stable_id is not None and stable_id in self._active:
                    target = stable_id
                elif stable_id is not None:
                    # Track was bound to an identity that has since expired.
                    bind_track = True

            created = target is None
            if not created:
                identity = self._active[target]
                self._apply_match(
                    identity,
                    query if target == decision else None,
                    now, camera_id, bounding_box, detection_confidence,
                )
                if target == decision:
                    logger.debug(
                        f"Matched {identity.global_id} (similarity={result.similarity:.4f}, "
                        f"camera={camera_id}, sightings={identity.sighting_count})"
                    )
                else:
                    logger.debug(
                        f"Track {track_key} held on {identity.global_id}; search chose "
                        f"{result.global_id if result.found else 'NEW'} (similarity={result.similarity:.4f}, "
                        f"sightings={identity.sighting_count})"
                    )
            else:
                identity = self._create_identity(query, now, camera_id, bounding_box, detection_confidence)
                bind_track = True
                logger.info(
                    f"New identity {identity.global_id} on camera {camera_id} "
                    f"(best similarity={result.similarity:.4f}, total created={self._created_count})"
                )

            if track_key is not None and bind_track:
                self._stability.bind(track_key, identity.global_id, now)

            return IdentityResolution(identity.global_id, created, identity.to_snapshot())

    def get_or_create_identity(
        self,
        vector: VectorLike,
        camera_id: Optional[CameraID] = None,
        bounding_box: Optional[BoundingBox] = None,
        detection_confidence: float = 0.0,
        track_id: Optional[TrackID] = None,
    ) -> GlobalID:
        """Global ID for a detection; see `resolve_identity`."""
        return self.resolve_identity(vector, camera_id, bounding_box, detection_confidence, track_id).global_id

    def try_match(self, vector: VectorLike) -> MatchResult:
        """Best active candidate and its score; never mutates and never creates."""
        query = self._prepare_vector(vector)
        with self._lock.read_locked():
            return self._search(query)

    def update_identity(
        self,
        global_id: GlobalID,
        vector: VectorLike,
        camera_id: Optional[CameraID] = None,
    ) -> None:
        """Re-anchor an identity's representative vector outside the matching path."""
        query = self._prepare_vector(vector)
        with self._lock.write_locked():
            identity = self._require(global_id)
            identity.representative_vector = query
            identity.touch(self._now(), camera_id)
            logger.info(f"Representative vector of {global_id} replaced (camera={camera_id})")

    # --- Persistence correlation ---

    def set_db_id(self, global_id: GlobalID, db_id: DbID) -> None:
        """
        Record the persistence row for an identity. The first write wins; a
        conflicting later write is ignored with a warning.
        """
        with self._lock.write_locked():
            identity = self._require(global_id)
            if identity.db_id is None:
                identity.db_id = db_id
                identity.is_from_persistence = True
            elif identity.db_id != db_id:
                logger.warning(
                    f"Ignoring db id {db_id} for {global_id}: already correlated with row {identity.db_id}"
                )

    def get_db_id(self, global_id: GlobalID) -> Optional[DbID]:
        """None while the identity is unknown or not yet persisted."""
        with self._lock.read_locked():
            identity = self._identities.get(global_id)
            return identity.db_id if identity is not None else None

    # --- Counters ---

    def get_active_identity_count(self) -> int:
        with self._lock.read_locked():
            return len(self._active)

    def get_confirmed_identity_count(self) -> int:
        with self._lock.read_locked():
            return sum(1 for i in self._active.values() if self._is_confirmed(i))

    def get_camera_identity_count(self, camera_id: CameraID) -> int:
        with self._lock.read_locked():
            return sum(1 for i in self._active.values() if camera_id in i.per_camera_last_seen)

    def get_currently_active_count(self, camera_id: CameraID) -> int:
        with self._lock.read_locked():
            cutoff = self._now() - self.currently_active_window
            return sum(
                1 for i in self._active.values()
                if camera_id in i.per_camera_last_seen
                and i.per_camera_last_seen[camera_id] >= cutoff
            )

    def get_global_unique_count(self) -> int:
        """Identities created by this process, active or not."""
        with self._lock.read_locked():
            return self._created_count

    def get_today_unique_count(self) -> int:
        """Identities whose creation falls on the current UTC calendar day."""
        with self._lock.read_locked():
            return self._created_per_day.get(self._now().date(), 0)

    def get_session_unique_count(self) -> int:
        with self._lock.read_locked():
            return self._session_created

    # --- Lifecycle ---

    def cleanup_expired(self, expiration: timedelta) -> int:
        """
        Deactivate identities not seen within `expiration`; returns how many.

        Also drops inactive records older than `inactive_retention`, idle track
        state and per-day counters for past days.
        """
        if expiration < timedelta(0):
            raise ValueError("expiration must not be negative")

        with self._lock.write_locked():
            now = self._now()
            cutoff = now - expiration
            expired = [i for i in self._active.values() if i.last_seen_at < cutoff]
            for identity in expired:
                self._deactivate(identity)

            purged = self._purge_inactive(now - self.inactive_retention)
            pruned_tracks = self._stability.prune(now, self._stability.reset_after)
            today = now.date()
            for day in [d for d in self._created_per_day if d < today]:
                del self._created_per_day[day]

            if expired or purged:
                logger.info(
                    f"Expired {len(expired)} identities not seen since {cutoff.isoformat()}, "
                    f"dropped {purged} inactive records (pruned {pruned_tracks} track states)"
                )
            return len(expired)

    def clear_all_identities(self) -> int:
        """Deactivate every identity. Creation counters are history and stay unchanged."""
        with self._lock.write_locked():
            cleared = len(self._active)
            for identity in list(self._active.values()):
                self._deactivate(identity)
            self._stability.clear()
            logger.warning(f"Cleared all identities ({cleared} deactivated)")
            return cleared

    def clear_camera_identities(self, camera_id: CameraID) -> int:
        """
        Drop `camera_id` from every active identity. Identities left without any
        camera association are deactivated; identities also seen on other
        cameras stay active and matchable. Returns how many were deactivated.
        """
        with self._lock.write_locked():
            detached = 0
            deactivated = 0
            for identity in list(self._active.values()):
                if camera_id not in identity.per_camera_last_seen:
                    continue
                del identity.per_camera_last_seen[camera_id]
                detached += 1
                if identity.last_camera_id == camera_id:
                    identity.last_camera_id = max(
                        identity.per_camera_last_seen,
                        key=identity.per_camera_last_seen.get,
                        default=None,
                    )
                if not identity.per_camera_last_seen:
                    self._deactivate(identity)
                    deactivated += 1
            self._stability.forget_camera(camera_id)
            logger.warning(
                f"Cleared camera {camera_id}: detached {detached} identities, deactivated {deactivated}"
            )
            return deactivated

    def start_new_session(self) -> None:
        """Reset the session marker; only the session count is affected."""
        with self._lock.write_locked():
            self._session_number += 1
            self._session_created = 0
            self._session_started_at = self._now()
            self._stability.clear()
            logger.warning(f"New session {self._session_number} started at {self._session_started_at.isoformat()}")

    def restore_identities(self, seeds: Iterable[IdentitySeed]) -> int:
        """
        Load previously persisted identities. Restored identities are matchable
        and carry their db id, but do not count as created by this process.
        Rows with unusable vectors or already-known IDs are skipped; when the
        registry would exceed `max_identities_in_memory`, the most recently
        seen rows are kept.
        """
        prepared: List[tuple] = []
        for seed in seeds:
            try:
                prepared.append((seed, self._prepare_vector(seed.representative_vector)))
            except InvalidVectorError as e:
                logger.warning(f"Skipping persisted identity {seed.global_id}: {e}")
        prepared.sort(key=lambda item: (_as_utc(item[0].last_seen_at), item[0].sighting_count), reverse=True)

        with self._lock.write_locked():
            loaded = 0
            skipped_for_capacity = 0
            for seed, vector in prepared:
                if seed.global_id in self._identities:
                    continue
                if len(self._identities) >= self.max_identities_in_memory:
                    skipped_for_capacity += 1
                    continue
                created_at = _as_utc(seed.created_at)
                last_seen_at = max(_as_utc(seed.last_seen_at), created_at)
                identity = PersonIdentity(
                    global_id=seed.global_id,
                    representative_vector=vector,
                    created_at=created_at,
                    last_seen_at=last_seen_at,
                    per_camera_last_seen={camera: last_seen_at for camera in seed.cameras},
                    sighting_count=seed.sighting_count,
                    db_id=seed.db_id,
                    first_camera_id=seed.cameras[0] if seed.cameras else None,
                    last_camera_id=seed.cameras[-1] if seed.cameras else None,
                    is_from_persistence=True,
                    is_restored=True,
                )
                self._identities[identity.global_id] = identity
                self._active[identity.global_id] = identity
                day = created_at.date()
                self._created_per_day[day] = self._created_per_day.get(day, 0) + 1
                loaded += 1

            if skipped_for_capacity:
                logger.warning(
                    f"Skipped {skipped_for_capacity} persisted identities: "
                    f"registry holds at most {self.max_identities_in_memory}"
                )
            logger.info(f"Restored {loaded} persisted identities")
            return loaded

    def close(self) -> None:
        """Drop all state on shutdown."""
        with self._lock.write_locked():
            count = len(self._identities)
            self._identities.clear()
            self._active.clear()
            self._stability.clear()
            logger.info(f"PersonIdentityMatcher closed ({count} identities dropped)")

    # --- Queries ---

    def get_identity(self, global_id: GlobalID) -> Optional[IdentitySnapshot]:
        with self._lock.read_locked():
            identity = self._identities.get(global_id)
            return identity.to_snapshot() if identity is not None else None

    def get_statistics(self) -> Dict[str, Any]:
        with self._lock.read_locked():
            now = self._now()
            cutoff = now - self.currently_active_window
            active = list(self._active.values())
            return {
                "total_identities": len(self._identities),
                "active_identities": len(active),
                "confirmed_identities": sum(1 for i in active if self._is_confirmed(i)),
                "from_persistence": sum(1 for i in self._identities.values() if i.is_from_persistence),
                "currently_active": sum(1 for i in active if i.last_seen_at >= cutoff),
                "active_cameras": len({c for i in active for c in i.per_camera_last_seen}),
                "global_unique": self._created_count,
                "session_number": self._session_number,
                "session_started_at": self._session_started_at.isoformat(),
                "session_unique": self._session_created,
                "tracked_tracks": len(self._stability),
            }

    # --- Internals (callers hold the lock) ---

    def _now(self) -> datetime:
        return _as_utc(self._clock())

    def _prepare_vector(self, vector: VectorLike) -> FeatureVector:
        feature = FeatureVector.coerce(vector)
        if feature.dimension != self.feature_dimension:
            raise InvalidVectorError(
                f"Expected feature dimension {self.feature_dimension}, got {feature.dimension}"
            )
        return feature.normalize()

    def _search(self, query: FeatureVector) -> MatchResult:
        if not self._active:
            return MatchResult(False, None, NO_MATCH_SIMILARITY)

        active = list(self._active.values())
        gallery = np.stack([i.representative_vector.values for i in active])
        scores = score_gallery(query.values, gallery)
        candidates = [GalleryCandidate(i.global_id, i.last_seen_at) for i in active]
        return select_best_match(candidates, scores, self.similarity_threshold)

    def _require(self, global_id: GlobalID) -> PersonIdentity:
        identity = self._identities.get(global_id)
        if identity is None:
            raise IdentityNotFoundError(global_id)
        return identity

    def _deactivate(self, identity: PersonIdentity) -> None:
        identity.active = False
        self._active.pop(identity.global_id, None)

    def _purge_inactive(self, older_than: datetime) -> int:
        stale = [
            gid for gid, i in self._identities.items()
            if not i.active and i.last_seen_at < older_than
        ]
        for gid in stale:
            del self._identities[gid]
        return len(stale)

    def _make_room(self) -> None:
        """Evict the least recently seen inactive records while at capacity."""
        excess = len(self._identities) - self.max_identities_in_memory + 1
        if excess <= 0:
            return
        inactive = sorted(
            (i for i in self._identities.values() if not i.active),
            key=lambda i: i.last_seen_at,
        )
        for identity in inactive[:excess]:
            del self._identities[identity.global_id]
        if len(inactive) < excess:
            logger.warning(
                f"Registry is full ({len(self._identities)} identities, limit "
                f"{self.max_identities_in_memory}) with nothing inactive to evict"
            )

    def _is_confirmed(self, identity: PersonIdentity) -> bool:
        if identity.sighting_count >= self.confirmation_threshold:
            return True
        return self.enable_confidence_confirmation and identity.confirmed_by_confidence

    def _update_confidence_confirmation(self, identity: PersonIdentity, recent_high_confidence: int) -> None:
        if self.enable_confidence_confirmation and recent_high_confidence >= self.min_high_confidence_detections:
            identity.confirmed_by_confidence = True

    def _merge_vectors(self, stored: FeatureVector, new: FeatureVector) -> FeatureVector:
        if self.ema_alpha == 0.0:
            return new
        blended = self.ema_alpha * stored.values + (1.0 - self.ema_alpha) * new.values
        norm = float(np.linalg.norm(blended))
        if norm < 1e-12:
            return new
        return FeatureVector(values=blended / norm)

    def _apply_match(
        self,
        identity: PersonIdentity,
        query: Optional[FeatureVector],
        now: datetime,
        camera_id: Optional[CameraID],
        bounding_box: Optional[BoundingBox],
        confidence: float,
    ) -> None:
        if query is not None:
            identity.representative_vector = self._merge_vectors(identity.representative_vector, query)
        recent = identity.record_sighting(
            now, camera_id, bounding_box, confidence,
            self.min_confidence_for_confirmation, self.high_confidence_window,
        )
        self._update_confidence_confirmation(identity, recent)

    def _create_identity(
        self,
        query: FeatureVector,
        now: datetime,
        camera_id: Optional[CameraID],
        bounding_box: Optional[BoundingBox],
        confidence: float,
    ) -> PersonIdentity:
        self._make_room()
        global_id = GlobalID(str(uuid.uuid4()))
        identity = PersonIdentity(
            global_id=global_id,
            representative_vector=query,
            created_at=now,
            last_seen_at=now,
            per_camera_last_seen={camera_id: now} if camera_id is not None else {},
            first_camera_id=camera_id,
            last_camera_id=camera_id,
            last_bounding_box=bounding_box,
            session_number=self._session_number,
        )
        recent = identity.record_confidence(
            confidence, self.min_confidence_for_confirmation, now, self.high_confidence_window
        )
        self._update_confidence_confirmation(identity, recent)
        self._identities[global_id] = identity
        self._active[global_id] = identity
        self._created_count += 1
        self._session_created += 1
        day = now.date()
        self._created_per_day[day] = self._created_per_day.get(day, 0) + 1
        return identity
