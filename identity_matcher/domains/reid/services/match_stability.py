"""
Per-track match stability to prevent global IDs flipping between frames.

A track keeps the identity it is bound to until a different decision has been
observed for `required_frames` consecutive frames. Track state is reset after a
period without updates so a re-used tracker ID starts fresh.
"""
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, Optional, Tuple

from identity_matcher.shared.types import CameraID, GlobalID, TrackID

logger = logging.getLogger(__name__)

TrackKey = Tuple[Optional[CameraID], TrackID]


@dataclass
class _TrackState:
    current_id: Optional[GlobalID]
    last_update: datetime
    pending_id: Optional[GlobalID] = None
    pending_count: int = 0


class MatchStabilityTracker:
    """Not thread-safe; the identity matcher calls it under its write lock."""

    def __init__(self, required_frames: int = 1, reset_after: timedelta = timedelta(seconds=2)):
        if required_frames < 1:
            raise ValueError("required_frames must be at least 1")
        self.required_frames = required_frames
        self.reset_after = reset_after
        self._states: Dict[TrackKey, _TrackState] = {}

    @property
    def enabled(self) -> bool:
        return self.required_frames > 1

    def resolve(self, key: TrackKey, decision: Optional[GlobalID], now: datetime) -> Optional[GlobalID]:
        """
        Return the identity the track should report this frame.

        `decision` is what the similarity search chose (None means "new person").
        """
        state = self._states.get(key)
        if state is None or now - state.last_update > self.reset_after:
            self._states[key] = _TrackState(current_id=decision, last_update=now)
            return decision

        state.last_update = now

        if decision == state.current_id:
            state.pending_id = None
            state.pending_count = 0
            return state.current_id

        if decision == state.pending_id:
            state.pending_count += 1
        else:
            state.pending_id = decision
            state.pending_count = 1

        if state.pending_count >= self.required_frames:
            logger.info(
                f"Stable ID change on track {key}: {state.current_id} -> {decision or 'NEW'} "
                f"after {state.pending_count} frames"
            )
            state.current_id = decision
            state.pending_id = None
            state.pending_count = 0
            return decision

        return state.current_id

    def bind(self, key: TrackKey, global_id: GlobalID, now: datetime) -> None:
        """Attach a track to an identity, e.g. right after the identity was created for it."""
        state = self._states.get(key)
        if state is None:
            self._states[key] = _TrackState(current_id=global_id, last_update=now)
            return
        state.current_id = global_id
        state.pending_id = None
        state.pending_count = 0
        state.last_update = now

    def prune(self, now: datetime, max_idle: timedelta) -> int:
        stale = [key for key, state in self._states.items() if now - state.last_update > max_idle]
        for key in stale:
            del self._states[key]
        return len(stale)

    def forget_camera(self, camera_id: CameraID) -> None:
        for key in [k for k in self._states if k[0] == camera_id]:
            del self._states[key]

    def clear(self) -> None:
        self._states.clear()

    def __len__(self) -> int:
        return len(self._states)
