"""
Background sweeper that expires identities nobody has seen for a while.
"""
import asyncio
import logging
from datetime import timedelta
from typing import Optional

from identity_matcher.domains.reid.services.identity_matcher import PersonIdentityMatcher

logger = logging.getLogger(__name__)


class IdentityCleanupService:
    """Periodically calls `cleanup_expired` on the matcher."""

    def __init__(
        self,
        matcher: PersonIdentityMatcher,
        expiration: timedelta = timedelta(minutes=10),
        interval_seconds: float = 300.0,
    ):
        if interval_seconds <= 0:
            raise ValueError("interval_seconds must be positive")
        self._matcher = matcher
        self.expiration = expiration
        self.interval_seconds = interval_seconds
        self._running = False
        self._task: Optional[asyncio.Task] = None
        self.runs = 0
        self.total_expired = 0

    @property
    def is_running(self) -> bool:
        return self._running and self._task is not None and not self._task.done()

    async def start(self):
        """Start the sweeper loop."""
        if self._running:
            return

        self._running = True
        self._task = asyncio.create_task(self._cleanup_loop())
        logger.info(
            f"IdentityCleanupService started (every {self.interval_seconds}s, "
            f"expiration {self.expiration.total_seconds() / 60:.1f} min)"
        )

    async def stop(self):
        """Stop the sweeper loop."""
        self._running = False

        if self._task and not self._task.done():
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
        self._task = None

        logger.info("IdentityCleanupService stopped")

    def run_once(self) -> int:
        expired = self._matcher.cleanup_expired(self.expiration)
        self.runs += 1
        self.total_expired += expired
        if expired:
            logger.info(f"Identity cleanup expired {expired} identities")
        return expired

    async def _cleanup_loop(self):
        while self._running:
            try:
                await asyncio.sleep(self.interval_seconds)
                await asyncio.to_thread(self.run_once)
            except asyncio.CancelledError:
                break
            except Exception as e:
                logger.error(f"Error in identity cleanup loop: {e}", exc_info=True)
