"""
Application entry point.

The lifespan owns the process-wide identity matcher: it is built from settings
at start-up, optionally warmed from persisted identities, swept periodically
for expired identities and torn down on shutdown. Request handlers reach it
through `identity_matcher.dependencies`.
"""
import logging
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Optional

from fastapi import FastAPI

from identity_matcher.core.config import Settings, settings as default_settings
from identity_matcher.core.logging_config import configure_logging
from identity_matcher.domains.reid.repositories.identity_repository import AbstractIdentityRepository
from identity_matcher.domains.reid.services.identity_assignment_service import IdentityAssignmentService
from identity_matcher.domains.reid.services.identity_cleanup_service import IdentityCleanupService
from identity_matcher.domains.reid.services.identity_matcher import Clock, PersonIdentityMatcher, utc_now

logger = logging.getLogger(__name__)


async def _restore_identities(
    matcher: PersonIdentityMatcher,
    repository: AbstractIdentityRepository,
    app_settings: Settings,
    now: datetime,
) -> None:
    since = now - app_settings.identity_load_window
    try:
        seeds = await repository.load_recent_identities(since)
    except Exception as e:
        logger.warning(f"Could not load persisted identities (starting empty): {e}")
        return
    loaded = matcher.restore_identities(seeds)
    logger.info(f"Loaded {loaded} identities seen since {since.isoformat()}")


def create_app(
    app_settings: Optional[Settings] = None,
    repository: Optional[AbstractIdentityRepository] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    app_settings = app_settings or default_settings

    @asynccontextmanager
    async def lifespan(app_instance: FastAPI):
        configure_logging(app_settings.LOG_LEVEL)
        logger.info("Application startup sequence initiated...")

        matcher = PersonIdentityMatcher.from_settings(app_settings, clock=clock)
        app_instance.state.identity_matcher = matcher
        app_instance.state.identity_repository = repository
        app_instance.state.identity_assignment_service = IdentityAssignmentService(matcher, repository)

        if repository is not None and app_settings.LOAD_IDENTITIES_ON_STARTUP:
            await _restore_identities(matcher, repository, app_settings, (clock or utc_now)())

        cleanup_service = IdentityCleanupService(
            matcher,
            expiration=app_settings.identity_expiration,
            interval_seconds=app_settings.IDENTITY_CLEANUP_INTERVAL_SECONDS,
        )
        app_instance.state.identity_cleanup_service = cleanup_service
        if app_settings.START_IDENTITY_CLEANUP:
            await cleanup_service.start()
            logger.info("Started identity cleanup background task")

        try:
            yield
        finally:
            logger.info("Application shutdown sequence initiated...")
            await cleanup_service.stop()
            try:
                await app_instance.state.identity_assignment_service.drain()
            except Exception as e:
                logger.warning(f"Pending identity writes did not complete: {e}")
            matcher.close()
            app_instance.state.identity_matcher = None
            app_instance.state.identity_assignment_service = None

    return FastAPI(
        title=app_settings.APP_NAME,
        debug=app_settings.DEBUG,
        version="0.1.0",
        lifespan=lifespan,
    )


app = create_app()
