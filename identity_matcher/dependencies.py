"""
Module for providing application dependencies.
Leverages FastAPI's dependency injection system and app.state for components built in the lifespan.
"""
import logging

from fastapi import HTTPException, Request, status

from identity_matcher.domains.reid.services.identity_assignment_service import IdentityAssignmentService
from identity_matcher.domains.reid.services.identity_matcher import PersonIdentityMatcher

logger = logging.getLogger(__name__)


def get_identity_matcher(request: Request) -> PersonIdentityMatcher:
    """Retrieves the process-wide identity matcher from app.state."""
    matcher = getattr(request.app.state, 'identity_matcher', None)
    if matcher is None:
        logger.error("Identity matcher not found in app.state. Startup might have failed.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Identity matcher not initialized.")
    return matcher


def get_identity_assignment_service(request: Request) -> IdentityAssignmentService:
    """Retrieves the identity assignment service from app.state."""
    service = getattr(request.app.state, 'identity_assignment_service', None)
    if service is None:
        logger.error("IdentityAssignmentService not found in app.state. Startup might have failed.")
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Identity assignment not available.")
    return service
