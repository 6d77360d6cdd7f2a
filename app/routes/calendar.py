"""
Calendar API Routes
Manual sync trigger, connection status and disconnect for the authenticated user.
"""

from fastapi import APIRouter, Depends, HTTPException, status

from app.auth.verify import auth_dependency
from app.infrastructure.observability.logging import get_logger
from app.models.api.calendar_response import (
    CalendarStatusResponse,
    DisconnectResponse,
    SyncOutcomeResponse,
)
from app.models.domain.credential_domain import GOOGLE_CALENDAR
from app.repositories.credential_repository import credential_repository
from app.services.calendar.errors import CalendarSyncError
from app.services.calendar.sync_service import calendar_sync_service

logger = get_logger(__name__)

router = APIRouter(prefix="/calendar", tags=["calendar"])


def _require_user_id(claims: dict) -> str:
    user_id = claims.get("sub")
    if not user_id:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid token")
    return user_id


@router.post("/sync", response_model=SyncOutcomeResponse)
async def sync_calendar_now(claims: dict = Depends(auth_dependency)):
    """
    Run one reconciliation pass for the caller.

    User-level failures are reported in the body, not as HTTP errors.
    """
    user_id = _require_user_id(claims)

    try:
        outcome = await calendar_sync_service.sync_user(user_id)
        return SyncOutcomeResponse.from_outcome(outcome)

    except CalendarSyncError as e:
        logger.warning(
            "Manual calendar sync aborted",
            user_id=user_id,
            error=str(e),
            error_type=type(e).__name__,
        )
        return SyncOutcomeResponse.from_error(str(e), reauth_required=not e.recoverable)

    except Exception as e:
        logger.error("Unexpected error during manual sync", user_id=user_id, error=str(e))
        return SyncOutcomeResponse.from_error("Calendar sync failed. Please try again later.")


@router.get("/status", response_model=CalendarStatusResponse)
async def get_calendar_connection_status(claims: dict = Depends(auth_dependency)):
    """Get calendar connection status for authenticated user."""
    user_id = _require_user_id(claims)

    try:
        credential = await credential_repository.get(user_id, GOOGLE_CALENDAR)
    except Exception as e:
        logger.error("Error getting calendar status", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to get calendar status",
        ) from e

    if credential is None:
        return CalendarStatusResponse(connected=False)

    return CalendarStatusResponse(**credential.to_status_dict())


@router.post("/disconnect", response_model=DisconnectResponse)
async def disconnect_calendar(claims: dict = Depends(auth_dependency)):
    """Deactivate the caller's calendar credential. Synced events keep their links."""
    user_id = _require_user_id(claims)

    try:
        deactivated = await credential_repository.deactivate(user_id, GOOGLE_CALENDAR)
    except Exception as e:
        logger.error("Error disconnecting calendar", user_id=user_id, error=str(e))
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail="Failed to disconnect calendar",
        ) from e

    if not deactivated:
        return DisconnectResponse(success=False, message="Google Calendar was not connected")

    logger.info("Calendar disconnected", user_id=user_id)
    return DisconnectResponse(success=True, message="Google Calendar disconnected")
