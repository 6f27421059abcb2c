# ============================================================================
# FILE: app/api/v1/dashboard/calendar.py
# Calendar OAuth connect flow and connection management
# IMPORTANT: Specific routes MUST come before parameterized routes
# ============================================================================
import logging
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Path, Query
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from app.config.database import get_db
from app.config.settings import get_settings
from app.core.exceptions import AppError
from app.models.user import User
from app.api.dependencies import get_calendar_registry, get_current_user
from app.services.calendar.connection_service import CalendarConnectionService
from app.services.calendar.registry import CalendarProviderRegistry, parse_provider

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations/calendar", tags=["dashboard-calendar"])


def _frontend_redirect(query: str) -> RedirectResponse:
    return RedirectResponse(url=f"{get_settings().FRONTEND_URL}/client/integrations?{query}")


# ========== CONNECTIONS ==========

@router.get("/connections")
async def list_connections(
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    return {"connections": CalendarConnectionService.get_user_connections(db, current_user.id)}


@router.get("/connections/status/all")
async def connection_status(
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    return CalendarConnectionService.get_connection_status(db, current_user.id)


@router.get("/connections/{provider}")
async def get_connection(
        provider: str = Path(..., description="google or outlook"),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    connection = CalendarConnectionService.get_connection(db, current_user.id, parse_provider(provider))
    if connection is None:
        raise HTTPException(status_code=404, detail="Calendar not connected")
    return connection


@router.delete("/connections/{provider}")
async def disconnect(
        provider: str = Path(..., description="google or outlook"),
        current_user: User = Depends(get_current_user),
        db: Session = Depends(get_db)
):
    CalendarConnectionService.disconnect_calendar(db, current_user.id, parse_provider(provider))
    return {"success": True, "message": "Calendar disconnected successfully"}


# ========== OAUTH FLOW ==========

@router.get("/{provider}/auth")
async def get_auth_url(
        provider: str = Path(..., description="google or outlook"),
        current_user: User = Depends(get_current_user),
        registry: CalendarProviderRegistry = Depends(get_calendar_registry),
):
    """
    Returns the consent URL the dashboard should open.
    The user id is carried in the OAuth state parameter.
    """
    adapter = registry.get(parse_provider(provider))
    auth_url = await adapter.get_auth_url(current_user.id)
    return {
        "authUrl": auth_url,
        "message": f"Redirect user to this URL to authorize {adapter.display_name} access",
    }


@router.get("/{provider}/callback")
async def oauth_callback(
        provider: str = Path(..., description="google or outlook"),
        code: str = Query(None),
        state: str = Query(None),
        error: str = Query(None),
        registry: CalendarProviderRegistry = Depends(get_calendar_registry),
):
    """
    The provider redirects here after consent. Not authenticated: the user is
    identified by state. Always answers with a redirect back to the dashboard.
    """
    if error:
        logger.warning(f"OAuth consent for {provider} returned error: {error}")
        return _frontend_redirect(f"error={quote(error)}")
    if not code or not state:
        return _frontend_redirect("error=missing_parameters")

    try:
        calendar_provider = parse_provider(provider)
        await registry.get(calendar_provider).handle_oauth_callback(code, state)
    except AppError as e:
        logger.error(f"{provider} OAuth callback failed for user {state}: {e.message}")
        return _frontend_redirect(f"error={quote(e.message)}")
    except Exception:
        logger.exception(f"{provider} OAuth callback failed for user {state}")
        return _frontend_redirect("error=connection_failed")

    return _frontend_redirect(f"success={calendar_provider.value.lower()}_connected")
