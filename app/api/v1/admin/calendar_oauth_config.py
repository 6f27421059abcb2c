# ============================================================================
# FILE: app/api/v1/admin/calendar_oauth_config.py
# Platform admin endpoints for calendar OAuth application credentials
# ============================================================================
from fastapi import APIRouter, Depends, Path

from app.api.dependencies import get_oauth_config_service, require_admin
from app.models.user import User
from app.schemas.calendar import OAuthConfigRequest
from app.services.calendar.oauth_config_service import OAuthConfigService
from app.services.calendar.registry import parse_provider

router = APIRouter(prefix="/integrations/calendar/oauth/config", tags=["Admin - Calendar OAuth"])


@router.get("")
async def list_oauth_configs(
        admin: User = Depends(require_admin),
        service: OAuthConfigService = Depends(get_oauth_config_service),
):
    return {"configs": service.get_all_public_configs()}


@router.get("/{provider}")
async def get_oauth_config(
        provider: str = Path(..., description="google or outlook"),
        admin: User = Depends(require_admin),
        service: OAuthConfigService = Depends(get_oauth_config_service),
):
    """Client secret is never returned, only whether one is stored."""
    return service.get_public_config(parse_provider(provider))


@router.post("/{provider}")
async def save_oauth_config(
        data: OAuthConfigRequest,
        provider: str = Path(..., description="google or outlook"),
        admin: User = Depends(require_admin),
        service: OAuthConfigService = Depends(get_oauth_config_service),
):
    calendar_provider = parse_provider(provider)
    service.save_config(
        calendar_provider,
        client_id=data.client_id,
        client_secret=data.client_secret,
        redirect_uri=data.redirect_uri,
        scopes=data.scopes,
        is_enabled=data.is_enabled,
    )
    return {
        "success": True,
        "message": f"{calendar_provider.value.title()} OAuth configuration saved",
        "config": service.get_public_config(calendar_provider),
    }
