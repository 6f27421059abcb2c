"""
API router setup
Organized into: voice webhooks, dashboard (JWT) and admin routes
"""
from fastapi import APIRouter

from app.api.v1.dashboard import appointments, calendar
from app.api.v1.admin import calendar_oauth_config
from app.webhooks.router import webhook_router

api_v1_router = APIRouter()

# ============================================================================
# VOICE PLATFORM WEBHOOKS (no JWT, always answer 200)
# ============================================================================
api_v1_router.include_router(
    webhook_router,
    prefix="/vapi/webhooks",
    tags=["Webhooks"]
)

# ============================================================================
# ADMIN ROUTES (JWT authentication + admin role required)
# ============================================================================
api_v1_router.include_router(
    calendar_oauth_config.router,
    tags=["Admin"]
)

# ============================================================================
# DASHBOARD ROUTES (JWT authentication required)
# ============================================================================
api_v1_router.include_router(
    appointments.router,
    tags=["Dashboard"]
)

api_v1_router.include_router(
    calendar.router,
    tags=["Dashboard"]
)


# ============================================================================
# ROOT ENDPOINT - API Info
# ============================================================================
@api_v1_router.get("/", tags=["Info"])
async def api_info():
    """
    API information and available endpoints.
    """
    return {
        "version": "1.0",
        "authentication": {
            "webhooks": "No authentication, tenant resolved from the call payload",
            "dashboard": "JWT Bearer token required (user login)",
            "admin": "JWT Bearer token + admin role required"
        }
    }
