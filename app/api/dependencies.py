# ============================================================================
# FILE: app/api/dependencies.py
# JWT authentication and service wiring dependencies
# ============================================================================
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.orm import Session
from typing import Optional
from jose import JWTError, jwt

from app.config.database import get_db
from app.config.settings import get_settings
from app.models.user import User, UserRole
from app.services.appointment.appointment_service import AppointmentService
from app.services.calendar.oauth_config_service import OAuthConfigService
from app.services.calendar.registry import CalendarProviderRegistry
from app.services.calendar.sync_service import CalendarSyncService
from app.services.vapi.datetime_normalizer import load_zone
from app.services.vapi.function_router import VapiFunctionRouter
from app.utils.encryption import TokenCipher, get_token_cipher

# ============================================================================
# Security Schemes
# ============================================================================

# JWT security for user authentication
jwt_security = HTTPBearer(
    scheme_name="JWT Bearer Token",
    description="Enter your JWT access token"
)


# ============================================================================
# JWT Token Functions
# ============================================================================

def verify_access_token(token: str) -> dict:
    """
    Verify and decode a JWT access token.

    Tokens are issued by the auth service; only signature, expiry and the
    token type (when present) are checked here.

    Raises:
        HTTPException: If token is invalid or expired
    """
    settings = get_settings()
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM]
        )
    except JWTError as e:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail=f"Could not validate credentials: {str(e)}",
            headers={"WWW-Authenticate": "Bearer"},
        )

    token_type = payload.get("type")
    if token_type is not None and token_type != "access":
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid token type",
            headers={"WWW-Authenticate": "Bearer"},
        )

    return payload


# ============================================================================
# JWT Authentication Dependencies
# ============================================================================

async def get_current_user(
        credentials: HTTPAuthorizationCredentials = Depends(jwt_security),
        db: Session = Depends(get_db)
) -> User:
    """
    Dependency to get the current authenticated user from JWT access token.

    Raises:
        HTTPException 401: If token is invalid or user not found
        HTTPException 403: If the account is disabled
    """
    payload = verify_access_token(credentials.credentials)

    user_id: Optional[str] = payload.get("sub")
    if user_id is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    user = db.query(User).filter(User.id == str(user_id)).first()
    if user is None:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Inactive user account"
        )

    return user


async def require_admin(
        current_user: User = Depends(get_current_user)
) -> User:
    """Dependency that requires user to be a platform admin."""
    if current_user.role != UserRole.ADMIN:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Admin access required"
        )

    return current_user


# ============================================================================
# Service Dependencies
# ============================================================================

def get_cipher() -> TokenCipher:
    return get_token_cipher()


def get_calendar_registry(
        db: Session = Depends(get_db),
        cipher: TokenCipher = Depends(get_cipher),
) -> CalendarProviderRegistry:
    return CalendarProviderRegistry(db, cipher)


def get_oauth_config_service(
        db: Session = Depends(get_db),
        cipher: TokenCipher = Depends(get_cipher),
) -> OAuthConfigService:
    return OAuthConfigService(db, cipher)


def get_appointment_service(
        db: Session = Depends(get_db),
        registry: CalendarProviderRegistry = Depends(get_calendar_registry),
) -> AppointmentService:
    return AppointmentService(db, registry)


def get_sync_service(
        db: Session = Depends(get_db),
        registry: CalendarProviderRegistry = Depends(get_calendar_registry),
) -> CalendarSyncService:
    return CalendarSyncService(db, registry)


def get_vapi_router(
        db: Session = Depends(get_db),
        registry: CalendarProviderRegistry = Depends(get_calendar_registry),
        ledger: AppointmentService = Depends(get_appointment_service),
) -> VapiFunctionRouter:
    settings = get_settings()
    zone = load_zone(settings.VOICE_ASSISTANT_TIMEZONE, settings.VOICE_FALLBACK_UTC_OFFSET_HOURS)
    return VapiFunctionRouter(db, registry, ledger, zone)
