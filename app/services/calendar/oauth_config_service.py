# app/services/calendar/oauth_config_service.py
"""Admin-managed OAuth application credentials for calendar providers"""
import logging
from dataclasses import dataclass
from typing import Dict, List, Optional

from sqlalchemy.orm import Session

from app.config.settings import Settings, get_settings
from app.core.exceptions import ConfigurationError
from app.models import CalendarOAuthConfig, CalendarProvider
from app.utils.encryption import TokenCipher

logger = logging.getLogger(__name__)

DEFAULT_SCOPES = {
    CalendarProvider.GOOGLE: "https://www.googleapis.com/auth/calendar,"
                             "https://www.googleapis.com/auth/calendar.events",
    CalendarProvider.OUTLOOK: "Calendars.ReadWrite,offline_access",
}

MASKED_SECRET = "••••••••"


def split_scopes(scopes: str) -> List[str]:
    return [scope.strip() for scope in (scopes or "").split(",") if scope.strip()]


@dataclass
class OAuthClientConfig:
    client_id: str
    client_secret: str
    redirect_uri: str
    scopes: List[str]


class OAuthConfigService:
    """Reads and writes CalendarOAuthConfig rows, falling back to env settings"""

    def __init__(self, db: Session, cipher: TokenCipher, settings: Optional[Settings] = None):
        self.db = db
        self.cipher = cipher
        self.settings = settings or get_settings()

    def _get_row(self, provider: CalendarProvider) -> Optional[CalendarOAuthConfig]:
        return self.db.query(CalendarOAuthConfig).filter(
            CalendarOAuthConfig.provider == provider
        ).first()

    def _from_settings(self, provider: CalendarProvider) -> OAuthClientConfig:
        s = self.settings
        if provider == CalendarProvider.GOOGLE:
            return OAuthClientConfig(
                client_id=s.GOOGLE_CLIENT_ID,
                client_secret=s.GOOGLE_CLIENT_SECRET,
                redirect_uri=s.GOOGLE_REDIRECT_URI,
                scopes=split_scopes(s.GOOGLE_CALENDAR_SCOPES),
            )
        return OAuthClientConfig(
            client_id=s.MICROSOFT_CLIENT_ID,
            client_secret=s.MICROSOFT_CLIENT_SECRET,
            redirect_uri=s.MICROSOFT_REDIRECT_URI,
            scopes=split_scopes(s.MICROSOFT_CALENDAR_SCOPES),
        )

    def get_client_config(self, provider: CalendarProvider) -> OAuthClientConfig:
        """Effective credentials for a provider, decrypted"""
        row = self._get_row(provider)
        if row is not None:
            if not row.is_enabled:
                raise ConfigurationError(
                    f"{provider.value.title()} calendar integration is disabled", status_code=503
                )
            return OAuthClientConfig(
                client_id=row.client_id,
                client_secret=self.cipher.decrypt(row.client_secret),
                redirect_uri=row.redirect_uri,
                scopes=split_scopes(row.scopes),
            )

        config = self._from_settings(provider)
        if not config.client_id or not config.client_secret:
            raise ConfigurationError(
                f"{provider.value.title()} OAuth credentials are not configured", status_code=503
            )
        return config

    def is_provider_enabled(self, provider: CalendarProvider) -> bool:
        row = self._get_row(provider)
        if row is not None:
            return bool(row.is_enabled)
        config = self._from_settings(provider)
        return bool(config.client_id and config.client_secret)

    def save_config(
            self,
            provider: CalendarProvider,
            client_id: str,
            client_secret: Optional[str],
            redirect_uri: str,
            scopes: Optional[str] = None,
            is_enabled: bool = True,
    ) -> CalendarOAuthConfig:
        """Upsert the provider's OAuth app. A blank secret keeps the stored one."""
        row = self._get_row(provider)
        if row is None:
            if not client_secret:
                raise ConfigurationError("Client secret is required")
            row = CalendarOAuthConfig(provider=provider)
            self.db.add(row)

        row.client_id = client_id
        if client_secret and client_secret != MASKED_SECRET:
            row.client_secret = self.cipher.encrypt(client_secret)
        row.redirect_uri = redirect_uri
        row.scopes = scopes or DEFAULT_SCOPES[provider]
        row.is_enabled = is_enabled
        self.db.commit()
        self.db.refresh(row)

        logger.info(f"Saved OAuth config for {provider.value}")
        return row

    def get_public_config(self, provider: CalendarProvider) -> Dict:
        """Config as shown to admins, with the secret masked"""
        row = self._get_row(provider)
        if row is None:
            return {
                "provider": provider.value,
                "clientId": "",
                "clientSecret": "",
                "hasSecret": False,
                "redirectUri": "",
                "scopes": DEFAULT_SCOPES[provider],
                "isEnabled": False,
            }
        return {
            "provider": provider.value,
            "clientId": row.client_id,
            "clientSecret": MASKED_SECRET,
            "hasSecret": bool(row.client_secret),
            "redirectUri": row.redirect_uri,
            "scopes": row.scopes,
            "isEnabled": row.is_enabled,
            "updatedAt": row.updated_at.isoformat() if row.updated_at else None,
        }

    def get_all_public_configs(self) -> List[Dict]:
        return [self.get_public_config(provider) for provider in CalendarProvider]
