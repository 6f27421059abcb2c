# app/services/calendar/registry.py
"""Builds provider adapters and picks which calendar a user books into"""
import logging
from typing import Dict, Optional, Type

from sqlalchemy.orm import Session

from app.config.settings import get_settings
from app.core.exceptions import CalendarNotConnectedError, InvalidRequestError
from app.models import CalendarConnection, CalendarProvider
from app.services.calendar.base import CalendarProviderAdapter
from app.services.calendar.google_calendar_service import GoogleCalendarService
from app.services.calendar.oauth_config_service import OAuthConfigService
from app.services.calendar.outlook_service import OutlookCalendarService
from app.utils.encryption import TokenCipher

logger = logging.getLogger(__name__)

# When a user has several active connections, bookings go to the first one listed
PROVIDER_PRECEDENCE = [CalendarProvider.GOOGLE, CalendarProvider.OUTLOOK]

ADAPTER_CLASSES: Dict[CalendarProvider, Type[CalendarProviderAdapter]] = {
    CalendarProvider.GOOGLE: GoogleCalendarService,
    CalendarProvider.OUTLOOK: OutlookCalendarService,
}


def parse_provider(value: str) -> CalendarProvider:
    """Accept 'google', 'GOOGLE', 'outlook' ... from URLs and payloads"""
    try:
        return CalendarProvider(value.upper())
    except (ValueError, AttributeError):
        raise InvalidRequestError("Invalid provider. Must be google or outlook") from None


class CalendarProviderRegistry:
    def __init__(self, db: Session, cipher: TokenCipher, timeout_seconds: Optional[float] = None):
        self.db = db
        self.cipher = cipher
        self.timeout_seconds = timeout_seconds or get_settings().CALENDAR_HTTP_TIMEOUT_SECONDS
        self.oauth_configs = OAuthConfigService(db, cipher)
        self._adapters: Dict[CalendarProvider, CalendarProviderAdapter] = {}

    def get(self, provider: CalendarProvider) -> CalendarProviderAdapter:
        if provider not in self._adapters:
            adapter_cls = ADAPTER_CLASSES[provider]
            self._adapters[provider] = adapter_cls(
                self.db, self.cipher, self.oauth_configs, timeout_seconds=self.timeout_seconds
            )
        return self._adapters[provider]

    def active_providers(self, user_id: str):
        rows = self.db.query(CalendarConnection.provider).filter(
            CalendarConnection.user_id == user_id,
            CalendarConnection.is_active.is_(True),
        ).all()
        connected = {row[0] for row in rows}
        return [provider for provider in PROVIDER_PRECEDENCE if provider in connected]

    def resolve_user_provider(self, user_id: str) -> CalendarProvider:
        providers = self.active_providers(user_id)
        if not providers:
            raise CalendarNotConnectedError(
                "No calendar connected. Please connect Google Calendar or Outlook first."
            )
        return providers[0]
