# app/services/calendar/base.py
"""
Provider-neutral calendar adapter.

Google and Outlook share token storage, refresh and deactivation logic here;
subclasses only implement the provider wire calls.
"""
import asyncio
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import (
    AppError,
    CalendarAuthError,
    CalendarNotConnectedError,
    CalendarProviderError,
)
from app.models import CalendarConnection, CalendarProvider
from app.services.calendar.oauth_config_service import OAuthClientConfig, OAuthConfigService
from app.utils.encryption import TokenCipher

logger = logging.getLogger(__name__)

DEFAULT_TOKEN_LIFETIME = timedelta(hours=1)


@dataclass
class CalendarEvent:
    """An event as read from a provider, times in UTC"""
    id: str
    title: Optional[str]
    start: Optional[datetime]
    end: Optional[datetime]
    description: Optional[str] = None
    attendees: List[str] = field(default_factory=list)
    html_link: Optional[str] = None
    all_day: bool = False


@dataclass
class CreatedEvent:
    id: str
    html_link: Optional[str] = None


@dataclass
class AvailabilityResult:
    is_available: bool
    conflicts: List[Any] = field(default_factory=list)


@dataclass
class AuthenticatedClient:
    """Decrypted credentials for one provider call sequence"""
    connection: CalendarConnection
    access_token: str
    refresh_token: str

    @property
    def calendar_id(self) -> str:
        return self.connection.calendar_id or "primary"


class CalendarProviderAdapter(ABC):
    """Uniform contract over one calendar provider for one DB session"""

    provider: CalendarProvider
    display_name: str

    def __init__(
            self,
            db: Session,
            cipher: TokenCipher,
            oauth_configs: OAuthConfigService,
            timeout_seconds: float = 10.0,
    ):
        self.db = db
        self.cipher = cipher
        self.oauth_configs = oauth_configs
        self.timeout_seconds = timeout_seconds

    # ------------------------------------------------------------------
    # OAuth
    # ------------------------------------------------------------------

    @abstractmethod
    async def get_auth_url(self, user_id: str) -> str:
        ...

    @abstractmethod
    async def handle_oauth_callback(self, code: str, user_id: str) -> Dict[str, Any]:
        ...

    @abstractmethod
    def _refresh_access_token(self, config: OAuthClientConfig, refresh_token: str) -> Dict[str, Any]:
        """Blocking refresh returning access_token, expiry and optionally refresh_token"""

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    @abstractmethod
    async def list_events(self, user_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        ...

    @abstractmethod
    async def create_event(
            self,
            user_id: str,
            title: str,
            start: datetime,
            end: datetime,
            description: Optional[str] = None,
            attendee_email: Optional[str] = None,
            location: Optional[str] = None,
    ) -> CreatedEvent:
        ...

    @abstractmethod
    async def update_event(
            self,
            user_id: str,
            event_id: str,
            title: Optional[str] = None,
            start: Optional[datetime] = None,
            end: Optional[datetime] = None,
            description: Optional[str] = None,
    ) -> CreatedEvent:
        ...

    @abstractmethod
    async def delete_event(self, user_id: str, event_id: str) -> bool:
        """Delete an event. An event that is already gone counts as deleted."""

    async def check_availability(
            self,
            user_id: str,
            start: datetime,
            end: datetime,
            ignore_event_ids=(),
    ) -> AvailabilityResult:
        events = await self.list_events(user_id, start, end)
        conflicts = [
            event for event in events
            if event.id not in ignore_event_ids
            and not event.all_day
            and event.start < end and event.end > start
        ]
        return AvailabilityResult(is_available=not conflicts, conflicts=conflicts)

    # ------------------------------------------------------------------
    # Connection and token handling
    # ------------------------------------------------------------------

    def get_connection(self, user_id: str) -> Optional[CalendarConnection]:
        return self.db.query(CalendarConnection).filter(
            CalendarConnection.user_id == user_id,
            CalendarConnection.provider == self.provider,
        ).first()

    async def get_authenticated_client(self, user_id: str) -> AuthenticatedClient:
        connection = self.get_connection(user_id)
        if not connection or not connection.is_active:
            raise CalendarNotConnectedError(f"{self.display_name} not connected")

        refresh_token = self.cipher.decrypt(connection.refresh_token)
        now = datetime.now(timezone.utc)

        if now >= connection.token_expiry:
            config = self.oauth_configs.get_client_config(self.provider)
            try:
                refreshed = await self._call(self._refresh_access_token, config, refresh_token)
            except CalendarProviderError:
                # provider unreachable, the grant itself may still be valid
                raise
            except Exception as e:
                logger.error(
                    f"Token refresh failed for user {user_id} on {self.provider.value}: {e}"
                )
                connection.is_active = False
                self.db.commit()
                raise CalendarAuthError(
                    f"Failed to refresh {self.display_name} token. Please reconnect."
                ) from e

            connection.access_token = self.cipher.encrypt(refreshed["access_token"])
            if refreshed.get("refresh_token"):
                refresh_token = refreshed["refresh_token"]
                connection.refresh_token = self.cipher.encrypt(refresh_token)
            connection.token_expiry = refreshed.get("expiry") or now + DEFAULT_TOKEN_LIFETIME
            connection.last_synced_at = now
            self.db.commit()
            logger.info(f"Refreshed {self.provider.value} token for user {user_id}")
            return AuthenticatedClient(connection, refreshed["access_token"], refresh_token)

        return AuthenticatedClient(
            connection,
            self.cipher.decrypt(connection.access_token),
            refresh_token,
        )

    def _save_connection(
            self,
            user_id: str,
            access_token: str,
            refresh_token: str,
            token_expiry: datetime,
            calendar_id: str,
            calendar_name: Optional[str],
            email: Optional[str],
    ) -> CalendarConnection:
        """Insert or replace the user's connection for this provider"""
        now = datetime.now(timezone.utc)
        connection = self.get_connection(user_id)
        if connection is None:
            connection = CalendarConnection(user_id=user_id, provider=self.provider)
            self.db.add(connection)

        connection.access_token = self.cipher.encrypt(access_token)
        connection.refresh_token = self.cipher.encrypt(refresh_token)
        connection.token_expiry = token_expiry
        connection.calendar_id = calendar_id
        connection.calendar_name = calendar_name
        connection.email = email
        connection.is_active = True
        connection.last_synced_at = now
        self.db.commit()
        self.db.refresh(connection)
        logger.info(f"Saved {self.provider.value} calendar connection for user {user_id}")
        return connection

    async def _call(self, func, *args, **kwargs):
        """Run a blocking provider call off the event loop"""
        try:
            return await asyncio.to_thread(func, *args, **kwargs)
        except AppError:
            raise
        except TimeoutError as e:
            raise CalendarProviderError(
                f"{self.display_name} did not respond within {self.timeout_seconds:g}s"
            ) from e


def ensure_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)
