# app/services/calendar/google_calendar_service.py
import functools
import logging
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httplib2
from google.auth.exceptions import TransportError
from google.auth.transport.requests import Request
from google.oauth2.credentials import Credentials
from google_auth_httplib2 import AuthorizedHttp
from google_auth_oauthlib.flow import Flow
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from app.core.exceptions import (
    CalendarAuthError,
    CalendarProviderError,
    InvalidRequestError,
)
from app.models import CalendarProvider
from app.services.calendar.base import (
    DEFAULT_TOKEN_LIFETIME,
    CalendarEvent,
    CalendarProviderAdapter,
    CreatedEvent,
    ensure_utc,
)
from app.services.calendar.oauth_config_service import OAuthClientConfig
from app.utils.time_utils import parse_iso_datetime, to_rfc3339

logger = logging.getLogger(__name__)

AUTH_URI = "https://accounts.google.com/o/oauth2/auth"
TOKEN_URI = "https://oauth2.googleapis.com/token"


class GoogleCalendarService(CalendarProviderAdapter):
    provider = CalendarProvider.GOOGLE
    display_name = "Google Calendar"

    # Minutes before the event
    EMAIL_REMINDER_MINUTES = 24 * 60
    POPUP_REMINDER_MINUTES = 30

    @staticmethod
    def _client_config(config: OAuthClientConfig) -> Dict[str, Any]:
        return {
            "web": {
                "client_id": config.client_id,
                "client_secret": config.client_secret,
                "redirect_uris": [config.redirect_uri],
                "auth_uri": AUTH_URI,
                "token_uri": TOKEN_URI,
            }
        }

    def _flow(self, config: OAuthClientConfig) -> Flow:
        # The callback runs in a new request, so there is no PKCE verifier to carry over
        return Flow.from_client_config(
            self._client_config(config),
            scopes=config.scopes,
            redirect_uri=config.redirect_uri,
            autogenerate_code_verifier=False,
        )

    async def get_auth_url(self, user_id: str) -> str:
        """Step 1: Generate the consent URL, user id travels in state"""
        config = self.oauth_configs.get_client_config(self.provider)
        flow = self._flow(config)

        authorization_url, _ = flow.authorization_url(
            access_type="offline",  # Gets refresh token
            prompt="consent",  # Force consent screen to get refresh token
            state=user_id,
        )
        logger.info(f"Generated Google authorization URL for user {user_id}")
        return authorization_url

    async def handle_oauth_callback(self, code: str, user_id: str) -> Dict[str, Any]:
        """Step 2: Exchange authorization code for tokens"""
        config = self.oauth_configs.get_client_config(self.provider)
        flow = self._flow(config)

        try:
            await self._call(flow.fetch_token, code=code)
        except CalendarProviderError:
            raise
        except Exception as e:
            logger.error(f"Failed to exchange Google authorization code for user {user_id}: {e}")
            raise CalendarAuthError("Failed to get tokens from Google") from e

        credentials = flow.credentials
        if not credentials.token or not credentials.refresh_token:
            raise CalendarAuthError("Failed to get tokens from Google")

        service = self._build_service(credentials)
        calendar_list = await self._execute(service.calendarList().list())
        primary = next(
            (item for item in calendar_list.get("items", []) if item.get("primary")),
            None,
        )
        if primary is None:
            raise InvalidRequestError("No primary calendar found")

        expiry = (
            ensure_utc(credentials.expiry)
            if credentials.expiry
            else datetime.now(timezone.utc) + DEFAULT_TOKEN_LIFETIME
        )
        self._save_connection(
            user_id=user_id,
            access_token=credentials.token,
            refresh_token=credentials.refresh_token,
            token_expiry=expiry,
            calendar_id=primary["id"],
            calendar_name=primary.get("summary"),
            email=primary["id"],
        )
        return {"success": True, "message": "Google Calendar connected successfully"}

    def _refresh_access_token(self, config: OAuthClientConfig, refresh_token: str) -> Dict[str, Any]:
        credentials = Credentials(
            token=None,
            refresh_token=refresh_token,
            token_uri=TOKEN_URI,
            client_id=config.client_id,
            client_secret=config.client_secret,
        )
        try:
            credentials.refresh(functools.partial(Request(), timeout=self.timeout_seconds))
        except TransportError as e:
            raise CalendarProviderError(f"Google Calendar request failed: {e}") from e
        return {
            "access_token": credentials.token,
            "expiry": ensure_utc(credentials.expiry) if credentials.expiry else None,
        }

    # ------------------------------------------------------------------
    # API plumbing
    # ------------------------------------------------------------------

    def _build_service(self, credentials: Credentials):
        http = AuthorizedHttp(credentials, http=httplib2.Http(timeout=self.timeout_seconds))
        return build("calendar", "v3", http=http, cache_discovery=False)

    async def _service_for(self, user_id: str):
        client = await self.get_authenticated_client(user_id)
        config = self.oauth_configs.get_client_config(self.provider)
        credentials = Credentials(
            token=client.access_token,
            refresh_token=client.refresh_token,
            token_uri=TOKEN_URI,
            client_id=config.client_id,
            client_secret=config.client_secret,
        )
        return client, self._build_service(credentials)

    async def _execute(self, request):
        try:
            return await self._call(request.execute)
        except HttpError as e:
            status = e.resp.status if e.resp is not None else None
            logger.error(f"Google Calendar API error ({status}): {e}")
            if status == 401:
                raise CalendarAuthError(
                    "Google Calendar rejected the stored credentials. Please reconnect."
                ) from e
            raise CalendarProviderError(f"Google Calendar API error ({status})") from e
        except (httplib2.HttpLib2Error, OSError) as e:
            raise CalendarProviderError(f"Google Calendar request failed: {e}") from e

    @staticmethod
    def _to_event(item: Dict[str, Any]) -> CalendarEvent:
        start = item.get("start", {})
        end = item.get("end", {})
        all_day = "dateTime" not in start or "dateTime" not in end
        return CalendarEvent(
            id=item["id"],
            title=item.get("summary"),
            start=None if all_day else parse_iso_datetime(start["dateTime"]).astimezone(timezone.utc),
            end=None if all_day else parse_iso_datetime(end["dateTime"]).astimezone(timezone.utc),
            description=item.get("description"),
            attendees=[a["email"] for a in item.get("attendees", []) if a.get("email")],
            html_link=item.get("htmlLink"),
            all_day=all_day,
        )

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def list_events(self, user_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        client, service = await self._service_for(user_id)

        events: List[CalendarEvent] = []
        page_token = None
        while True:
            response = await self._execute(service.events().list(
                calendarId=client.calendar_id,
                timeMin=to_rfc3339(start),
                timeMax=to_rfc3339(end),
                singleEvents=True,
                orderBy="startTime",
                pageToken=page_token,
            ))
            events.extend(self._to_event(item) for item in response.get("items", []))
            page_token = response.get("nextPageToken")
            if not page_token:
                break
        return events

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
        client, service = await self._service_for(user_id)

        body = {
            "summary": title,
            "description": description,
            "location": location,
            "start": {"dateTime": to_rfc3339(start), "timeZone": "UTC"},
            "end": {"dateTime": to_rfc3339(end), "timeZone": "UTC"},
            "attendees": [{"email": attendee_email}] if attendee_email else [],
            "reminders": {
                "useDefault": False,
                "overrides": [
                    {"method": "email", "minutes": self.EMAIL_REMINDER_MINUTES},
                    {"method": "popup", "minutes": self.POPUP_REMINDER_MINUTES},
                ],
            },
        }
        created = await self._execute(service.events().insert(
            calendarId=client.calendar_id,
            body=body,
            sendUpdates="all",
        ))
        logger.info(f"Created Google event {created['id']} for user {user_id}")
        return CreatedEvent(id=created["id"], html_link=created.get("htmlLink"))

    async def update_event(
            self,
            user_id: str,
            event_id: str,
            title: Optional[str] = None,
            start: Optional[datetime] = None,
            end: Optional[datetime] = None,
            description: Optional[str] = None,
    ) -> CreatedEvent:
        client, service = await self._service_for(user_id)

        body: Dict[str, Any] = {}
        if title is not None:
            body["summary"] = title
        if description is not None:
            body["description"] = description
        if start is not None:
            body["start"] = {"dateTime": to_rfc3339(start), "timeZone": "UTC"}
        if end is not None:
            body["end"] = {"dateTime": to_rfc3339(end), "timeZone": "UTC"}

        updated = await self._execute(service.events().patch(
            calendarId=client.calendar_id,
            eventId=event_id,
            body=body,
            sendUpdates="all",
        ))
        return CreatedEvent(id=updated["id"], html_link=updated.get("htmlLink"))

    async def delete_event(self, user_id: str, event_id: str) -> bool:
        client, service = await self._service_for(user_id)
        try:
            await self._execute(service.events().delete(
                calendarId=client.calendar_id,
                eventId=event_id,
                sendUpdates="all",
            ))
        except CalendarProviderError as e:
            # 404 Not Found / 410 Resource has been deleted
            if isinstance(e.__cause__, HttpError) and e.__cause__.resp.status in (404, 410):
                logger.info(f"Google event {event_id} already deleted")
                return True
            raise
        return True

