# app/services/calendar/outlook_service.py
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

import msal
import requests

from app.core.exceptions import CalendarAuthError, CalendarProviderError
from app.models import CalendarProvider
from app.services.calendar.base import (
    DEFAULT_TOKEN_LIFETIME,
    CalendarEvent,
    CalendarProviderAdapter,
    CreatedEvent,
)
from app.services.calendar.oauth_config_service import OAuthClientConfig
from app.utils.time_utils import parse_iso_datetime

logger = logging.getLogger(__name__)

# msal adds these itself and rejects them when passed explicitly
RESERVED_SCOPES = {"offline_access", "openid", "profile"}


class OutlookCalendarService(CalendarProviderAdapter):
    provider = CalendarProvider.OUTLOOK
    display_name = "Outlook Calendar"

    AUTHORITY = "https://login.microsoftonline.com/common"
    GRAPH_ENDPOINT = "https://graph.microsoft.com/v1.0"
    REMINDER_MINUTES = 30
    PAGE_SIZE = 100

    def _msal_app(self, config: OAuthClientConfig) -> msal.ConfidentialClientApplication:
        return msal.ConfidentialClientApplication(
            config.client_id,
            authority=self.AUTHORITY,
            client_credential=config.client_secret,
            timeout=self.timeout_seconds,
        )

    @staticmethod
    def _scopes(config: OAuthClientConfig) -> List[str]:
        return [scope for scope in config.scopes if scope not in RESERVED_SCOPES]

    async def get_auth_url(self, user_id: str) -> str:
        """Generate Microsoft OAuth URL"""
        config = self.oauth_configs.get_client_config(self.provider)
        app = await self._call(self._msal_app, config)
        auth_url = app.get_authorization_request_url(
            self._scopes(config),
            state=user_id,
            redirect_uri=config.redirect_uri,
            response_mode="query",
            prompt="consent",
        )
        logger.info(f"Generated Outlook authorization URL for user {user_id}")
        return auth_url

    async def handle_oauth_callback(self, code: str, user_id: str) -> Dict[str, Any]:
        """Exchange code for tokens"""
        config = self.oauth_configs.get_client_config(self.provider)
        app = await self._call(self._msal_app, config)

        result = await self._call(
            app.acquire_token_by_authorization_code,
            code,
            scopes=self._scopes(config),
            redirect_uri=config.redirect_uri,
        )
        if "error" in result:
            logger.error(f"Token exchange error: {result.get('error_description')}")
            raise CalendarAuthError("Failed to get tokens from Microsoft")
        if not result.get("refresh_token"):
            raise CalendarAuthError(
                "No refresh token received. Please ensure offline_access scope is granted."
            )

        profile = await self._graph("GET", "/me", result["access_token"])
        self._save_connection(
            user_id=user_id,
            access_token=result["access_token"],
            refresh_token=result["refresh_token"],
            token_expiry=self._expiry(result),
            calendar_id="primary",
            calendar_name="Outlook Calendar",
            email=profile.get("mail") or profile.get("userPrincipalName"),
        )
        return {"success": True, "message": "Outlook Calendar connected successfully"}

    @staticmethod
    def _expiry(result: Dict[str, Any]) -> datetime:
        if result.get("expires_in"):
            return datetime.now(timezone.utc) + timedelta(seconds=int(result["expires_in"]))
        return datetime.now(timezone.utc) + DEFAULT_TOKEN_LIFETIME

    def _refresh_access_token(self, config: OAuthClientConfig, refresh_token: str) -> Dict[str, Any]:
        try:
            app = self._msal_app(config)
            result = app.acquire_token_by_refresh_token(
                refresh_token,
                scopes=self._scopes(config),
            )
        except requests.RequestException as e:
            raise CalendarProviderError(f"Outlook Calendar request failed: {e}") from e
        if "error" in result:
            raise CalendarAuthError(f"Token refresh failed: {result.get('error_description')}")
        return {
            "access_token": result["access_token"],
            "refresh_token": result.get("refresh_token"),
            "expiry": self._expiry(result),
        }

    # ------------------------------------------------------------------
    # Graph plumbing
    # ------------------------------------------------------------------

    def _request(self, method: str, url: str, access_token: str, **kwargs) -> requests.Response:
        headers = {
            "Authorization": f"Bearer {access_token}",
            "Content-Type": "application/json",
            "Prefer": 'outlook.timezone="UTC"',
        }
        try:
            return requests.request(method, url, headers=headers, timeout=self.timeout_seconds, **kwargs)
        except requests.Timeout as e:
            raise CalendarProviderError(
                f"Outlook Calendar did not respond within {self.timeout_seconds:g}s"
            ) from e
        except requests.RequestException as e:
            raise CalendarProviderError(f"Outlook Calendar request failed: {e}") from e

    async def _graph(
            self,
            method: str,
            path: str,
            access_token: str,
            allow_missing: bool = False,
            **kwargs,
    ) -> Dict[str, Any]:
        url = path if path.startswith("http") else f"{self.GRAPH_ENDPOINT}{path}"
        response = await self._call(self._request, method, url, access_token, **kwargs)

        if allow_missing and response.status_code in (404, 410):
            return {}
        if response.status_code == 401:
            raise CalendarAuthError("Outlook Calendar rejected the stored credentials. Please reconnect.")
        if response.status_code >= 400:
            logger.error(f"Microsoft Graph API error ({response.status_code}): {response.text}")
            raise CalendarProviderError(f"Microsoft Graph API error ({response.status_code})")
        if response.status_code == 204 or not response.content:
            return {}
        return response.json()

    @staticmethod
    def _events_path(calendar_id: str) -> str:
        if calendar_id == "primary":
            return "/me/calendar/events"
        return f"/me/calendars/{calendar_id}/events"

    @staticmethod
    def _to_event(item: Dict[str, Any]) -> CalendarEvent:
        all_day = bool(item.get("isAllDay"))
        start = item.get("start", {}).get("dateTime")
        end = item.get("end", {}).get("dateTime")
        return CalendarEvent(
            id=item["id"],
            title=item.get("subject"),
            start=None if all_day or not start else parse_iso_datetime(start),
            end=None if all_day or not end else parse_iso_datetime(end),
            description=item.get("bodyPreview") or item.get("body", {}).get("content"),
            attendees=[
                a["emailAddress"]["address"]
                for a in item.get("attendees", [])
                if a.get("emailAddress", {}).get("address")
            ],
            html_link=item.get("webLink"),
            all_day=all_day or not start or not end,
        )

    @staticmethod
    def _graph_time(value: datetime) -> Dict[str, str]:
        return {
            "dateTime": value.astimezone(timezone.utc).replace(tzinfo=None).isoformat(),
            "timeZone": "UTC",
        }

    # ------------------------------------------------------------------
    # Events
    # ------------------------------------------------------------------

    async def list_events(self, user_id: str, start: datetime, end: datetime) -> List[CalendarEvent]:
        client = await self.get_authenticated_client(user_id)

        path = "/me/calendarView"
        if client.calendar_id != "primary":
            path = f"/me/calendars/{client.calendar_id}/calendarView"

        events: List[CalendarEvent] = []
        data = await self._graph(
            "GET",
            path,
            client.access_token,
            params={
                "startDateTime": start.astimezone(timezone.utc).isoformat(),
                "endDateTime": end.astimezone(timezone.utc).isoformat(),
                "$orderby": "start/dateTime",
                "$top": self.PAGE_SIZE,
            },
        )
        while True:
            events.extend(self._to_event(item) for item in data.get("value", []))
            next_link = data.get("@odata.nextLink")
            if not next_link:
                break
            data = await self._graph("GET", next_link, client.access_token)
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
        client = await self.get_authenticated_client(user_id)

        event: Dict[str, Any] = {
            "subject": title,
            "body": {"contentType": "HTML", "content": description or ""},
            "start": self._graph_time(start),
            "end": self._graph_time(end),
            "isReminderOn": True,
            "reminderMinutesBeforeStart": self.REMINDER_MINUTES,
        }
        if location:
            event["location"] = {"displayName": location}
        if attendee_email:
            event["attendees"] = [
                {"emailAddress": {"address": attendee_email}, "type": "required"}
            ]

        created = await self._graph(
            "POST", self._events_path(client.calendar_id), client.access_token, json=event
        )
        logger.info(f"Created Outlook event {created['id']} for user {user_id}")
        return CreatedEvent(id=created["id"], html_link=created.get("webLink"))

    async def update_event(
            self,
            user_id: str,
            event_id: str,
            title: Optional[str] = None,
            start: Optional[datetime] = None,
            end: Optional[datetime] = None,
            description: Optional[str] = None,
    ) -> CreatedEvent:
        client = await self.get_authenticated_client(user_id)

        update_payload: Dict[str, Any] = {}
        if title is not None:
            update_payload["subject"] = title
        if description is not None:
            update_payload["body"] = {"contentType": "HTML", "content": description}
        if start is not None:
            update_payload["start"] = self._graph_time(start)
        if end is not None:
            update_payload["end"] = self._graph_time(end)

        updated = await self._graph(
            "PATCH", f"/me/events/{event_id}", client.access_token, json=update_payload
        )
        return CreatedEvent(id=updated.get("id", event_id), html_link=updated.get("webLink"))

    async def delete_event(self, user_id: str, event_id: str) -> bool:
        client = await self.get_authenticated_client(user_id)
        await self._graph("DELETE", f"/me/events/{event_id}", client.access_token, allow_missing=True)
        return True
