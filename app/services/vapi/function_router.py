# app/services/vapi/function_router.py
"""
Dispatches voice-assistant tool calls to the ledger and calendar adapters.

Every call is one-shot: resolve the tenant, normalize the requested times,
run one handler and answer with a sentence the assistant can read out.
"""
import json
import logging
from datetime import datetime, timedelta, tzinfo
from typing import Any, Callable, Dict, Optional, Tuple

from sqlalchemy.orm import Session

from app.core.exceptions import AppError, ConfigurationError, InvalidRequestError, NotFoundError
from app.models import AppointmentStatus, User, UserRole
from app.schemas.appointment import AppointmentCreate, AppointmentUpdate
from app.schemas.vapi import VapiFunctionCall
from app.services.appointment.appointment_service import AppointmentService
from app.services.calendar.registry import CalendarProviderRegistry
from app.services.vapi.datetime_normalizer import normalize_voice_datetime
from app.services.vapi.formatting import format_basic, format_date, format_full, format_short
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

BOOKED_VIA_NOTE = "Booked via Vapi AI assistant"


def _parse_arguments(arguments: Any) -> Optional[Dict[str, Any]]:
    if isinstance(arguments, str):
        try:
            arguments = json.loads(arguments)
        except json.JSONDecodeError:
            raise InvalidRequestError("Invalid webhook payload: function arguments are not valid JSON") from None
    return arguments


def extract_function_call(payload: Dict[str, Any]) -> VapiFunctionCall:
    """Pull the first tool call out of any of the three payload layouts"""
    message = payload.get("message") or {}
    tool_call_id = None
    name = None
    parameters = None

    if message.get("type") == "tool-calls" and (message.get("toolCallList") or message.get("toolCalls")):
        tool_call = (message.get("toolCallList") or message.get("toolCalls"))[0] or {}
        function = tool_call.get("function") or {}
        tool_call_id = tool_call.get("id")
        name = function.get("name")
        parameters = _parse_arguments(function.get("arguments"))
    elif message.get("functionCall"):
        function_call = message["functionCall"]
        tool_call_id = function_call.get("id")
        name = function_call.get("name")
        parameters = function_call.get("parameters")

    if not name or parameters is None:
        raise InvalidRequestError("Invalid webhook payload: missing function name or parameters")
    if not isinstance(parameters, dict):
        raise InvalidRequestError("Invalid webhook payload: function parameters must be an object")

    return VapiFunctionCall(tool_call_id=tool_call_id or "default", name=name, parameters=parameters)


def resolve_user_id(payload: Dict[str, Any], params: Dict[str, Any]) -> str:
    """
    First match wins: explicit userId parameter, call metadata
    businessOwnerId, then assistant id. Assistant-to-user mapping is not
    available yet, so that branch tells the operator what to configure.
    """
    if params.get("userId"):
        return str(params["userId"])

    call = payload.get("call") or (payload.get("message") or {}).get("call") or {}
    owner_id = (call.get("metadata") or {}).get("businessOwnerId")
    if owner_id:
        return str(owner_id)

    assistant_id = call.get("assistantId")
    if assistant_id:
        raise ConfigurationError(
            "Assistant ID mapping not configured. Please set up assistant-to-user mapping "
            f"in admin panel for assistant: {assistant_id}"
        )

    raise InvalidRequestError(
        "Cannot identify user: no userId in parameters and no assistantId in call context"
    )


class VapiFunctionRouter:
    def __init__(
            self,
            db: Session,
            providers: CalendarProviderRegistry,
            ledger: AppointmentService,
            zone: tzinfo,
            clock: Callable[[], datetime] = utcnow,
    ):
        self.db = db
        self.providers = providers
        self.ledger = ledger
        self.zone = zone
        self.clock = clock
        self.handlers = {
            "check_availability": self._handle_check_availability,
            "create_event": self._handle_create_event,
            "read_events": self._handle_read_events,
            "update_event": self._handle_update_event,
            "delete_event": self._handle_delete_event,
            "reschedule_appointment": self._handle_reschedule_appointment,
            "cancel_appointment": self._handle_cancel_appointment,
        }

    async def handle(self, payload: Dict[str, Any]) -> Dict[str, Any]:
        """Run one webhook call; errors come back inside the results envelope"""
        tool_call_id = "default"
        try:
            call = extract_function_call(payload)
            tool_call_id = call.tool_call_id
            logger.info(f"Vapi function call {call.name} (toolCallId={tool_call_id})")
            result = await self.dispatch(call, payload)
            return {"results": [{"toolCallId": tool_call_id, "result": result}]}
        except AppError as e:
            self.db.rollback()
            logger.warning(f"Vapi function call failed: {e.message}")
            error = e.message
        except Exception as e:
            self.db.rollback()
            logger.exception("Unexpected error handling Vapi function call")
            error = str(e) or "An unexpected error occurred"
        return {"results": [{"toolCallId": tool_call_id, "error": error}]}

    async def dispatch(self, call: VapiFunctionCall, payload: Dict[str, Any]) -> str:
        handler = self.handlers.get(call.name)
        if handler is None:
            raise InvalidRequestError(f"Unknown function: {call.name}")

        user_id = resolve_user_id(payload, call.parameters)
        if self.db.get(User, user_id) is None:
            raise NotFoundError(f"User {user_id} not found")
        return await handler(user_id, call.parameters)

    # ------------------------------------------------------------------
    # Parsing helpers
    # ------------------------------------------------------------------

    def _parse(self, raw: str, treat_as_local: bool = False) -> datetime:
        return normalize_voice_datetime(raw, self.zone, self.clock(), treat_as_local=treat_as_local)

    @staticmethod
    def _minutes(value: Any) -> timedelta:
        try:
            minutes = float(value)
        except (TypeError, ValueError):
            raise InvalidRequestError(f"Invalid duration: {value}") from None
        if minutes <= 0:
            raise InvalidRequestError("Duration must be greater than zero")
        return timedelta(minutes=minutes)

    def _local_window(self, params: Dict[str, Any]) -> Tuple[datetime, datetime]:
        start = self._parse(params["dateTime"], treat_as_local=True)
        return start, start + self._minutes(params["duration"])

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def _handle_check_availability(self, user_id: str, params: Dict[str, Any]) -> str:
        provider = self.providers.resolve_user_provider(user_id)

        if params.get("dateTime") and params.get("duration") is not None:
            start, end = self._local_window(params)
        elif params.get("startDate") and params.get("endDate"):
            start = self._parse(params["startDate"])
            end = self._parse(params["endDate"])
        else:
            raise InvalidRequestError(
                "Invalid parameters: provide either (dateTime + duration) or (startDate + endDate)"
            )

        availability = await self.ledger.check_availability(
            user_id, start, end, provider=provider, raise_provider_errors=True
        )
        if availability.is_available:
            return (
                f"Yes, the calendar is available from {format_basic(start, self.zone)} "
                f"to {format_basic(end, self.zone)}."
            )
        return f"No, there are {len(availability.conflicts)} conflicting appointment(s) during that time."

    async def _handle_create_event(self, user_id: str, params: Dict[str, Any]) -> str:
        if params.get("dateTime") and params.get("duration"):
            start, end = self._local_window(params)
        elif params.get("startTime") and params.get("endTime"):
            start = self._parse(params["startTime"])
            end = self._parse(params["endTime"])
        else:
            raise InvalidRequestError(
                "Invalid time parameters: provide either (dateTime + duration) or (startTime + endTime)"
            )

        customer_name = params.get("customerName")
        customer_phone = params.get("customerPhone")
        customer_email = params.get("customerEmail")
        if not customer_name or not customer_phone:
            raise InvalidRequestError(
                "Missing required fields: customerName and customerPhone are required"
            )

        provider = self.providers.resolve_user_provider(user_id)

        description = params.get("description")
        if not description:
            description = f"Appointment with {customer_name}\nPhone: {customer_phone}"
            if customer_email:
                description += f"\nEmail: {customer_email}"

        appointment = await self.ledger.create_appointment(user_id, AppointmentCreate(
            customer_name=customer_name,
            customer_phone=customer_phone,
            customer_email=customer_email,
            title=params.get("title") or f"Appointment with {customer_name}",
            description=description,
            start_time=start,
            end_time=end,
            timezone=params.get("timezone") or getattr(self.zone, "key", "UTC"),
            notes=BOOKED_VIA_NOTE,
            vapi_call_id=params.get("callId"),
            provider=provider,
            sync_to_calendar=True,
        ))

        return (
            f"Appointment successfully booked for {customer_name} on {format_full(start, self.zone)}. "
            f"Your booking reference is {appointment.booking_reference}. "
            "Please save this reference number to reschedule or cancel your appointment."
        )

    async def _handle_read_events(self, user_id: str, params: Dict[str, Any]) -> str:
        if not params.get("startDate") or not params.get("endDate"):
            raise InvalidRequestError("startDate and endDate are required")

        provider = self.providers.resolve_user_provider(user_id)
        start = self._parse(params["startDate"])
        end = self._parse(params["endDate"])

        events = await self.providers.get(provider).list_events(user_id, start, end)
        start_str, end_str = format_date(start, self.zone), format_date(end, self.zone)

        if not events:
            return f"No appointments found between {start_str} and {end_str}."
        if len(events) == 1:
            return f"Found 1 appointment between {start_str} and {end_str}: {events[0].title or 'Untitled'}."

        titles = ", ".join(event.title or "Untitled" for event in events[:3])
        more = ", and more" if len(events) > 3 else ""
        return f"Found {len(events)} appointments between {start_str} and {end_str}. First few: {titles}{more}."

    async def _handle_update_event(self, user_id: str, params: Dict[str, Any]) -> str:
        if not params.get("eventId"):
            raise InvalidRequestError("eventId is required to update an event")

        provider = self.providers.resolve_user_provider(user_id)
        await self.providers.get(provider).update_event(
            user_id,
            params["eventId"],
            title=params.get("title") or None,
            description=params.get("description") or None,
            start=self._parse(params["startTime"]) if params.get("startTime") else None,
            end=self._parse(params["endTime"]) if params.get("endTime") else None,
        )
        return "Appointment successfully updated in your calendar."

    async def _handle_delete_event(self, user_id: str, params: Dict[str, Any]) -> str:
        if not params.get("eventId"):
            raise InvalidRequestError("eventId is required to delete an event")

        provider = self.providers.resolve_user_provider(user_id)
        await self.providers.get(provider).delete_event(user_id, params["eventId"])
        return "Appointment successfully cancelled and removed from your calendar."

    async def _handle_reschedule_appointment(self, user_id: str, params: Dict[str, Any]) -> str:
        reference = params.get("bookingReference")
        if not reference:
            raise InvalidRequestError("Booking reference is required to reschedule an appointment")
        if not params.get("dateTime") or not params.get("duration"):
            raise InvalidRequestError("New date/time and duration are required to reschedule")

        appointment = self.ledger.find_by_booking_reference(reference, user_id)
        if appointment.status == AppointmentStatus.CANCELLED:
            return (
                f"Sorry, appointment {reference} has been cancelled and cannot be rescheduled. "
                "Please book a new appointment instead."
            )

        start, end = self._local_window(params)
        provider = self.providers.resolve_user_provider(user_id)

        availability = await self.ledger.check_availability(
            user_id,
            start,
            end,
            provider=provider,
            exclude_appointment_id=appointment.id,
            ignore_event_ids=[appointment.external_event_id] if appointment.external_event_id else [],
            raise_provider_errors=True,
        )
        if not availability.is_available:
            return f"Sorry, {format_short(start, self.zone)} is not available. Please choose a different time."

        await self.ledger.update_appointment(
            appointment.id,
            user_id,
            UserRole.CLIENT,
            AppointmentUpdate(start_time=start, end_time=end, sync_to_calendar=True),
        )
        return (
            f"Appointment {reference} has been successfully rescheduled to {format_full(start, self.zone)}. "
            "Your booking reference remains the same."
        )

    async def _handle_cancel_appointment(self, user_id: str, params: Dict[str, Any]) -> str:
        reference = params.get("bookingReference")
        if not reference:
            raise InvalidRequestError("Booking reference is required to cancel an appointment")

        appointment = self.ledger.find_by_booking_reference(reference, user_id)
        if appointment.status == AppointmentStatus.CANCELLED:
            return f"Appointment {reference} has already been cancelled."

        await self.ledger.cancel_appointment(
            appointment.id, user_id, UserRole.CLIENT, reason=params.get("reason")
        )
        return (
            f"Appointment {reference} scheduled for {format_full(appointment.start_time, self.zone)} "
            "has been successfully cancelled."
        )
