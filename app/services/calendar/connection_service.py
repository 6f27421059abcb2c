# app/services/calendar/connection_service.py
"""Read and remove a user's calendar connections"""
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from app.core.exceptions import NotFoundError
from app.models import CalendarConnection, CalendarProvider

logger = logging.getLogger(__name__)


class CalendarConnectionService:
    """Connection registry queries. Tokens never leave this layer."""

    @staticmethod
    def _serialize(connection: CalendarConnection, with_expiry: bool = False) -> Dict[str, Any]:
        data = {
            "id": connection.id,
            "provider": connection.provider.value,
            "calendarName": connection.calendar_name,
            "email": connection.email,
            "isActive": connection.is_active,
            "lastSyncedAt": connection.last_synced_at.isoformat() if connection.last_synced_at else None,
            "createdAt": connection.created_at.isoformat() if connection.created_at else None,
        }
        if with_expiry:
            data["tokenExpiry"] = connection.token_expiry.isoformat() if connection.token_expiry else None
        return data

    @staticmethod
    def _get(db: Session, user_id: str, provider: CalendarProvider) -> Optional[CalendarConnection]:
        return db.query(CalendarConnection).filter(
            CalendarConnection.user_id == user_id,
            CalendarConnection.provider == provider,
        ).first()

    @staticmethod
    def get_user_connections(db: Session, user_id: str) -> List[Dict[str, Any]]:
        connections = db.query(CalendarConnection).filter(
            CalendarConnection.user_id == user_id
        ).order_by(CalendarConnection.created_at.asc()).all()
        return [CalendarConnectionService._serialize(c) for c in connections]

    @staticmethod
    def get_connection(db: Session, user_id: str, provider: CalendarProvider) -> Optional[Dict[str, Any]]:
        connection = CalendarConnectionService._get(db, user_id, provider)
        if connection is None:
            return None
        return CalendarConnectionService._serialize(connection, with_expiry=True)

    @staticmethod
    def disconnect_calendar(db: Session, user_id: str, provider: CalendarProvider) -> None:
        connection = CalendarConnectionService._get(db, user_id, provider)
        if connection is None:
            raise NotFoundError(f"{provider.value.title()} calendar is not connected")

        db.delete(connection)
        db.commit()
        logger.info(f"Disconnected {provider.value} calendar for user {user_id}")

    @staticmethod
    def get_connection_status(db: Session, user_id: str) -> Dict[str, Any]:
        google = CalendarConnectionService._get(db, user_id, CalendarProvider.GOOGLE)
        outlook = CalendarConnectionService._get(db, user_id, CalendarProvider.OUTLOOK)

        google_connected = bool(google and google.is_active)
        outlook_connected = bool(outlook and outlook.is_active)
        return {
            "googleConnected": google_connected,
            "googleEmail": google.email if google_connected else None,
            "outlookConnected": outlook_connected,
            "outlookEmail": outlook.email if outlook_connected else None,
            "hasAnyConnection": google_connected or outlook_connected,
        }
