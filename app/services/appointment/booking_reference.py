# ============================================================================
# app/services/appointment/booking_reference.py
# ============================================================================
"""Human-shareable booking references: BK-<year>-<sequence>[<suffix>]"""
import logging
import random
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import func
from sqlalchemy.orm import Session

from app.core.exceptions import AppError
from app.models.appointment import Appointment
from app.utils.time_utils import utcnow

logger = logging.getLogger(__name__)

PREFIX = "BK"
REFERENCE_PATTERN = r"^BK-\d{4}-\d{6}(\d{3})?$"


class BookingReferenceGenerator:
    """
    The sequence is the number of appointments created this calendar year plus
    one. Two concurrent bookings can read the same count; the loser of that race
    gets a random three digit suffix, and the unique index on booking_reference
    rejects anything that still slips through.
    """

    MAX_SUFFIX_ATTEMPTS = 25

    def __init__(self, db: Session, rng: Optional[random.Random] = None):
        self.db = db
        self.rng = rng or random.SystemRandom()

    def _exists(self, reference: str) -> bool:
        return self.db.query(Appointment.id).filter(
            Appointment.booking_reference == reference
        ).first() is not None

    def _created_this_year(self, year: int) -> int:
        year_start = datetime(year, 1, 1, tzinfo=timezone.utc)
        next_year_start = datetime(year + 1, 1, 1, tzinfo=timezone.utc)
        return self.db.query(func.count(Appointment.id)).filter(
            Appointment.created_at >= year_start,
            Appointment.created_at < next_year_start,
        ).scalar() or 0

    def generate(self, now: Optional[datetime] = None) -> str:
        year = (now or utcnow()).year
        candidate = f"{PREFIX}-{year}-{self._created_this_year(year) + 1:06d}"
        if not self._exists(candidate):
            return candidate

        for _ in range(self.MAX_SUFFIX_ATTEMPTS):
            suffixed = f"{candidate}{self.rng.randrange(1000):03d}"
            if not self._exists(suffixed):
                logger.info(f"Booking reference {candidate} taken, using {suffixed}")
                return suffixed

        raise AppError(f"Could not allocate a unique booking reference for {candidate}")
