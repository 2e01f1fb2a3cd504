"""In-memory appointment ledger with slot generation and booking.

Slots are never stored: every availability query regenerates them from the
clinic's working-hours policy and filters out the keys in the booked set.

Working hours (clinic-local time, 30-minute slots):
  - Monday–Friday  10:00–20:00  (last slot 19:30)
  - Saturday       10:00–15:00  (last slot 14:30)
  - Sunday         closed

"Clinic-local" always means ``CLINIC_TIMEZONE`` (default ``Europe/Warsaw``),
never the server's own timezone.

Booking conflicts are an expected outcome when two callers want the same
slot, so ``book`` and ``cancel`` return a ``BookingResult`` instead of
raising.  The validity check, the booked-set membership check and the
insertion run under one lock.
"""

from __future__ import annotations

import datetime as dt
import logging
import threading
import uuid
from collections.abc import Callable
from enum import StrEnum
from zoneinfo import ZoneInfo

from pydantic import BaseModel, computed_field

logger = logging.getLogger(__name__)

SLOT_MINUTES = 30
DEFAULT_TIMEZONE = "Europe/Warsaw"

# weekday() → (opening hour, closing hour); Sunday is absent
WORKING_HOURS: dict[int, tuple[int, int]] = {
    0: (10, 20),
    1: (10, 20),
    2: (10, 20),
    3: (10, 20),
    4: (10, 20),
    5: (10, 15),
}

POLISH_WEEKDAYS = (
    "poniedziałek",
    "wtorek",
    "środa",
    "czwartek",
    "piątek",
    "sobota",
    "niedziela",
)

FALLBACK_SLOT_PHRASES = ["jutro o 10:00", "pojutrze o 14:30", "w piątek o 16:00"]


def slot_key(day: dt.date, hhmm: str) -> str:
    return f"{day.isoformat()}_{hhmm}"


class Slot(BaseModel):
    """A candidate appointment time."""

    date: dt.date
    time: str  # HH:MM, clinic-local

    @computed_field  # type: ignore[prop-decorator]
    @property
    def key(self) -> str:
        return slot_key(self.date, self.time)

    def spoken(self) -> str:
        """Polish phrase for the slot, e.g. ``wtorek 20.10.2026 o 10:30``."""
        weekday = POLISH_WEEKDAYS[self.date.weekday()]
        return f"{weekday} {self.date.strftime('%d.%m.%Y')} o {self.time}"


class AppointmentStatus(StrEnum):
    SCHEDULED = "scheduled"
    CANCELLED = "cancelled"


class Appointment(BaseModel):
    id: str
    patient_name: str
    phone_number: str
    service_type: str
    appointment_date: dt.date
    appointment_time: str
    status: AppointmentStatus = AppointmentStatus.SCHEDULED
    created_at: dt.datetime
    cancelled_at: dt.datetime | None = None

    @property
    def slot_key(self) -> str:
        return slot_key(self.appointment_date, self.appointment_time)


class BookingError(StrEnum):
    INVALID_SLOT = "invalid_slot"
    SLOT_TAKEN = "slot_taken"
    NOT_FOUND = "not_found"


class BookingResult(BaseModel):
    """Outcome of a ledger write.  ``success`` is False for expected failures."""

    success: bool
    appointment: Appointment | None = None
    error: str | None = None
    error_code: BookingError | None = None

    @classmethod
    def ok(cls, appointment: Appointment) -> BookingResult:
        return cls(success=True, appointment=appointment)

    @classmethod
    def fail(cls, code: BookingError, error: str) -> BookingResult:
        return cls(success=False, error=error, error_code=code)


def _parse_date(value: dt.date | str) -> dt.date:
    if isinstance(value, dt.datetime):
        return value.date()
    if isinstance(value, dt.date):
        return value
    return dt.date.fromisoformat(value.strip())


def _parse_time(value: dt.time | str) -> str:
    if isinstance(value, dt.time):
        return value.strftime("%H:%M")
    return dt.datetime.strptime(value.strip(), "%H:%M").strftime("%H:%M")


class AppointmentLedger:
    """Owns every appointment and the set of booked slot keys."""

    def __init__(
        self,
        timezone: str = DEFAULT_TIMEZONE,
        *,
        now: Callable[[], dt.datetime] | None = None,
    ) -> None:
        self._tz = ZoneInfo(timezone)
        self._now = now or (lambda: dt.datetime.now(dt.UTC))
        self._appointments: dict[str, Appointment] = {}
        self._booked: set[str] = set()
        self._lock = threading.Lock()

    # ── Clock ────────────────────────────────────────────────────────

    def local_now(self) -> dt.datetime:
        """Current time in the clinic's timezone."""
        return self._now().astimezone(self._tz)

    def today(self) -> dt.date:
        return self.local_now().date()

    # ── Slot generation ──────────────────────────────────────────────

    def slots_for_date(self, day: dt.date) -> list[Slot]:
        """Every slot the working-hours policy allows on *day* (booked or not)."""
        hours = WORKING_HOURS.get(day.weekday())
        if hours is None:
            return []
        start, end = hours
        slots = []
        current = dt.datetime.combine(day, dt.time(start))
        closing = dt.datetime.combine(day, dt.time(end))
        while current < closing:
            slots.append(Slot(date=day, time=current.strftime("%H:%M")))
            current += dt.timedelta(minutes=SLOT_MINUTES)
        return slots

    def available_slots(self, horizon_days: int = 14, limit: int = 20) -> list[Slot]:
        """Free slots from tomorrow through *horizon_days* ahead, earliest first."""
        today = self.today()
        with self._lock:
            booked = set(self._booked)

        result: list[Slot] = []
        for offset in range(1, horizon_days + 1):
            for slot in self.slots_for_date(today + dt.timedelta(days=offset)):
                if slot.key in booked:
                    continue
                result.append(slot)
                if len(result) >= limit:
                    return result
        return result

    def format_available_slots(self, count: int = 5, horizon_days: int = 14) -> list[str]:
        """Spoken phrases for the first *count* free slots.

        Never raises: on any internal error a static list of three generic
        phrases is returned instead.
        """
        try:
            phrases = [s.spoken() for s in self.available_slots(horizon_days)[:count]]
            logger.info("Generated %d available slots", len(phrases))
            return phrases
        except Exception:
            logger.exception("Error formatting available slots")
            return list(FALLBACK_SLOT_PHRASES)

    # ── Writes ───────────────────────────────────────────────────────

    def book(
        self,
        caller_name: str,
        phone: str,
        service: str,
        day: dt.date | str,
        hhmm: dt.time | str,
    ) -> BookingResult:
        """Book (day, hhmm) for a patient if it is a free, valid, future slot."""
        try:
            day = _parse_date(day)
            hhmm = _parse_time(hhmm)
        except (AttributeError, TypeError, ValueError):
            return BookingResult.fail(
                BookingError.INVALID_SLOT, f"Unrecognised date/time: {day!r} {hhmm!r}",
            )

        key = slot_key(day, hhmm)
        slot_start = dt.datetime.combine(day, dt.time.fromisoformat(hhmm), tzinfo=self._tz)

        with self._lock:
            if all(s.time != hhmm for s in self.slots_for_date(day)):
                return BookingResult.fail(
                    BookingError.INVALID_SLOT, f"{key} is outside working hours",
                )
            if slot_start <= self.local_now():
                return BookingResult.fail(BookingError.INVALID_SLOT, f"{key} is in the past")
            if key in self._booked:
                return BookingResult.fail(BookingError.SLOT_TAKEN, f"{key} is already booked")

            appointment = Appointment(
                id=str(uuid.uuid4()),
                patient_name=caller_name,
                phone_number=phone,
                service_type=service,
                appointment_date=day,
                appointment_time=hhmm,
                created_at=self._now(),
            )
            self._appointments[appointment.id] = appointment
            self._booked.add(key)

        logger.info(
            "Appointment booked: %s for %s on %s at %s",
            appointment.id, caller_name, day.isoformat(), hhmm,
        )
        return BookingResult.ok(appointment)

    def cancel(self, appointment_id: str) -> BookingResult:
        """Cancel a scheduled appointment and release its slot."""
        with self._lock:
            appointment = self._appointments.get(appointment_id)
            if appointment is None or appointment.status is not AppointmentStatus.SCHEDULED:
                return BookingResult.fail(BookingError.NOT_FOUND, "Appointment not found")

            appointment.status = AppointmentStatus.CANCELLED
            appointment.cancelled_at = self._now()
            self._booked.discard(appointment.slot_key)

        logger.info("Appointment cancelled: %s", appointment_id)
        return BookingResult.ok(appointment)

    # ── Reads ────────────────────────────────────────────────────────

    def get(self, appointment_id: str) -> BookingResult:
        with self._lock:
            appointment = self._appointments.get(appointment_id)
        if appointment is None:
            return BookingResult.fail(BookingError.NOT_FOUND, "Appointment not found")
        return BookingResult.ok(appointment)

    def is_booked(self, day: dt.date | str, hhmm: dt.time | str) -> bool:
        with self._lock:
            return slot_key(_parse_date(day), _parse_time(hhmm)) in self._booked

    def todays_appointments(self) -> list[Appointment]:
        """Scheduled appointments for the clinic-local date, by time."""
        today = self.today()
        with self._lock:
            todays = [
                a for a in self._appointments.values()
                if a.appointment_date == today and a.status is AppointmentStatus.SCHEDULED
            ]
        todays.sort(key=lambda a: a.appointment_time)
        logger.info("Found %d appointments for today", len(todays))
        return todays

    def stats(self) -> dict[str, int]:
        with self._lock:
            statuses = [a.status for a in self._appointments.values()]
            booked = len(self._booked)
        return {
            "total": len(statuses),
            "scheduled": statuses.count(AppointmentStatus.SCHEDULED),
            "cancelled": statuses.count(AppointmentStatus.CANCELLED),
            "booked_slots": booked,
        }
