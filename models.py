from __future__ import annotations

import json
from dataclasses import dataclass, field
from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple
from zoneinfo import ZoneInfo

from pydantic import BaseModel, Field, field_validator, model_validator

from config import DISPLAY_TIMEZONE


# -----------------------------
# Shared time helpers
# -----------------------------
def parse_iso8601_tz(ts: str) -> datetime:
    """
    Parse ISO-8601 timestamp with timezone into an aware datetime.
    Accepts 'Z' suffix by converting it to '+00:00'.
    """
    if not isinstance(ts, str) or not ts.strip():
        raise ValueError("timestamp must be a non-empty string")

    s = ts.strip()
    if s.endswith("Z"):
        s = s[:-1] + "+00:00"

    dt = datetime.fromisoformat(s)  # expects offset like +02:00 or +00:00
    if dt.tzinfo is None or dt.utcoffset() is None:
        raise ValueError("timestamp must include a timezone offset")
    return dt


def to_utc(dt: datetime) -> datetime:
    # dt is aware
    return dt.astimezone(timezone.utc)


def intervals_overlap(a_start: datetime, a_end: datetime, b_start: datetime, b_end: datetime) -> bool:
    """
    Half-open interval overlap: [start, end)
    Overlap iff a_start < b_end AND b_start < a_end.
    Back-to-back is allowed (end == other.start is NOT overlap).
    """
    return a_start < b_end and b_start < a_end


def utc_iso_z(dt: datetime) -> str:
    return to_utc(dt).isoformat().replace("+00:00", "Z")


def to_display_tz(dt: datetime, tz_name: str = DISPLAY_TIMEZONE) -> datetime:
    if tz_name.upper() == "UTC":
        return to_utc(dt)
    return dt.astimezone(ZoneInfo(tz_name))


def format_time(dt: datetime) -> str:
    """'9:30 AM' style clock time."""
    hour = dt.hour % 12 or 12
    suffix = "AM" if dt.hour < 12 else "PM"
    return f"{hour}:{dt.minute:02d} {suffix}"


def format_long_date(dt: datetime) -> str:
    """'March 10, 2024' style date."""
    return f"{dt.strftime('%B')} {dt.day}, {dt.year}"


def parse_visit_date(value: str) -> date:
    """Calendar date in 'YYYY-MM-DD' form, as the visit tables store it."""
    if not isinstance(value, str) or len(value) != 10:
        raise ValueError("visit date must be a 'YYYY-MM-DD' string")
    return date.fromisoformat(value)


def parse_clock_time(value: str) -> time:
    """Wall-clock 'HH:MM' (or 'HH:MM:SS') without a date or offset."""
    if not isinstance(value, str) or len(value) not in (5, 8):
        raise ValueError("time must be an 'HH:MM' string")
    t = time.fromisoformat(value)
    if t.tzinfo is not None:
        raise ValueError("time must not carry an offset")
    return t


def clock_time_str(t: time) -> str:
    return t.strftime("%H:%M")


# -----------------------------
# Domain model
# -----------------------------
class RecurrenceType(str, Enum):
    NONE = "none"
    DAILY = "daily"
    WEEKLY = "weekly"
    MONTHLY = "monthly"


class DayOfWeek(str, Enum):
    # Declared in datetime.weekday() order
    MONDAY = "monday"
    TUESDAY = "tuesday"
    WEDNESDAY = "wednesday"
    THURSDAY = "thursday"
    FRIDAY = "friday"
    SATURDAY = "saturday"
    SUNDAY = "sunday"


_WEEKDAYS = list(DayOfWeek)


def weekday_tag(dt: datetime) -> DayOfWeek:
    return _WEEKDAYS[dt.weekday()]


@dataclass(frozen=True)
class Room:
    id: str
    name: str
    description: Optional[str] = None
    capacity: Optional[int] = None


@dataclass(frozen=True)
class RecurrencePattern:
    type: RecurrenceType
    interval: int = 1
    days_of_week: Tuple[DayOfWeek, ...] = ()
    until: Optional[datetime] = None  # exclusive bound on occurrence starts

    def to_payload(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"type": self.type.value, "interval": self.interval}
        if self.days_of_week:
            payload["daysOfWeek"] = [d.value for d in self.days_of_week]
        if self.until is not None:
            payload["endDate"] = utc_iso_z(self.until)
        return payload

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "RecurrencePattern":
        if not isinstance(payload, dict) or "type" not in payload:
            raise ValueError("recurrence pattern must be an object with a 'type'")
        interval = payload.get("interval", 1)
        if isinstance(interval, bool) or not isinstance(interval, int) or interval < 1:
            raise ValueError("recurrence interval must be a positive integer")
        days = payload.get("daysOfWeek") or ()
        if not isinstance(days, (list, tuple)):
            raise ValueError("recurrence daysOfWeek must be a list of weekday names")
        end_date = payload.get("endDate")
        return cls(
            type=RecurrenceType(payload["type"]),
            interval=interval,
            days_of_week=tuple(DayOfWeek(d) for d in days),
            until=parse_iso8601_tz(end_date) if end_date else None,
        )


@dataclass(frozen=True)
class BookingRequest:
    """Everything a booking needs except the times each occurrence lands on."""

    room_id: str
    start: datetime
    end: datetime
    user_id: str
    title: str
    description: Optional[str] = None
    authorizer: Optional[str] = None


@dataclass(frozen=True)
class Booking:
    id: str
    room_id: str
    user_id: str
    title: str
    start_utc: datetime  # aware, UTC
    end_utc: datetime    # aware, UTC
    description: Optional[str] = None
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    authorizer: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class ConflictDetails:
    has_conflict: bool
    message: Optional[str] = None
    conflicts: List[Booking] = field(default_factory=list)


class VisitorType(str, Enum):
    CONTRACTOR = "contractor"
    VOLUNTEER = "volunteer"


class VisitFrequency(str, Enum):
    WEEKLY = "weekly"
    BI_WEEKLY = "bi-weekly"
    MONTHLY = "monthly"


@dataclass(frozen=True)
class Contractor:
    id: str
    name: str
    type: VisitorType = VisitorType.CONTRACTOR
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class Partner:
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    color: Optional[str] = None


@dataclass(frozen=True)
class NewContractor:
    """Details for a contractor registered while scheduling their first visit."""

    name: str
    type: VisitorType = VisitorType.CONTRACTOR
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None


@dataclass(frozen=True)
class ContractorVisitRequest:
    visit_date: date
    start_time: time
    end_time: time
    contractor_id: Optional[str] = None
    new_contractor: Optional[NewContractor] = None
    purpose: Optional[str] = None
    authorizer: Optional[str] = None


@dataclass(frozen=True)
class GuestVisitRequest:
    visit_date: date
    partner_id: Optional[str] = None
    new_partner_name: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    guest_details: Optional[str] = None
    purpose: Optional[str] = None
    authorizer: Optional[str] = None


@dataclass(frozen=True)
class ContractorVisit:
    id: str
    contractor_id: str
    visit_date: date
    start_time: time
    end_time: time
    purpose: Optional[str] = None
    status: str = "scheduled"
    is_recurring: bool = False
    recurrence_pattern: Optional[RecurrencePattern] = None
    authorizer: Optional[str] = None
    # Joined from the contractors table
    contractor_name: Optional[str] = None
    contractor_type: Optional[VisitorType] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class GuestVisit:
    id: str
    visit_date: date
    partner_id: Optional[str] = None
    partner_name: Optional[str] = None
    guest_id: Optional[str] = None
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    purpose: Optional[str] = None
    status: str = "scheduled"
    guest_details: Optional[str] = None
    check_in_time: Optional[datetime] = None
    check_out_time: Optional[datetime] = None
    authorizer: Optional[str] = None
    created_at: Optional[datetime] = None


@dataclass(frozen=True)
class FacilityCalendar:
    """Everything happening at the facility inside one window."""

    bookings: List[Booking] = field(default_factory=list)
    contractor_visits: List[ContractorVisit] = field(default_factory=list)
    guest_visits: List[GuestVisit] = field(default_factory=list)


# -----------------------------
# Store rows (boundary mapping)
# -----------------------------
class RoomRow(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    description: Optional[str] = None
    capacity: Optional[int] = None

    def to_domain(self) -> Room:
        return Room(id=self.id, name=self.name, description=self.description, capacity=self.capacity)


class BookingRow(BaseModel):
    id: str = Field(..., min_length=1)
    room_id: str
    user_id: str
    title: str
    description: Optional[str] = None
    start_time: str
    end_time: str
    is_recurring: bool = False
    recurrence_pattern: Optional[Dict[str, Any]] = None
    authorizer: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("start_time", "end_time", "created_at")
    @classmethod
    def must_be_iso8601_with_tz(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_iso8601_tz(v)
        return v

    @field_validator("recurrence_pattern", mode="before")
    @classmethod
    def decode_pattern(cls, v: Any) -> Any:
        # The hosted schema types this column as text
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("recurrence_pattern")
    @classmethod
    def pattern_must_parse(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if v is not None:
            RecurrencePattern.from_payload(v)
        return v

    @model_validator(mode="after")
    def end_after_start(self) -> "BookingRow":
        if not parse_iso8601_tz(self.start_time) < parse_iso8601_tz(self.end_time):
            raise ValueError("stored booking ends before it starts")
        return self

    def to_domain(self) -> Booking:
        return Booking(
            id=self.id,
            room_id=self.room_id,
            user_id=self.user_id,
            title=self.title,
            description=self.description,
            start_utc=to_utc(parse_iso8601_tz(self.start_time)),
            end_utc=to_utc(parse_iso8601_tz(self.end_time)),
            is_recurring=self.is_recurring,
            recurrence_pattern=(
                RecurrencePattern.from_payload(self.recurrence_pattern)
                if self.recurrence_pattern is not None
                else None
            ),
            authorizer=self.authorizer,
            created_at=to_utc(parse_iso8601_tz(self.created_at)) if self.created_at else None,
        )


def _utc_or_none(ts: Optional[str]) -> Optional[datetime]:
    return to_utc(parse_iso8601_tz(ts)) if ts else None


class ContractorRow(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    type: VisitorType = VisitorType.CONTRACTOR
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None

    def to_domain(self) -> Contractor:
        return Contractor(
            id=self.id,
            name=self.name,
            type=self.type,
            company=self.company,
            email=self.email,
            phone=self.phone,
            notes=self.notes,
        )


class PartnerRow(BaseModel):
    id: str = Field(..., min_length=1)
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    color: Optional[str] = None

    def to_domain(self) -> Partner:
        return Partner(id=self.id, name=self.name, email=self.email, phone=self.phone, color=self.color)


class ContractorVisitRow(BaseModel):
    id: str = Field(..., min_length=1)
    contractor_id: str
    visit_date: str
    start_time: str
    end_time: str
    purpose: Optional[str] = None
    status: str = "scheduled"
    is_recurring: bool = False
    recurrence_pattern: Optional[Dict[str, Any]] = None
    authorizer: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("visit_date")
    @classmethod
    def must_be_calendar_date(cls, v: str) -> str:
        parse_visit_date(v)
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def must_be_clock_time(cls, v: str) -> str:
        parse_clock_time(v)
        return v

    @field_validator("created_at")
    @classmethod
    def must_be_iso8601_with_tz(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_iso8601_tz(v)
        return v

    @field_validator("recurrence_pattern", mode="before")
    @classmethod
    def decode_pattern(cls, v: Any) -> Any:
        if isinstance(v, str):
            return json.loads(v)
        return v

    @field_validator("recurrence_pattern")
    @classmethod
    def pattern_must_parse(cls, v: Optional[Dict[str, Any]]) -> Optional[Dict[str, Any]]:
        if v is not None:
            RecurrencePattern.from_payload(v)
        return v

    @model_validator(mode="after")
    def end_after_start(self) -> "ContractorVisitRow":
        if not parse_clock_time(self.start_time) < parse_clock_time(self.end_time):
            raise ValueError("stored visit ends before it starts")
        return self

    def to_domain(self, contractor: Optional[Contractor] = None) -> ContractorVisit:
        return ContractorVisit(
            id=self.id,
            contractor_id=self.contractor_id,
            visit_date=parse_visit_date(self.visit_date),
            start_time=parse_clock_time(self.start_time),
            end_time=parse_clock_time(self.end_time),
            purpose=self.purpose,
            status=self.status,
            is_recurring=self.is_recurring,
            recurrence_pattern=(
                RecurrencePattern.from_payload(self.recurrence_pattern)
                if self.recurrence_pattern is not None
                else None
            ),
            authorizer=self.authorizer,
            contractor_name=contractor.name if contractor else None,
            contractor_type=contractor.type if contractor else None,
            created_at=_utc_or_none(self.created_at),
        )


class GuestVisitRow(BaseModel):
    id: str = Field(..., min_length=1)
    visit_date: str
    guest_id: Optional[str] = None
    partner_id: Optional[str] = None
    partner_name: Optional[str] = None
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    purpose: Optional[str] = None
    status: str = "scheduled"
    guest_details: Optional[str] = None
    check_in_time: Optional[str] = None
    check_out_time: Optional[str] = None
    authorizer: Optional[str] = None
    created_at: Optional[str] = None

    @field_validator("visit_date")
    @classmethod
    def must_be_calendar_date(cls, v: str) -> str:
        parse_visit_date(v)
        return v

    @field_validator("start_time", "end_time")
    @classmethod
    def must_be_clock_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_clock_time(v)
        return v

    @field_validator("check_in_time", "check_out_time", "created_at")
    @classmethod
    def must_be_iso8601_with_tz(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_iso8601_tz(v)
        return v

    @model_validator(mode="after")
    def end_after_start(self) -> "GuestVisitRow":
        if self.start_time is not None and self.end_time is not None:
            if not parse_clock_time(self.start_time) < parse_clock_time(self.end_time):
                raise ValueError("stored visit ends before it starts")
        return self

    def to_domain(self, partner: Optional[Partner] = None) -> GuestVisit:
        return GuestVisit(
            id=self.id,
            visit_date=parse_visit_date(self.visit_date),
            partner_id=self.partner_id,
            # The partner record wins over the name copied onto the visit
            partner_name=partner.name if partner else self.partner_name,
            guest_id=self.guest_id,
            start_time=parse_clock_time(self.start_time) if self.start_time else None,
            end_time=parse_clock_time(self.end_time) if self.end_time else None,
            purpose=self.purpose,
            status=self.status,
            guest_details=self.guest_details,
            check_in_time=_utc_or_none(self.check_in_time),
            check_out_time=_utc_or_none(self.check_out_time),
            authorizer=self.authorizer,
            created_at=_utc_or_none(self.created_at),
        )


# -----------------------------
# API models (transport layer)
# -----------------------------
class _BookingFieldsIn(BaseModel):
    user_id: str = Field(..., min_length=1)
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    start: str
    end: str
    authorizer: Optional[str] = None

    @field_validator("start", "end")
    @classmethod
    def must_be_iso8601_with_tz(cls, v: str) -> str:
        # Validate format + timezone presence early; actual comparison happens in service.
        parse_iso8601_tz(v)
        return v

    @field_validator("title")
    @classmethod
    def title_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("title must not be blank")
        return v.strip()

    def to_request(self, room_id: str) -> BookingRequest:
        return BookingRequest(
            room_id=room_id,
            start=parse_iso8601_tz(self.start),
            end=parse_iso8601_tz(self.end),
            user_id=self.user_id,
            title=self.title,
            description=self.description,
            authorizer=self.authorizer or None,
        )


class RecurrenceIn(BaseModel):
    type: RecurrenceType = RecurrenceType.WEEKLY
    interval: int = Field(1, ge=1)
    days_of_week: List[DayOfWeek] = Field(default_factory=list)
    end_date: Optional[str] = None

    @field_validator("end_date")
    @classmethod
    def end_date_must_be_iso8601(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_iso8601_tz(v)
        return v

    def to_pattern(self) -> RecurrencePattern:
        return RecurrencePattern(
            type=self.type,
            interval=self.interval,
            days_of_week=tuple(dict.fromkeys(self.days_of_week)),
            until=parse_iso8601_tz(self.end_date) if self.end_date else None,
        )


class CreateBookingIn(_BookingFieldsIn):
    room_id: str = Field(..., min_length=1)


class CreateRecurringBookingIn(CreateBookingIn):
    recurrence: RecurrenceIn


class CreateMultiRoomBookingIn(_BookingFieldsIn):
    room_ids: List[str] = Field(..., min_length=1)


class CreateMultiRoomRecurringBookingIn(CreateMultiRoomBookingIn):
    recurrence: RecurrenceIn


class BookingOut(BaseModel):
    id: str
    room_id: str
    user_id: str
    title: str
    description: Optional[str] = None
    start: str  # ISO-8601 with timezone (we return UTC with Z)
    end: str
    is_recurring: bool
    recurrence_pattern: Optional[Dict[str, Any]] = None
    authorizer: Optional[str] = None
    created_at: Optional[str] = None

    @classmethod
    def from_domain(cls, b: Booking) -> "BookingOut":
        return cls(
            id=b.id,
            room_id=b.room_id,
            user_id=b.user_id,
            title=b.title,
            description=b.description,
            start=utc_iso_z(b.start_utc),
            end=utc_iso_z(b.end_utc),
            is_recurring=b.is_recurring,
            recurrence_pattern=b.recurrence_pattern.to_payload() if b.recurrence_pattern else None,
            authorizer=b.authorizer,
            created_at=utc_iso_z(b.created_at) if b.created_at else None,
        )


class RoomOut(BaseModel):
    id: str
    name: str
    description: Optional[str] = None
    capacity: Optional[int] = None


class ConflictCheckOut(BaseModel):
    has_conflict: bool
    message: Optional[str] = None


class _VisitTimesIn(BaseModel):
    visit_date: str
    purpose: Optional[str] = None
    authorizer: Optional[str] = None

    @field_validator("visit_date")
    @classmethod
    def must_be_calendar_date(cls, v: str) -> str:
        parse_visit_date(v)
        return v


class NewContractorIn(BaseModel):
    name: str = Field(..., min_length=1)
    type: VisitorType = VisitorType.CONTRACTOR
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None
    notes: Optional[str] = None

    @field_validator("name")
    @classmethod
    def name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("name must not be blank")
        return v.strip()


class VisitRecurrenceIn(BaseModel):
    frequency: VisitFrequency = VisitFrequency.WEEKLY
    end_date: str  # inclusive, 'YYYY-MM-DD'

    @field_validator("end_date")
    @classmethod
    def must_be_calendar_date(cls, v: str) -> str:
        parse_visit_date(v)
        return v


class CreateContractorVisitIn(_VisitTimesIn):
    contractor_id: Optional[str] = Field(None, min_length=1)
    new_contractor: Optional[NewContractorIn] = None
    start_time: str
    end_time: str
    recurrence: Optional[VisitRecurrenceIn] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def must_be_clock_time(cls, v: str) -> str:
        parse_clock_time(v)
        return v

    @model_validator(mode="after")
    def one_contractor(self) -> "CreateContractorVisitIn":
        if (self.contractor_id is None) == (self.new_contractor is None):
            raise ValueError("give either contractor_id or new_contractor")
        return self

    def to_request(self) -> ContractorVisitRequest:
        nc = self.new_contractor
        return ContractorVisitRequest(
            visit_date=parse_visit_date(self.visit_date),
            start_time=parse_clock_time(self.start_time),
            end_time=parse_clock_time(self.end_time),
            contractor_id=self.contractor_id,
            new_contractor=(
                NewContractor(
                    name=nc.name,
                    type=nc.type,
                    company=nc.company,
                    email=nc.email,
                    phone=nc.phone,
                    notes=nc.notes,
                )
                if nc is not None
                else None
            ),
            purpose=self.purpose,
            authorizer=self.authorizer or None,
        )


class CreateGuestVisitIn(_VisitTimesIn):
    partner_id: Optional[str] = Field(None, min_length=1)
    new_partner_name: Optional[str] = Field(None, min_length=1)
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    guest_details: Optional[str] = None

    @field_validator("start_time", "end_time")
    @classmethod
    def must_be_clock_time(cls, v: Optional[str]) -> Optional[str]:
        if v is not None:
            parse_clock_time(v)
        return v

    @model_validator(mode="after")
    def one_partner(self) -> "CreateGuestVisitIn":
        if (self.partner_id is None) == (self.new_partner_name is None):
            raise ValueError("give either partner_id or new_partner_name")
        return self

    def to_request(self) -> GuestVisitRequest:
        return GuestVisitRequest(
            visit_date=parse_visit_date(self.visit_date),
            partner_id=self.partner_id,
            new_partner_name=self.new_partner_name.strip() if self.new_partner_name else None,
            start_time=parse_clock_time(self.start_time) if self.start_time else None,
            end_time=parse_clock_time(self.end_time) if self.end_time else None,
            guest_details=self.guest_details,
            purpose=self.purpose,
            authorizer=self.authorizer or None,
        )


class ContractorOut(BaseModel):
    id: str
    name: str
    type: VisitorType
    company: Optional[str] = None
    email: Optional[str] = None
    phone: Optional[str] = None


class PartnerOut(BaseModel):
    id: str
    name: str
    email: Optional[str] = None
    phone: Optional[str] = None
    color: Optional[str] = None


class ContractorVisitOut(BaseModel):
    id: str
    contractor_id: str
    contractor_name: Optional[str] = None
    contractor_type: Optional[VisitorType] = None
    visit_date: str
    start_time: str
    end_time: str
    purpose: Optional[str] = None
    status: str
    is_recurring: bool
    recurrence_pattern: Optional[Dict[str, Any]] = None
    authorizer: Optional[str] = None

    @classmethod
    def from_domain(cls, v: ContractorVisit) -> "ContractorVisitOut":
        return cls(
            id=v.id,
            contractor_id=v.contractor_id,
            contractor_name=v.contractor_name,
            contractor_type=v.contractor_type,
            visit_date=v.visit_date.isoformat(),
            start_time=clock_time_str(v.start_time),
            end_time=clock_time_str(v.end_time),
            purpose=v.purpose,
            status=v.status,
            is_recurring=v.is_recurring,
            recurrence_pattern=v.recurrence_pattern.to_payload() if v.recurrence_pattern else None,
            authorizer=v.authorizer,
        )


class GuestVisitOut(BaseModel):
    id: str
    partner_id: Optional[str] = None
    partner_name: Optional[str] = None
    visit_date: str
    start_time: Optional[str] = None
    end_time: Optional[str] = None
    purpose: Optional[str] = None
    status: str
    guest_details: Optional[str] = None
    authorizer: Optional[str] = None

    @classmethod
    def from_domain(cls, v: GuestVisit) -> "GuestVisitOut":
        return cls(
            id=v.id,
            partner_id=v.partner_id,
            partner_name=v.partner_name,
            visit_date=v.visit_date.isoformat(),
            start_time=clock_time_str(v.start_time) if v.start_time else None,
            end_time=clock_time_str(v.end_time) if v.end_time else None,
            purpose=v.purpose,
            status=v.status,
            guest_details=v.guest_details,
            authorizer=v.authorizer,
        )


class FacilityCalendarOut(BaseModel):
    bookings: List[BookingOut]
    contractor_visits: List[ContractorVisitOut]
    guest_visits: List[GuestVisitOut]

    @classmethod
    def from_domain(cls, c: FacilityCalendar) -> "FacilityCalendarOut":
        return cls(
            bookings=[BookingOut.from_domain(b) for b in c.bookings],
            contractor_visits=[ContractorVisitOut.from_domain(v) for v in c.contractor_visits],
            guest_visits=[GuestVisitOut.from_domain(v) for v in c.guest_visits],
        )
