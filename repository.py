from __future__ import annotations

import asyncio
import copy
import functools
import logging
import operator
from dataclasses import dataclass
from datetime import date, datetime, time, timezone
from threading import Lock
from typing import Any, Awaitable, Callable, Dict, FrozenSet, List, Optional, Protocol, Sequence, Type, TypeVar
from uuid import uuid4

from pydantic import BaseModel

from config import STORE_MAX_RETRIES, STORE_RETRY_DELAY
from errors import BackendUnavailableError
from models import (
    Booking,
    BookingRequest,
    BookingRow,
    Contractor,
    ContractorRow,
    ContractorVisit,
    ContractorVisitRow,
    GuestVisit,
    GuestVisitRequest,
    GuestVisitRow,
    NewContractor,
    Partner,
    PartnerRow,
    RecurrencePattern,
    Room,
    RoomRow,
    clock_time_str,
    parse_iso8601_tz,
    utc_iso_z,
)

logger = logging.getLogger(__name__)

BOOKINGS = "bookings"
ROOMS = "rooms"
CONTRACTORS = "contractors"
CONTRACTOR_VISITS = "contractor_visits"
PARTNERS = "partners"
GUEST_VISITS = "guest_visits"

Row = Dict[str, Any]


# -----------------------------
# Row store capability
# -----------------------------
class StoreError(Exception):
    """Raised by a row store when a call itself fails."""

    def __init__(self, message: str, status: Optional[int] = None) -> None:
        super().__init__(message)
        self.message = message
        self.status = status

    @property
    def is_rate_limited(self) -> bool:
        return self.status == 429 or "Too Many" in self.message or "429" in self.message


@dataclass(frozen=True)
class Filter:
    column: str
    op: str  # eq | lt | gt | lte | gte
    value: Any


def eq(column: str, value: Any) -> Filter:
    return Filter(column, "eq", value)


def lt(column: str, value: Any) -> Filter:
    return Filter(column, "lt", value)


def gt(column: str, value: Any) -> Filter:
    return Filter(column, "gt", value)


def lte(column: str, value: Any) -> Filter:
    return Filter(column, "lte", value)


def gte(column: str, value: Any) -> Filter:
    return Filter(column, "gte", value)


class RowStore(Protocol):
    async def select(self, table: str, filters: Sequence[Filter] = (), order_by: Optional[str] = None) -> List[Row]:
        ...

    async def insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        ...

    async def delete(self, table: str, filters: Sequence[Filter]) -> List[Row]:
        ...


_OPS: Dict[str, Callable[[Any, Any], bool]] = {
    "eq": operator.eq,
    "lt": operator.lt,
    "gt": operator.gt,
    "lte": operator.le,
    "gte": operator.ge,
}


class InMemoryRowStore:
    """
    Process-local row store. Each call is serialized by a lock; a multi-row
    insert lands all rows or none. Timestamp columns compare as instants;
    visit dates and clock times are zero-padded text and compare as such.
    """

    TIMESTAMP_COLUMNS: Dict[str, FrozenSet[str]] = {
        BOOKINGS: frozenset({"start_time", "end_time", "created_at"}),
        GUEST_VISITS: frozenset({"check_in_time", "check_out_time", "created_at"}),
    }
    DEFAULT_TIMESTAMP_COLUMNS: FrozenSet[str] = frozenset({"created_at"})

    def __init__(self) -> None:
        self._tables: Dict[str, List[Row]] = {}
        self._lock = Lock()

    def _coerce(self, table: str, column: str, value: Any) -> Any:
        columns = self.TIMESTAMP_COLUMNS.get(table, self.DEFAULT_TIMESTAMP_COLUMNS)
        if column in columns and isinstance(value, str):
            try:
                return parse_iso8601_tz(value)
            except ValueError:
                raise StoreError(f"invalid input syntax for timestamp in {table}.{column}: {value!r}") from None
        return value

    def _matches(self, table: str, row: Row, filters: Sequence[Filter]) -> bool:
        for f in filters:
            op = _OPS.get(f.op)
            if op is None:
                raise StoreError(f"Unsupported filter operator: {f.op}")
            left = self._coerce(table, f.column, row.get(f.column))
            right = self._coerce(table, f.column, f.value)
            if left is None or right is None:
                if f.op == "eq" and left is right:
                    continue
                return False
            if not op(left, right):
                return False
        return True

    @staticmethod
    def _new_id(table: str) -> str:
        if table == BOOKINGS:
            return f"bkg_{uuid4().hex}"
        return uuid4().hex

    async def select(self, table: str, filters: Sequence[Filter] = (), order_by: Optional[str] = None) -> List[Row]:
        with self._lock:
            rows = [copy.deepcopy(r) for r in self._tables.get(table, []) if self._matches(table, r, filters)]
        if order_by:
            rows.sort(key=lambda r: self._coerce(table, order_by, r.get(order_by)))
        return rows

    async def insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        now = utc_iso_z(datetime.now(timezone.utc))
        prepared = []
        for row in rows:
            item = copy.deepcopy(dict(row))
            item.setdefault("id", self._new_id(table))
            item.setdefault("created_at", now)
            prepared.append(item)

        with self._lock:
            self._tables.setdefault(table, []).extend(prepared)
        return [copy.deepcopy(r) for r in prepared]

    async def delete(self, table: str, filters: Sequence[Filter]) -> List[Row]:
        with self._lock:
            kept, removed = [], []
            for row in self._tables.get(table, []):
                (removed if self._matches(table, row, filters) else kept).append(row)
            self._tables[table] = kept
        return removed

    def seed(self, table: str, rows: Sequence[Row]) -> None:
        with self._lock:
            self._tables.setdefault(table, []).extend(copy.deepcopy(dict(r)) for r in rows)

    def reset(self) -> None:
        """Clear all tables. For testing only."""
        with self._lock:
            self._tables.clear()


# -----------------------------
# Rate-limit retry
# -----------------------------
def retry_on_rate_limit(method: Callable[..., Awaitable[Any]]) -> Callable[..., Awaitable[Any]]:
    """Retry a store call with exponential backoff while the store reports rate limiting."""

    @functools.wraps(method)
    async def wrapper(self: "RetryingRowStore", *args: Any, **kwargs: Any) -> Any:
        attempt = 0
        while True:
            try:
                return await method(self, *args, **kwargs)
            except StoreError as e:
                if not e.is_rate_limited or attempt >= self.max_retries:
                    raise
                delay = self.retry_delay * (2**attempt)
                attempt += 1
                logger.warning(
                    "Rate limited on %s (attempt %d/%d), retrying in %.2fs",
                    method.__name__,
                    attempt,
                    self.max_retries,
                    delay,
                )
                await self._sleep(delay)

    return wrapper


class RetryingRowStore:
    def __init__(
        self,
        inner: RowStore,
        max_retries: int = STORE_MAX_RETRIES,
        retry_delay: float = STORE_RETRY_DELAY,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.inner = inner
        self.max_retries = max_retries
        self.retry_delay = retry_delay
        self._sleep = sleep

    @retry_on_rate_limit
    async def select(self, table: str, filters: Sequence[Filter] = (), order_by: Optional[str] = None) -> List[Row]:
        return await self.inner.select(table, filters, order_by)

    @retry_on_rate_limit
    async def insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        return await self.inner.insert(table, rows)

    @retry_on_rate_limit
    async def delete(self, table: str, filters: Sequence[Filter]) -> List[Row]:
        return await self.inner.delete(table, filters)


# -----------------------------
# Booking repository (boundary mapping)
# -----------------------------
M = TypeVar("M", bound=BaseModel)


def validate_row(model: Type[M], row: Row, what: str) -> M:
    """Validate one store row; a row that does not fit is never coerced."""
    # pydantic's ValidationError is a ValueError; TypeError covers non-dict rows
    try:
        return model.model_validate(row)
    except (ValueError, TypeError) as e:
        raise BackendUnavailableError(f"Unexpected {what} row from store: {e}") from e

class BookingRepository:
    def __init__(self, store: RowStore) -> None:
        self._store = store

    @staticmethod
    def to_row(
        request: BookingRequest,
        start: datetime,
        end: datetime,
        pattern: Optional[RecurrencePattern] = None,
    ) -> Row:
        return {
            "room_id": request.room_id,
            "user_id": request.user_id,
            "title": request.title,
            "description": request.description,
            "start_time": utc_iso_z(start),
            "end_time": utc_iso_z(end),
            "is_recurring": pattern is not None,
            "recurrence_pattern": pattern.to_payload() if pattern is not None else None,
            "authorizer": request.authorizer,
        }

    @staticmethod
    def _to_booking(row: Row) -> Booking:
        return validate_row(BookingRow, row, "booking").to_domain()

    @staticmethod
    def _to_room(row: Row) -> Room:
        return validate_row(RoomRow, row, "room").to_domain()

    async def _select(self, table: str, filters: Sequence[Filter] = (), order_by: Optional[str] = None) -> List[Row]:
        try:
            return await self._store.select(table, filters, order_by)
        except StoreError as e:
            raise BackendUnavailableError(f"Error checking availability: {e.message}") from e

    async def find_overlapping(self, room_id: str, start: datetime, end: datetime) -> List[Booking]:
        rows = await self._select(
            BOOKINGS,
            [eq("room_id", room_id), lt("start_time", utc_iso_z(end)), gt("end_time", utc_iso_z(start))],
            order_by="start_time",
        )
        return [self._to_booking(r) for r in rows]

    async def list_by_room(self, room_id: str) -> List[Booking]:
        rows = await self._select(BOOKINGS, [eq("room_id", room_id)], order_by="start_time")
        return [self._to_booking(r) for r in rows]

    async def list_between(self, window_start: datetime, window_end: datetime, room_id: Optional[str] = None) -> List[Booking]:
        filters = [gte("start_time", utc_iso_z(window_start)), lte("end_time", utc_iso_z(window_end))]
        if room_id is not None:
            filters.append(eq("room_id", room_id))
        rows = await self._select(BOOKINGS, filters, order_by="start_time")
        return [self._to_booking(r) for r in rows]

    async def list_rooms(self) -> List[Room]:
        rows = await self._select(ROOMS, order_by="name")
        return [self._to_room(r) for r in rows]

    async def insert(self, rows: Sequence[Row]) -> List[Booking]:
        try:
            inserted = await self._store.insert(BOOKINGS, rows)
        except StoreError as e:
            raise BackendUnavailableError(f"Error creating booking: {e.message}") from e
        if len(inserted) != len(rows):
            raise BackendUnavailableError(
                f"Error creating booking: store returned {len(inserted)} rows for {len(rows)} inserted"
            )
        return [self._to_booking(r) for r in inserted]

    async def delete(self, booking_id: str) -> bool:
        try:
            removed = await self._store.delete(BOOKINGS, [eq("id", booking_id)])
        except StoreError as e:
            raise BackendUnavailableError(f"Error deleting booking: {e.message}") from e
        return bool(removed)


# -----------------------------
# Visit repository (contractors and partners)
# -----------------------------
class VisitRepository:
    """
    Contractor/volunteer visits and partner guest visits. Visits are whole-day
    records keyed on `visit_date` ('YYYY-MM-DD') with optional wall-clock
    times; they never occupy a room, so nothing here checks for conflicts.
    """

    def __init__(self, store: RowStore) -> None:
        self._store = store

    @staticmethod
    def contractor_visit_row(
        contractor_id: str,
        visit_date: date,
        start_time: time,
        end_time: time,
        purpose: Optional[str] = None,
        authorizer: Optional[str] = None,
        pattern: Optional[RecurrencePattern] = None,
    ) -> Row:
        return {
            "contractor_id": contractor_id,
            "visit_date": visit_date.isoformat(),
            "start_time": clock_time_str(start_time),
            "end_time": clock_time_str(end_time),
            "purpose": purpose,
            "authorizer": authorizer,
            "status": "scheduled",
            "is_recurring": pattern is not None,
            "recurrence_pattern": pattern.to_payload() if pattern is not None else None,
        }

    @staticmethod
    def guest_visit_row(request: GuestVisitRequest, partner: Partner) -> Row:
        return {
            "partner_id": partner.id,
            "partner_name": partner.name,
            "visit_date": request.visit_date.isoformat(),
            "start_time": clock_time_str(request.start_time) if request.start_time else None,
            "end_time": clock_time_str(request.end_time) if request.end_time else None,
            "guest_details": request.guest_details,
            "purpose": request.purpose,
            "authorizer": request.authorizer,
            "status": "scheduled",
        }

    async def _select(self, table: str, filters: Sequence[Filter] = (), order_by: Optional[str] = None) -> List[Row]:
        try:
            return await self._store.select(table, filters, order_by)
        except StoreError as e:
            raise BackendUnavailableError(f"Error loading {table}: {e.message}") from e

    async def _insert(self, table: str, rows: Sequence[Row]) -> List[Row]:
        try:
            inserted = await self._store.insert(table, rows)
        except StoreError as e:
            raise BackendUnavailableError(f"Error creating {table}: {e.message}") from e
        if len(inserted) != len(rows):
            raise BackendUnavailableError(
                f"Error creating {table}: store returned {len(inserted)} rows for {len(rows)} inserted"
            )
        return inserted

    async def _delete(self, table: str, row_id: str) -> bool:
        try:
            removed = await self._store.delete(table, [eq("id", row_id)])
        except StoreError as e:
            raise BackendUnavailableError(f"Error deleting from {table}: {e.message}") from e
        return bool(removed)

    @staticmethod
    def _window(first_day: date, last_day: date) -> List[Filter]:
        return [gte("visit_date", first_day.isoformat()), lte("visit_date", last_day.isoformat())]

    # Contractors
    async def list_contractors(self) -> List[Contractor]:
        rows = await self._select(CONTRACTORS, order_by="name")
        return [validate_row(ContractorRow, r, "contractor").to_domain() for r in rows]

    async def get_contractor(self, contractor_id: str) -> Optional[Contractor]:
        rows = await self._select(CONTRACTORS, [eq("id", contractor_id)])
        return validate_row(ContractorRow, rows[0], "contractor").to_domain() if rows else None

    async def insert_contractor(self, contractor: NewContractor) -> Contractor:
        [row] = await self._insert(
            CONTRACTORS,
            [
                {
                    "name": contractor.name,
                    "type": contractor.type.value,
                    "company": contractor.company,
                    "email": contractor.email,
                    "phone": contractor.phone,
                    "notes": contractor.notes,
                }
            ],
        )
        return validate_row(ContractorRow, row, "contractor").to_domain()

    async def list_contractor_visits(self, first_day: date, last_day: date) -> List[ContractorVisit]:
        """Visits whose day falls in [first_day, last_day], with contractor name and type joined in."""
        rows = await self._select(CONTRACTOR_VISITS, self._window(first_day, last_day), order_by="visit_date")
        if not rows:
            return []
        contractors = {c.id: c for c in await self.list_contractors()}
        visits = [
            validate_row(ContractorVisitRow, r, "contractor visit").to_domain(contractors.get(r.get("contractor_id")))
            for r in rows
        ]
        return sorted(visits, key=lambda v: (v.visit_date, v.start_time))

    async def insert_contractor_visits(self, rows: Sequence[Row], contractor: Contractor) -> List[ContractorVisit]:
        inserted = await self._insert(CONTRACTOR_VISITS, rows)
        return [validate_row(ContractorVisitRow, r, "contractor visit").to_domain(contractor) for r in inserted]

    async def delete_contractor_visit(self, visit_id: str) -> bool:
        return await self._delete(CONTRACTOR_VISITS, visit_id)

    # Partners
    async def list_partners(self) -> List[Partner]:
        rows = await self._select(PARTNERS, order_by="name")
        return [validate_row(PartnerRow, r, "partner").to_domain() for r in rows]

    async def get_partner(self, partner_id: str) -> Optional[Partner]:
        rows = await self._select(PARTNERS, [eq("id", partner_id)])
        return validate_row(PartnerRow, rows[0], "partner").to_domain() if rows else None

    async def insert_partner(self, name: str) -> Partner:
        [row] = await self._insert(PARTNERS, [{"name": name}])
        return validate_row(PartnerRow, row, "partner").to_domain()

    async def list_guest_visits(self, first_day: date, last_day: date) -> List[GuestVisit]:
        """Visits whose day falls in [first_day, last_day], with the partner name joined in."""
        rows = await self._select(GUEST_VISITS, self._window(first_day, last_day), order_by="visit_date")
        if not rows:
            return []
        partners = {p.id: p for p in await self.list_partners()}
        visits = [
            validate_row(GuestVisitRow, r, "guest visit").to_domain(partners.get(r.get("partner_id")))
            for r in rows
        ]
        return sorted(visits, key=lambda v: (v.visit_date, v.start_time or time.min))

    async def insert_guest_visit(self, row: Row, partner: Partner) -> GuestVisit:
        [inserted] = await self._insert(GUEST_VISITS, [row])
        return validate_row(GuestVisitRow, inserted, "guest visit").to_domain(partner)

    async def delete_guest_visit(self, visit_id: str) -> bool:
        return await self._delete(GUEST_VISITS, visit_id)
