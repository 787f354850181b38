from __future__ import annotations

import dataclasses
import logging
from datetime import date, datetime
from typing import List, Optional, Sequence

from config import KNOWN_AUTHORIZERS
from errors import (
    BookingError,
    BookingNotFoundError,
    EmptyRecurrenceError,
    InvalidRecurrenceError,
    InvalidTimeRangeError,
    RoomConflictError,
    UnknownVisitorError,
    VisitNotFoundError,
)
from models import (
    Booking,
    BookingRequest,
    ConflictDetails,
    Contractor,
    ContractorVisit,
    ContractorVisitRequest,
    FacilityCalendar,
    GuestVisit,
    GuestVisitRequest,
    Partner,
    RecurrencePattern,
    RecurrenceType,
    Room,
    VisitFrequency,
    format_long_date,
    format_time,
    intervals_overlap,
    to_display_tz,
)
from recurrence import expand_pattern, expand_visit_dates, visit_pattern
from repository import BookingRepository, VisitRepository

logger = logging.getLogger(__name__)


def _validate_range(start: datetime, end: datetime) -> None:
    if start.tzinfo is None or end.tzinfo is None:
        raise InvalidTimeRangeError("Start and end times must include a timezone")
    if not start < end:
        raise InvalidTimeRangeError("End time must be after start time")


class ConflictDetector:
    """Read-only overlap checks against the bookings already stored for a room."""

    def __init__(self, repo: BookingRepository) -> None:
        self._repo = repo

    async def find_conflicts(self, room_id: str, start: datetime, end: datetime) -> List[Booking]:
        candidates = await self._repo.find_overlapping(room_id, start, end)
        return [b for b in candidates if intervals_overlap(start, end, b.start_utc, b.end_utc)]

    async def has_conflict(self, room_id: str, start: datetime, end: datetime) -> bool:
        return bool(await self.find_conflicts(room_id, start, end))

    async def get_conflict_details(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        rooms: Optional[Sequence[Room]] = None,
    ) -> ConflictDetails:
        conflicts = await self.find_conflicts(room_id, start, end)
        if not conflicts:
            return ConflictDetails(has_conflict=False)

        if rooms is None:
            rooms = await self._repo.list_rooms()
        room_name = next((r.name for r in rooms if r.id == room_id), None) or "Room"
        first = conflicts[0]
        message = (
            f"Time conflict: {room_name} already booked from "
            f"{format_time(to_display_tz(first.start_utc))} to {format_time(to_display_tz(first.end_utc))}. "
            "Please select a different time."
        )
        return ConflictDetails(has_conflict=True, message=message, conflicts=conflicts)


class BookingService:
    def __init__(self, repo: BookingRepository, known_authorizers: Sequence[str] = KNOWN_AUTHORIZERS) -> None:
        self._repo = repo
        self._conflicts = ConflictDetector(repo)
        self._known_authorizers = list(known_authorizers)

    # -----------------------------
    # Pre-flight checks
    # -----------------------------
    async def check_room_conflict(self, room_id: str, start: datetime, end: datetime) -> bool:
        _validate_range(start, end)
        return await self._conflicts.has_conflict(room_id, start, end)

    async def get_conflict_details(
        self,
        room_id: str,
        start: datetime,
        end: datetime,
        rooms: Optional[Sequence[Room]] = None,
    ) -> ConflictDetails:
        _validate_range(start, end)
        return await self._conflicts.get_conflict_details(room_id, start, end, rooms)

    # -----------------------------
    # Creation
    # -----------------------------
    async def create_single_booking(self, request: BookingRequest, rooms: Optional[Sequence[Room]] = None) -> Booking:
        _validate_range(request.start, request.end)
        logger.info("Creating single booking for room %s", request.room_id)

        conflict = await self._conflicts.get_conflict_details(request.room_id, request.start, request.end, rooms)
        if conflict.has_conflict:
            logger.warning("Booking rejected for room %s: %s", request.room_id, conflict.message)
            raise RoomConflictError(conflict.message)

        [booking] = await self._repo.insert([BookingRepository.to_row(request, request.start, request.end)])
        logger.info("Booking %s created for room %s", booking.id, booking.room_id)
        return booking

    async def create_recurring_bookings(
        self,
        request: BookingRequest,
        pattern: RecurrencePattern,
        rooms: Optional[Sequence[Room]] = None,
    ) -> List[Booking]:
        """
        Create every occurrence of a series, or nothing.

        All occurrences are conflict-checked, in order, before the single
        batch insert; the first conflicting occurrence aborts the series.
        Checking and inserting are separate store calls, so two concurrent
        requests for the same slot can both pass their checks.
        """
        if pattern.type is RecurrenceType.NONE:
            return [await self.create_single_booking(request, rooms)]

        _validate_range(request.start, request.end)
        occurrences = expand_pattern(request.start, request.end, pattern)
        if not occurrences:
            raise EmptyRecurrenceError("The recurrence settings do not produce any bookings")
        logger.info(
            "Creating recurring bookings for room %s: %d %s occurrences",
            request.room_id,
            len(occurrences),
            pattern.type.value,
        )

        for occ_start, occ_end in occurrences:
            conflict = await self._conflicts.get_conflict_details(request.room_id, occ_start, occ_end, rooms)
            if conflict.has_conflict:
                conflict_date = format_long_date(to_display_tz(occ_start))
                logger.warning("Recurring booking rejected for room %s on %s", request.room_id, conflict_date)
                raise RoomConflictError(f"Time conflict on {conflict_date}: {conflict.message}")

        rows = [BookingRepository.to_row(request, occ_start, occ_end, pattern) for occ_start, occ_end in occurrences]
        bookings = await self._repo.insert(rows)
        logger.info("Created %d recurring bookings for room %s", len(bookings), request.room_id)
        return bookings

    async def create_for_rooms(
        self,
        room_ids: Sequence[str],
        request: BookingRequest,
        pattern: Optional[RecurrencePattern] = None,
        rooms: Optional[Sequence[Room]] = None,
    ) -> List[Booking]:
        """
        Apply the single or recurring flow to each room in turn.

        Stops at the first failing room. Bookings made for earlier rooms stay
        in place and are attached to the raised error as `completed_bookings`.
        """
        results: List[Booking] = []
        for room_id in dict.fromkeys(room_ids):
            room_request = dataclasses.replace(request, room_id=room_id)
            try:
                if pattern is None:
                    results.append(await self.create_single_booking(room_request, rooms))
                else:
                    results.extend(await self.create_recurring_bookings(room_request, pattern, rooms))
            except BookingError as e:
                if results:
                    logger.warning(
                        "Multi-room booking stopped at room %s; %d bookings already created",
                        room_id,
                        len(results),
                    )
                e.with_completed(results)
                raise
        return results

    async def create_multiple_room_bookings(
        self,
        request: BookingRequest,
        room_ids: Sequence[str],
        rooms: Optional[Sequence[Room]] = None,
    ) -> List[Booking]:
        return await self.create_for_rooms(room_ids, request, rooms=rooms)

    async def create_multiple_room_recurring_bookings(
        self,
        request: BookingRequest,
        room_ids: Sequence[str],
        pattern: RecurrencePattern,
        rooms: Optional[Sequence[Room]] = None,
    ) -> List[Booking]:
        return await self.create_for_rooms(room_ids, request, pattern, rooms)

    # -----------------------------
    # Cancellation and reads
    # -----------------------------
    async def cancel_booking(self, booking_id: str) -> None:
        # One occurrence only; siblings of a series are independent rows.
        deleted = await self._repo.delete(booking_id)
        if not deleted:
            raise BookingNotFoundError(f"Booking {booking_id} not found")
        logger.info("Booking %s cancelled", booking_id)

    async def list_rooms(self) -> List[Room]:
        return await self._repo.list_rooms()

    async def list_bookings_for_room(self, room_id: str) -> List[Booking]:
        return await self._repo.list_by_room(room_id)

    async def list_bookings(
        self,
        window_start: datetime,
        window_end: datetime,
        room_id: Optional[str] = None,
    ) -> List[Booking]:
        _validate_range(window_start, window_end)
        return await self._repo.list_between(window_start, window_end, room_id)

    def known_authorizers(self) -> List[str]:
        return list(self._known_authorizers)


class VisitService:
    """
    Contractor/volunteer and partner guest visits, and the facility calendar
    that lays them out next to room bookings.
    """

    def __init__(self, repo: VisitRepository, bookings: BookingService) -> None:
        self._repo = repo
        self._bookings = bookings

    async def _resolve_contractor(self, request: ContractorVisitRequest) -> Contractor:
        if request.new_contractor is not None:
            contractor = await self._repo.insert_contractor(request.new_contractor)
            logger.info("Registered %s %s (%s)", contractor.type.value, contractor.name, contractor.id)
            return contractor
        contractor = await self._repo.get_contractor(request.contractor_id or "")
        if contractor is None:
            raise UnknownVisitorError(f"Contractor {request.contractor_id} not found")
        return contractor

    async def _resolve_partner(self, request: GuestVisitRequest) -> Partner:
        if request.new_partner_name:
            partner = await self._repo.insert_partner(request.new_partner_name)
            logger.info("Registered partner %s (%s)", partner.name, partner.id)
            return partner
        partner = await self._repo.get_partner(request.partner_id or "")
        if partner is None:
            raise UnknownVisitorError(f"Partner {request.partner_id} not found")
        return partner

    async def schedule_contractor_visit(
        self,
        request: ContractorVisitRequest,
        frequency: Optional[VisitFrequency] = None,
        last_day: Optional[date] = None,
    ) -> List[ContractorVisit]:
        """
        Schedule one visit, or a run of visits from `visit_date` through
        `last_day` (inclusive) when a frequency is given. The whole run is
        written in one insert. A new contractor is registered first.
        """
        if not request.start_time < request.end_time:
            raise InvalidTimeRangeError("End time must be after start time")

        pattern = None
        days = [request.visit_date]
        if frequency is not None:
            if last_day is None:
                raise InvalidRecurrenceError("Recurring visits need an end date")
            pattern = visit_pattern(frequency, last_day)
            days = expand_visit_dates(request.visit_date, pattern)
            if not days:
                raise EmptyRecurrenceError("The recurrence settings do not produce any visits")

        contractor = await self._resolve_contractor(request)
        rows = [
            VisitRepository.contractor_visit_row(
                contractor.id,
                day,
                request.start_time,
                request.end_time,
                request.purpose,
                request.authorizer,
                pattern,
            )
            for day in days
        ]
        visits = await self._repo.insert_contractor_visits(rows, contractor)
        logger.info("Scheduled %d visits for contractor %s", len(visits), contractor.id)
        return visits

    async def schedule_guest_visit(self, request: GuestVisitRequest) -> GuestVisit:
        if request.start_time is not None and request.end_time is not None:
            if not request.start_time < request.end_time:
                raise InvalidTimeRangeError("End time must be after start time")

        partner = await self._resolve_partner(request)
        visit = await self._repo.insert_guest_visit(VisitRepository.guest_visit_row(request, partner), partner)
        logger.info("Scheduled guest visit %s for partner %s", visit.id, partner.id)
        return visit

    async def cancel_contractor_visit(self, visit_id: str) -> None:
        if not await self._repo.delete_contractor_visit(visit_id):
            raise VisitNotFoundError(f"Contractor visit {visit_id} not found")
        logger.info("Contractor visit %s cancelled", visit_id)

    async def cancel_guest_visit(self, visit_id: str) -> None:
        if not await self._repo.delete_guest_visit(visit_id):
            raise VisitNotFoundError(f"Guest visit {visit_id} not found")
        logger.info("Guest visit %s cancelled", visit_id)

    async def list_contractors(self) -> List[Contractor]:
        return await self._repo.list_contractors()

    async def list_partners(self) -> List[Partner]:
        return await self._repo.list_partners()

    async def get_facility_calendar(
        self,
        window_start: datetime,
        window_end: datetime,
        room_id: Optional[str] = None,
    ) -> FacilityCalendar:
        """
        Bookings inside the window plus every visit whose day falls in it.

        Visit days are the display-zone dates of the window bounds, both
        inclusive. `room_id` narrows the bookings only; visits hold no room.
        """
        bookings = await self._bookings.list_bookings(window_start, window_end, room_id)
        first_day = to_display_tz(window_start).date()
        last_day = to_display_tz(window_end).date()
        contractor_visits = await self._repo.list_contractor_visits(first_day, last_day)
        guest_visits = await self._repo.list_guest_visits(first_day, last_day)
        return FacilityCalendar(bookings=bookings, contractor_visits=contractor_visits, guest_visits=guest_visits)
