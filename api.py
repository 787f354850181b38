from __future__ import annotations

from datetime import datetime
from typing import List, Optional

from fastapi import APIRouter, HTTPException, Path, Query, status

from errors import (
    BackendUnavailableError,
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
    BookingOut,
    ConflictCheckOut,
    ContractorOut,
    ContractorVisitOut,
    CreateBookingIn,
    CreateContractorVisitIn,
    CreateGuestVisitIn,
    CreateMultiRoomBookingIn,
    CreateMultiRoomRecurringBookingIn,
    CreateRecurringBookingIn,
    FacilityCalendarOut,
    GuestVisitOut,
    PartnerOut,
    RoomOut,
    parse_iso8601_tz,
    parse_visit_date,
)
from services import BookingService, VisitService


def _status_for(e: BookingError) -> int:
    if isinstance(e, (InvalidTimeRangeError, EmptyRecurrenceError, InvalidRecurrenceError, UnknownVisitorError)):
        return status.HTTP_422_UNPROCESSABLE_CONTENT
    if isinstance(e, RoomConflictError):
        return status.HTTP_409_CONFLICT
    if isinstance(e, (BookingNotFoundError, VisitNotFoundError)):
        return status.HTTP_404_NOT_FOUND
    if isinstance(e, BackendUnavailableError):
        return status.HTTP_503_SERVICE_UNAVAILABLE
    return status.HTTP_400_BAD_REQUEST


def _to_http(e: BookingError) -> HTTPException:
    return HTTPException(status_code=_status_for(e), detail=e.message)


def _to_http_partial(e: BookingError) -> HTTPException:
    # Multi-room failures keep the rooms that already succeeded
    return HTTPException(
        status_code=_status_for(e),
        detail={
            "message": e.message,
            "completed_booking_ids": [b.id for b in e.completed_bookings],
        },
    )


def _parse_query_ts(value: str, name: str) -> datetime:
    try:
        return parse_iso8601_tz(value)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_422_UNPROCESSABLE_CONTENT,
            detail=f"Validation error: {name} must be an ISO-8601 timestamp with timezone.",
        )


def create_router(service: BookingService, visits: VisitService) -> APIRouter:
    router = APIRouter()

    @router.get("/rooms", response_model=List[RoomOut])
    async def list_rooms() -> List[RoomOut]:
        try:
            rooms = await service.list_rooms()
        except BookingError as e:
            raise _to_http(e)
        return [RoomOut(id=r.id, name=r.name, description=r.description, capacity=r.capacity) for r in rooms]

    @router.get("/authorizers", response_model=List[str])
    async def list_authorizers() -> List[str]:
        return service.known_authorizers()

    @router.post("/bookings", response_model=BookingOut, status_code=status.HTTP_201_CREATED)
    async def create_booking(payload: CreateBookingIn) -> BookingOut:
        try:
            booking = await service.create_single_booking(payload.to_request(payload.room_id))
        except BookingError as e:
            raise _to_http(e)
        return BookingOut.from_domain(booking)

    @router.post("/bookings/recurring", response_model=List[BookingOut], status_code=status.HTTP_201_CREATED)
    async def create_recurring_bookings(payload: CreateRecurringBookingIn) -> List[BookingOut]:
        try:
            bookings = await service.create_recurring_bookings(
                payload.to_request(payload.room_id), payload.recurrence.to_pattern()
            )
        except BookingError as e:
            raise _to_http(e)
        return [BookingOut.from_domain(b) for b in bookings]

    @router.post("/bookings/multi-room", response_model=List[BookingOut], status_code=status.HTTP_201_CREATED)
    async def create_multi_room_bookings(payload: CreateMultiRoomBookingIn) -> List[BookingOut]:
        try:
            bookings = await service.create_multiple_room_bookings(
                payload.to_request(payload.room_ids[0]), payload.room_ids
            )
        except BookingError as e:
            raise _to_http_partial(e)
        return [BookingOut.from_domain(b) for b in bookings]

    @router.post(
        "/bookings/multi-room/recurring",
        response_model=List[BookingOut],
        status_code=status.HTTP_201_CREATED,
    )
    async def create_multi_room_recurring_bookings(payload: CreateMultiRoomRecurringBookingIn) -> List[BookingOut]:
        try:
            bookings = await service.create_multiple_room_recurring_bookings(
                payload.to_request(payload.room_ids[0]), payload.room_ids, payload.recurrence.to_pattern()
            )
        except BookingError as e:
            raise _to_http_partial(e)
        return [BookingOut.from_domain(b) for b in bookings]

    @router.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def delete_booking(booking_id: str = Path(..., min_length=1)) -> None:
        try:
            await service.cancel_booking(booking_id)
        except BookingNotFoundError:
            raise HTTPException(
                status_code=status.HTTP_404_NOT_FOUND,
                detail="Booking not found.",
            )
        except BookingError as e:
            raise _to_http(e)
        return None

    @router.get("/bookings", response_model=List[BookingOut])
    async def list_bookings(
        start: str = Query(...),
        end: str = Query(...),
        room_id: Optional[str] = Query(None, min_length=1),
    ) -> List[BookingOut]:
        window_start = _parse_query_ts(start, "start")
        window_end = _parse_query_ts(end, "end")
        try:
            bookings = await service.list_bookings(window_start, window_end, room_id)
        except BookingError as e:
            raise _to_http(e)
        return [BookingOut.from_domain(b) for b in bookings]

    @router.get("/rooms/{room_id}/bookings", response_model=List[BookingOut])
    async def list_bookings_for_room(room_id: str = Path(..., min_length=1)) -> List[BookingOut]:
        try:
            bookings = await service.list_bookings_for_room(room_id)
        except BookingError as e:
            raise _to_http(e)
        return [BookingOut.from_domain(b) for b in bookings]

    @router.get("/rooms/{room_id}/conflicts", response_model=ConflictCheckOut)
    async def check_conflict(
        room_id: str = Path(..., min_length=1),
        start: str = Query(...),
        end: str = Query(...),
    ) -> ConflictCheckOut:
        occ_start = _parse_query_ts(start, "start")
        occ_end = _parse_query_ts(end, "end")
        try:
            details = await service.get_conflict_details(room_id, occ_start, occ_end)
        except BookingError as e:
            raise _to_http(e)
        return ConflictCheckOut(has_conflict=details.has_conflict, message=details.message)

    @router.get("/calendar", response_model=FacilityCalendarOut)
    async def facility_calendar(
        start: str = Query(...),
        end: str = Query(...),
        room_id: Optional[str] = Query(None, min_length=1),
    ) -> FacilityCalendarOut:
        window_start = _parse_query_ts(start, "start")
        window_end = _parse_query_ts(end, "end")
        try:
            calendar = await visits.get_facility_calendar(window_start, window_end, room_id)
        except BookingError as e:
            raise _to_http(e)
        return FacilityCalendarOut.from_domain(calendar)

    @router.get("/contractors", response_model=List[ContractorOut])
    async def list_contractors() -> List[ContractorOut]:
        try:
            contractors = await visits.list_contractors()
        except BookingError as e:
            raise _to_http(e)
        return [
            ContractorOut(id=c.id, name=c.name, type=c.type, company=c.company, email=c.email, phone=c.phone)
            for c in contractors
        ]

    @router.get("/partners", response_model=List[PartnerOut])
    async def list_partners() -> List[PartnerOut]:
        try:
            partners = await visits.list_partners()
        except BookingError as e:
            raise _to_http(e)
        return [PartnerOut(id=p.id, name=p.name, email=p.email, phone=p.phone, color=p.color) for p in partners]

    @router.post("/contractor-visits", response_model=List[ContractorVisitOut], status_code=status.HTTP_201_CREATED)
    async def schedule_contractor_visit(payload: CreateContractorVisitIn) -> List[ContractorVisitOut]:
        recurrence = payload.recurrence
        try:
            scheduled = await visits.schedule_contractor_visit(
                payload.to_request(),
                recurrence.frequency if recurrence else None,
                parse_visit_date(recurrence.end_date) if recurrence else None,
            )
        except BookingError as e:
            raise _to_http(e)
        return [ContractorVisitOut.from_domain(v) for v in scheduled]

    @router.delete("/contractor-visits/{visit_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def cancel_contractor_visit(visit_id: str = Path(..., min_length=1)) -> None:
        try:
            await visits.cancel_contractor_visit(visit_id)
        except VisitNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visit not found.")
        except BookingError as e:
            raise _to_http(e)
        return None

    @router.post("/guest-visits", response_model=GuestVisitOut, status_code=status.HTTP_201_CREATED)
    async def schedule_guest_visit(payload: CreateGuestVisitIn) -> GuestVisitOut:
        try:
            visit = await visits.schedule_guest_visit(payload.to_request())
        except BookingError as e:
            raise _to_http(e)
        return GuestVisitOut.from_domain(visit)

    @router.delete("/guest-visits/{visit_id}", status_code=status.HTTP_204_NO_CONTENT)
    async def cancel_guest_visit(visit_id: str = Path(..., min_length=1)) -> None:
        try:
            await visits.cancel_guest_visit(visit_id)
        except VisitNotFoundError:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Visit not found.")
        except BookingError as e:
            raise _to_http(e)
        return None

    return router
