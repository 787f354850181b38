import asyncio
from datetime import date, time

import pytest

from errors import (
    BackendUnavailableError,
    EmptyRecurrenceError,
    InvalidTimeRangeError,
    UnknownVisitorError,
    VisitNotFoundError,
)
from models import (
    BookingRequest,
    ContractorVisitRequest,
    GuestVisitRequest,
    NewContractor,
    VisitFrequency,
    VisitorType,
    parse_iso8601_tz,
)
from repository import (
    CONTRACTOR_VISITS,
    CONTRACTORS,
    GUEST_VISITS,
    PARTNERS,
    ROOMS,
    BookingRepository,
    InMemoryRowStore,
    VisitRepository,
    eq,
)
from services import BookingService, VisitService


def dt(ts: str):
    return parse_iso8601_tz(ts)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store():
    s = InMemoryRowStore()
    s.seed(ROOMS, [{"id": "R1", "name": "Room One"}, {"id": "R2", "name": "Room Two"}])
    s.seed(CONTRACTORS, [{"id": "c1", "name": "Pat Plumber", "type": "contractor"}])
    s.seed(PARTNERS, [{"id": "p1", "name": "Food Bank", "color": "#ff0000"}])
    return s


@pytest.fixture
def bookings(store):
    return BookingService(BookingRepository(store))


@pytest.fixture
def visits(store, bookings):
    return VisitService(VisitRepository(store), bookings)


def visit_request(day, **extra):
    fields = {
        "visit_date": day,
        "start_time": time(9, 0),
        "end_time": time(12, 0),
        "contractor_id": "c1",
        "purpose": "Boiler service",
    }
    fields.update(extra)
    return ContractorVisitRequest(**fields)


def guest_request(day, **extra):
    fields = {"visit_date": day, "partner_id": "p1", "start_time": time(13, 0), "end_time": time(14, 0)}
    fields.update(extra)
    return GuestVisitRequest(**fields)


def book(bookings, room_id, start, end):
    return run(
        bookings.create_single_booking(
            BookingRequest(room_id=room_id, start=dt(start), end=dt(end), user_id="user-1", title="Choir")
        )
    )


def rows(store, table, **where):
    filters = [eq(k, v) for k, v in where.items()]
    return run(store.select(table, filters))


MARCH = (dt("2024-03-01T00:00:00Z"), dt("2024-03-31T23:59:59Z"))


def test_calendar_merges_bookings_and_both_visit_kinds(visits, bookings):
    booking = book(bookings, "R1", "2024-03-12T18:00:00Z", "2024-03-12T19:00:00Z")
    book(bookings, "R1", "2024-04-02T18:00:00Z", "2024-04-02T19:00:00Z")
    run(visits.schedule_contractor_visit(visit_request(date(2024, 3, 5))))
    run(visits.schedule_guest_visit(guest_request(date(2024, 3, 20))))

    calendar = run(visits.get_facility_calendar(*MARCH))

    assert [b.id for b in calendar.bookings] == [booking.id]
    [contractor_visit] = calendar.contractor_visits
    assert contractor_visit.visit_date == date(2024, 3, 5)
    assert contractor_visit.contractor_name == "Pat Plumber"
    assert contractor_visit.contractor_type is VisitorType.CONTRACTOR
    [guest_visit] = calendar.guest_visits
    assert guest_visit.partner_name == "Food Bank"
    assert guest_visit.start_time == time(13, 0)


def test_visit_window_includes_both_end_days(visits):
    for day in (date(2024, 2, 29), date(2024, 3, 1), date(2024, 3, 31), date(2024, 4, 1)):
        run(visits.schedule_contractor_visit(visit_request(day)))
        run(visits.schedule_guest_visit(guest_request(day)))

    calendar = run(visits.get_facility_calendar(*MARCH))

    assert [v.visit_date for v in calendar.contractor_visits] == [date(2024, 3, 1), date(2024, 3, 31)]
    assert [v.visit_date for v in calendar.guest_visits] == [date(2024, 3, 1), date(2024, 3, 31)]


def test_room_filter_narrows_bookings_but_keeps_visits(visits, bookings):
    book(bookings, "R1", "2024-03-12T18:00:00Z", "2024-03-12T19:00:00Z")
    other = book(bookings, "R2", "2024-03-12T18:00:00Z", "2024-03-12T19:00:00Z")
    run(visits.schedule_contractor_visit(visit_request(date(2024, 3, 5))))

    calendar = run(visits.get_facility_calendar(*MARCH, room_id="R2"))

    assert [b.id for b in calendar.bookings] == [other.id]
    assert len(calendar.contractor_visits) == 1


def test_same_day_visits_are_ordered_by_start_time(visits):
    run(visits.schedule_contractor_visit(visit_request(date(2024, 3, 5), start_time=time(14, 0), end_time=time(15, 0))))
    run(visits.schedule_contractor_visit(visit_request(date(2024, 3, 5), start_time=time(8, 0), end_time=time(9, 0))))

    calendar = run(visits.get_facility_calendar(*MARCH))

    assert [v.start_time for v in calendar.contractor_visits] == [time(8, 0), time(14, 0)]


def test_bi_weekly_visits_run_through_the_last_day(visits, store):
    created = run(
        visits.schedule_contractor_visit(
            visit_request(date(2024, 3, 4)), VisitFrequency.BI_WEEKLY, date(2024, 4, 1)
        )
    )

    assert [v.visit_date for v in created] == [date(2024, 3, 4), date(2024, 3, 18), date(2024, 4, 1)]
    assert all(v.is_recurring for v in created)
    assert {v.recurrence_pattern for v in created} == {created[0].recurrence_pattern}
    assert len(rows(store, CONTRACTOR_VISITS)) == 3


def test_monthly_visits_clamp_to_month_end(visits):
    created = run(
        visits.schedule_contractor_visit(visit_request(date(2024, 1, 31)), VisitFrequency.MONTHLY, date(2024, 4, 30))
    )

    assert [v.visit_date for v in created] == [
        date(2024, 1, 31),
        date(2024, 2, 29),
        date(2024, 3, 31),
        date(2024, 4, 30),
    ]


def test_recurring_visits_ending_before_they_start_write_nothing(visits, store):
    with pytest.raises(EmptyRecurrenceError):
        run(visits.schedule_contractor_visit(visit_request(date(2024, 3, 4)), VisitFrequency.WEEKLY, date(2024, 3, 1)))
    assert rows(store, CONTRACTOR_VISITS) == []


def test_new_contractor_is_registered_with_the_visit(visits, store):
    request = visit_request(
        date(2024, 3, 5),
        contractor_id=None,
        new_contractor=NewContractor(name="Sam Sparks", type=VisitorType.VOLUNTEER, company="Sparks Ltd"),
    )

    [visit] = run(visits.schedule_contractor_visit(request))

    [contractor] = rows(store, CONTRACTORS, name="Sam Sparks")
    assert contractor["type"] == "volunteer"
    assert visit.contractor_id == contractor["id"]
    assert visit.contractor_type is VisitorType.VOLUNTEER


def test_unknown_contractor_writes_nothing(visits, store):
    with pytest.raises(UnknownVisitorError):
        run(visits.schedule_contractor_visit(visit_request(date(2024, 3, 5), contractor_id="nobody")))
    assert rows(store, CONTRACTOR_VISITS) == []


def test_visit_ending_before_it_starts_is_rejected(visits, store):
    with pytest.raises(InvalidTimeRangeError):
        run(visits.schedule_contractor_visit(visit_request(date(2024, 3, 5), start_time=time(12, 0), end_time=time(9, 0))))
    with pytest.raises(InvalidTimeRangeError):
        run(visits.schedule_guest_visit(guest_request(date(2024, 3, 5), start_time=time(15, 0), end_time=time(14, 0))))
    assert rows(store, CONTRACTOR_VISITS) == []
    assert rows(store, GUEST_VISITS) == []


def test_guest_visit_can_register_a_new_partner(visits, store):
    visit = run(visits.schedule_guest_visit(guest_request(date(2024, 3, 5), partner_id=None, new_partner_name="Scouts")))

    [partner] = rows(store, PARTNERS, name="Scouts")
    assert visit.partner_id == partner["id"]
    assert visit.partner_name == "Scouts"


def test_guest_visit_for_unknown_partner_is_rejected(visits, store):
    with pytest.raises(UnknownVisitorError):
        run(visits.schedule_guest_visit(guest_request(date(2024, 3, 5), partner_id="nobody")))
    assert rows(store, GUEST_VISITS) == []


def test_guest_visit_without_partner_record_keeps_copied_name(visits, store):
    store.seed(GUEST_VISITS, [{"id": "g1", "visit_date": "2024-03-07", "partner_name": "Walk-in group"}])

    [visit] = run(visits.get_facility_calendar(*MARCH)).guest_visits

    assert visit.partner_name == "Walk-in group"
    assert visit.start_time is None


def test_cancel_visits(visits, store):
    [contractor_visit] = run(visits.schedule_contractor_visit(visit_request(date(2024, 3, 5))))
    guest_visit = run(visits.schedule_guest_visit(guest_request(date(2024, 3, 5))))

    run(visits.cancel_contractor_visit(contractor_visit.id))
    run(visits.cancel_guest_visit(guest_visit.id))

    assert rows(store, CONTRACTOR_VISITS) == []
    assert rows(store, GUEST_VISITS) == []
    with pytest.raises(VisitNotFoundError):
        run(visits.cancel_guest_visit(guest_visit.id))


@pytest.mark.parametrize(
    "row",
    [
        # date the visit tables never hold
        {"id": "bad", "contractor_id": "c1", "visit_date": "2024-03-05T00:00:00Z", "start_time": "09:00", "end_time": "10:00"},
        # clock time that is not HH:MM
        {"id": "bad", "contractor_id": "c1", "visit_date": "2024-03-05", "start_time": "9am", "end_time": "10:00"},
        # ends before it starts
        {"id": "bad", "contractor_id": "c1", "visit_date": "2024-03-05", "start_time": "11:00", "end_time": "10:00"},
    ],
)
def test_malformed_visit_rows_are_not_coerced(store, visits, row):
    store.seed(CONTRACTOR_VISITS, [row])
    with pytest.raises(BackendUnavailableError):
        run(visits.get_facility_calendar(*MARCH))
