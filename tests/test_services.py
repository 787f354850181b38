import asyncio
import itertools
from datetime import timedelta

import pytest

from errors import (
    BackendUnavailableError,
    BookingNotFoundError,
    EmptyRecurrenceError,
    InvalidTimeRangeError,
    RoomConflictError,
)
from models import BookingRequest, DayOfWeek, RecurrencePattern, RecurrenceType, Room, parse_iso8601_tz
from repository import (
    BOOKINGS,
    ROOMS,
    BookingRepository,
    InMemoryRowStore,
    RetryingRowStore,
    StoreError,
    eq,
)
from services import BookingService


def dt(ts: str):
    return parse_iso8601_tz(ts)


def run(coro):
    return asyncio.run(coro)


@pytest.fixture
def store():
    s = InMemoryRowStore()
    s.seed(
        ROOMS,
        [
            {"id": "R1", "name": "Room One"},
            {"id": "A", "name": "Room A"},
            {"id": "B", "name": "Room B"},
            {"id": "C", "name": "Room C"},
        ],
    )
    return s


@pytest.fixture
def service(store):
    return BookingService(BookingRepository(store))


def request_for(room_id, start, end, **extra):
    return BookingRequest(
        room_id=room_id,
        start=dt(start),
        end=dt(end),
        user_id="user-1",
        title=extra.pop("title", "Team sync"),
        **extra,
    )


def stored(store, room_id):
    return run(store.select(BOOKINGS, [eq("room_id", room_id)], order_by="start_time"))


# Monday 9-10am weekly for 4 weeks (2024-03-04 is a Monday)
FOUR_MONDAYS = RecurrencePattern(RecurrenceType.WEEKLY, 1, (), dt("2024-04-01T09:00:00Z"))


def test_single_booking_is_persisted_without_recurrence(service, store):
    booking = run(
        service.create_single_booking(
            request_for("R1", "2024-03-10T09:00:00Z", "2024-03-10T10:00:00Z", authorizer="Georgina")
        )
    )

    assert booking.id.startswith("bkg_")
    assert booking.created_at is not None
    assert booking.is_recurring is False
    assert booking.recurrence_pattern is None
    assert booking.authorizer == "Georgina"
    assert [r["id"] for r in stored(store, "R1")] == [booking.id]


def test_round_trip_has_no_timezone_drift(service, store):
    booking = run(service.create_single_booking(request_for("R1", "2024-03-10T09:00:00Z", "2024-03-10T10:00:00Z")))
    assert booking.start_utc == dt("2024-03-10T09:00:00Z")
    assert booking.end_utc == dt("2024-03-10T10:00:00Z")
    assert stored(store, "R1")[0]["start_time"] == "2024-03-10T09:00:00Z"

    shifted = run(
        service.create_single_booking(request_for("R1", "2024-03-11T10:00:00+01:00", "2024-03-11T11:00:00+01:00"))
    )
    [read_back] = [b for b in run(service.list_bookings_for_room("R1")) if b.id == shifted.id]
    assert read_back.start_utc == dt("2024-03-11T09:00:00Z")


def test_invalid_time_range_writes_nothing(service, store):
    with pytest.raises(InvalidTimeRangeError):
        run(service.create_single_booking(request_for("R1", "2024-03-10T10:00:00Z", "2024-03-10T10:00:00Z")))
    assert stored(store, "R1") == []


def test_overlapping_single_booking_is_rejected_with_room_name(service, store):
    run(service.create_single_booking(request_for("R1", "2024-03-10T09:00:00Z", "2024-03-10T10:00:00Z")))

    with pytest.raises(RoomConflictError) as exc:
        run(service.create_single_booking(request_for("R1", "2024-03-10T09:30:00Z", "2024-03-10T11:00:00Z")))

    assert exc.value.detail == (
        "Time conflict: Room One already booked from 9:00 AM to 10:00 AM. Please select a different time."
    )
    assert len(stored(store, "R1")) == 1


def test_touching_intervals_do_not_conflict(service):
    run(service.create_single_booking(request_for("R1", "2024-03-10T09:00:00Z", "2024-03-10T10:00:00Z")))

    assert run(service.check_room_conflict("R1", dt("2024-03-10T10:00:00Z"), dt("2024-03-10T11:00:00Z"))) is False
    assert run(service.check_room_conflict("R1", dt("2024-03-10T08:00:00Z"), dt("2024-03-10T09:00:00Z"))) is False
    assert run(service.check_room_conflict("R1", dt("2024-03-10T09:59:00Z"), dt("2024-03-10T10:30:00Z"))) is True
    assert run(service.check_room_conflict("R2", dt("2024-03-10T09:00:00Z"), dt("2024-03-10T10:00:00Z"))) is False


def test_conflict_details_use_supplied_catalog(service):
    run(service.create_single_booking(request_for("X", "2024-03-10T14:00:00Z", "2024-03-10T15:30:00Z")))

    details = run(service.get_conflict_details("X", dt("2024-03-10T15:00:00Z"), dt("2024-03-10T16:00:00Z"), []))
    assert details.has_conflict is True
    assert details.message.startswith("Time conflict: Room already booked from 2:00 PM to 3:30 PM.")

    catalog = [Room(id="X", name="Studio")]
    details = run(service.get_conflict_details("X", dt("2024-03-10T15:00:00Z"), dt("2024-03-10T16:00:00Z"), catalog))
    assert "Studio already booked" in details.message

    clear = run(service.get_conflict_details("X", dt("2024-03-10T16:00:00Z"), dt("2024-03-10T17:00:00Z")))
    assert clear.has_conflict is False
    assert clear.message is None


def test_recurring_series_shares_one_pattern(service, store):
    bookings = run(
        service.create_recurring_bookings(
            request_for("R1", "2024-03-04T09:00:00Z", "2024-03-04T10:00:00Z", description="Weekly", authorizer="Sasha"),
            FOUR_MONDAYS,
        )
    )

    assert [b.start_utc for b in bookings] == [
        dt("2024-03-04T09:00:00Z"),
        dt("2024-03-11T09:00:00Z"),
        dt("2024-03-18T09:00:00Z"),
        dt("2024-03-25T09:00:00Z"),
    ]
    assert all(b.is_recurring for b in bookings)
    assert {b.recurrence_pattern for b in bookings} == {FOUR_MONDAYS}
    assert {(b.room_id, b.title, b.description, b.authorizer) for b in bookings} == {
        ("R1", "Team sync", "Weekly", "Sasha")
    }
    assert stored(store, "R1")[0]["recurrence_pattern"] == {
        "type": "weekly",
        "interval": 1,
        "endDate": "2024-04-01T09:00:00Z",
    }


def test_recurring_conflict_in_week_three_creates_nothing(service, store):
    run(service.create_single_booking(request_for("R1", "2024-03-18T09:30:00Z", "2024-03-18T10:30:00Z")))

    with pytest.raises(RoomConflictError) as exc:
        run(
            service.create_recurring_bookings(
                request_for("R1", "2024-03-04T09:00:00Z", "2024-03-04T10:00:00Z"), FOUR_MONDAYS
            )
        )

    assert exc.value.message == (
        "Time conflict on March 18, 2024: Time conflict: Room One already booked from "
        "9:30 AM to 10:30 AM. Please select a different time."
    )
    rows = stored(store, "R1")
    assert len(rows) == 1
    assert rows[0]["start_time"] == "2024-03-18T09:30:00Z"


def test_recurrence_without_occurrences_is_rejected(service, store):
    pattern = RecurrencePattern(RecurrenceType.DAILY, 1, (), dt("2024-03-01T00:00:00Z"))
    with pytest.raises(EmptyRecurrenceError):
        run(service.create_recurring_bookings(request_for("R1", "2024-03-04T09:00:00Z", "2024-03-04T10:00:00Z"), pattern))
    assert stored(store, "R1") == []


def test_recurrence_type_none_creates_plain_booking(service):
    [booking] = run(
        service.create_recurring_bookings(
            request_for("R1", "2024-03-04T09:00:00Z", "2024-03-04T10:00:00Z"),
            RecurrencePattern(RecurrenceType.NONE),
        )
    )
    assert booking.is_recurring is False
    assert booking.recurrence_pattern is None


def test_weekday_series_starts_on_first_selected_day(service):
    pattern = RecurrencePattern(
        RecurrenceType.WEEKLY, 1, (DayOfWeek.MONDAY, DayOfWeek.FRIDAY), dt("2024-03-16T00:00:00Z")
    )
    bookings = run(
        service.create_recurring_bookings(request_for("R1", "2024-03-06T09:00:00Z", "2024-03-06T10:00:00Z"), pattern)
    )
    assert [b.start_utc.day for b in bookings] == [8, 11, 15]


def test_multi_room_single_bookings(service):
    bookings = run(
        service.create_multiple_room_bookings(
            request_for("ignored", "2024-03-10T09:00:00Z", "2024-03-10T10:00:00Z"), ["A", "B", "A"]
        )
    )
    assert [b.room_id for b in bookings] == ["A", "B"]


def test_multi_room_failure_keeps_earlier_rooms(service, store):
    run(service.create_single_booking(request_for("B", "2024-03-11T09:00:00Z", "2024-03-11T09:30:00Z")))

    with pytest.raises(RoomConflictError) as exc:
        run(
            service.create_multiple_room_recurring_bookings(
                request_for("A", "2024-03-04T09:00:00Z", "2024-03-04T10:00:00Z"),
                ["A", "B", "C"],
                FOUR_MONDAYS,
            )
        )

    assert "Room B" in exc.value.message
    assert len(stored(store, "A")) == 4
    assert len(stored(store, "B")) == 1
    assert stored(store, "C") == []
    assert [b.room_id for b in exc.value.completed_bookings] == ["A"] * 4


def test_no_two_bookings_in_a_room_overlap(service, store):
    base = dt("2024-03-10T08:00:00Z")
    for offset, length in itertools.product(range(0, 240, 45), (30, 60, 90)):
        start = base + timedelta(minutes=offset)
        try:
            run(
                service.create_single_booking(
                    BookingRequest("R1", start, start + timedelta(minutes=length), "user-1", "Slot")
                )
            )
        except RoomConflictError:
            pass

    bookings = run(service.list_bookings_for_room("R1"))
    assert len(bookings) > 1
    for a, b in itertools.combinations(bookings, 2):
        assert not (a.start_utc < b.end_utc and b.start_utc < a.end_utc)


def test_cancel_removes_one_occurrence_only(service):
    bookings = run(
        service.create_recurring_bookings(request_for("R1", "2024-03-04T09:00:00Z", "2024-03-04T10:00:00Z"), FOUR_MONDAYS)
    )
    run(service.cancel_booking(bookings[1].id))

    remaining = run(service.list_bookings_for_room("R1"))
    assert [b.id for b in remaining] == [bookings[0].id, bookings[2].id, bookings[3].id]

    with pytest.raises(BookingNotFoundError):
        run(service.cancel_booking(bookings[1].id))


def test_list_bookings_in_window(service):
    run(service.create_recurring_bookings(request_for("R1", "2024-03-04T09:00:00Z", "2024-03-04T10:00:00Z"), FOUR_MONDAYS))
    run(service.create_single_booking(request_for("A", "2024-03-05T09:00:00Z", "2024-03-05T10:00:00Z")))

    window = run(service.list_bookings(dt("2024-03-01T00:00:00Z"), dt("2024-03-08T00:00:00Z")))
    assert [(b.room_id, b.start_utc.day) for b in window] == [("R1", 4), ("A", 5)]

    only_a = run(service.list_bookings(dt("2024-03-01T00:00:00Z"), dt("2024-03-31T00:00:00Z"), room_id="A"))
    assert [b.room_id for b in only_a] == ["A"]


def test_rooms_are_listed_by_name(service):
    assert [r.name for r in run(service.list_rooms())] == ["Room A", "Room B", "Room C", "Room One"]


# -----------------------------
# Store failures
# -----------------------------
class FailingStore(InMemoryRowStore):
    def __init__(self, fail_on):
        super().__init__()
        self.fail_on = fail_on

    async def select(self, table, filters=(), order_by=None):
        if "select" in self.fail_on:
            raise StoreError("connection reset", status=500)
        return await super().select(table, filters, order_by)

    async def insert(self, table, rows):
        if "insert" in self.fail_on:
            raise StoreError("insert failed", status=500)
        return await super().insert(table, rows)


def test_query_failure_is_backend_unavailable():
    service = BookingService(BookingRepository(FailingStore({"select"})))
    with pytest.raises(BackendUnavailableError):
        run(service.create_single_booking(request_for("R1", "2024-03-10T09:00:00Z", "2024-03-10T10:00:00Z")))


def test_insert_failure_is_backend_unavailable():
    store = FailingStore({"insert"})
    service = BookingService(BookingRepository(store))
    with pytest.raises(BackendUnavailableError):
        run(service.create_recurring_bookings(request_for("R1", "2024-03-04T09:00:00Z", "2024-03-04T10:00:00Z"), FOUR_MONDAYS))
    assert stored(store, "R1") == []


@pytest.mark.parametrize(
    "row",
    [
        # no title
        {"id": "bad", "room_id": "R1", "user_id": "u", "start_time": "2024-03-10T09:00:00Z", "end_time": "2024-03-10T10:00:00Z"},
        # ends before it starts
        {"id": "bad", "room_id": "R1", "user_id": "u", "title": "t", "start_time": "2024-03-10T11:00:00Z", "end_time": "2024-03-10T10:00:00Z"},
        # unknown recurrence type
        {
            "id": "bad",
            "room_id": "R1",
            "user_id": "u",
            "title": "t",
            "start_time": "2024-03-10T09:00:00Z",
            "end_time": "2024-03-10T10:00:00Z",
            "is_recurring": True,
            "recurrence_pattern": {"type": "yearly", "interval": 1},
        },
        # weekdays that are not a list
        {
            "id": "bad",
            "room_id": "R1",
            "user_id": "u",
            "title": "t",
            "start_time": "2024-03-10T09:00:00Z",
            "end_time": "2024-03-10T10:00:00Z",
            "is_recurring": True,
            "recurrence_pattern": {"type": "weekly", "interval": 1, "daysOfWeek": 5},
        },
        # boolean interval
        {
            "id": "bad",
            "room_id": "R1",
            "user_id": "u",
            "title": "t",
            "start_time": "2024-03-10T09:00:00Z",
            "end_time": "2024-03-10T10:00:00Z",
            "is_recurring": True,
            "recurrence_pattern": {"type": "weekly", "interval": True},
        },
        # timestamp the store cannot read
        {"id": "bad", "room_id": "R1", "user_id": "u", "title": "t", "start_time": "yesterday", "end_time": "2024-03-10T10:00:00Z"},
    ],
)
def test_malformed_rows_are_not_coerced(store, service, row):
    store.seed(BOOKINGS, [row])
    with pytest.raises(BackendUnavailableError):
        run(service.list_bookings_for_room("R1"))


def test_pattern_stored_as_json_text_is_accepted(store, service):
    store.seed(
        BOOKINGS,
        [
            {
                "id": "legacy",
                "room_id": "R1",
                "user_id": "u",
                "title": "Imported",
                "start_time": "2024-03-10T09:00:00+00:00",
                "end_time": "2024-03-10T10:00:00+00:00",
                "is_recurring": True,
                "recurrence_pattern": '{"type": "weekly", "interval": 2, "daysOfWeek": ["monday"]}',
                "created_at": "2024-03-01T00:00:00Z",
            }
        ],
    )
    [booking] = run(service.list_bookings_for_room("R1"))
    assert booking.recurrence_pattern == RecurrencePattern(RecurrenceType.WEEKLY, 2, (DayOfWeek.MONDAY,))


# -----------------------------
# Rate-limit retry
# -----------------------------
class RateLimitedStore(InMemoryRowStore):
    def __init__(self, failures, error=None):
        super().__init__()
        self.failures = failures
        self.calls = 0
        self.error = error or StoreError("Too Many Requests", status=429)

    async def select(self, table, filters=(), order_by=None):
        self.calls += 1
        if self.calls <= self.failures:
            raise self.error
        return await super().select(table, filters, order_by)


def recording_sleep(delays):
    async def sleep(delay):
        delays.append(delay)

    return sleep


def test_retry_backs_off_exponentially_then_succeeds():
    inner = RateLimitedStore(failures=2)
    delays = []
    store = RetryingRowStore(inner, max_retries=3, retry_delay=0.5, sleep=recording_sleep(delays))

    assert run(store.select(BOOKINGS)) == []
    assert inner.calls == 3
    assert delays == [0.5, 1.0]


def test_retry_gives_up_after_max_retries():
    inner = RateLimitedStore(failures=10)
    delays = []
    store = RetryingRowStore(inner, max_retries=2, retry_delay=0.5, sleep=recording_sleep(delays))

    with pytest.raises(StoreError):
        run(store.select(BOOKINGS))
    assert inner.calls == 3
    assert delays == [0.5, 1.0]


def test_other_store_errors_are_not_retried():
    inner = RateLimitedStore(failures=1, error=StoreError("syntax error", status=400))
    store = RetryingRowStore(inner, max_retries=3, retry_delay=0.5, sleep=recording_sleep([]))

    with pytest.raises(StoreError):
        run(store.select(BOOKINGS))
    assert inner.calls == 1
