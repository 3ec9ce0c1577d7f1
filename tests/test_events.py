import pytest

from conftest import ADMIN, HIKER, ORGANIZER, event_date, insert_event, make_draft
from errors import Forbidden, InvalidArgument, NotFound, Unauthorized
from events import build_search_text
from schemas import EventUpdate


def test_create_sets_active_status_and_search_text(event_service):
    event = event_service.create(ORGANIZER, make_draft(title="Misty PEAK", description="Bring Layers"))

    assert event["status"] == "active"
    assert event["organizer_id"] == ORGANIZER.user_id
    assert event["search_text"] == "misty peak bring layers"
    assert event["participant_count"] == 0
    assert event["id"]


def test_create_requires_identity(event_service):
    with pytest.raises(Unauthorized):
        event_service.create(None, make_draft())


@pytest.mark.parametrize("offset", [{"days": -1}, {"hours": -1}, {"days": -365}])
def test_create_rejects_past_dates(event_service, offset):
    with pytest.raises(InvalidArgument):
        event_service.create(ORGANIZER, make_draft(event_date=event_date(**offset)))
    assert event_service.collection.count_documents({}) == 0


def test_create_then_get_round_trips(event_service):
    created = event_service.create(ORGANIZER, make_draft())
    fetched = event_service.get(created["id"])

    assert fetched == created


@pytest.mark.parametrize("event_id", ["64b7f0c2a1b2c3d4e5f60718", "not-an-object-id"])
def test_get_missing_event(event_service, event_id):
    with pytest.raises(NotFound):
        event_service.get(event_id)


def test_list_pages_through_active_events_in_date_order(event_service, database):
    for day in range(45, 0, -1):
        insert_event(database, event_date(days=day), title=f"Hike {day}")
    insert_event(database, event_date(days=3), status="cancelled")

    first = event_service.list()
    assert len(first["events"]) == 20
    assert first["lastEvaluatedKey"]

    second = event_service.list(last_evaluated_key=first["lastEvaluatedKey"])
    third = event_service.list(last_evaluated_key=second["lastEvaluatedKey"])
    assert len(second["events"]) == 20
    assert len(third["events"]) == 5
    assert third["lastEvaluatedKey"] is None

    dates = [e["event_date"] for page in (first, second, third) for e in page["events"]]
    assert dates == sorted(dates)
    assert len(set(e["id"] for page in (first, second, third) for e in page["events"])) == 45


def test_list_filters_by_search_term_case_insensitively(event_service):
    event_service.create(ORGANIZER, make_draft(title="Glacier Lake Overnight", description="Tents needed"))
    event_service.create(ORGANIZER, make_draft(title="City Run", description="Fast and flat"))

    result = event_service.list(search_term="GLACIER")

    assert [e["title"] for e in result["events"]] == ["Glacier Lake Overnight"]


def test_list_search_term_is_literal(event_service):
    event_service.create(ORGANIZER, make_draft(title="Peak (north)", description=""))

    assert len(event_service.list(search_term="(north)")["events"]) == 1
    assert event_service.list(search_term=".*")["events"] == []


def test_list_date_range_is_inclusive(event_service, database):
    insert_event(database, "2026-07-01T00:00:00Z", title="first")
    insert_event(database, "2026-07-10T15:00:00Z", title="last day afternoon")
    insert_event(database, "2026-07-11T00:00:00Z", title="outside")

    result = event_service.list(start_date="2026-07-01", end_date="2026-07-10")

    assert [e["title"] for e in result["events"]] == ["first", "last day afternoon"]


def test_list_rejects_malformed_continuation_token(event_service):
    with pytest.raises(InvalidArgument):
        event_service.list(last_evaluated_key="definitely-not-a-cursor")


def test_update_by_stranger_is_forbidden_and_leaves_record(event_service):
    created = event_service.create(ORGANIZER, make_draft())

    with pytest.raises(Forbidden):
        event_service.update(HIKER, created["id"], EventUpdate(title="Hijacked"))

    assert event_service.get(created["id"]) == created


def test_update_by_organizer_recomputes_search_text(event_service, clock):
    created = event_service.create(ORGANIZER, make_draft())
    clock.advance(minutes=5)

    updated = event_service.update(
        ORGANIZER, created["id"], EventUpdate(description="Now with a Swim stop", location="South Gate")
    )

    assert updated["location"] == "South Gate"
    assert updated["search_text"] == build_search_text("Sunrise Ridge Hike", "Now with a Swim stop")
    assert updated["status"] == "active"
    assert updated["organizer_id"] == ORGANIZER.user_id
    assert updated["created_at"] == created["created_at"]
    assert updated["updated_at"] != created["updated_at"]


def test_admin_can_update_any_event(event_service):
    created = event_service.create(ORGANIZER, make_draft())

    updated = event_service.update(ADMIN, created["id"], EventUpdate(max_participants=3))

    assert updated["max_participants"] == 3


def test_update_rejects_past_date(event_service):
    created = event_service.create(ORGANIZER, make_draft())

    with pytest.raises(InvalidArgument):
        event_service.update(ORGANIZER, created["id"], EventUpdate(event_date=event_date(days=-2)))


@pytest.mark.parametrize("field", ["event_date", "title", "location"])
def test_update_cannot_clear_required_fields(event_service, field):
    created = event_service.create(ORGANIZER, make_draft())

    with pytest.raises(InvalidArgument):
        event_service.update(ORGANIZER, created["id"], EventUpdate(**{field: None}))

    assert event_service.get(created["id"]) == created


def test_update_cannot_clear_date_through_api_body(event_service):
    created = event_service.create(ORGANIZER, make_draft())
    patch = EventUpdate.model_validate({"event_date": None})

    with pytest.raises(InvalidArgument):
        event_service.update(ORGANIZER, created["id"], patch)

    listed = event_service.list()["events"]
    assert [event["event_date"] for event in listed] == [created["event_date"]]


def test_update_missing_event(event_service):
    with pytest.raises(NotFound):
        event_service.update(ORGANIZER, "64b7f0c2a1b2c3d4e5f60718", EventUpdate(title="x"))


def test_cancel_by_organizer(event_service):
    created = event_service.create(ORGANIZER, make_draft())

    cancelled = event_service.cancel(ORGANIZER, created["id"])

    assert cancelled["status"] == "cancelled"
    assert event_service.list()["events"] == []


def test_cancel_twice_is_a_no_op(event_service, clock):
    created = event_service.create(ORGANIZER, make_draft())
    first = event_service.cancel(ORGANIZER, created["id"])
    clock.advance(hours=1)

    second = event_service.cancel(ORGANIZER, created["id"])

    assert second == first


def test_cancel_by_stranger_is_forbidden(event_service):
    created = event_service.create(ORGANIZER, make_draft())

    with pytest.raises(Forbidden):
        event_service.cancel(HIKER, created["id"])
    assert event_service.get(created["id"])["status"] == "active"


def test_cancel_completed_event_is_rejected(event_service, database):
    event_id = insert_event(database, event_date(days=-3), status="completed")

    with pytest.raises(InvalidArgument):
        event_service.cancel(ORGANIZER, event_id)
