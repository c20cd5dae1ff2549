from datetime import datetime, time, timedelta, timezone

import pytest
from rest_framework.test import APIClient

from apps.scheduling.models import Appointment, AppointmentStatus
from apps.users.models import ProfessionalSchedule, ProfessionalTimeBlock

MONDAY_10 = datetime(2030, 1, 7, 10, 0, tzinfo=timezone.utc)

API_PREFIX = "/api/v1"

pytestmark = pytest.mark.django_db


@pytest.fixture
def payload(customer, professional, haircut):
    return {
        "client_id": customer.pk,
        "professional_id": professional.pk,
        "start_time": MONDAY_10.isoformat(),
        "services": [{"service_id": haircut.pk}],
        "notes": "First visit",
    }


def test_requires_authentication(tenant):
    client = APIClient()
    client.credentials(HTTP_X_TENANT_ID=str(tenant.pk))

    resp = client.get(f"{API_PREFIX}/appointments/")

    assert resp.status_code in (401, 403)


def test_requires_tenant(user):
    client = APIClient()
    client.force_authenticate(user=user)

    resp = client.get(f"{API_PREFIX}/appointments/")

    assert resp.status_code == 403


def test_tenant_by_slug(user, tenant, book):
    book()
    client = APIClient()
    client.force_authenticate(user=user)
    client.credentials(HTTP_X_TENANT_ID=tenant.slug)

    resp = client.get(f"{API_PREFIX}/appointments/")

    assert resp.status_code == 200
    assert resp.json()["count"] == 1


def test_create_single(api_client, payload, user):
    resp = api_client.post(f"{API_PREFIX}/appointments/", payload, format="json")

    assert resp.status_code == 201
    data = resp.json()
    assert data["count"] == 1
    assert data["recurrence_group_id"] is None
    [appointment] = data["appointments"]
    assert appointment["status"] == "pending"
    assert appointment["total_duration"] == 45
    assert appointment["total_price"] == "50.00"
    assert appointment["client_name"] == "Maria Silva"
    assert appointment["professional_name"] == "Ana"
    assert appointment["items"][0]["service_name"] == "Haircut"
    assert Appointment.objects.get().created_by == user


def test_create_recurring(api_client, payload):
    payload["recurrence"] = {"type": "weekly", "count": 3}

    resp = api_client.post(f"{API_PREFIX}/appointments/", payload, format="json")

    assert resp.status_code == 201
    data = resp.json()
    assert data["count"] == 3
    assert data["recurrence_group_id"].startswith("rec_")
    assert [a["recurrence_index"] for a in data["appointments"]] == [0, 1, 2]


def test_create_rejects_unbounded_recurrence(api_client, payload):
    payload["recurrence"] = {"type": "daily"}

    resp = api_client.post(f"{API_PREFIX}/appointments/", payload, format="json")

    assert resp.status_code == 400
    assert Appointment.objects.count() == 0


def test_create_requires_services(api_client, payload):
    payload["services"] = []

    resp = api_client.post(f"{API_PREFIX}/appointments/", payload, format="json")

    assert resp.status_code == 400


def test_create_unknown_service_is_404(api_client, payload):
    payload["services"] = [{"service_id": 999999}]

    resp = api_client.post(f"{API_PREFIX}/appointments/", payload, format="json")

    assert resp.status_code == 404


def test_conflict_returns_409(api_client, payload, book, other_customer):
    existing = book()
    payload["client_id"] = other_customer.pk

    resp = api_client.post(f"{API_PREFIX}/appointments/", payload, format="json")

    assert resp.status_code == 409
    data = resp.json()
    assert data["can_override"] is False
    assert data["conflicts"][0]["type"] == "professional_busy"
    assert data["conflicts"][0]["appointment_id"] == existing.pk


def test_override_is_staff_only(api_client, payload):
    payload["skip_conflict_check"] = True

    resp = api_client.post(f"{API_PREFIX}/appointments/", payload, format="json")

    assert resp.status_code == 403
    assert Appointment.objects.count() == 0


def test_staff_may_skip_conflict_check(staff_api_client, payload, book, other_customer):
    book()
    payload["client_id"] = other_customer.pk
    payload["skip_conflict_check"] = True

    resp = staff_api_client.post(f"{API_PREFIX}/appointments/", payload, format="json")

    assert resp.status_code == 201


def test_list_filters_and_paginates(api_client, book, other_professional, lifecycle):
    first = book()
    book(start=MONDAY_10 + timedelta(days=1))
    book(start=MONDAY_10 + timedelta(days=2), professional=other_professional)
    lifecycle.confirm(first.pk)

    resp = api_client.get(f"{API_PREFIX}/appointments/?limit=2&offset=0")
    assert resp.status_code == 200
    data = resp.json()
    assert data["count"] == 3
    assert len(data["results"]) == 2

    resp = api_client.get(f"{API_PREFIX}/appointments/?status=confirmed")
    assert [r["id"] for r in resp.json()["results"]] == [first.pk]

    resp = api_client.get(f"{API_PREFIX}/appointments/?professional={other_professional.pk}")
    assert resp.json()["count"] == 1

    window = "start_from=2030-01-08T00:00:00Z&start_to=2030-01-08T23:59:59Z"
    resp = api_client.get(f"{API_PREFIX}/appointments/?{window}")
    assert [r["start_time"][:10] for r in resp.json()["results"]] == ["2030-01-08"]


def test_list_is_tenant_scoped(user, other_tenant, book):
    book()
    client = APIClient()
    client.force_authenticate(user=user)
    client.credentials(HTTP_X_TENANT_ID=str(other_tenant.pk))

    resp = client.get(f"{API_PREFIX}/appointments/")

    assert resp.json()["count"] == 0


def test_bad_filters_return_400(api_client):
    assert api_client.get(f"{API_PREFIX}/appointments/?status=NOPE").status_code == 400
    assert api_client.get(f"{API_PREFIX}/appointments/?start_from=2030-99-01").status_code == 400
    resp = api_client.get(
        f"{API_PREFIX}/appointments/?start_from=2030-02-01T00:00:00Z&start_to=2030-01-01T00:00:00Z"
    )
    assert resp.status_code == 400


def test_retrieve_and_patch_notes(api_client, book):
    appointment = book()

    resp = api_client.get(f"{API_PREFIX}/appointments/{appointment.pk}/")
    assert resp.status_code == 200
    assert resp.json()["id"] == appointment.pk

    resp = api_client.patch(
        f"{API_PREFIX}/appointments/{appointment.pk}/", {"notes": "Allergic to ammonia"}, format="json"
    )
    assert resp.status_code == 200
    assert resp.json()["notes"] == "Allergic to ammonia"


def test_patch_invalid_status_is_400(api_client, book):
    appointment = book()

    resp = api_client.patch(
        f"{API_PREFIX}/appointments/{appointment.pk}/", {"status": "completed"}, format="json"
    )

    assert resp.status_code == 400
    data = resp.json()
    assert data["current_status"] == "pending"
    assert data["requested_status"] == "completed"
    assert data["expected_statuses"] == ["in_progress"]


def test_other_tenants_appointment_is_404(user, other_tenant, book):
    appointment = book()
    client = APIClient()
    client.force_authenticate(user=user)
    client.credentials(HTTP_X_TENANT_ID=str(other_tenant.pk))

    resp = client.get(f"{API_PREFIX}/appointments/{appointment.pk}/")

    assert resp.status_code == 404


def test_status_endpoints_walk_the_lifecycle(api_client, book):
    appointment = book()
    base = f"{API_PREFIX}/appointments/{appointment.pk}"

    for action, expected in [
        ("confirm", "confirmed"),
        ("check-in", "waiting"),
        ("start", "in_progress"),
        ("complete", "completed"),
    ]:
        resp = api_client.post(f"{base}/{action}/")
        assert resp.status_code == 200, action
        assert resp.json()["status"] == expected

    resp = api_client.post(f"{base}/confirm/")
    assert resp.status_code == 400


def test_no_show_endpoint(api_client, book, lifecycle):
    appointment = book()
    lifecycle.confirm(appointment.pk)

    resp = api_client.post(f"{API_PREFIX}/appointments/{appointment.pk}/no-show/")

    assert resp.status_code == 200
    assert resp.json()["status"] == AppointmentStatus.NO_SHOW


def test_cancel_endpoint(api_client, book):
    appointment = book()

    resp = api_client.post(
        f"{API_PREFIX}/appointments/{appointment.pk}/cancel/",
        {"reason": "Travelling", "cancelled_by_client": True},
        format="json",
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["status"] == "cancelled"
    assert data["cancellation_reason"] == "Travelling"
    assert data["cancelled_by_client"] is True


def test_reschedule_endpoint(api_client, book, other_customer):
    appointment = book()
    book(start=MONDAY_10 + timedelta(hours=3), customer=other_customer)
    url = f"{API_PREFIX}/appointments/{appointment.pk}/reschedule/"

    resp = api_client.post(url, {"start_time": "2030-01-07T13:15:00Z"}, format="json")
    assert resp.status_code == 409

    resp = api_client.post(url, {"start_time": "2030-01-08T15:00:00Z", "reason": "Traffic"}, format="json")
    assert resp.status_code == 200
    data = resp.json()
    assert data["start_time"].startswith("2030-01-08T15:00:00")
    assert data["end_time"].startswith("2030-01-08T15:45:00")
    assert data["reschedule_reason"] == "Traffic"


def test_series_endpoint(api_client, payload):
    payload["recurrence"] = {"type": "daily", "count": 2}
    created = api_client.post(f"{API_PREFIX}/appointments/", payload, format="json").json()["appointments"]

    resp = api_client.get(f"{API_PREFIX}/appointments/{created[1]['id']}/series/")

    assert resp.status_code == 200
    assert [a["id"] for a in resp.json()] == [a["id"] for a in created]


def test_conflict_check_endpoint(api_client, book, professional, other_customer):
    book()

    resp = api_client.get(
        f"{API_PREFIX}/appointments/conflicts/",
        {
            "professional_id": professional.pk,
            "client_id": other_customer.pk,
            "start_time": "2030-01-07T10:30:00Z",
            "duration": 30,
        },
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["has_conflict"] is True
    assert data["can_override"] is False
    assert [c["type"] for c in data["conflicts"]] == ["professional_busy"]



def test_conflict_check_for_another_tenants_professional_is_404(api_client, foreign_professional):
    ProfessionalTimeBlock.objects.create(
        professional=foreign_professional,
        start_time=MONDAY_10,
        end_time=MONDAY_10 + timedelta(hours=1),
        reason="Vacation",
    )

    resp = api_client.get(
        f"{API_PREFIX}/appointments/conflicts/",
        {"professional_id": foreign_professional.pk, "start_time": "2030-01-07T10:00:00Z", "duration": 30},
    )

    assert resp.status_code == 404
    assert "Vacation" not in resp.content.decode()


@pytest.fixture
def open_calendar(settings, professional):
    settings.SCHEDULING = {**settings.SCHEDULING, "MAX_ADVANCE_BOOKING_MINUTES": 10**8}
    ProfessionalSchedule.objects.create(
        professional=professional,
        day_of_week=ProfessionalSchedule.DayOfWeek.MONDAY,
        start_time=time(9, 0),
        end_time=time(12, 0),
    )


def test_availability_endpoint(api_client, open_calendar, professional, haircut, book):
    book()

    resp = api_client.get(
        f"{API_PREFIX}/appointments/availability/",
        {"professional_id": professional.pk, "date": "2030-01-07", "service_ids": [haircut.pk]},
    )

    assert resp.status_code == 200
    data = resp.json()
    assert data["date"] == "2030-01-07"
    assert [s["start_time"] for s in data["slots"]] == ["2030-01-07T09:00:00+00:00", "2030-01-07T11:00:00+00:00"]


def test_availability_requires_a_date(api_client, professional):
    resp = api_client.get(f"{API_PREFIX}/appointments/availability/", {"professional_id": professional.pk})

    assert resp.status_code == 400
    assert "date" in resp.json()


def test_availability_for_another_tenants_professional_is_404(api_client, foreign_professional):
    resp = api_client.get(
        f"{API_PREFIX}/appointments/availability/",
        {"professional_id": foreign_professional.pk, "date": "2030-01-07"},
    )

    assert resp.status_code == 404


def test_availability_range_endpoint(api_client, open_calendar, professional):
    resp = api_client.get(
        f"{API_PREFIX}/appointments/availability/range/",
        {"professional_id": professional.pk, "start_date": "2030-01-07", "end_date": "2030-01-08"},
    )

    assert resp.status_code == 200
    assert [(d["date"], d["available"]) for d in resp.json()] == [("2030-01-07", True), ("2030-01-08", False)]
    assert "slots" not in resp.json()[0]


def test_availability_range_rejects_reversed_dates(api_client, professional):
    resp = api_client.get(
        f"{API_PREFIX}/appointments/availability/range/",
        {"professional_id": professional.pk, "start_date": "2030-01-08", "end_date": "2030-01-07"},
    )

    assert resp.status_code == 400


def test_professionals_availability_endpoint(api_client, open_calendar, professional, other_professional):
    resp = api_client.get(
        f"{API_PREFIX}/appointments/availability/professionals/",
        {"professional_ids": [professional.pk, other_professional.pk], "date": "2030-01-07"},
    )

    assert resp.status_code == 200
    assert [(p["professional_name"], p["available"]) for p in resp.json()] == [("Ana", True), ("Bruno", False)]


def test_status_counts_endpoint(api_client, book, lifecycle):
    lifecycle.confirm(book().pk)
    book(start=MONDAY_10 + timedelta(days=2))

    resp = api_client.get(f"{API_PREFIX}/appointments/status-counts/")
    window = api_client.get(
        f"{API_PREFIX}/appointments/status-counts/",
        {"start": "2030-01-07T00:00:00Z", "end": "2030-01-08T00:00:00Z"},
    )

    assert resp.status_code == 200
    assert resp.json()["confirmed"] == 1 and resp.json()["pending"] == 1
    assert window.json()["pending"] == 0


def test_correlation_id_is_echoed(api_client):
    resp = api_client.get(f"{API_PREFIX}/appointments/", HTTP_X_CORRELATION_ID="cor-test-1")

    assert resp["X-Correlation-Id"] == "cor-test-1"
