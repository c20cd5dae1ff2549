from datetime import datetime, timezone as dt_timezone
from decimal import Decimal

import pytest
from django.contrib.auth import get_user_model
from rest_framework.test import APIClient

from apps.scheduling.events import SIGNALS
from apps.scheduling.lifecycle import AppointmentLifecycle, BookingRequest, ServiceLine
from apps.services.models import Service
from apps.tenants.models import Tenant
from apps.users.models import Client, Professional

# a Monday
MONDAY_10 = datetime(2030, 1, 7, 10, 0, tzinfo=dt_timezone.utc)


@pytest.fixture(autouse=True)
def utc(settings):
    settings.TIME_ZONE = "UTC"


@pytest.fixture
def tenant(db):
    return Tenant.objects.create(name="Studio Bela", slug="studio-bela")


@pytest.fixture
def other_tenant(db):
    return Tenant.objects.create(name="Barbearia Norte", slug="barbearia-norte")


@pytest.fixture
def user(db):
    User = get_user_model()
    return User.objects.create_user(username="reception", email="reception@example.com", password="password")


@pytest.fixture
def staff_user(db):
    User = get_user_model()
    return User.objects.create_user(
        username="manager", email="manager@example.com", password="password", is_staff=True
    )


def make_professional(tenant, username, first_name=""):
    User = get_user_model()
    account = User.objects.create_user(username=username, first_name=first_name, password="password")
    return Professional.objects.create(tenant=tenant, user=account)


@pytest.fixture
def professional(tenant):
    return make_professional(tenant, "ana", first_name="Ana")


@pytest.fixture
def other_professional(tenant):
    return make_professional(tenant, "bruno", first_name="Bruno")


@pytest.fixture
def foreign_professional(other_tenant):
    return make_professional(other_tenant, "carla", first_name="Carla")


@pytest.fixture
def customer(tenant):
    return Client.objects.create(
        tenant=tenant,
        name="Maria Silva",
        email="maria@example.com",
        phone="+5511999990000",
    )


@pytest.fixture
def other_customer(tenant):
    return Client.objects.create(tenant=tenant, name="Joana Lima", email="joana@example.com")


@pytest.fixture
def haircut(tenant):
    return Service.objects.create(
        tenant=tenant, name="Haircut", base_price=Decimal("50.00"), duration_minutes=45
    )


@pytest.fixture
def coloring(tenant):
    return Service.objects.create(
        tenant=tenant, name="Coloring", base_price=Decimal("120.00"), duration_minutes=90
    )


@pytest.fixture
def lifecycle(tenant):
    return AppointmentLifecycle(tenant)


@pytest.fixture
def book(lifecycle, professional, customer, haircut):
    """Books one appointment (haircut, 45 min) and returns it."""

    def _book(start=MONDAY_10, professional=professional, customer=customer, services=None, **kwargs):
        request = BookingRequest(
            client_id=customer.pk,
            professional_id=professional.pk,
            start_time=start,
            services=services or [ServiceLine(haircut.pk)],
            **kwargs,
        )
        return lifecycle.create(request)[0]

    return _book


@pytest.fixture
def captured_events():
    received = []

    def collect(sender, event, **kwargs):
        received.append(event)

    for signal in SIGNALS.values():
        signal.connect(collect, weak=False)
    yield received
    for signal in SIGNALS.values():
        signal.disconnect(collect)


def _api_client(account, tenant):
    client = APIClient()
    client.force_authenticate(user=account)
    client.credentials(HTTP_X_TENANT_ID=str(tenant.pk))
    return client


@pytest.fixture
def api_client(user, tenant):
    return _api_client(user, tenant)


@pytest.fixture
def staff_api_client(staff_user, tenant):
    return _api_client(staff_user, tenant)
