import pytest
from decimal import Decimal
from rest_framework.exceptions import NotFound

from apps.services.catalog import CatalogLookup
from apps.services.models import Service


@pytest.mark.django_db
def test_resolves_duration_and_price(tenant, haircut, coloring):
    quotes = CatalogLookup().resolve(tenant, [haircut.pk, coloring.pk])

    assert quotes[haircut.pk].duration_minutes == 45
    assert quotes[haircut.pk].unit_price == Decimal("50.00")
    assert quotes[coloring.pk].name == "Coloring"


@pytest.mark.django_db
def test_duplicate_ids_resolve_once(tenant, haircut):
    quotes = CatalogLookup().resolve(tenant, [haircut.pk, haircut.pk])

    assert list(quotes) == [haircut.pk]


@pytest.mark.django_db
def test_inactive_service_is_not_bookable(tenant, haircut):
    Service.objects.filter(pk=haircut.pk).update(is_active=False)

    with pytest.raises(NotFound) as exc:
        CatalogLookup().resolve(tenant, [haircut.pk])

    assert exc.value.detail["service_ids"] == [str(haircut.pk)]


@pytest.mark.django_db
def test_other_tenants_services_are_invisible(other_tenant, haircut, coloring):
    with pytest.raises(NotFound) as exc:
        CatalogLookup().resolve(other_tenant, [haircut.pk, coloring.pk])

    assert set(exc.value.detail["service_ids"]) == {str(haircut.pk), str(coloring.pk)}
