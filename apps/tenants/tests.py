import pytest
from django.test import RequestFactory

from apps.tenants.middleware import TenantMiddleware


@pytest.fixture
def middleware():
    return TenantMiddleware(lambda request: request)


@pytest.mark.django_db
def test_resolves_by_id_and_slug(middleware, tenant):
    factory = RequestFactory()

    by_id = middleware(factory.get("/", HTTP_X_TENANT_ID=str(tenant.pk)))
    by_slug = middleware(factory.get("/", HTTP_X_TENANT_ID=tenant.slug))

    assert by_id.tenant == tenant
    assert by_slug.tenant == tenant


@pytest.mark.django_db
def test_missing_or_unknown_tenant(middleware, tenant):
    factory = RequestFactory()

    assert middleware(factory.get("/")).tenant is None
    assert middleware(factory.get("/", HTTP_X_TENANT_ID="nope")).tenant is None


@pytest.mark.django_db
def test_inactive_tenant_is_ignored(middleware, tenant):
    tenant.is_active = False
    tenant.save()

    request = RequestFactory().get("/", HTTP_X_TENANT_ID=str(tenant.pk))

    assert middleware(request).tenant is None
