import logging

from .models import Tenant

logger = logging.getLogger(__name__)

TENANT_HEADER = "X-Tenant-Id"


class TenantMiddleware:
    """
    Resolves the active tenant from the X-Tenant-Id header (numeric id or
    slug). Unknown or inactive tenants leave request.tenant as None; views
    decide whether that is acceptable.
    """

    def __init__(self, get_response):
        self.get_response = get_response

    def __call__(self, request):
        request.tenant = self.resolve(request.headers.get(TENANT_HEADER))
        return self.get_response(request)

    @staticmethod
    def resolve(value):
        if not value:
            return None
        lookup = {"pk": int(value)} if value.isdigit() else {"slug": value}
        tenant = Tenant.objects.filter(is_active=True, **lookup).first()
        if tenant is None:
            logger.warning("Unknown tenant in request header", extra={"tenant": value})
        return tenant
