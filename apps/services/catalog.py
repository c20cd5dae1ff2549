from dataclasses import dataclass
from decimal import Decimal
from typing import Dict, Iterable

from rest_framework.exceptions import NotFound

from .models import Service


@dataclass(frozen=True)
class ServiceQuote:
    service_id: int
    name: str
    duration_minutes: int
    unit_price: Decimal


class CatalogLookup:
    """Resolves service ids to the duration and price in force at booking time."""

    def resolve(self, tenant, service_ids: Iterable[int]) -> Dict[int, ServiceQuote]:
        wanted = set(service_ids)
        rows = Service.objects.filter(tenant=tenant, is_active=True, pk__in=wanted)
        quotes = {
            s.pk: ServiceQuote(
                service_id=s.pk,
                name=s.name,
                duration_minutes=s.duration_minutes,
                unit_price=s.base_price,
            )
            for s in rows
        }
        missing = sorted(wanted - quotes.keys())
        if missing:
            raise NotFound({"detail": "Service not found", "service_ids": missing})
        return quotes
