import logging

from rest_framework import status
from rest_framework.exceptions import NotFound, PermissionDenied
from rest_framework.generics import GenericAPIView, ListAPIView, ListCreateAPIView
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.users.models import Professional

from .availability import AvailabilityFinder
from .conflicts import ConflictChecker
from .filters import AppointmentListFilter
from .lifecycle import AppointmentLifecycle
from .models import Appointment
from .pagination import AgendaLimitOffsetPagination
from .serializers import (
    AppointmentCreateSerializer,
    AppointmentSerializer,
    AppointmentUpdateSerializer,
    AvailabilityRangeSerializer,
    CancelSerializer,
    ConflictCheckSerializer,
    ProfessionalsAvailabilitySerializer,
    RescheduleSerializer,
    SlotSearchSerializer,
    StatusCountsSerializer,
)


logger = logging.getLogger(__name__)


class TenantScopedMixin:
    """Requires a resolved tenant and builds the lifecycle for it."""

    def get_tenant(self):
        tenant = getattr(self.request, "tenant", None)
        if tenant is None:
            raise PermissionDenied("A valid X-Tenant-Id header is required")
        return tenant

    def get_lifecycle(self):
        return AppointmentLifecycle(self.get_tenant())

    def get_queryset(self):
        return (
            Appointment.objects.filter(tenant=self.get_tenant())
            .select_related("client", "professional__user")
            .prefetch_related("items__service")
            .order_by("start_time", "id")
        )

    def check_privileged_flags(self, data):
        if (data.get("override") or data.get("skip_conflict_check")) and not self.request.user.is_staff:
            raise PermissionDenied("Only staff may override scheduling conflicts")

    def render(self, appointment, status_code=status.HTTP_200_OK):
        instance = self.get_queryset().get(pk=appointment.pk)
        return Response(AppointmentSerializer(instance).data, status=status_code)


class AppointmentListCreateView(TenantScopedMixin, ListCreateAPIView):

    pagination_class = AgendaLimitOffsetPagination
    filterset_class = AppointmentListFilter

    def get_serializer_class(self):
        if self.request.method == "POST":
            return AppointmentCreateSerializer
        return AppointmentSerializer

    def create(self, request, *args, **kwargs):
        serializer = AppointmentCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        self.check_privileged_flags(serializer.validated_data)

        created = self.get_lifecycle().create(serializer.to_booking(), actor=request.user)
        instances = self.get_queryset().filter(pk__in=[a.pk for a in created])
        return Response(
            {
                "recurrence_group_id": created[0].recurrence_group_id,
                "count": len(created),
                "appointments": AppointmentSerializer(instances, many=True).data,
            },
            status=status.HTTP_201_CREATED,
        )


class AppointmentDetailView(TenantScopedMixin, GenericAPIView):

    serializer_class = AppointmentSerializer

    def get(self, request, pk):
        return self.render(self.get_lifecycle().get(pk))

    def patch(self, request, pk):
        serializer = AppointmentUpdateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        appointment = self.get_lifecycle().update(pk, actor=request.user, **serializer.validated_data)
        return self.render(appointment)


class AppointmentTransitionView(TenantScopedMixin, APIView):
    """Body-less status transitions: confirm, check-in, start, complete, no-show."""

    transition = None

    def post(self, request, pk):
        lifecycle = self.get_lifecycle()
        appointment = getattr(lifecycle, self.transition)(pk, actor=request.user)
        return self.render(appointment)


class AppointmentCancelView(TenantScopedMixin, APIView):

    def post(self, request, pk):
        serializer = CancelSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        appointment = self.get_lifecycle().cancel(pk, actor=request.user, **serializer.validated_data)
        return self.render(appointment)


class AppointmentRescheduleView(TenantScopedMixin, APIView):

    def post(self, request, pk):
        serializer = RescheduleSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        self.check_privileged_flags(data)

        appointment = self.get_lifecycle().reschedule(
            pk,
            data["start_time"],
            actor=request.user,
            new_professional_id=data.get("professional_id"),
            reason=data["reason"],
            skip_conflict_check=data["skip_conflict_check"],
            override=data["override"],
        )
        return self.render(appointment)


class AppointmentSeriesView(TenantScopedMixin, ListAPIView):

    serializer_class = AppointmentSerializer
    pagination_class = None

    def list(self, request, *args, **kwargs):
        series = self.get_lifecycle().series(kwargs["pk"])
        instances = self.get_queryset().filter(pk__in=[a.pk for a in series]).order_by("recurrence_index", "id")
        return Response(AppointmentSerializer(instances, many=True).data)


class ConflictCheckView(TenantScopedMixin, APIView):

    def get(self, request):
        serializer = ConflictCheckSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        tenant = self.get_tenant()
        if not Professional.objects.filter(tenant=tenant, pk=data["professional_id"]).exists():
            raise NotFound(f"Professional {data['professional_id']} not found")

        result = ConflictChecker().check_conflicts(
            tenant.pk,
            data["professional_id"],
            data.get("client_id"),
            data["start_time"],
            data["duration"],
            exclude_appointment_id=data.get("exclude_appointment_id"),
        )
        return Response(result.as_dict())


class AvailabilityView(TenantScopedMixin, APIView):
    """Free slots of one professional on one day."""

    def get(self, request):
        serializer = SlotSearchSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        slots = AvailabilityFinder(self.get_tenant()).available_slots(
            data["professional_id"], data["date"], service_ids=data["service_ids"]
        )
        return Response(
            {
                "professional_id": data["professional_id"],
                "date": data["date"].isoformat(),
                "slots": [slot.as_dict() for slot in slots],
            }
        )


class AvailabilityRangeView(TenantScopedMixin, APIView):

    def get(self, request):
        serializer = AvailabilityRangeSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        days = AvailabilityFinder(self.get_tenant()).availability_range(
            data["professional_id"], data["start_date"], data["end_date"], service_ids=data["service_ids"]
        )
        return Response([day.as_dict(include_slots=data["include_slots"]) for day in days])


class ProfessionalsAvailabilityView(TenantScopedMixin, APIView):

    def get(self, request):
        serializer = ProfessionalsAvailabilitySerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data

        result = AvailabilityFinder(self.get_tenant()).professionals_availability(
            data["professional_ids"], data["date"], service_ids=data["service_ids"]
        )
        return Response([entry.as_dict() for entry in result])


class StatusCountsView(TenantScopedMixin, APIView):

    def get(self, request):
        serializer = StatusCountsSerializer(data=request.query_params)
        serializer.is_valid(raise_exception=True)
        data = serializer.validated_data
        return Response(self.get_lifecycle().status_counts(start=data.get("start"), end=data.get("end")))
