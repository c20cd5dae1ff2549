from django.urls import path
from .api_views import (
    AppointmentCancelView,
    AppointmentDetailView,
    AppointmentListCreateView,
    AppointmentRescheduleView,
    AppointmentSeriesView,
    AppointmentTransitionView,
    AvailabilityRangeView,
    AvailabilityView,
    ConflictCheckView,
    ProfessionalsAvailabilityView,
    StatusCountsView,
)

app_name = "scheduling"
urlpatterns = [
    path("appointments/", AppointmentListCreateView.as_view(), name="appointments-list"),
    path("appointments/conflicts/", ConflictCheckView.as_view(), name="appointments-conflicts"),
    path("appointments/availability/", AvailabilityView.as_view(), name="appointments-availability"),
    path(
        "appointments/availability/range/",
        AvailabilityRangeView.as_view(),
        name="appointments-availability-range",
    ),
    path(
        "appointments/availability/professionals/",
        ProfessionalsAvailabilityView.as_view(),
        name="appointments-availability-professionals",
    ),
    path("appointments/status-counts/", StatusCountsView.as_view(), name="appointments-status-counts"),
    path("appointments/<int:pk>/", AppointmentDetailView.as_view(), name="appointments-detail"),
    path(
        "appointments/<int:pk>/confirm/",
        AppointmentTransitionView.as_view(transition="confirm"),
        name="appointments-confirm",
    ),
    path(
        "appointments/<int:pk>/check-in/",
        AppointmentTransitionView.as_view(transition="check_in"),
        name="appointments-check-in",
    ),
    path(
        "appointments/<int:pk>/start/",
        AppointmentTransitionView.as_view(transition="start_service"),
        name="appointments-start",
    ),
    path(
        "appointments/<int:pk>/complete/",
        AppointmentTransitionView.as_view(transition="complete"),
        name="appointments-complete",
    ),
    path(
        "appointments/<int:pk>/no-show/",
        AppointmentTransitionView.as_view(transition="mark_no_show"),
        name="appointments-no-show",
    ),
    path("appointments/<int:pk>/cancel/", AppointmentCancelView.as_view(), name="appointments-cancel"),
    path("appointments/<int:pk>/reschedule/", AppointmentRescheduleView.as_view(), name="appointments-reschedule"),
    path("appointments/<int:pk>/series/", AppointmentSeriesView.as_view(), name="appointments-series"),
]
