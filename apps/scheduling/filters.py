import django_filters
from rest_framework.exceptions import ValidationError
from .models import Appointment


class AppointmentListFilter(django_filters.FilterSet):
    start_from = django_filters.IsoDateTimeFilter(
        field_name="start_time", lookup_expr="gte"
    )
    start_to = django_filters.IsoDateTimeFilter(
        field_name="start_time", lookup_expr="lte"
    )

    status = django_filters.MultipleChoiceFilter(
        choices=Appointment._meta.get_field("status").choices
    )
    professional = django_filters.NumberFilter(field_name="professional_id")
    client = django_filters.NumberFilter(field_name="client_id")
    recurrence_group_id = django_filters.CharFilter()

    def filter_queryset(self, queryset):
        start_from = self.form.cleaned_data.get("start_from")
        start_to = self.form.cleaned_data.get("start_to")

        if start_from and start_to and start_from > start_to:
            raise ValidationError(
                {"detail": "start_from must be <= start_to"}
            )

        return super().filter_queryset(queryset)

    class Meta:
        model = Appointment
        fields = ["start_from", "start_to", "status", "professional", "client", "recurrence_group_id"]
