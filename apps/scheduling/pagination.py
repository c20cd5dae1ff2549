from rest_framework.pagination import LimitOffsetPagination


class AgendaLimitOffsetPagination(LimitOffsetPagination):
    """
    Page size fits a busy day of agenda.
    """

    default_limit = 50
    max_limit = 200
    limit_query_param = "limit"
    offset_query_param = "offset"
