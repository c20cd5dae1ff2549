from rest_framework import status
from rest_framework.exceptions import APIException


class InvalidTransition(APIException):
    """A status change (or status-bound operation) the transition table forbids."""

    status_code = status.HTTP_400_BAD_REQUEST
    default_code = "invalid_transition"

    def __init__(self, current, requested=None, expected=(), operation=None):
        self.current = current
        self.requested = requested
        self.expected = tuple(sorted(expected))
        self.operation = operation
        if operation:
            message = f"Cannot {operation} an appointment that is {current}"
        else:
            message = f"Cannot change appointment status from {current} to {requested}"
        super().__init__(message)
        # keep typed values in the payload; APIException would stringify them
        self.detail = {
            "detail": message,
            "current_status": str(current),
            "requested_status": str(requested) if requested is not None else None,
            "expected_statuses": [str(s) for s in self.expected],
        }


class SchedulingConflict(APIException):
    status_code = status.HTTP_409_CONFLICT
    default_code = "scheduling_conflict"

    def __init__(self, conflicts, can_override=False, start_time=None):
        self.conflicts = tuple(conflicts)
        self.can_override = can_override
        self.start_time = start_time
        message = "Scheduling conflict detected"
        if start_time is not None:
            message = f"Scheduling conflict detected at {start_time.isoformat()}"
        super().__init__(message)
        self.detail = {
            "detail": message,
            "can_override": can_override,
            "conflicts": [c.as_dict() for c in self.conflicts],
        }
