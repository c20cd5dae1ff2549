from types import MappingProxyType
from typing import FrozenSet, Iterable, Mapping

from .exceptions import InvalidTransition
from .models import AppointmentStatus


class StateMachine:
    """
    Immutable status transition table.

    Maps each state to the set of states it may move to. States with no
    outgoing transitions are terminal.
    """

    def __init__(self, transitions: Mapping[str, Iterable[str]], initial: str):
        table = {state: frozenset(targets) for state, targets in transitions.items()}
        unknown = set().union(*table.values()) - table.keys()
        if unknown:
            raise ValueError(f"Transitions reference undeclared states: {sorted(unknown)}")
        if initial not in table:
            raise ValueError(f"Initial state {initial!r} is not declared")
        self._table = MappingProxyType(table)
        self.initial = initial

    @property
    def states(self) -> FrozenSet[str]:
        return frozenset(self._table)

    @property
    def terminal_states(self) -> FrozenSet[str]:
        return frozenset(s for s, targets in self._table.items() if not targets)

    @property
    def table(self) -> Mapping[str, FrozenSet[str]]:
        return self._table

    def allowed_from(self, state: str) -> FrozenSet[str]:
        return self._table.get(state, frozenset())

    def sources_for(self, target: str) -> FrozenSet[str]:
        """States from which `target` can be reached in one step."""
        return frozenset(s for s, targets in self._table.items() if target in targets)

    def can_transition(self, current: str, target: str) -> bool:
        return target in self.allowed_from(current)

    def is_terminal(self, state: str) -> bool:
        return not self.allowed_from(state)

    def validate(self, current: str, target: str) -> None:
        if not self.can_transition(current, target):
            raise InvalidTransition(current, target, expected=self.sources_for(target))


APPOINTMENT_STATE_MACHINE = StateMachine(
    {
        AppointmentStatus.PENDING: [AppointmentStatus.CONFIRMED, AppointmentStatus.CANCELLED],
        AppointmentStatus.CONFIRMED: [
            AppointmentStatus.WAITING,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        ],
        AppointmentStatus.WAITING: [
            AppointmentStatus.IN_PROGRESS,
            AppointmentStatus.CANCELLED,
            AppointmentStatus.NO_SHOW,
        ],
        AppointmentStatus.IN_PROGRESS: [AppointmentStatus.COMPLETED],
        AppointmentStatus.COMPLETED: [],
        AppointmentStatus.CANCELLED: [],
        AppointmentStatus.NO_SHOW: [],
    },
    initial=AppointmentStatus.PENDING,
)
