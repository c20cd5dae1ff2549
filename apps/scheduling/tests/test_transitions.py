import pytest

from apps.scheduling.exceptions import InvalidTransition
from apps.scheduling.models import AppointmentStatus as S
from apps.scheduling.transitions import APPOINTMENT_STATE_MACHINE as machine, StateMachine

ALLOWED = {
    S.PENDING: {S.CONFIRMED, S.CANCELLED},
    S.CONFIRMED: {S.WAITING, S.CANCELLED, S.NO_SHOW},
    S.WAITING: {S.IN_PROGRESS, S.CANCELLED, S.NO_SHOW},
    S.IN_PROGRESS: {S.COMPLETED},
    S.COMPLETED: set(),
    S.CANCELLED: set(),
    S.NO_SHOW: set(),
}


@pytest.mark.parametrize("current", S.values)
@pytest.mark.parametrize("target", S.values)
def test_table_matches_allowed_moves(current, target):
    assert machine.can_transition(current, target) == (target in ALLOWED[current])


def test_terminal_states():
    assert machine.terminal_states == {S.COMPLETED, S.CANCELLED, S.NO_SHOW}
    assert machine.is_terminal(S.CANCELLED)
    assert not machine.is_terminal(S.WAITING)


def test_initial_state_is_pending():
    assert machine.initial == S.PENDING


def test_sources_for_no_show():
    assert machine.sources_for(S.NO_SHOW) == {S.CONFIRMED, S.WAITING}


def test_validate_reports_current_requested_and_expected():
    with pytest.raises(InvalidTransition) as exc:
        machine.validate(S.PENDING, S.COMPLETED)

    err = exc.value
    assert err.current == S.PENDING
    assert err.requested == S.COMPLETED
    assert err.expected == (S.IN_PROGRESS,)
    assert err.status_code == 400
    assert err.detail["expected_statuses"] == ["in_progress"]


def test_same_status_is_not_a_transition():
    for state in S.values:
        assert not machine.can_transition(state, state)


def test_table_is_read_only():
    with pytest.raises(TypeError):
        machine.table[S.COMPLETED] = frozenset({S.PENDING})


def test_undeclared_target_is_rejected():
    with pytest.raises(ValueError):
        StateMachine({"open": ["closed"]}, initial="open")


def test_undeclared_initial_is_rejected():
    with pytest.raises(ValueError):
        StateMachine({"open": []}, initial="closed")
