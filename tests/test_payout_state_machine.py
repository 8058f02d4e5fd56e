import pytest

from app.errors import Conflict
from app.payouts.state_machine import assert_transition, is_terminal, InvalidTransition


def test_valid_transitions():
    assert_transition("pending", "paid")
    assert_transition("pending", "rejected")
    assert_transition("pending", "failed")


def test_pending_to_pending_is_not_a_transition():
    with pytest.raises(InvalidTransition):
        assert_transition("pending", "pending")


def test_terminal_states_cannot_transition():
    for old in ("paid", "rejected", "failed"):
        assert is_terminal(old)
        for new in ("pending", "paid", "rejected", "failed"):
            with pytest.raises(InvalidTransition):
                assert_transition(old, new)


def test_invalid_transition_is_a_conflict():
    with pytest.raises(Conflict) as exc:
        assert_transition("paid", "failed")
    assert exc.value.code == "PAYOUT_REQUEST_NOT_PENDING"
