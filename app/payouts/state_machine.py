# app/payouts/state_machine.py
from app.errors import Conflict


ALLOWED = {
    "pending": {"paid", "rejected", "failed"},
    "paid": set(),
    "rejected": set(),
    "failed": set(),
}

TERMINAL_STATUSES = ("paid", "rejected", "failed")


class InvalidTransition(Conflict):
    pass


def assert_transition(old: str, new: str) -> None:
    if new not in ALLOWED.get(old, set()):
        raise InvalidTransition("PAYOUT_REQUEST_NOT_PENDING", f"Illegal payout transition: {old} -> {new}")


def is_terminal(status: str) -> bool:
    return status in TERMINAL_STATUSES
