"""Transfer request state machine enforced by the transfer and reconciler services."""

PENDING = "pending"
ACCEPTED = "accepted"
REJECTED = "rejected"

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    PENDING: {ACCEPTED, REJECTED},
    ACCEPTED: set(),
    REJECTED: set(),
}


def validate_transition(current: str, new: str) -> None:
    """Raise when a transition is not allowed by the state machine."""

    if new not in ALLOWED_TRANSITIONS.get(current, set()):
        raise ValueError(f"Invalid transition: {current} -> {new}")
