"""Call status machine: validates lifecycle transitions of sales call records.

``analyzing`` is the only non-terminal state. Manual entries are created
directly at ``manual`` and never analyzed.
"""

from callcoach.domain.enums import CallStatus


class InvalidStatusTransitionError(Exception):
    """Raised when a call status transition is not allowed."""

    def __init__(
        self,
        current_status: CallStatus,
        target_status: CallStatus,
        reason: str,
    ):
        self.current_status = current_status
        self.target_status = target_status
        self.reason = reason
        super().__init__(
            f"Invalid transition from {current_status.value} to {target_status.value}: {reason}"
        )


S = CallStatus

TRANSITION_MAP: dict[CallStatus, set[CallStatus]] = {
    S.ANALYZING: {S.COMPLETED, S.FAILED},
}


def validate_transition(current_status: CallStatus | str, target_status: CallStatus | str) -> bool:
    """Return True if the transition is valid. Raise InvalidStatusTransitionError if not."""
    current = CallStatus(current_status)
    target = CallStatus(target_status)

    allowed = TRANSITION_MAP.get(current)
    if allowed is None:
        raise InvalidStatusTransitionError(
            current, target, f"No transitions allowed from {current.value}"
        )
    if target not in allowed:
        raise InvalidStatusTransitionError(
            current,
            target,
            f"Transition from {current.value} to {target.value} is not allowed",
        )
    return True
