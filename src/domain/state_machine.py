# src/domain/state_machine.py

from enum import Enum
from typing import Dict, FrozenSet, Set

from src.domain.exceptions import InvalidStateTransitionError


class PaymentStatus(str, Enum):
    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    CANCELLED = "CANCELLED"


TERMINAL_STATUSES: FrozenSet[PaymentStatus] = frozenset(
    {
        PaymentStatus.COMPLETED,
        PaymentStatus.FAILED,
        PaymentStatus.CANCELLED,
    }
)


class BookingStateMachine:
    """
    Central lifecycle controller for booking payment status.

    The lattice only moves forward. Terminal states accept nothing, and a
    non-terminal state may jump straight to a terminal one: a webhook can
    land before the initiation path recorded PROCESSING.
    """

    _ALLOWED_TRANSITIONS: Dict[PaymentStatus, Set[PaymentStatus]] = {
        PaymentStatus.PENDING: {
            PaymentStatus.PROCESSING,
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        },
        PaymentStatus.PROCESSING: {
            PaymentStatus.COMPLETED,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELLED,
        },
        PaymentStatus.COMPLETED: set(),
        PaymentStatus.FAILED: set(),
        PaymentStatus.CANCELLED: set(),
    }

    @classmethod
    def can_transition(
        cls,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
    ) -> bool:
        """
        Returns True if transition is allowed.
        """
        cls._ensure_valid_status(from_status)
        cls._ensure_valid_status(to_status)

        return to_status in cls._ALLOWED_TRANSITIONS.get(from_status, set())

    @classmethod
    def validate_transition(
        cls,
        from_status: PaymentStatus,
        to_status: PaymentStatus,
    ) -> None:
        """
        Raises InvalidStateTransitionError if transition is illegal.
        """
        if not cls.can_transition(from_status, to_status):
            raise InvalidStateTransitionError(
                from_state=from_status.value,
                to_state=to_status.value,
            )

    @classmethod
    def is_terminal(cls, status: PaymentStatus) -> bool:
        cls._ensure_valid_status(status)
        return status in TERMINAL_STATUSES

    @classmethod
    def sources_for(cls, to_status: PaymentStatus) -> Set[PaymentStatus]:
        """
        Returns every state from which `to_status` is reachable in one step.
        Used to build the WHERE clause of conditional status updates.
        """
        cls._ensure_valid_status(to_status)
        return {
            source
            for source, targets in cls._ALLOWED_TRANSITIONS.items()
            if to_status in targets
        }

    @staticmethod
    def _ensure_valid_status(status: PaymentStatus) -> None:
        if not isinstance(status, PaymentStatus):
            raise TypeError(
                f"Expected PaymentStatus, got {type(status)}"
            )
