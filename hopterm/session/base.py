"""
Session lifecycle states, events and outcomes.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum, auto
from typing import Optional

from .errors import BridgeError


class SessionState(Enum):
    """Session lifecycle states."""
    IDLE = auto()
    ESTABLISHING = auto()
    ACTIVE = auto()
    COMPLETING = auto()
    TORN_DOWN = auto()


@dataclass
class StateChanged:
    """Session state changed."""
    old_state: SessionState
    new_state: SessionState
    message: str = ""


class OutcomeKind(Enum):
    """How a session ended."""
    CLEAN = auto()
    REMOTE_NON_ZERO_EXIT = auto()
    TRANSPORT_ERROR = auto()
    NEGOTIATION_ERROR = auto()
    LOCAL_IO_ERROR = auto()


_ERROR_KINDS = (
    OutcomeKind.TRANSPORT_ERROR,
    OutcomeKind.NEGOTIATION_ERROR,
    OutcomeKind.LOCAL_IO_ERROR,
)


@dataclass
class Outcome:
    """
    Classified result of one session.

    CLEAN and REMOTE_NON_ZERO_EXIT mean the session worked as a mechanism;
    exit_status is metadata about the remote shell, not a failure.
    exit_status is None when the channel closed without reporting one.
    """
    kind: OutcomeKind
    exit_status: Optional[int] = None
    detail: str = ""
    error: Optional[BridgeError] = None

    @classmethod
    def from_exit_status(cls, status: Optional[int]) -> Outcome:
        if status:
            return cls(OutcomeKind.REMOTE_NON_ZERO_EXIT, exit_status=status)
        return cls(OutcomeKind.CLEAN, exit_status=status)

    @classmethod
    def from_error(cls, kind: OutcomeKind, error: BridgeError) -> Outcome:
        return cls(kind, detail=str(error), error=error)

    @property
    def is_error(self) -> bool:
        return self.kind in _ERROR_KINDS

    def diagnostic(self) -> Optional[str]:
        """Single-line message for the user, or None when nothing went wrong."""
        if not self.is_error:
            return None
        return self.detail or self.kind.name.lower().replace("_", " ")

    def __repr__(self) -> str:
        status = f", status={self.exit_status}" if self.exit_status is not None else ""
        detail = f", {self.detail!r}" if self.detail else ""
        return f"<Outcome {self.kind.name}{status}{detail}>"
