"""
Session bridge error taxonomy.

Remote exit statuses are not errors; see Outcome in base.py.
"""

from __future__ import annotations


class BridgeError(Exception):
    """Base class for session bridge failures."""
    step = "session"

    def __init__(self, detail: str = ""):
        super().__init__(detail)
        self.detail = detail

    def __str__(self) -> str:
        if self.detail:
            return f"{self.step}: {self.detail}"
        return self.step


class EstablishError(BridgeError):
    """Raised by establish(); the step label tells which stage failed."""
    step = "establish"


class DialFailed(EstablishError):
    step = "dial failed"


class AuthFailed(EstablishError):
    step = "authentication failed"


class ChannelFailed(EstablishError):
    step = "channel open failed"


class PtyRequestFailed(EstablishError):
    step = "pty request failed"


class ShellStartFailed(EstablishError):
    step = "shell start failed"


class TransportError(BridgeError):
    """Transport died while the session was active."""
    step = "transport error"


class LocalIOError(BridgeError):
    """Local terminal input/output failed."""
    step = "local i/o error"


class TerminalUnavailable(BridgeError):
    """stdin is not an interactive terminal or termios failed."""
    step = "terminal unavailable"
