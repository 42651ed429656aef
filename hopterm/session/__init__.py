"""
Interactive remote session bridge.

- TerminalController: raw-mode control of the local terminal (one per process)
- establish(): Paramiko transport + pty + shell, as a SessionHandle
- Relay: local keystrokes -> remote, remote output -> local
- SessionBridge / connect(): lifecycle, teardown and outcome classification

Process-exit contract: whoever owns the process must call restore_terminal()
on every termination path (atexit, signal handlers). The bridge restores the
terminal after each session but cannot intercept process termination itself.
"""

from .base import (
    SessionState,
    StateChanged,
    Outcome,
    OutcomeKind,
)
from .errors import (
    BridgeError,
    EstablishError,
    DialFailed,
    AuthFailed,
    ChannelFailed,
    PtyRequestFailed,
    ShellStartFailed,
    TransportError,
    LocalIOError,
    TerminalUnavailable,
)
from .terminal import (
    TerminalController,
    TerminalState,
    get_terminal,
    restore_terminal,
)
from .ssh import SessionHandle, establish
from .relay import Relay, ForwardActivity, relay
from .bridge import SessionBridge, connect

__all__ = [
    # Lifecycle
    "SessionState",
    "StateChanged",
    "Outcome",
    "OutcomeKind",
    "SessionBridge",
    "connect",
    # Errors
    "BridgeError",
    "EstablishError",
    "DialFailed",
    "AuthFailed",
    "ChannelFailed",
    "PtyRequestFailed",
    "ShellStartFailed",
    "TransportError",
    "LocalIOError",
    "TerminalUnavailable",
    # Terminal
    "TerminalController",
    "TerminalState",
    "get_terminal",
    "restore_terminal",
    # Transport + relay
    "SessionHandle",
    "establish",
    "Relay",
    "ForwardActivity",
    "relay",
]
