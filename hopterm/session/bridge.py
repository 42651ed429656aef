"""
Session lifecycle: establish, go raw, relay, tear down.

State machine:

    IDLE -> ESTABLISHING -> ACTIVE -> COMPLETING -> TORN_DOWN
                 |                                     ^
                 +------------- on failure ------------+

Teardown runs exactly once on every path (including KeyboardInterrupt and
SystemExit raised by signal handlers): cancel forwarding, close channel,
close transport, restore terminal mode. Terminal mode is restored only after
remote completion has been observed.
"""

from __future__ import annotations
import time
import threading
import logging
from typing import Optional, Callable, BinaryIO

from ..connection.profile import ConnectionTarget
from .base import SessionState, StateChanged, Outcome, OutcomeKind
from .errors import EstablishError, TerminalUnavailable
from .relay import Relay
from .ssh import SessionHandle, establish
from .terminal import TerminalController, get_terminal

logger = logging.getLogger(__name__)

# At most one interactive session per process
_active_session = threading.Lock()


class SessionBridge:
    """
    Turns a ConnectionTarget into one interactive session over the local
    terminal and classifies how it ended.

    A bridge runs once. Use connect() for the common case.
    """

    def __init__(
        self,
        target: ConnectionTarget,
        terminal: Optional[TerminalController] = None,
        stdin_fd: Optional[int] = None,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
        establisher: Callable[..., SessionHandle] = establish,
    ):
        """
        Args:
            target: Resolved connection target (read only)
            terminal: Terminal controller. Defaults to the process-wide one.
            stdin_fd: Local input. Defaults to the terminal's descriptor.
            stdout: Local output for remote stdout. Defaults to sys.stdout.
            stderr: Local output for remote stderr. Defaults to sys.stderr.
            establisher: Callable(target, terminal=...) returning a SessionHandle
        """
        self.target = target
        self._terminal = terminal or get_terminal()
        self._stdin_fd = stdin_fd
        self._stdout = stdout
        self._stderr = stderr
        self._establish = establisher

        self._state = SessionState.IDLE
        self._state_lock = threading.Lock()
        self._event_handler: Optional[Callable[[StateChanged], None]] = None

        self._handle: Optional[SessionHandle] = None
        self._relay: Optional[Relay] = None
        self._torn_down = False

        self.outcome: Optional[Outcome] = None
        # time.monotonic() of terminal restore during teardown
        self.restored_at: Optional[float] = None

    @property
    def state(self) -> SessionState:
        """Current session state (thread-safe)."""
        with self._state_lock:
            return self._state

    @property
    def completed_at(self) -> Optional[float]:
        """time.monotonic() when remote completion was observed."""
        return self._relay.completed_at if self._relay else None

    def set_event_handler(self, handler: Callable[[StateChanged], None]) -> None:
        """Set callback for state changes."""
        self._event_handler = handler

    def _emit(self, event: StateChanged) -> None:
        if self._event_handler:
            try:
                self._event_handler(event)
            except Exception as e:
                logger.exception(f"Event handler error: {e}")

    def _set_state(self, new_state: SessionState, message: str = "") -> None:
        """Update state and emit event."""
        with self._state_lock:
            old_state = self._state
            self._state = new_state
        logger.info(f"Session state: {old_state.name} -> {new_state.name} {message}")
        self._emit(StateChanged(old_state, new_state, message))

    def run(self) -> Outcome:
        """
        Run the session to completion.

        Returns:
            Outcome of the session. Establishment failures come back as
            NEGOTIATION_ERROR with the specific error attached.

        Raises:
            RuntimeError: this bridge already ran, or another session is active.
        """
        if self.state != SessionState.IDLE:
            raise RuntimeError(f"Session bridge already used (state {self.state.name})")
        if not _active_session.acquire(blocking=False):
            raise RuntimeError("Another session is already active")
        try:
            self.outcome = self._run()
            return self.outcome
        finally:
            _active_session.release()

    def _run(self) -> Outcome:
        self._set_state(SessionState.ESTABLISHING, str(self.target))

        try:
            self._handle = self._establish(self.target, terminal=self._terminal)
        except EstablishError as e:
            logger.info(f"Establishing {self.target} failed: {e}")
            self._teardown(str(e))
            return Outcome.from_error(OutcomeKind.NEGOTIATION_ERROR, e)
        except BaseException:
            self._teardown("interrupted")
            raise

        outcome = None
        try:
            try:
                self._terminal.enter_raw()
            except TerminalUnavailable as e:
                logger.warning(f"Cannot start interactive session: {e}")
                outcome = Outcome.from_error(OutcomeKind.LOCAL_IO_ERROR, e)
                return outcome

            self._set_state(SessionState.ACTIVE)
            self._terminal.install_resize_handler(self._handle.resize)

            stdin_fd = self._stdin_fd if self._stdin_fd is not None else self._terminal.fd
            self._relay = Relay(self._handle, stdin_fd, self._stdout, self._stderr)
            outcome = self._relay.run()

            self._set_state(SessionState.COMPLETING, outcome.kind.name)
            return outcome
        finally:
            self._teardown(outcome.kind.name if outcome else "interrupted")

    def _teardown(self, message: str = "") -> None:
        """Release everything in order. Runs once."""
        if self._torn_down:
            return
        self._torn_down = True

        if self.state == SessionState.ACTIVE:
            self._set_state(SessionState.COMPLETING, message)

        if self._relay:
            self._relay.cancel()
        if self._handle:
            self._handle.close_channel()
            self._handle.close_transport()
            self._handle = None

        self._terminal.remove_resize_handler()
        self._terminal.restore()
        self.restored_at = time.monotonic()

        self._set_state(SessionState.TORN_DOWN, message)


def connect(target: ConnectionTarget, **kwargs) -> Outcome:
    """
    Open an interactive shell on target and return how it ended.

    Keyword arguments are passed to SessionBridge.
    """
    return SessionBridge(target, **kwargs).run()
