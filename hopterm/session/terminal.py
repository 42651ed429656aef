"""
Raw-mode control of the local terminal.

Only one terminal is attached to the process, so there is one controller
(see get_terminal()). Every enter/restore goes through the controller's lock:
the post-session cleanup and the signal/atexit path may both try to restore.

POSIX only (termios). On other platforms enter_raw() raises
TerminalUnavailable.
"""

from __future__ import annotations
import os
import sys
import signal
import threading
import logging
from typing import Optional, Callable

from .errors import TerminalUnavailable

logger = logging.getLogger(__name__)

IS_WINDOWS = sys.platform == 'win32'

if not IS_WINDOWS:
    import termios
    import tty


class TerminalState:
    """Captured termios attributes of the local terminal before raw mode."""

    def __init__(self, fd: int, attrs: list):
        self.fd = fd
        self.attrs = attrs
        self.restored = True

    def __repr__(self) -> str:
        status = "restored" if self.restored else "raw"
        return f"<TerminalState fd={self.fd} {status}>"


class TerminalController:
    """
    Owns the raw/cooked mode of one terminal file descriptor.

    The original mode is captured once, on the first enter_raw(), and reused
    for every later session. restore() never raises and is a no-op when the
    terminal is already restored.
    """

    def __init__(self, fd: Optional[int] = None):
        """
        Args:
            fd: Terminal file descriptor. Defaults to standard input.
        """
        self._fd = fd
        self._lock = threading.RLock()
        self._state: Optional[TerminalState] = None
        self._winch_installed = False
        self._prev_winch = None

    @property
    def fd(self) -> int:
        if self._fd is not None:
            return self._fd
        return sys.stdin.fileno()

    @property
    def state(self) -> Optional[TerminalState]:
        return self._state

    @property
    def is_raw(self) -> bool:
        with self._lock:
            return self._state is not None and not self._state.restored

    def _terminal_fd(self) -> int:
        if IS_WINDOWS:
            raise TerminalUnavailable("raw mode requires a POSIX terminal")
        try:
            fd = self.fd
        except (AttributeError, ValueError, OSError) as e:
            raise TerminalUnavailable(f"no standard input: {e}") from e
        if not os.isatty(fd):
            raise TerminalUnavailable("standard input is not a terminal")
        return fd

    def enter_raw(self) -> TerminalState:
        """
        Switch the terminal to raw mode (unbuffered, no echo, no signals).

        Returns:
            The captured original state, to be passed to restore().

        Raises:
            TerminalUnavailable: input is not a TTY or termios failed.
        """
        with self._lock:
            fd = self._terminal_fd()

            if self._state is None:
                try:
                    attrs = termios.tcgetattr(fd)
                except (termios.error, OSError) as e:
                    raise TerminalUnavailable(f"cannot read terminal mode: {e}") from e
                self._state = TerminalState(fd, attrs)
                logger.debug(f"Captured terminal mode for fd {fd}")

            try:
                tty.setraw(fd)
            except (termios.error, OSError) as e:
                raise TerminalUnavailable(f"cannot enter raw mode: {e}") from e

            self._state.restored = False
            logger.debug("Entered raw mode")
            return self._state

    def restore(self, state: Optional[TerminalState] = None) -> None:
        """
        Put the terminal back into its captured mode.

        Safe to call repeatedly, from atexit or signal handlers.
        """
        with self._lock:
            state = state or self._state
            if state is None or state.restored:
                return
            try:
                termios.tcsetattr(state.fd, termios.TCSADRAIN, state.attrs)
                logger.debug("Restored terminal mode")
            except Exception as e:
                # Nothing sensible left to do; the process is usually exiting
                logger.debug(f"Terminal restore failed: {e}")
            state.restored = True

    def query_size(self) -> tuple[int, int]:
        """
        Current terminal size.

        Returns:
            Tuple of (columns, rows).

        Raises:
            TerminalUnavailable: size cannot be read.
        """
        try:
            size = os.get_terminal_size(self.fd)
        except (AttributeError, ValueError, OSError) as e:
            raise TerminalUnavailable(f"cannot read terminal size: {e}") from e
        if size.columns <= 0 or size.lines <= 0:
            raise TerminalUnavailable("terminal reported an empty size")
        return size.columns, size.lines

    # -------------------------------------------------------------------------
    # SIGWINCH
    # -------------------------------------------------------------------------

    def install_resize_handler(self, callback: Callable[[int, int], None]) -> bool:
        """
        Call callback(cols, rows) whenever the terminal is resized.

        Returns:
            True if installed. Signal handlers only work on the main thread
            of a POSIX process.
        """
        if not hasattr(signal, "SIGWINCH"):
            return False
        if threading.current_thread() is not threading.main_thread():
            return False

        def on_winch(signum, frame):
            try:
                cols, rows = self.query_size()
                callback(cols, rows)
            except Exception as e:
                logger.debug(f"Resize handler error: {e}")

        with self._lock:
            self._prev_winch = signal.signal(signal.SIGWINCH, on_winch)
            self._winch_installed = True
        return True

    def remove_resize_handler(self) -> None:
        """Reinstate whatever SIGWINCH handler was there before."""
        with self._lock:
            if not self._winch_installed:
                return
            try:
                signal.signal(signal.SIGWINCH, self._prev_winch or signal.SIG_DFL)
            except (ValueError, OSError) as e:
                logger.debug(f"Could not remove resize handler: {e}")
            self._winch_installed = False
            self._prev_winch = None


# Global instance: one terminal per process
_terminal: Optional[TerminalController] = None
_terminal_lock = threading.Lock()


def get_terminal() -> TerminalController:
    """Get the process-wide terminal controller."""
    global _terminal
    with _terminal_lock:
        if _terminal is None:
            _terminal = TerminalController()
        return _terminal


def restore_terminal() -> None:
    """Restore the process-wide terminal. Intended for atexit/signal paths."""
    if _terminal is not None:
        _terminal.restore()
