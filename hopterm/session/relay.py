"""
Bidirectional relay between the local terminal and a remote shell.

Two activities share the session handle:

- ForwardActivity (daemon thread): local keystrokes -> remote input.
- Relay.run() (calling thread): remote output -> local stdout/stderr,
  then waits for the remote shell to finish.

When completion is observed the forward activity is cancelled. It is never
joined; a read blocked on the terminal is harmless once nothing consumes it.
"""

from __future__ import annotations
import os
import sys
import time
import select
import threading
import logging
from typing import Optional, BinaryIO

from .base import Outcome, OutcomeKind
from .errors import TransportError, LocalIOError
from .ssh import SessionHandle

logger = logging.getLogger(__name__)

READ_CHUNK = 1024
POLL_INTERVAL = 0.1


class ForwardActivity:
    """
    Copies raw bytes from a local file descriptor to the remote channel.

    No line buffering and no local echo: the remote pty echoes.
    A full remote window blocks the send until the remote reads more; only
    a failed write ends the activity. Such failures are only logged; they
    are expected once the remote side is closing.
    """

    def __init__(
        self,
        handle: SessionHandle,
        fd: int,
        chunk_size: int = READ_CHUNK,
        poll_interval: float = POLL_INTERVAL,
    ):
        self._handle = handle
        self._fd = fd
        self._chunk_size = chunk_size
        self._poll_interval = poll_interval
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.bytes_forwarded = 0

    @property
    def cancelled(self) -> bool:
        return self._stop_event.is_set()

    @property
    def is_alive(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def start(self) -> None:
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self._run, name="hopterm-forward", daemon=True
        )
        self._thread.start()

    def cancel(self) -> None:
        """Stop forwarding. Does not wait for the thread."""
        self._stop_event.set()

    def _run(self) -> None:
        """Forward loop - runs on background thread."""
        while not self._stop_event.is_set():
            try:
                readable, _, _ = select.select([self._fd], [], [], self._poll_interval)
            except (ValueError, OSError) as e:
                logger.debug(f"Local input select failed: {e}")
                break

            if not readable:
                continue

            try:
                data = os.read(self._fd, self._chunk_size)
            except OSError as e:
                logger.debug(f"Local input read failed: {e}")
                break

            if not data:
                logger.debug("Local input closed")
                break

            # Completion may have been observed while we were reading
            if self._stop_event.is_set():
                break

            try:
                self._handle.send(data)
            except Exception as e:
                logger.debug(f"Forward write error: {e}")
                break
            self.bytes_forwarded += len(data)

        logger.debug(f"Forward activity stopped after {self.bytes_forwarded} bytes")


class Relay:
    """
    Runs one session's I/O until the remote shell finishes.

    Usage:
        relay = Relay(handle, stdin_fd=0)
        outcome = relay.run()
    """

    def __init__(
        self,
        handle: SessionHandle,
        stdin_fd: int,
        stdout: Optional[BinaryIO] = None,
        stderr: Optional[BinaryIO] = None,
        chunk_size: int = READ_CHUNK,
        poll_interval: float = POLL_INTERVAL,
    ):
        self._handle = handle
        self._stdout = stdout if stdout is not None else sys.stdout.buffer
        self._stderr = stderr if stderr is not None else sys.stderr.buffer
        self._chunk_size = chunk_size
        self._poll_interval = poll_interval
        self.forward = ForwardActivity(handle, stdin_fd, chunk_size, poll_interval)
        # time.monotonic() when remote completion was observed
        self.completed_at: Optional[float] = None

    def cancel(self) -> None:
        self.forward.cancel()

    def run(self) -> Outcome:
        """
        Relay until the remote shell exits or the transport fails.

        Returns:
            CLEAN or REMOTE_NON_ZERO_EXIT when the shell ended, TRANSPORT_ERROR
            when the connection died, LOCAL_IO_ERROR when local output failed.
        """
        self.forward.start()
        try:
            self._drain()
            status = self._handle.wait()
        except TransportError as e:
            logger.warning(f"Session ended with transport error: {e}")
            return Outcome.from_error(OutcomeKind.TRANSPORT_ERROR, e)
        except LocalIOError as e:
            logger.warning(f"Session ended with local i/o error: {e}")
            return Outcome.from_error(OutcomeKind.LOCAL_IO_ERROR, e)
        finally:
            self.completed_at = time.monotonic()
            self.forward.cancel()

        logger.info(f"Remote shell exited with status {status}")
        return Outcome.from_exit_status(status)

    def _drain(self) -> None:
        """Copy remote output to the local streams until end of stream."""
        while True:
            self._drain_stderr()
            # EOF is sampled before readiness so data queued ahead of it is still read
            at_eof = self._handle.at_eof
            if self._handle.recv_ready():
                data = self._handle.recv(self._chunk_size)
                if not data:
                    break
                self._write(self._stdout, data)
                continue
            if at_eof:
                break
            self._handle.wait_readable(self._poll_interval)
        self._drain_stderr()

    def _drain_stderr(self) -> None:
        while self._handle.recv_stderr_ready():
            data = self._handle.recv_stderr(self._chunk_size)
            if not data:
                return
            self._write(self._stderr, data)

    @staticmethod
    def _write(stream: BinaryIO, data: bytes) -> None:
        try:
            stream.write(data)
            stream.flush()
        except (OSError, ValueError) as e:
            raise LocalIOError(str(e)) from e


def relay(
    handle: SessionHandle,
    stdin_fd: int,
    stdout: Optional[BinaryIO] = None,
    stderr: Optional[BinaryIO] = None,
) -> Outcome:
    """Convenience wrapper: run a Relay to completion."""
    return Relay(handle, stdin_fd, stdout, stderr).run()
