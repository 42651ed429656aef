"""
Tests for the bidirectional relay.
"""

from __future__ import annotations

import io
import os
import time

import pytest

from conftest import IDLE
from hopterm.session.base import OutcomeKind
from hopterm.session.errors import LocalIOError, TransportError
from hopterm.session.relay import ForwardActivity, Relay, relay


def wait_for(predicate, timeout=2.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        if predicate():
            return True
        time.sleep(0.01)
    return predicate()


class BrokenStream(io.RawIOBase):
    """Local output whose writes fail."""

    def write(self, data):
        raise OSError(5, "Input/output error")


class TestForwardActivity:
    """Test local input forwarding."""

    def test_forwards_bytes_unmodified(self, make_handle, pipe_fds):
        read_fd, write_fd = pipe_fds
        handle = make_handle()
        forward = ForwardActivity(handle, read_fd, poll_interval=0.01)

        forward.start()
        try:
            os.write(write_fd, b"ls -la\r\x03\x1b[A")
            assert wait_for(lambda: len(handle.channel.sent) == 11)
        finally:
            forward.cancel()

        assert bytes(handle.channel.sent) == b"ls -la\r\x03\x1b[A"
        assert forward.bytes_forwarded == 11

    def test_reads_in_bounded_chunks(self, make_handle, pipe_fds):
        read_fd, write_fd = pipe_fds
        handle = make_handle()
        forward = ForwardActivity(handle, read_fd, chunk_size=4, poll_interval=0.01)

        forward.start()
        try:
            os.write(write_fd, b"0123456789")
            assert wait_for(lambda: len(handle.channel.sent) == 10)
        finally:
            forward.cancel()

        assert bytes(handle.channel.sent) == b"0123456789"

    def test_cancel_stops_forwarding(self, make_handle, pipe_fds):
        read_fd, write_fd = pipe_fds
        handle = make_handle()
        forward = ForwardActivity(handle, read_fd, poll_interval=0.01)

        forward.start()
        forward.cancel()
        assert wait_for(lambda: not forward.is_alive)

        os.write(write_fd, b"late")
        time.sleep(0.05)
        assert handle.channel.sent == b""
        assert forward.cancelled

    def test_write_error_ends_quietly(self, make_handle, pipe_fds):
        read_fd, write_fd = pipe_fds
        handle = make_handle()
        handle.close_channel()
        forward = ForwardActivity(handle, read_fd, poll_interval=0.01)

        forward.start()
        os.write(write_fd, b"x")

        assert wait_for(lambda: not forward.is_alive)
        assert forward.bytes_forwarded == 0

    def test_local_eof_ends(self, make_handle, pipe_fds):
        read_fd, write_fd = pipe_fds
        forward = ForwardActivity(make_handle(), read_fd, poll_interval=0.01)

        forward.start()
        os.close(write_fd)

        assert wait_for(lambda: not forward.is_alive)

    def test_thread_is_daemon(self, make_handle, pipe_fds):
        read_fd, _ = pipe_fds
        forward = ForwardActivity(make_handle(), read_fd, poll_interval=0.01)

        forward.start()
        try:
            assert forward._thread.daemon
        finally:
            forward.cancel()


class TestRelay:
    """Test Relay.run()."""

    def run_relay(self, handle, stdin_fd, stdout=None, stderr=None):
        stdout = stdout if stdout is not None else io.BytesIO()
        stderr = stderr if stderr is not None else io.BytesIO()
        session = Relay(handle, stdin_fd, stdout, stderr, poll_interval=0.01)
        return session, session.run(), stdout, stderr

    def test_output_copied_in_order(self, make_handle, pipe_fds):
        handle = make_handle(output=[b"Last login: today\r\n", b"$ ", b"exit\r\n"])

        _, outcome, stdout, _ = self.run_relay(handle, pipe_fds[0])

        assert stdout.getvalue() == b"Last login: today\r\n$ exit\r\n"
        assert outcome.kind == OutcomeKind.CLEAN
        assert outcome.exit_status == 0

    def test_stderr_copied_separately(self, make_handle, pipe_fds):
        handle = make_handle(output=[b"out"], stderr=[b"err"])

        _, _, stdout, stderr = self.run_relay(handle, pipe_fds[0])

        assert stdout.getvalue() == b"out"
        assert stderr.getvalue() == b"err"

    def test_quiet_polls_are_retried(self, make_handle, pipe_fds):
        handle = make_handle(output=[IDLE, b"a", IDLE, IDLE, b"b"])

        _, outcome, stdout, _ = self.run_relay(handle, pipe_fds[0])

        assert stdout.getvalue() == b"ab"
        assert outcome.kind == OutcomeKind.CLEAN

    def test_reads_stdout_only_when_ready(self, make_handle, pipe_fds):
        """A wake-up for stderr alone never turns into a blocking stdout read."""
        handle = make_handle(output=[IDLE, IDLE, b"x"], stderr=[b"warn"])
        reads = []
        scripted_recv = handle.channel.recv

        def recv(size):
            reads.append(size)
            return scripted_recv(size)

        handle.channel.recv = recv

        _, outcome, stdout, stderr = self.run_relay(handle, pipe_fds[0])

        assert reads == [1024]
        assert stdout.getvalue() == b"x"
        assert stderr.getvalue() == b"warn"
        assert outcome.kind == OutcomeKind.CLEAN

    def test_non_zero_exit(self, make_handle, pipe_fds):
        _, outcome, _, _ = self.run_relay(make_handle(exit_status=7), pipe_fds[0])

        assert outcome.kind == OutcomeKind.REMOTE_NON_ZERO_EXIT
        assert outcome.exit_status == 7
        assert outcome.diagnostic() is None

    def test_missing_exit_status_is_clean(self, make_handle, pipe_fds):
        _, outcome, _, _ = self.run_relay(make_handle(exit_status=-1), pipe_fds[0])

        assert outcome.kind == OutcomeKind.CLEAN
        assert outcome.exit_status is None

    def test_transport_failure(self, make_handle, pipe_fds):
        handle = make_handle(
            output=[b"partial"],
            exit_status=-1,
            active=False,
            exception=EOFError("socket closed"),
        )

        _, outcome, stdout, _ = self.run_relay(handle, pipe_fds[0])

        assert stdout.getvalue() == b"partial"
        assert outcome.kind == OutcomeKind.TRANSPORT_ERROR
        assert isinstance(outcome.error, TransportError)
        assert outcome.diagnostic().startswith("transport error")

    def test_local_output_failure(self, make_handle, pipe_fds):
        handle = make_handle(output=[b"data"])

        _, outcome, _, _ = self.run_relay(handle, pipe_fds[0], stdout=BrokenStream())

        assert outcome.kind == OutcomeKind.LOCAL_IO_ERROR
        assert isinstance(outcome.error, LocalIOError)

    def test_completion_cancels_forwarding(self, make_handle, pipe_fds):
        session, _, _, _ = self.run_relay(make_handle(), pipe_fds[0])

        assert session.completed_at is not None
        assert session.forward.cancelled
        assert wait_for(lambda: not session.forward.is_alive)

    def test_input_forwarded_while_output_drains(self, make_handle, pipe_fds):
        read_fd, write_fd = pipe_fds
        os.write(write_fd, b"whoami\r")
        handle = make_handle(output=[b"deploy\r\n"])
        channel = handle.channel
        scripted_ready = channel.recv_ready

        def recv_ready():
            # Remote answers only after it has seen the input
            wait_for(lambda: channel.sent)
            return scripted_ready()

        channel.recv_ready = recv_ready

        _, _, stdout, _ = self.run_relay(handle, read_fd)

        assert stdout.getvalue() == b"deploy\r\n"

        assert bytes(handle.channel.sent) == b"whoami\r"

    def test_relay_function(self, make_handle, pipe_fds):
        outcome = relay(make_handle(output=[b"hi"]), pipe_fds[0], io.BytesIO(), io.BytesIO())
        assert outcome.kind == OutcomeKind.CLEAN

    def test_write_helper_wraps_value_error(self):
        stream = io.BytesIO()
        stream.close()

        with pytest.raises(LocalIOError):
            Relay._write(stream, b"x")
