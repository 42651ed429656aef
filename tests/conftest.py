"""
Pytest configuration and fixtures for hopterm tests.
"""

from __future__ import annotations

import os
import pty
import socket
import threading
from collections import deque
from unittest.mock import MagicMock

import paramiko
import pytest

from hopterm.connection.profile import AuthConfig, ConnectionTarget
from hopterm.session.ssh import SessionHandle
from hopterm.session.terminal import TerminalController


# Marker for FakeChannel output: nothing to read on this poll
IDLE = object()


class FakeChannel:
    """
    Scripted stand-in for paramiko.Channel.

    output items are returned by recv() in order. An IDLE item makes one
    readiness check come back empty, as if the remote were quiet for a poll.
    An exhausted list is EOF.

    fileno() is a pipe that is always readable, so select() never blocks.
    """

    def __init__(self, output=(), stderr=(), exit_status=0, calls=None):
        self.output = deque(output)
        self.stderr = deque(stderr)
        self.exit_status = exit_status
        self.sent = bytearray()
        self.closed = False
        self.resized = []
        self.calls = calls if calls is not None else []
        self._pipe = None

    @property
    def eof_received(self):
        return not self.output

    def fileno(self):
        if self._pipe is None:
            self._pipe = os.pipe()
            os.write(self._pipe[1], b"x")
        return self._pipe[0]

    def release(self):
        if self._pipe is not None:
            for fd in self._pipe:
                os.close(fd)
            self._pipe = None

    def recv_ready(self):
        if self.output and self.output[0] is IDLE:
            self.output.popleft()
            return False
        return bool(self.output)

    def recv(self, size):
        if not self.output:
            return b""
        return self.output.popleft()[:size]

    def recv_stderr_ready(self):
        return bool(self.stderr)

    def recv_stderr(self, size):
        return self.stderr.popleft()[:size]

    def recv_exit_status(self):
        return self.exit_status

    def sendall(self, data):
        if self.closed:
            raise OSError("Socket is closed")
        self.sent += data

    def resize_pty(self, width, height):
        self.resized.append((width, height))

    def close(self):
        self.closed = True
        self.calls.append("channel")


class FakeTransport:
    """Stand-in for paramiko.Transport after the shell has started."""

    def __init__(self, active=True, exception=None, calls=None):
        self.active = active
        self.exception = exception
        self.calls = calls if calls is not None else []

    def is_active(self):
        return self.active

    def get_exception(self):
        error, self.exception = self.exception, None
        return error

    def close(self):
        self.active = False
        self.calls.append("transport")


@pytest.fixture
def calls() -> list:
    """Shared record of teardown calls, in order."""
    return []


@pytest.fixture
def make_handle(calls):
    """Build a SessionHandle over fakes."""
    channels = []

    def factory(output=(), stderr=(), exit_status=0, active=True, exception=None):
        channel = FakeChannel(output, stderr, exit_status, calls=calls)
        transport = FakeTransport(active, exception, calls=calls)
        channels.append(channel)
        return SessionHandle(transport, channel)

    yield factory
    for channel in channels:
        channel.release()


@pytest.fixture
def tty_pair():
    """A real pseudo-terminal: (master_fd, slave_fd)."""
    master, slave = pty.openpty()
    yield master, slave
    for fd in (master, slave):
        try:
            os.close(fd)
        except OSError:
            pass


@pytest.fixture
def pipe_fds():
    """(read_fd, write_fd) standing in for a redirected stdin."""
    read_fd, write_fd = os.pipe()
    yield read_fd, write_fd
    for fd in (read_fd, write_fd):
        try:
            os.close(fd)
        except OSError:
            pass


@pytest.fixture
def mock_terminal(calls):
    """TerminalController mock whose restore() is recorded in calls."""
    terminal = MagicMock(spec=TerminalController)
    terminal.restore.side_effect = lambda *args: calls.append("restore")
    terminal.query_size.return_value = (120, 40)
    terminal.install_resize_handler.return_value = True
    return terminal


@pytest.fixture
def password_target() -> ConnectionTarget:
    return ConnectionTarget(
        hostname="127.0.0.1",
        port=2222,
        username="deploy",
        auth=AuthConfig.with_password("secret"),
    )


@pytest.fixture
def key_target() -> ConnectionTarget:
    return ConnectionTarget(
        hostname="10.0.0.5",
        username="deploy",
        auth=AuthConfig.with_key(MagicMock(spec=paramiko.PKey)),
        term_type="screen",
    )


@pytest.fixture
def closed_port() -> int:
    """A localhost port nothing is listening on."""
    sock = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    sock.bind(("127.0.0.1", 0))
    port = sock.getsockname()[1]
    sock.close()
    return port


class ShellServer(paramiko.ServerInterface):
    """Accepts password "secret" and one pty shell per connection."""

    def __init__(self):
        self.shell_started = threading.Event()
        self.pty = None

    def get_allowed_auths(self, username):
        return "password"

    def check_auth_password(self, username, password):
        if password == "secret":
            return paramiko.AUTH_SUCCESSFUL
        return paramiko.AUTH_FAILED

    def check_channel_request(self, kind, chanid):
        if kind == "session":
            return paramiko.OPEN_SUCCEEDED
        return paramiko.OPEN_FAILED_ADMINISTRATIVELY_PROHIBITED

    def check_channel_pty_request(
        self, channel, term, width, height, pixelwidth, pixelheight, modes
    ):
        self.pty = (term, width, height)
        return True

    def check_channel_shell_request(self, channel):
        self.shell_started.set()
        return True


@pytest.fixture(scope="session")
def host_key():
    return paramiko.RSAKey.generate(2048)


@pytest.fixture
def ssh_server(host_key):
    """
    In-process SSH server on localhost.

    Call ssh_server(script, window_size=None) to get a port. Once the client's
    shell has started, script(channel, sock) runs on the server thread with the
    server channel and the raw accepted socket. ssh_server.servers lists the
    ShellServer of each connection.
    """
    listeners, transports, threads, servers = [], [], [], []

    def start(script, window_size=None):
        listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
        listener.setsockopt(socket.SOL_SOCKET, socket.SO_REUSEADDR, 1)
        listener.bind(("127.0.0.1", 0))
        listener.listen(1)
        listener.settimeout(10)
        listeners.append(listener)

        def serve():
            sock, _ = listener.accept()
            options = {"default_window_size": window_size} if window_size else {}
            transport = paramiko.Transport(sock, **options)
            transports.append(transport)
            transport.add_server_key(host_key)
            server = ShellServer()
            servers.append(server)
            transport.start_server(server=server)
            channel = transport.accept(10)
            if channel is not None and server.shell_started.wait(10):
                script(channel, sock)

        thread = threading.Thread(target=serve, name="ssh-server", daemon=True)
        thread.start()
        threads.append(thread)
        return listener.getsockname()[1]

    start.servers = servers
    yield start

    for thread in threads:
        thread.join(10)
    for transport in transports:
        transport.close()
    for listener in listeners:
        listener.close()


@pytest.fixture
def silent_port():
    """A localhost port that accepts TCP connections but never speaks SSH."""
    listener = socket.socket(socket.AF_INET, socket.SOCK_STREAM)
    listener.bind(("127.0.0.1", 0))
    listener.listen(8)
    yield listener.getsockname()[1]
    listener.close()
