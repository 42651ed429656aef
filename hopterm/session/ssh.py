"""
SSH transport and interactive shell establishment using Paramiko.

establish() runs each step in order and raises a distinct error for the
step that failed: dial, authenticate, open channel, request pty, start shell.
Nothing is retried; whatever was opened is closed before the error is raised.

The server host key is not verified. There is no known_hosts lookup and no
trust-on-first-use; the key fingerprint is only logged.
"""

from __future__ import annotations
import time
import select
import socket
import logging
from typing import Optional

import paramiko

from ..connection.profile import ConnectionTarget, AuthMethod
from .errors import (
    DialFailed, AuthFailed, ChannelFailed, PtyRequestFailed,
    ShellStartFailed, TransportError, TerminalUnavailable,
)
from .terminal import TerminalController, get_terminal

logger = logging.getLogger(__name__)

# Errors Paramiko raises when the peer misbehaves or the socket dies
_SSH_ERRORS = (paramiko.SSHException, EOFError, OSError)


class SessionHandle:
    """
    Live transport + channel for exactly one interactive shell.

    Owned by the call that created it; not shared between sessions.
    """

    def __init__(self, transport: paramiko.Transport, channel: paramiko.Channel):
        self.transport = transport
        self.channel = channel

    @property
    def closed(self) -> bool:
        return self.channel.closed

    # Local -> remote

    def send(self, data: bytes) -> None:
        """Write raw input to the remote shell."""
        self.channel.sendall(data)

    # Remote -> local
    #
    # The channel is never given a timeout; send() blocks while the remote
    # window is full. Readers poll with wait_readable() and recv_ready().

    def wait_readable(self, timeout: float) -> bool:
        """Block up to timeout seconds for remote output, EOF or close."""
        readable, _, _ = select.select([self.channel], [], [], timeout)
        return bool(readable)

    def recv_ready(self) -> bool:
        return self.channel.recv_ready()

    @property
    def at_eof(self) -> bool:
        """Remote stdout has ended (EOF received or channel closed)."""
        return self.channel.eof_received or self.channel.closed

    def recv(self, size: int) -> bytes:
        """Remote stdout. Empty bytes means end of stream."""
        return self.channel.recv(size)

    def recv_stderr_ready(self) -> bool:
        return self.channel.recv_stderr_ready()

    def recv_stderr(self, size: int) -> bytes:
        return self.channel.recv_stderr(size)

    def wait(self) -> Optional[int]:
        """
        Block until the remote shell finishes.

        Returns:
            The remote exit status, or None if the channel closed without one.

        Raises:
            TransportError: the connection failed before a status arrived.
        """
        status = self.channel.recv_exit_status()
        if status != -1:
            return status

        # Paramiko records why its thread stopped before closing the channels
        error = self.transport.get_exception()
        if error is not None or not self.transport.is_active():
            detail = (str(error) or type(error).__name__) if error else "connection lost"
            raise TransportError(detail)

        logger.info("Channel closed without an exit status")
        return None

    def resize(self, cols: int, rows: int) -> None:
        """Notify remote of terminal resize."""
        if self.channel.closed:
            return
        try:
            self.channel.resize_pty(width=cols, height=rows)
            logger.debug(f"Resized remote pty to {cols}x{rows}")
        except _SSH_ERRORS as e:
            logger.debug(f"Resize error: {e}")

    # Teardown

    def close_channel(self) -> None:
        try:
            self.channel.close()
        except Exception as e:
            logger.debug(f"Channel close error: {e}")

    def close_transport(self) -> None:
        try:
            self.transport.close()
        except Exception as e:
            logger.debug(f"Transport close error: {e}")

    def close(self) -> None:
        """Close channel, then transport."""
        self.close_channel()
        self.close_transport()

    def __repr__(self) -> str:
        status = "closed" if self.closed else "open"
        return f"<SessionHandle {status}>"


def establish(
    target: ConnectionTarget,
    timeout: Optional[float] = None,
    terminal: Optional[TerminalController] = None,
) -> SessionHandle:
    """
    Open an authenticated shell on the target.

    Args:
        target: Resolved host, user and auth method
        timeout: Dial/handshake timeout in seconds. Defaults to
                 target.connect_timeout.
        terminal: Terminal used to size the remote pty. Defaults to the
                  process-wide controller.

    Returns:
        SessionHandle with the shell started.

    Raises:
        DialFailed, AuthFailed, ChannelFailed, PtyRequestFailed,
        ShellStartFailed
    """
    if timeout is None:
        timeout = target.connect_timeout

    # Checked before dialing so a bad target never opens a socket
    if target.auth is None or not target.auth.is_valid():
        raise AuthFailed(f"no usable authentication method for {target}")

    transport = _dial(target, timeout)
    try:
        _authenticate(transport, target)
        channel = _open_shell(transport, target, timeout, terminal or get_terminal())
    except BaseException:
        transport.close()
        raise

    if target.keepalive_interval > 0:
        transport.set_keepalive(target.keepalive_interval)

    logger.info(f"Shell started on {target}")
    return SessionHandle(transport, channel)


def _dial(target: ConnectionTarget, timeout: float) -> paramiko.Transport:
    """
    Connect the socket and complete the SSH handshake.

    timeout bounds the whole dial: the handshake only gets what the TCP
    connect left over.
    """
    address = f"{target.hostname}:{target.port}"
    logger.info(f"Connecting to {address} (timeout {timeout}s)")
    deadline = time.monotonic() + timeout

    try:
        sock = socket.create_connection(target.address, timeout=timeout)
    except OSError as e:
        raise DialFailed(f"{address}: {e}") from e

    remaining = deadline - time.monotonic()
    if remaining <= 0:
        sock.close()
        raise DialFailed(f"{address}: timed out")

    try:
        transport = paramiko.Transport(sock)
    except _SSH_ERRORS as e:
        sock.close()
        raise DialFailed(f"{address}: {e}") from e
    except BaseException:
        sock.close()
        raise

    transport.banner_timeout = remaining
    transport.handshake_timeout = remaining

    try:
        transport.start_client(timeout=remaining)
    except _SSH_ERRORS as e:
        transport.close()
        raise DialFailed(f"{address}: handshake failed: {e}") from e
    except BaseException:
        # Interrupted mid-handshake; don't leave the transport thread running
        transport.close()
        raise

    key = transport.get_remote_server_key()
    logger.debug(
        f"Server key {key.get_name()} {key.get_fingerprint().hex()} (not verified)"
    )
    return transport


def _authenticate(transport: paramiko.Transport, target: ConnectionTarget) -> None:
    """Authenticate with the single method the target carries."""
    auth = target.auth
    logger.info(f"Authenticating {target.username} with {auth.method.value}")

    try:
        if auth.method == AuthMethod.KEY:
            transport.auth_publickey(target.username, auth.pkey)
        else:
            transport.auth_password(target.username, auth.password)

    except paramiko.BadAuthenticationType as e:
        allowed = ", ".join(e.allowed_types) or "none"
        raise AuthFailed(
            f"{auth.method.value} not accepted (server allows: {allowed})"
        ) from e

    except paramiko.AuthenticationException as e:
        raise AuthFailed(str(e) or "rejected by server") from e

    except _SSH_ERRORS as e:
        raise AuthFailed(f"connection lost during authentication: {e}") from e

    if not transport.is_authenticated():
        raise AuthFailed("rejected by server")


def _terminal_size(target: ConnectionTarget, terminal: TerminalController) -> tuple[int, int]:
    """Local terminal size; falls back to the target's requested size."""
    try:
        return terminal.query_size()
    except TerminalUnavailable as e:
        logger.warning(
            f"Using default terminal size {target.term_cols}x{target.term_rows}: {e}"
        )
        return target.term_cols, target.term_rows


def _open_shell(
    transport: paramiko.Transport,
    target: ConnectionTarget,
    timeout: float,
    terminal: TerminalController,
) -> paramiko.Channel:
    """Open a session channel, request a pty and start the shell."""
    try:
        channel = transport.open_session(timeout=timeout)
    except _SSH_ERRORS as e:
        raise ChannelFailed(str(e)) from e

    cols, rows = _terminal_size(target, terminal)
    term = target.effective_term_type

    try:
        channel.get_pty(term=term, width=cols, height=rows)
    except _SSH_ERRORS as e:
        channel.close()
        raise PtyRequestFailed(f"{term} {cols}x{rows}: {e}") from e
    logger.debug(f"Pty {term} {cols}x{rows} allocated")

    try:
        channel.invoke_shell()
    except _SSH_ERRORS as e:
        channel.close()
        raise ShellStartFailed(str(e)) from e

    return channel
