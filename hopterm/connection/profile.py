"""
Connection target - a fully resolved host, identity and auth method.
"""

from __future__ import annotations
from dataclasses import dataclass
from enum import Enum
from typing import Optional

import paramiko

DEFAULT_TERM_TYPE = "xterm-256color"
DEFAULT_PORT = 22
DEFAULT_COLS = 80
DEFAULT_ROWS = 24
DEFAULT_CONNECT_TIMEOUT = 3.0
DEFAULT_KEEPALIVE_INTERVAL = 30


class AuthMethod(Enum):
    """Authentication methods a target can carry."""
    KEY = "key"
    PASSWORD = "password"


@dataclass(frozen=True)
class AuthConfig:
    """
    Exactly one authentication method.

    Use the with_key() / with_password() constructors rather than
    building this directly.
    """
    method: AuthMethod
    pkey: Optional[paramiko.PKey] = None
    password: Optional[str] = None

    @classmethod
    def with_key(cls, pkey: paramiko.PKey) -> AuthConfig:
        return cls(method=AuthMethod.KEY, pkey=pkey)

    @classmethod
    def with_password(cls, password: str) -> AuthConfig:
        return cls(method=AuthMethod.PASSWORD, password=password)

    def is_valid(self) -> bool:
        """True when the method carries its material and nothing else."""
        if self.method == AuthMethod.KEY:
            return isinstance(self.pkey, paramiko.PKey) and self.password is None
        if self.method == AuthMethod.PASSWORD:
            return self.password is not None and self.pkey is None
        return False

    def __repr__(self) -> str:
        # Never show secrets
        return f"<AuthConfig {self.method.value}>"


@dataclass(frozen=True)
class ConnectionTarget:
    """
    Where and how to open one interactive shell.

    Owned by the catalog layer; the session bridge only reads it.
    term_cols/term_rows are used when the local terminal size can't be read.
    A keepalive_interval of 0 disables keepalives.
    """
    hostname: str
    username: str
    auth: Optional[AuthConfig]
    port: int = DEFAULT_PORT
    term_type: Optional[str] = None
    term_cols: int = DEFAULT_COLS
    term_rows: int = DEFAULT_ROWS
    connect_timeout: float = DEFAULT_CONNECT_TIMEOUT
    keepalive_interval: int = DEFAULT_KEEPALIVE_INTERVAL

    @property
    def address(self) -> tuple[str, int]:
        return self.hostname, self.port

    @property
    def effective_term_type(self) -> str:
        return self.term_type or DEFAULT_TERM_TYPE

    def __str__(self) -> str:
        return f"{self.username}@{self.hostname}:{self.port}"
