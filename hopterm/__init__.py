"""
hopterm - A quick-connect SSH client for the terminal.

Pick a server from a YAML catalog and get an interactive shell on the
local terminal:

- Catalog: servers, groups, paging (hopterm.config)
- Session bridge: raw-mode terminal, Paramiko transport, bidirectional
  relay and clean teardown (hopterm.session)
"""

__version__ = "0.1.0"
__author__ = "hopterm contributors"

from .connection.profile import (
    ConnectionTarget,
    AuthConfig,
    AuthMethod,
)
from .session import (
    SessionBridge,
    SessionState,
    Outcome,
    OutcomeKind,
    connect,
    establish,
    get_terminal,
)

__all__ = [
    # Connection
    "ConnectionTarget",
    "AuthConfig",
    "AuthMethod",
    # Sessions
    "SessionBridge",
    "SessionState",
    "Outcome",
    "OutcomeKind",
    "connect",
    "establish",
    "get_terminal",
]
