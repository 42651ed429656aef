"""
Connection targets handed to the session bridge.
"""

from .profile import (
    ConnectionTarget,
    AuthConfig,
    AuthMethod,
    DEFAULT_TERM_TYPE,
)

__all__ = [
    "ConnectionTarget",
    "AuthConfig",
    "AuthMethod",
    "DEFAULT_TERM_TYPE",
]
