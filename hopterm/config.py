"""
Server catalog for hopterm.

Loaded from YAML, in order of preference:
    --config PATH, $HOPTERM_CONFIG_FILE, ~/.hopterm.yaml, ./.hopterm.yaml

Example:
    pageSize: 10            # at least 5; missing means 5
    autoClear: true         # redraw the table after each session
    sortBy: name            # name | host | disable
    privateKey: ~/.ssh/id_ed25519
    servers:
      - name: web-1
        user: deploy
        host: 10.0.0.5
        group: prod
        desc: Frontend
"""

from __future__ import annotations
import os
import logging
from collections import Counter
from dataclasses import dataclass, field
from io import StringIO
from pathlib import Path
from typing import Optional

import paramiko
import yaml

from .connection.profile import (
    ConnectionTarget, AuthConfig, DEFAULT_PORT, DEFAULT_CONNECT_TIMEOUT,
)

logger = logging.getLogger(__name__)

ENV_CONFIG_FILE = "HOPTERM_CONFIG_FILE"
CONFIG_FILE_NAME = ".hopterm.yaml"

MIN_PAGE_SIZE = 5
# A missing or zero pageSize gets the minimum
DEFAULT_PAGE_SIZE = MIN_PAGE_SIZE
DEFAULT_GROUP = "default"
SORT_ORDERS = ("name", "host", "disable", "")

# Tried in order when parsing a private key file
KEY_CLASSES = (
    paramiko.Ed25519Key,
    paramiko.ECDSAKey,
    paramiko.RSAKey,
)


class ConfigError(Exception):
    """Catalog file is missing, malformed or references unusable keys."""
    pass


class AmbiguousServerError(ConfigError):
    """More than one server carries the requested name."""
    pass


_TRUE_WORDS = ("true", "yes", "on", "1")
_FALSE_WORDS = ("false", "no", "off", "0")


def _as_bool(value, key: str) -> bool:
    """YAML booleans, plus quoted words like "false" that YAML leaves as strings."""
    if isinstance(value, bool):
        return value
    if isinstance(value, int):
        return value != 0
    if isinstance(value, str):
        word = value.strip().lower()
        if word in _TRUE_WORDS:
            return True
        if word in _FALSE_WORDS:
            return False
    raise ConfigError(f"Invalid {key} {value!r}: expected true or false")


def load_private_key(path: str) -> paramiko.PKey:
    """
    Load an unencrypted private key file.

    Args:
        path: Key path, ~ is expanded

    Raises:
        ConfigError: file unreadable or not a supported key type
    """
    key_path = Path(path).expanduser()
    try:
        key_data = key_path.read_text()
    except OSError as e:
        raise ConfigError(f"Cannot read private key {key_path}: {e}") from e

    key_file = StringIO(key_data)
    for key_class in KEY_CLASSES:
        try:
            key_file.seek(0)
            return key_class.from_private_key(key_file)
        except (paramiko.SSHException, ValueError):
            continue

    raise ConfigError(f"Unable to parse private key {key_path}")


def resolve_auth(private_key: str, password: str) -> Optional[AuthConfig]:
    """A key wins over a password; neither gives None."""
    if private_key:
        return AuthConfig.with_key(load_private_key(private_key))
    if password:
        return AuthConfig.with_password(password)
    return None


@dataclass
class Server:
    """One catalog entry."""
    host: str = ""
    name: str = ""
    user: str = ""
    port: int = DEFAULT_PORT
    private_key: str = ""
    password: str = field(default="", repr=False)
    desc: str = ""
    group: str = ""

    auth: Optional[AuthConfig] = field(default=None, repr=False)

    YAML_KEYS = {
        "name": "name",
        "user": "user",
        "host": "host",
        "port": "port",
        "privateKey": "private_key",
        "password": "password",
        "desc": "desc",
        "group": "group",
    }

    @classmethod
    def from_dict(cls, data: dict) -> Server:
        """Build from a YAML mapping, ignoring unknown keys."""
        kwargs = {}
        for yaml_key, attr in cls.YAML_KEYS.items():
            value = data.get(yaml_key)
            if value is None:
                continue
            kwargs[attr] = value if attr == "port" else str(value)
        return cls(**kwargs)

    def resolve(self, default_auth: Optional[AuthConfig]) -> None:
        """Fill defaults and resolve credentials."""
        if not self.host:
            raise ConfigError(f"Server {self.name or '(unnamed)'}: host can not be empty")

        try:
            self.port = int(self.port or DEFAULT_PORT)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Server {self.name or self.host}: invalid port {self.port!r}") from e

        if self.private_key or self.password:
            self.auth = resolve_auth(self.private_key, self.password)
        else:
            self.auth = default_auth

        if not self.user:
            self.user = os.environ.get("USER", "")
        if not self.group:
            self.group = DEFAULT_GROUP

    @property
    def address(self) -> str:
        return f"{self.host}:{self.port}"

    def to_target(
        self,
        term_type: Optional[str] = None,
        connect_timeout: float = DEFAULT_CONNECT_TIMEOUT,
    ) -> ConnectionTarget:
        """Connection target for the session bridge."""
        return ConnectionTarget(
            hostname=self.host,
            port=self.port,
            username=self.user,
            auth=self.auth,
            term_type=term_type or None,
            connect_timeout=connect_timeout,
        )


@dataclass
class Catalog:
    """
    Servers plus the current view (group filter and page).

    Usage:
        catalog = load_catalog()
        for server in catalog.page_list():
            print(server.name)
        catalog.next_page()
    """
    servers: list[Server] = field(default_factory=list)
    page_size: int = DEFAULT_PAGE_SIZE
    sort_by: str = ""
    auto_clear: bool = True
    private_key: str = ""
    password: str = field(default="", repr=False)
    path: Optional[Path] = None

    auth: Optional[AuthConfig] = field(default=None, repr=False)
    page: int = 1
    group: str = ""

    @classmethod
    def from_dict(cls, data: dict, path: Optional[Path] = None) -> Catalog:
        """Build and resolve a catalog from parsed YAML."""
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Catalog must be a mapping")

        raw_servers = data.get("servers") or []
        if not isinstance(raw_servers, list):
            raise ConfigError("'servers' must be a list")

        servers = []
        for entry in raw_servers:
            if not isinstance(entry, dict):
                raise ConfigError(f"Server entry must be a mapping, got {entry!r}")
            servers.append(Server.from_dict(entry))

        try:
            page_size = int(data.get("pageSize") or DEFAULT_PAGE_SIZE)
        except (TypeError, ValueError) as e:
            raise ConfigError(f"Invalid pageSize {data.get('pageSize')!r}") from e

        catalog = cls(
            servers=servers,
            page_size=max(page_size, MIN_PAGE_SIZE),
            sort_by=str(data.get("sortBy") or ""),
            # Defaults to true so the table is redrawn after each session
            auto_clear=_as_bool(data.get("autoClear", True), "autoClear"),
            private_key=str(data.get("privateKey") or ""),
            password=str(data.get("password") or ""),
            path=path,
        )
        catalog.resolve()
        return catalog

    def resolve(self) -> None:
        """Resolve credentials and defaults, then sort."""
        self.auth = resolve_auth(self.private_key, self.password)
        for server in self.servers:
            server.resolve(self.auth)
        self.sort()

    def sort(self) -> None:
        if self.sort_by not in SORT_ORDERS:
            logger.warning(f"Unknown sortBy {self.sort_by!r}, keeping file order")
            return
        if self.sort_by == "name":
            self.servers.sort(key=lambda s: (s.group, s.name))
        elif self.sort_by == "host":
            self.servers.sort(key=lambda s: (s.group, s.host))
        else:
            self.servers.sort(key=lambda s: s.group)

    # -------------------------------------------------------------------------
    # View
    # -------------------------------------------------------------------------

    def all_list(self) -> list[Server]:
        """Servers in the current group ('' or 'default' means all)."""
        if self.group in ("", DEFAULT_GROUP):
            return list(self.servers)
        return [s for s in self.servers if s.group == self.group]

    def page_count(self) -> int:
        total = len(self.all_list())
        pages, rest = divmod(total, self.page_size)
        if rest:
            pages += 1
        return max(pages, 1)

    def page_list(self) -> list[Server]:
        """Servers on the current page; an out-of-range page shows page 1."""
        servers = self.all_list()
        begin = (self.page - 1) * self.page_size
        if begin >= len(servers) or begin < 0:
            begin = 0
        return servers[begin:begin + self.page_size]

    def next_page(self) -> None:
        """Advance, wrapping to the first page."""
        if self.page * self.page_size >= len(self.all_list()):
            self.page = 1
        else:
            self.page += 1

    def prev_page(self) -> None:
        """Go back, wrapping to the last page."""
        self.page -= 1
        if self.page < 1:
            self.page = self.page_count()

    def first_page(self) -> None:
        self.page = 1

    def last_page(self) -> None:
        self.page = self.page_count()

    def set_group(self, group: str) -> None:
        self.group = group
        self.page = 1

    def groups(self) -> dict[str, int]:
        """Group name -> server count, sorted by name."""
        counts = Counter(s.group for s in self.servers)
        return dict(sorted(counts.items()))

    def find(self, token: str) -> Optional[Server]:
        """
        Look up a server by exact name in the current group, or by its
        1-based number on the current page.

        Raises:
            AmbiguousServerError: more than one server has that name
        """
        matches = [s for s in self.all_list() if s.name == token]
        if len(matches) > 1:
            raise AmbiguousServerError(f"There is a remote server with the same name: {token}.")
        if matches:
            return matches[0]

        try:
            index = int(token) - 1
        except ValueError:
            return None
        page = self.page_list()
        if 0 <= index < len(page):
            return page[index]
        return None


def find_config_file(explicit: Optional[Path] = None) -> Path:
    """Pick the catalog file to load."""
    if explicit:
        return Path(explicit).expanduser()

    env_path = os.environ.get(ENV_CONFIG_FILE)
    if env_path:
        return Path(env_path).expanduser()

    home_path = Path.home() / CONFIG_FILE_NAME
    if home_path.is_file():
        return home_path

    return Path(CONFIG_FILE_NAME)


def load_catalog(path: Optional[Path] = None) -> Catalog:
    """
    Load and resolve the catalog.

    Raises:
        ConfigError: file missing, invalid YAML or invalid content
    """
    config_path = find_config_file(path)
    try:
        with open(config_path) as f:
            data = yaml.safe_load(f)
    except OSError as e:
        raise ConfigError(f"Cannot read {config_path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

    catalog = Catalog.from_dict(data, path=config_path)
    logger.debug(f"Loaded {len(catalog.servers)} server(s) from {config_path}")
    return catalog
