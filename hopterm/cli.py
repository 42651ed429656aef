"""
hopterm/cli.py

Command-line entry point: shows the server catalog and connects to the
server the operator picks.

Usage:
    hopterm
    hopterm --config ~/servers.yaml
    hopterm --log-file /tmp/hopterm.log --debug
"""

import os
import sys
import atexit
import signal
import logging
from pathlib import Path
from typing import Optional, Callable

try:
    import readline
except ImportError:  # Windows: no line editing or completion
    readline = None

import click

from . import __version__
from .config import Catalog, Server, ConfigError, load_catalog
from .session import Outcome, connect, restore_terminal
from .connection.profile import ConnectionTarget

logger = logging.getLogger(__name__)

TITLE = "hopterm - A Micro Remote Server Management Client"
LOG_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"

# (command, description) shown by -h
COMMANDS = [
    ("-n", "Displays the next page of the server list."),
    ("-p", "Displays the previous page of the server list."),
    ("-f", "Displays the first page of the server list."),
    ("-l", "Displays the last page of the server list."),
    ("-g", "Set the group for the server list."),
    ("-h", "Display the usage guide of hopterm."),
]


def error(message: str) -> None:
    """Print a red ERROR line."""
    prefix = click.style("ERROR", fg="bright_red")
    click.echo(f"{prefix} {click.style(message, fg='red')}")


def setup_logging(log_file: Optional[Path] = None, debug: bool = False) -> None:
    """
    File logging when a log file is given. Otherwise only warnings reach
    stderr, so raw-mode sessions stay readable.
    """
    if log_file:
        logging.basicConfig(
            filename=str(log_file),
            level=logging.DEBUG if debug else logging.INFO,
            format=LOG_FORMAT,
        )
    else:
        logging.basicConfig(level=logging.WARNING, format=LOG_FORMAT)

    if not debug:
        logging.getLogger("paramiko").setLevel(logging.WARNING)


def _exit_on_signal(signum, frame):
    # Unwinds through the session bridge so its teardown runs
    raise SystemExit(128 + signum)


def install_exit_handlers() -> None:
    """Restore the terminal on every way the process can end."""
    atexit.register(restore_terminal)
    for name in ("SIGTERM", "SIGHUP"):
        signum = getattr(signal, name, None)
        if signum is not None:
            signal.signal(signum, _exit_on_signal)


def format_summary(servers: list[Server]) -> list[str]:
    """Numbered, aligned table rows for the given servers."""
    if not servers:
        return []

    columns = [
        ("name", "NAME"),
        ("user", "USER"),
        ("host", "HOST"),
        ("group", "GROUP"),
        ("desc", "DESC"),
    ]
    widths = []
    for attr, header in columns:
        widest = max(len(getattr(s, attr) or "-") for s in servers)
        widths.append(max(widest, len(header)))

    num_width = len(str(len(servers)))

    def row(num: str, values: list[str]) -> str:
        cells = [f"{num:<{num_width}}"]
        cells += [f"{v:<{w}}" for v, w in zip(values, widths)]
        return " " + "  ".join(cells)

    lines = ["   " + click.style(row("", [h for _, h in columns]), fg="yellow")]
    prefix = click.style(" **", fg="bright_green")
    for i, server in enumerate(servers, start=1):
        values = [getattr(server, attr) or "-" for attr, _ in columns]
        lines.append(prefix + click.style(row(str(i), values), fg="cyan"))
    return lines


# Escape sequences of xterm-compatible terminals -> prompt command
PAGE_KEYS = [
    ("\\e[5~", "-p"),  # PageUp
    ("\\e[6~", "-n"),  # PageDown
    ("\\e[1~", "-f"),  # Home
    ("\\e[H", "-f"),
    ("\\e[4~", "-l"),  # End
    ("\\e[F", "-l"),
]


class Completer:
    """
    Tab completion for the prompt.

    The line so far decides what is offered:
        "-"          all commands
        "-g <text>"  group names
        "-<text>"    commands with that prefix
        "<text>"     server names in the current group

    A page number never completes to anything.
    """

    def __init__(self, catalog: Catalog, prompt: Callable[[], str] = lambda: ""):
        self.catalog = catalog
        self._prompt = prompt
        # (match, description) from the last candidates() call
        self._matches: list[tuple[str, str]] = []

    def candidates(self, line: str) -> list[tuple[str, str]]:
        """(match, description) pairs for the last word of line."""
        text = line.lstrip()
        if not text:
            return []

        if text.startswith("-g "):
            prefix = text[3:].lstrip()
            return [
                (name, f"Group {name} contains {count} server(s).")
                for name, count in self.catalog.groups().items()
                if name.startswith(prefix)
            ]

        if " " in text:
            return []

        if text.startswith("-"):
            return [(cmd, desc) for cmd, desc in COMMANDS if cmd.startswith(text)]

        if text.isdigit() and 1 <= int(text) <= len(self.catalog.page_list()):
            return []

        return [
            (server.name, server.desc)
            for server in self.catalog.all_list()
            if server.name and server.name.startswith(text)
        ]

    def complete(self, text: str, state: int) -> Optional[str]:
        """readline completer: the state-th match for the current line."""
        if state == 0:
            line = readline.get_line_buffer()[:readline.get_endidx()]
            self._matches = self.candidates(line)
        if state < len(self._matches):
            return self._matches[state][0]
        return None

    def display(self, substitution, matches, longest_match_length) -> None:
        """List matches with their descriptions, then redraw the prompt."""
        descriptions = dict(self._matches)
        click.echo()
        for match in matches:
            desc = descriptions.get(match, "")
            click.echo(f"  {match:<{longest_match_length}}  {click.style(desc, fg='cyan')}")
        click.echo(self._prompt() + readline.get_line_buffer(), nl=False)


def install_completion(completer: Completer) -> bool:
    """
    Hook the completer into readline and bind the paging keys.

    Returns False when readline is unavailable.
    """
    if readline is None:
        return False

    readline.set_completer(completer.complete)
    readline.set_completer_delims(" \t\n")
    readline.set_completion_display_matches_hook(completer.display)

    # macOS Python links libedit, which has its own binding syntax and no macros
    if "libedit" in (readline.__doc__ or ""):
        readline.parse_and_bind("bind ^I rl_complete")
        return True

    readline.parse_and_bind("tab: complete")
    for key, command in PAGE_KEYS:
        # Replace whatever was typed with the command and submit it
        readline.parse_and_bind(f'"{key}": "\\C-a\\C-k{command}\\C-m"')
    return True


class QuickConnect:
    """
    The interactive prompt: page through the catalog, pick a server,
    run a session, come back.
    """

    def __init__(
        self,
        catalog: Catalog,
        term_type: Optional[str] = None,
        connector: Optional[Callable[[ConnectionTarget], Outcome]] = None,
    ):
        self.catalog = catalog
        self.term_type = term_type
        self._connect = connector or connect

    def prompt_text(self) -> str:
        if self.catalog.group:
            return f"hopterm [{self.catalog.group}] >> "
        return "hopterm >> "

    def run(self) -> None:
        """Prompt until EOF or Ctrl+C."""
        install_completion(Completer(self.catalog, self.prompt_text))
        self.show_summary()
        while True:
            try:
                line = input(self.prompt_text())
            except (EOFError, KeyboardInterrupt):
                click.echo()
                break
            self.handle(line)
        click.echo(click.style("Bye~", fg="bright_green"))

    def handle(self, line: str) -> None:
        """Execute one prompt line."""
        text = line.strip()

        if not text:
            self.show_summary()
        elif text == "-n":
            self.catalog.next_page()
            self.show_summary()
        elif text == "-p":
            self.catalog.prev_page()
            self.show_summary()
        elif text == "-f":
            self.catalog.first_page()
            self.show_summary()
        elif text == "-l":
            self.catalog.last_page()
            self.show_summary()
        elif text.startswith("-g"):
            self.catalog.set_group(text[2:].strip())
            self.show_summary()
        elif text == "-h":
            self.show_usage()
        else:
            self.select(text)

    def select(self, token: str) -> None:
        try:
            server = self.catalog.find(token)
        except ConfigError as e:
            error(str(e))
            return

        if server is None:
            error(f"Instruction {token!r} is invalid. Please use -h to view the usage guide.")
            return

        self.connect(server)

    def connect(self, server: Server) -> Outcome:
        """Run one session and report mechanism failures."""
        logger.info(f"Connecting to {server.name or server.host} ({server.address})")
        outcome = self._connect(server.to_target(term_type=self.term_type))
        logger.info(f"Session with {server.address} ended: {outcome!r}")

        self.show_summary()
        message = outcome.diagnostic()
        if message:
            error(f"Handle server {server.name or server.host} error: {message}")
        return outcome

    def show_summary(self) -> None:
        """Title, current page of servers and page footer."""
        if self.catalog.auto_clear:
            click.clear()
        click.echo(click.style(f"\n   {TITLE}\n", fg="magenta"))

        summary = format_summary(self.catalog.page_list())
        width = max((len(click.unstyle(line)) for line in summary), default=55)
        rule = click.style("-" * width, fg="red")

        click.echo(rule)
        if summary:
            for line in summary:
                click.echo(line)
        else:
            click.echo(click.style("   There are no remote servers.", fg="yellow"))
        click.echo(rule)

        total = len(self.catalog.all_list())
        footer = f"Page: {self.catalog.page}/{self.catalog.page_count()}  Total: {total}"
        click.echo(" " * 7 + click.style(footer, fg="yellow"))

    def show_usage(self) -> None:
        prefix = " " * 5
        size = max(len(cmd) for cmd, _ in COMMANDS)
        texts = [f"  {cmd:<{size}}  {desc}" for cmd, desc in COMMANDS]
        texts += [
            "",
            "* Enter the number/name and press <Enter> to automatically connect to",
            "  the corresponding remote server.",
            "* <Tab> completes commands, group names and server names.",
            "* <PageUp>/<PageDown> and <Home>/<End> move between pages.",
            "* Use <Control+D> to exit hopterm.",
        ]

        click.echo()
        click.echo(prefix + click.style("hopterm Usage Guide:", fg="green"))
        click.echo()
        for text in texts:
            click.echo(prefix + click.style(text, fg="green") if text else "")
        click.echo()


@click.command(context_settings={"help_option_names": ["-h", "--help"]})
@click.option(
    "-c", "--config", "config_path",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Server catalog (default: $HOPTERM_CONFIG_FILE, ~/.hopterm.yaml, ./.hopterm.yaml)",
)
@click.option(
    "--log-file",
    type=click.Path(dir_okay=False, path_type=Path),
    default=None,
    help="Write logs to this file",
)
@click.option("--debug", is_flag=True, help="Verbose logging")
@click.version_option(__version__, "-v", "--version", prog_name="hopterm")
def cli(config_path, log_file, debug):
    """Quick-connect SSH client: pick a server from the catalog and get a shell."""
    setup_logging(log_file, debug)

    try:
        catalog = load_catalog(config_path)
    except ConfigError as e:
        error(f"Init config failed: {e}")
        sys.exit(1)

    install_exit_handlers()
    QuickConnect(catalog, term_type=os.environ.get("TERM")).run()


def main():
    """Entry point for CLI."""
    cli()


if __name__ == "__main__":
    main()
