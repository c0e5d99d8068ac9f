# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""popwire CLI: multi-command entry point.

Provides ``popwire <command>`` for inspecting a POP3 mailbox configured in
``~/.config/popwire/popwire.yaml``.

Subcommands:

* ``init``:          create a stub config file
* ``capabilities``:  show what the server advertises via ``CAPA``
* ``list``:          list message numbers and sizes
* ``fetch``:         print messages (optionally headers only, optionally
  deleting them afterwards)
* ``delete``:        delete messages
"""

import argparse
import logging
import sys
from pathlib import Path

from popwire.assembler import decode_subject
from popwire.config import (
    STUB_CONFIG,
    AccountConfig,
    ClientConfig,
    ConfigError,
    get_config_path,
)
from popwire.errors import POP3Error
from popwire.logging import configure_logging
from popwire.session import MailboxSession
from popwire.transport import accept_any_certificate
from popwire.types import FetchOptions


logger = logging.getLogger(__name__)

_USAGE = """\
usage: popwire <command> [args]

commands:
  init              Create a stub config file
  capabilities      Show server capabilities
  list              List messages in the mailbox
  fetch             Print messages
  delete            Delete messages

Run 'popwire <command> --help' for command-specific help.\
"""


def _common_parser() -> argparse.ArgumentParser:
    """Options shared by every command that talks to a server."""
    parser = argparse.ArgumentParser(add_help=False)
    parser.add_argument(
        "--config",
        type=Path,
        default=None,
        metavar="PATH",
        help=(
            "Path to popwire.yaml config file"
            " (default: ~/.config/popwire/popwire.yaml)"
        ),
    )
    parser.add_argument(
        "--account",
        default=None,
        help="Account name from the config file",
    )
    parser.add_argument(
        "--debug",
        action="store_true",
        help="Enable debug logging (shows protocol traffic)",
    )
    return parser


def _load_account(args: argparse.Namespace) -> AccountConfig:
    """Configure logging and return the selected account."""
    configure_logging(logging.DEBUG if args.debug else logging.WARNING)
    config = ClientConfig.from_yaml(config_path=args.config)
    return config.account(args.account)


def _connect(account: AccountConfig) -> MailboxSession:
    """Open an unauthenticated session for an account."""
    return MailboxSession.connect(
        account.host,
        account.port,
        use_tls=account.use_tls,
        cert_validator=(
            None if account.verify_certificates else accept_any_certificate
        ),
        timeout=account.timeout_seconds,
    )


def _login(account: AccountConfig) -> MailboxSession:
    """Open an authenticated session for an account."""
    session = _connect(account)
    try:
        session.login(account.username, account.password, account.auth_method)
    except Exception:
        session.close()
        raise
    return session


def cmd_init(argv: list[str]) -> int:
    """Create a stub configuration file.

    Creates ``~/.config/popwire/popwire.yaml`` with a commented template
    if the file does not already exist.

    Args:
        argv: Extra arguments (``--config PATH`` to choose the location).

    Returns:
        Exit code (always 0).
    """
    parser = argparse.ArgumentParser(
        prog="popwire init", description="Create a stub config file"
    )
    parser.add_argument("--config", type=Path, default=None, metavar="PATH")
    args = parser.parse_args(argv)

    config_path = args.config or get_config_path()

    if config_path.exists():
        print(f"Config already exists: {config_path}")
        return 0

    config_path.parent.mkdir(parents=True, exist_ok=True)
    config_path.write_text(STUB_CONFIG)
    print(f"Created stub config: {config_path}")
    return 0


def cmd_capabilities(argv: list[str]) -> int:
    """Print the server's capability list, one entry per line."""
    parser = argparse.ArgumentParser(
        prog="popwire capabilities",
        description="Show server capabilities (CAPA)",
        parents=[_common_parser()],
    )
    args = parser.parse_args(argv)

    account = _load_account(args)
    with _connect(account) as session:
        for capability in session.capabilities():
            print(capability)
    return 0


def cmd_list(argv: list[str]) -> int:
    """Print one line per message: number, size, and optionally subject."""
    parser = argparse.ArgumentParser(
        prog="popwire list",
        description="List messages in the mailbox",
        parents=[_common_parser()],
    )
    parser.add_argument(
        "--subjects",
        action="store_true",
        help="Also fetch headers and show each message's subject",
    )
    args = parser.parse_args(argv)

    account = _load_account(args)
    with _login(account) as session:
        entries = session.status()
        for info in entries:
            if args.subjects:
                headers = session.fetch(info.number, FetchOptions.HEADERS_ONLY)
                print(f"{info.number}\t{info.size}\t{decode_subject(headers)}")
            else:
                print(f"{info.number}\t{info.size}")
    if not entries:
        print("Mailbox is empty", file=sys.stderr)
    return 0


def cmd_fetch(argv: list[str]) -> int:
    """Print messages to stdout."""
    parser = argparse.ArgumentParser(
        prog="popwire fetch",
        description="Print messages",
        parents=[_common_parser()],
    )
    parser.add_argument(
        "numbers",
        type=int,
        nargs="*",
        metavar="NUMBER",
        help="Message numbers (default: all messages)",
    )
    parser.add_argument(
        "--headers-only",
        action="store_true",
        help="Retrieve only the header block",
    )
    parser.add_argument(
        "--delete",
        action="store_true",
        help="Delete each message after it has been retrieved",
    )
    args = parser.parse_args(argv)

    options = (
        FetchOptions.HEADERS_ONLY if args.headers_only else FetchOptions.NORMAL
    )
    account = _load_account(args)
    with _login(account) as session:
        numbers = args.numbers or session.message_numbers()
        # One at a time: each message is written out before its DELE
        for number in numbers:
            message = session.fetch(number, options, delete=args.delete)
            sys.stdout.write(message.as_string())
            sys.stdout.write("\n")
            sys.stdout.flush()
    return 0


def cmd_delete(argv: list[str]) -> int:
    """Delete messages; the server applies deletions on logout."""
    parser = argparse.ArgumentParser(
        prog="popwire delete",
        description="Delete messages",
        parents=[_common_parser()],
    )
    parser.add_argument("numbers", type=int, nargs="+", metavar="NUMBER")
    args = parser.parse_args(argv)

    account = _load_account(args)
    with _login(account) as session:
        for number in args.numbers:
            session.delete_message(number)
            print(f"Deleted message {number}")
    return 0


# ── CLI plumbing ────────────────────────────────────────────────────


_DISPATCH: dict[str, str] = {
    "init": "cmd_init",
    "capabilities": "cmd_capabilities",
    "list": "cmd_list",
    "fetch": "cmd_fetch",
    "delete": "cmd_delete",
}


def main(argv: list[str] | None = None) -> int:
    """Run a subcommand and return its exit code.

    Args:
        argv: Command-line arguments. If None, uses sys.argv[1:].

    Returns:
        Exit code (0=success, 1=config or protocol error, 2=usage error).
    """
    if argv is None:
        argv = sys.argv[1:]

    if not argv or argv[0] == "--help":
        print(_USAGE)
        return 0

    if argv[0] not in _DISPATCH:
        print(f"popwire: unknown command '{argv[0]}'", file=sys.stderr)
        print(_USAGE, file=sys.stderr)
        return 2

    # Look up handler by name so tests can mock individual commands.
    import popwire.cli as _self

    handler = getattr(_self, _DISPATCH[argv[0]])
    try:
        return handler(argv[1:])
    except ConfigError as e:
        logger.error("Configuration error: %s", e)
        return 1
    except (POP3Error, ValueError) as e:
        logger.error("%s", e)
        return 1


def cli() -> None:
    """Entry point for the ``popwire`` console script."""
    sys.exit(main())
