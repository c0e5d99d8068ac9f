# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Shared pytest fixtures."""

import logging
import shutil
import ssl
from collections.abc import Iterator
from pathlib import Path
from unittest.mock import patch

import pytest

from popwire.dotenv_loader import reset_dotenv_state
from popwire.logging import SecretFilter
from popwire.session import MailboxSession
from tests.pop3_server import FakePOP3Server, create_self_signed_cert


SAMPLE_MESSAGE = (
    "From: alice@example.com\n"
    "To: bob@example.com\n"
    "Subject: Quarterly report\n"
    "Message-ID: <1@example.com>\n"
    "\n"
    "Numbers attached.\n"
    ".hidden line starting with a dot\n"
    "Regards,\n"
    "Alice\n"
)

SECOND_MESSAGE = (
    "From: carol@example.com\n"
    "To: bob@example.com\n"
    "Subject: =?utf-8?B?SGVsbG8gd8O2cmxk?=\n"
    "\n"
    "Second body.\n"
)


@pytest.fixture(autouse=True)
def _isolate_global_state(tmp_path: Path) -> Iterator[None]:
    """Reset process-wide state shared between tests.

    Secrets, the dotenv flag and root logger configuration are global,
    and the XDG config directory is redirected into ``tmp_path``.
    """
    root = logging.getLogger()
    saved_level = root.level
    saved_handlers = list(root.handlers)
    reset_dotenv_state()
    with patch(
        "popwire.config.user_config_path",
        return_value=tmp_path / "xdg-config",
    ):
        yield
    SecretFilter.clear_secrets()
    reset_dotenv_state()
    root.handlers[:] = saved_handlers
    root.setLevel(saved_level)


@pytest.fixture
def pop3_server() -> Iterator[FakePOP3Server]:
    """Plain-text POP3 server holding two messages."""
    server = FakePOP3Server()
    server.store.add_message(SAMPLE_MESSAGE)
    server.store.add_message(SECOND_MESSAGE)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def session(pop3_server: FakePOP3Server) -> Iterator[MailboxSession]:
    """Authenticated session against ``pop3_server``."""
    session = MailboxSession.open(
        "127.0.0.1", pop3_server.port, "user", "secret", timeout=5.0
    )
    yield session
    session.close()


@pytest.fixture
def tls_files(tmp_path: Path) -> tuple[Path, Path]:
    """Self-signed certificate and key for localhost."""
    if shutil.which("openssl") is None:
        pytest.skip("openssl not available")
    return create_self_signed_cert(tmp_path)


@pytest.fixture
def tls_server(tls_files: tuple[Path, Path]) -> Iterator[FakePOP3Server]:
    """POP3 server speaking implicit TLS with a self-signed certificate."""
    cert_file, key_file = tls_files
    context = ssl.create_default_context(ssl.Purpose.CLIENT_AUTH)
    context.load_cert_chain(cert_file, key_file)
    server = FakePOP3Server(ssl_context=context)
    server.store.add_message(SAMPLE_MESSAGE)
    server.start()
    yield server
    server.stop()


@pytest.fixture
def trusting_context(tls_files: tuple[Path, Path]) -> ssl.SSLContext:
    """Client context that trusts the test certificate."""
    cert_file, _ = tls_files
    context = ssl.create_default_context(cafile=str(cert_file))
    # Self-signed test certs lack the extensions strict mode requires
    context.verify_flags &= ~ssl.VERIFY_X509_STRICT
    return context
