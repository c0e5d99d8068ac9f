# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Tests for stream setup, TLS and greeting validation."""

import logging
import socket
import ssl
from pathlib import Path

import pytest

from popwire.errors import POP3ConnectionError, ProtocolError, TLSError
from popwire.transport import (
    MAX_LINE_LENGTH,
    CertificateCheck,
    accept_any_certificate,
    connect,
    is_ok,
    read_line,
)
from tests.pop3_server import FakePOP3Server, find_free_port


class TestIsOk:
    """Tests for status classification."""

    def test_ok(self) -> None:
        """Only +OK counts as success."""
        assert is_ok("+OK")
        assert is_ok("+OK 2 messages")
        assert not is_ok("-ERR nope")
        assert not is_ok("+ challenge")
        assert not is_ok("")


class TestReadLine:
    """Tests for read_line on a plain reader."""

    def test_strips_crlf(self, tmp_path: Path) -> None:
        """Line terminator is removed."""
        path = tmp_path / "stream"
        path.write_bytes(b"+OK hi\r\n")
        with open(path, "rb") as reader:
            assert read_line(reader) == "+OK hi"

    def test_empty_stream(self, tmp_path: Path) -> None:
        """End of stream raises a connection error."""
        path = tmp_path / "stream"
        path.write_bytes(b"")
        with open(path, "rb") as reader:
            with pytest.raises(POP3ConnectionError):
                read_line(reader)

    def test_overlong_line_rejected(self, tmp_path: Path) -> None:
        """A line past the length cap is refused instead of buffered."""
        path = tmp_path / "stream"
        path.write_bytes(b"+OK " + b"x" * MAX_LINE_LENGTH + b"\r\n")
        with open(path, "rb") as reader:
            with pytest.raises(ProtocolError, match="exceeds"):
                read_line(reader)

    def test_line_at_cap_accepted(self, tmp_path: Path) -> None:
        """A line whose terminator lands exactly on the cap is read."""
        body = b"x" * (MAX_LINE_LENGTH - 2)
        path = tmp_path / "stream"
        path.write_bytes(body + b"\r\n")
        with open(path, "rb") as reader:
            assert read_line(reader) == body.decode()


class TestConnectPlain:
    """Tests for connect() without TLS."""

    def test_greeting_accepted(self, pop3_server: FakePOP3Server) -> None:
        """A +OK greeting yields an open connection."""
        connection = connect("127.0.0.1", pop3_server.port, timeout=5.0)
        try:
            assert connection.greeting == "+OK POP3 test server ready"
            assert connection.encrypted is False
            assert connection.port == pop3_server.port
        finally:
            connection.close()

    def test_error_greeting(self, pop3_server: FakePOP3Server) -> None:
        """A greeting that is not +OK aborts the connection."""
        pop3_server.greeting = "-ERR server busy"
        with pytest.raises(ProtocolError, match="server busy"):
            connect("127.0.0.1", pop3_server.port, timeout=5.0)

    def test_connection_refused(self) -> None:
        """Nothing listening is a connection error."""
        port = find_free_port()
        with pytest.raises(POP3ConnectionError, match="Failed to connect"):
            connect("127.0.0.1", port, timeout=5.0)

    def test_no_greeting_times_out(self) -> None:
        """A server that accepts but never greets hits the timeout."""
        with socket.socket() as listener:
            listener.bind(("127.0.0.1", 0))
            listener.listen(1)
            port = listener.getsockname()[1]
            with pytest.raises(POP3ConnectionError):
                connect("127.0.0.1", port, timeout=0.3)


class TestConnectTLS:
    """Tests for connect() with implicit TLS."""

    def test_strict_by_default(self, tls_server: FakePOP3Server) -> None:
        """Untrusted certificates are rejected without a validator."""
        with pytest.raises(TLSError, match="verification failed"):
            connect(
                "localhost", tls_server.port, use_tls=True, timeout=5.0
            )

    def test_accept_any_certificate(self, tls_server: FakePOP3Server) -> None:
        """The explicit opt-in validator accepts a self-signed server."""
        connection = connect(
            "localhost",
            tls_server.port,
            use_tls=True,
            cert_validator=accept_any_certificate,
            timeout=5.0,
        )
        try:
            assert connection.encrypted is True
            assert connection.greeting.startswith("+OK")
        finally:
            connection.close()

    def test_validator_rejects(self, tls_server: FakePOP3Server) -> None:
        """A validator returning False aborts the connection."""
        checks: list[CertificateCheck] = []

        def reject(check: CertificateCheck) -> bool:
            checks.append(check)
            return False

        with pytest.raises(TLSError, match="rejected by validator"):
            connect(
                "localhost",
                tls_server.port,
                use_tls=True,
                cert_validator=reject,
                timeout=5.0,
            )
        assert len(checks) == 1
        assert checks[0].host == "localhost"
        assert checks[0].certificate
        assert isinstance(checks[0].error, ssl.SSLCertVerificationError)

    def test_validator_sees_peer_certificate(
        self,
        tls_server: FakePOP3Server,
        tls_files: tuple[Path, Path],
        trusting_context: ssl.SSLContext,
    ) -> None:
        """With a trusting context the validator gets no error and the
        certificate it can pin against."""
        cert_file, _ = tls_files
        expected = ssl.PEM_cert_to_DER_cert(cert_file.read_text())
        checks: list[CertificateCheck] = []

        def pin(check: CertificateCheck) -> bool:
            checks.append(check)
            return check.certificate == expected

        connection = connect(
            "localhost",
            tls_server.port,
            use_tls=True,
            cert_validator=pin,
            timeout=5.0,
            ssl_context=trusting_context,
        )
        connection.close()
        assert checks[0].error is None

    def test_trusted_context_without_validator(
        self,
        tls_server: FakePOP3Server,
        trusting_context: ssl.SSLContext,
    ) -> None:
        """A caller-provided context that trusts the certificate works."""
        connection = connect(
            "localhost",
            tls_server.port,
            use_tls=True,
            timeout=5.0,
            ssl_context=trusting_context,
        )
        try:
            assert connection.encrypted is True
        finally:
            connection.close()


class TestAcceptAnyCertificate:
    """Tests for accept_any_certificate."""

    def test_warns_on_unverified(
        self, caplog: pytest.LogCaptureFixture
    ) -> None:
        """Accepting an unverified certificate is logged."""
        error = ssl.SSLCertVerificationError("self-signed certificate")
        error.verify_message = "self-signed certificate"
        check = CertificateCheck(host="pop.test", certificate=b"", error=error)
        with caplog.at_level(logging.WARNING, logger="popwire.transport"):
            assert accept_any_certificate(check) is True
        assert "pop.test" in caplog.text

    def test_silent_on_verified(self, caplog: pytest.LogCaptureFixture) -> None:
        """Nothing is logged for verified certificates."""
        check = CertificateCheck(host="pop.test", certificate=b"", error=None)
        with caplog.at_level(logging.WARNING, logger="popwire.transport"):
            assert accept_any_certificate(check) is True
        assert caplog.text == ""
