# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Byte stream setup for POP3 sessions.

Opens the TCP connection, optionally upgrades it to TLS, and validates the
server greeting.  Certificate validation is strict by default: a chain or
hostname that fails verification aborts the connection unless the caller
supplies a validator that explicitly accepts it.
"""

import logging
import socket
import ssl
from collections.abc import Callable
from dataclasses import dataclass
from typing import BinaryIO

from popwire.errors import POP3ConnectionError, ProtocolError, TLSError


logger = logging.getLogger(__name__)

#: Default port for plain POP3.
POP3_PORT = 110

#: Default port for POP3 over implicit TLS.
POP3_TLS_PORT = 995

#: Status marker for a successful reply.
OK_MARKER = "+OK"

#: Status marker for a failed reply.
ERR_MARKER = "-ERR"

#: Text encoding for the wire.  ``surrogateescape`` lets arbitrary 8-bit
#: message content survive a decode/encode round trip.
ENCODING = "utf-8"
ENCODING_ERRORS = "surrogateescape"

#: Longest line accepted from the server, terminator included.
MAX_LINE_LENGTH = 1 << 20


def is_ok(response: str) -> bool:
    """Return whether a status line reports success."""
    return response.startswith(OK_MARKER)


@dataclass(frozen=True)
class CertificateCheck:
    """Input to a certificate validator.

    Attributes:
        host: Host name the connection was opened for.
        certificate: Peer certificate in DER form (None if the peer sent
            none).
        error: Verification error raised by the default context, or None
            if the chain and host name verified.
    """

    host: str
    certificate: bytes | None
    error: ssl.SSLCertVerificationError | None


#: Callable deciding whether to trust a peer certificate.
CertificateValidator = Callable[[CertificateCheck], bool]


def accept_any_certificate(check: CertificateCheck) -> bool:
    """Validator that trusts every certificate.

    Disables the protection TLS offers against impersonation.  Only use
    for servers with self-signed certificates on trusted networks.
    """
    if check.error is not None:
        logger.warning(
            "Accepting unverified certificate for %s: %s",
            check.host,
            check.error.verify_message,
        )
    return True


@dataclass
class Connection:
    """An open byte stream to a POP3 server.

    Attributes:
        host: Server host name.
        port: Server port.
        sock: Connected (possibly TLS-wrapped) socket.
        reader: Buffered binary reader over ``sock``.
        greeting: Server greeting line.
        encrypted: Whether the stream is TLS-protected.
    """

    host: str
    port: int
    sock: socket.socket
    reader: BinaryIO
    greeting: str = ""
    encrypted: bool = False

    def close(self) -> None:
        """Shut down and close the stream.

        Shutting the socket down first unblocks any thread parked in a
        read on it.
        """
        try:
            self.sock.shutdown(socket.SHUT_RDWR)
        except OSError:
            # Already closed by the peer or never fully established
            pass
        try:
            self.reader.close()
        finally:
            self.sock.close()


def read_line(reader: BinaryIO) -> str:
    """Read one CRLF-terminated line and return it without the terminator.

    Args:
        reader: Buffered reader positioned at the start of a line.

    Returns:
        The decoded line with the line feed and any trailing carriage
        returns removed.

    Raises:
        POP3ConnectionError: On I/O failure, timeout, or end of stream.
        ProtocolError: If the line exceeds ``MAX_LINE_LENGTH``.
    """
    try:
        raw = reader.readline(MAX_LINE_LENGTH + 1)
    except OSError as e:
        raise POP3ConnectionError(f"Failed to read from server: {e}") from e
    if len(raw) > MAX_LINE_LENGTH:
        raise ProtocolError(f"Server line exceeds {MAX_LINE_LENGTH} bytes")
    if not raw.endswith(b"\n"):
        raise POP3ConnectionError("Connection closed by server")
    return raw[:-1].rstrip(b"\r").decode(ENCODING, ENCODING_ERRORS)


def _open_socket(host: str, port: int, timeout: float | None) -> socket.socket:
    """Open a TCP connection to host:port."""
    try:
        return socket.create_connection((host, port), timeout=timeout)
    except OSError as e:
        raise POP3ConnectionError(
            f"Failed to connect to {host}:{port}: {e}"
        ) from e


def _unverified_context() -> ssl.SSLContext:
    """Create a TLS context that skips chain and host name checks."""
    context = ssl.create_default_context()
    context.check_hostname = False
    context.verify_mode = ssl.CERT_NONE
    return context


def _handshake(
    sock: socket.socket, host: str, context: ssl.SSLContext
) -> ssl.SSLSocket:
    """Run the TLS handshake, closing ``sock`` on any failure.

    ``ssl.SSLCertVerificationError`` is re-raised unchanged so the caller
    can consult a validator; other failures are translated.
    """
    try:
        return context.wrap_socket(sock, server_hostname=host)
    except ssl.SSLCertVerificationError:
        sock.close()
        raise
    except ssl.SSLError as e:
        sock.close()
        raise TLSError(f"TLS handshake with {host} failed: {e}") from e
    except OSError as e:
        sock.close()
        raise POP3ConnectionError(
            f"Connection to {host} failed during TLS handshake: {e}"
        ) from e


def _open_tls(
    host: str,
    port: int,
    timeout: float | None,
    context: ssl.SSLContext,
    cert_validator: CertificateValidator | None,
) -> ssl.SSLSocket:
    """Open a TLS stream, applying the validator's trust decision.

    When the default context rejects the certificate and a validator is
    present, the handshake is repeated on a new socket without
    verification so the validator can inspect the peer certificate.
    """
    verify_error: ssl.SSLCertVerificationError | None = None
    try:
        tls_sock = _handshake(_open_socket(host, port, timeout), host, context)
    except ssl.SSLCertVerificationError as e:
        if cert_validator is None:
            raise TLSError(
                f"Certificate verification failed for {host}: "
                f"{e.verify_message}"
            ) from e
        verify_error = e
        logger.debug(
            "Certificate for %s failed verification, consulting validator",
            host,
        )
        try:
            tls_sock = _handshake(
                _open_socket(host, port, timeout), host, _unverified_context()
            )
        except ssl.SSLCertVerificationError as retry_error:
            raise TLSError(
                f"TLS handshake with {host} failed: {retry_error}"
            ) from retry_error

    if cert_validator is not None:
        check = CertificateCheck(
            host=host,
            certificate=tls_sock.getpeercert(binary_form=True),
            error=verify_error,
        )
        if not cert_validator(check):
            tls_sock.close()
            raise TLSError(f"Certificate for {host} rejected by validator")

    return tls_sock


def connect(
    host: str,
    port: int = POP3_PORT,
    use_tls: bool = False,
    cert_validator: CertificateValidator | None = None,
    *,
    timeout: float | None = None,
    ssl_context: ssl.SSLContext | None = None,
) -> Connection:
    """Open a stream to a POP3 server and check its greeting.

    Args:
        host: Server host name, also used for TLS identity verification.
        port: Server port.
        use_tls: Wrap the stream in TLS before reading the greeting.
        cert_validator: Optional override of the certificate trust
            decision.  Without it, verification failures are fatal.
        timeout: Socket timeout in seconds for connect and every later
            read and write.  None blocks indefinitely.
        ssl_context: Context to use instead of the default verifying one.

    Returns:
        Connection whose greeting starts with ``+OK``.

    Raises:
        POP3ConnectionError: If the network connection fails or times out.
        TLSError: If the handshake or certificate validation fails.
        ProtocolError: If the greeting is not a success response.
    """
    logger.debug(
        "Connecting to %s:%d (tls=%s, timeout=%s)", host, port, use_tls, timeout
    )
    if use_tls:
        context = ssl_context or ssl.create_default_context()
        sock: socket.socket = _open_tls(
            host, port, timeout, context, cert_validator
        )
    else:
        sock = _open_socket(host, port, timeout)

    connection = Connection(
        host=host,
        port=port,
        sock=sock,
        reader=sock.makefile("rb"),
        encrypted=use_tls,
    )
    try:
        greeting = read_line(connection.reader)
    except POP3ConnectionError:
        connection.close()
        raise
    if not is_ok(greeting):
        connection.close()
        raise ProtocolError(f"Unexpected server greeting: {greeting}")

    connection.greeting = greeting
    logger.info("Connected to POP3 server: %s:%d", host, port)
    logger.debug("Server greeting: %s", greeting)
    return connection
