# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""POP3 mailbox session.

MailboxSession owns one connection and exposes the mailbox operations of
RFC 1939.  Every public operation that talks to the server holds the
channel's sequence lock for its whole duration, so a session can be
shared between threads: calls are serialized and never observe each
other's bytes.  Parallel downloads need one session per connection.

Example:
    with MailboxSession.open("pop.example.com", 995, "user", "secret",
                             use_tls=True) as session:
        for info in session.status():
            message = session.fetch(info.number)
"""

import logging
import re
import ssl
from collections.abc import Iterable
from typing import Any

from popwire.assembler import EmailMessageAssembler, MessageAssembler
from popwire.auth import authenticate
from popwire.channel import CommandChannel, is_ok, join_lines
from popwire.errors import (
    BadServerResponseError,
    ClosedConnectionError,
    NotAuthenticatedError,
    POP3Error,
    ProtocolError,
    UnsupportedCapabilityError,
)
from popwire.transport import POP3_PORT, CertificateValidator, Connection
from popwire.transport import connect as open_connection
from popwire.types import (
    MAX_MESSAGE_NUMBER,
    AuthMethod,
    ConnectionState,
    FetchOptions,
    MessageInfo,
)


logger = logging.getLogger(__name__)

# Scan listing: "<number> <size>", anything after is ignored
_LISTING_PATTERN = re.compile(r"\s*(\d+)\s+(\d+)")


def _check_message_number(number: int) -> None:
    """Reject values that cannot be a message number.

    Raises:
        ValueError: If number is not an integer in the valid range.
    """
    if (
        isinstance(number, bool)
        or not isinstance(number, int)
        or not 1 <= number <= MAX_MESSAGE_NUMBER
    ):
        raise ValueError(f"Invalid message number: {number!r}")


def parse_listing(lines: Iterable[str]) -> list[MessageInfo]:
    """Parse ``LIST`` block lines into MessageInfo entries.

    Lines that are not a scan listing are skipped.

    Args:
        lines: Block lines from a ``LIST`` response.

    Returns:
        Entries in server order.
    """
    entries: list[MessageInfo] = []
    for line in lines:
        match = _LISTING_PATTERN.match(line)
        if match is None:
            logger.debug("Skipping malformed listing line: %s", line)
            continue
        try:
            entries.append(
                MessageInfo(number=int(match[1]), size=int(match[2]))
            )
        except ValueError:
            logger.debug("Skipping out-of-range listing line: %s", line)
    return entries


class MailboxSession:
    """A POP3 session with mailbox operations.

    Sessions start in the CONNECTED state.  Use login() (or open()) to
    authenticate; everything except capabilities() and close() requires
    the AUTHENTICATED state.

    Used as a context manager, a clean exit logs out, which commits
    deletions.  Leaving the block with an exception only closes the
    connection, so the server keeps every message.

    Attributes:
        greeting: Server greeting line.
    """

    def __init__(
        self,
        connection: Connection,
        assembler: MessageAssembler | None = None,
    ) -> None:
        """Initialize a session over an established connection.

        Args:
            connection: Connection whose greeting was accepted.
            assembler: Builds message values from fetched text.  Defaults
                to EmailMessageAssembler.
        """
        self.greeting = connection.greeting
        self._channel = CommandChannel(connection)
        self._assembler = assembler or EmailMessageAssembler()
        self._state = ConnectionState.CONNECTED
        self._capabilities: tuple[str, ...] | None = None

    @classmethod
    def connect(
        cls,
        host: str,
        port: int = POP3_PORT,
        *,
        use_tls: bool = False,
        cert_validator: CertificateValidator | None = None,
        timeout: float | None = None,
        ssl_context: ssl.SSLContext | None = None,
        assembler: MessageAssembler | None = None,
    ) -> "MailboxSession":
        """Connect to a server without authenticating.

        Raises:
            POP3ConnectionError: If the network connection fails.
            TLSError: If the TLS handshake or certificate check fails.
            ProtocolError: If the greeting is not a success response.
        """
        connection = open_connection(
            host,
            port,
            use_tls,
            cert_validator,
            timeout=timeout,
            ssl_context=ssl_context,
        )
        return cls(connection, assembler)

    @classmethod
    def open(
        cls,
        host: str,
        port: int,
        username: str,
        password: str,
        method: AuthMethod = AuthMethod.LOGIN,
        **kwargs: Any,
    ) -> "MailboxSession":
        """Connect and authenticate in one step.

        The connection is closed again if authentication fails.

        Args:
            host: Server host name.
            port: Server port.
            username: Account name.
            password: Account password.
            method: Authentication mechanism.
            **kwargs: Passed to connect().
        """
        session = cls.connect(host, port, **kwargs)
        try:
            session.login(username, password, method)
        except Exception:
            session.close()
            raise
        return session

    @property
    def state(self) -> ConnectionState:
        """Current lifecycle state."""
        return self._state

    @property
    def authenticated(self) -> bool:
        """Whether login has succeeded and logout has not happened."""
        return self._state is ConnectionState.AUTHENTICATED

    @property
    def closed(self) -> bool:
        """Whether the underlying connection has been released."""
        return self._channel.closed

    def __enter__(self) -> "MailboxSession":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        if exc_type is not None:
            # No QUIT: the server discards deletions marked so far
            self.close()
            return
        try:
            self.logout()
        except POP3Error as e:
            logger.warning("Error during POP3 logout: %s", e)
        finally:
            self.close()

    def _require_authenticated(self) -> None:
        # Caller holds the sequence lock
        if self._state is not ConnectionState.AUTHENTICATED:
            raise NotAuthenticatedError(
                "Operation requires an authenticated session"
            )

    def login(
        self,
        username: str,
        password: str,
        method: AuthMethod = AuthMethod.LOGIN,
    ) -> None:
        """Authenticate the session.

        On failure the session stays CONNECTED and the error propagates.

        Raises:
            ClosedConnectionError: If the session is closed.
            ProtocolError: If the session is already authenticated.
            UnsupportedAuthMethodError: If method is not implemented.
            BadServerResponseError: If the server refuses the exchange.
            InvalidCredentialsError: If the credentials are rejected.
        """
        with self._channel.sequence():
            if self._state is ConnectionState.AUTHENTICATED:
                raise ProtocolError("Session is already authenticated")
            authenticate(self._channel, username, password, method)
            if self._channel.closed:
                raise ClosedConnectionError(
                    "Connection closed during authentication"
                )
            self._state = ConnectionState.AUTHENTICATED

    def capabilities(self) -> tuple[str, ...]:
        """Return the server's capabilities in upper case.

        Issues ``CAPA`` once per session and caches the result.  Allowed
        before authentication.

        Raises:
            UnsupportedCapabilityError: If the server rejects ``CAPA``.
        """
        with self._channel.sequence():
            if self._capabilities is None:
                status, lines = self._channel.exchange_multiline("CAPA")
                if not is_ok(status):
                    raise UnsupportedCapabilityError(
                        f"Server does not support CAPA: {status}"
                    )
                self._capabilities = tuple(
                    dict.fromkeys(
                        line.strip().upper() for line in lines if line.strip()
                    )
                )
                logger.debug("Server capabilities: %s", self._capabilities)
            return self._capabilities

    def supports(self, capability: str) -> bool:
        """Return whether the server advertises a capability.

        Matching is case-insensitive against whole entries, so a
        parameterized capability is named in full (``SASL CRAM-MD5``).
        """
        return capability.strip().upper() in self.capabilities()

    def _list(self) -> list[str]:
        status, lines = self._channel.exchange_multiline("LIST")
        if not is_ok(status):
            raise BadServerResponseError(status)
        return lines

    def status(self) -> list[MessageInfo]:
        """List message numbers and sizes.

        Raises:
            NotAuthenticatedError: If the session is not authenticated.
            BadServerResponseError: If the server rejects ``LIST``.
        """
        with self._channel.sequence():
            self._require_authenticated()
            lines = self._list()
        return parse_listing(lines)

    def message_numbers(self) -> list[int]:
        """List the numbers of all messages in the mailbox.

        Raises:
            NotAuthenticatedError: If the session is not authenticated.
            BadServerResponseError: If the server rejects ``LIST``.
        """
        return [info.number for info in self.status()]

    def _delete(self, number: int) -> None:
        response = self._channel.exchange(f"DELE {number}")
        if not is_ok(response):
            raise BadServerResponseError(response)
        logger.debug("Marked message %d for deletion", number)

    def fetch(
        self,
        number: int,
        options: FetchOptions = FetchOptions.NORMAL,
        delete: bool = False,
    ) -> Any:
        """Retrieve one message.

        With ``delete=True`` the message is marked for deletion right
        after it has been retrieved and assembled, without releasing the
        session to other callers in between.  The server removes marked
        messages when the session ends with logout().

        Args:
            number: Message number from status() or message_numbers().
            options: Retrieve the whole message or only its headers.
            delete: Mark the message for deletion after retrieval.

        Returns:
            The assembler's message value.

        Raises:
            ValueError: If number is not a valid message number.
            NotAuthenticatedError: If the session is not authenticated.
            BadServerResponseError: If retrieval or deletion is rejected.
            MessageFormatError: If the text cannot be assembled.
        """
        _check_message_number(number)
        if options is FetchOptions.HEADERS_ONLY:
            command = f"TOP {number} 0"
        else:
            command = f"RETR {number}"

        with self._channel.sequence():
            self._require_authenticated()
            status, lines = self._channel.exchange_multiline(command)
            if not is_ok(status):
                raise BadServerResponseError(status)
            text = join_lines(lines)
            if options is FetchOptions.HEADERS_ONLY:
                message = self._assembler.from_headers(text)
            else:
                message = self._assembler.from_message(text)
            if delete:
                self._delete(number)
        return message

    def fetch_all(
        self,
        numbers: Iterable[int] | None = None,
        options: FetchOptions = FetchOptions.NORMAL,
        delete: bool = False,
    ) -> list[Any]:
        """Retrieve several messages, one after the other.

        Args:
            numbers: Message numbers in the order to fetch them.  None
                fetches every message in the mailbox.
            options: Retrieve whole messages or only headers.
            delete: Mark each message for deletion after retrieval.

        Returns:
            Assembled messages in the order requested.
        """
        if numbers is None:
            numbers = self.message_numbers()
        return [self.fetch(number, options, delete) for number in numbers]

    def delete_message(self, number: int) -> None:
        """Mark a message for deletion.

        Raises:
            ValueError: If number is not a valid message number.
            NotAuthenticatedError: If the session is not authenticated.
            BadServerResponseError: If the server rejects ``DELE``.
        """
        _check_message_number(number)
        with self._channel.sequence():
            self._require_authenticated()
            self._delete(number)

    def logout(self) -> None:
        """End the session with ``QUIT``.

        Does nothing unless the session is authenticated.  On success the
        server commits pending deletions, the session becomes
        DISCONNECTED and the connection is released.

        Raises:
            BadServerResponseError: If the server rejects ``QUIT``.
        """
        if self._state is not ConnectionState.AUTHENTICATED:
            return
        with self._channel.sequence():
            if self._state is not ConnectionState.AUTHENTICATED:
                return
            response = self._channel.exchange("QUIT")
            if not is_ok(response):
                raise BadServerResponseError(response)
            self._state = ConnectionState.DISCONNECTED
            self._channel.close()
        logger.info("Logged out from POP3 server")

    def close(self) -> None:
        """Release the connection unconditionally.

        Safe to call from another thread while an operation is blocked
        on the server; that operation fails with ClosedConnectionError.
        Later operations also raise ClosedConnectionError.
        """
        self._state = ConnectionState.DISCONNECTED
        self._channel.close()
