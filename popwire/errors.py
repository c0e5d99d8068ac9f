# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Exceptions raised by the POP3 client.

Every failure is raised synchronously to the caller of the operation that
triggered it.  Nothing in the client retries or reconnects; a session that
raised may be unauthenticated or unusable and the caller decides how to
recover (typically by opening a new session).
"""


class POP3Error(Exception):
    """Base class for all POP3 client errors."""


class POP3ConnectionError(POP3Error):
    """Raised when the network connection fails or times out."""


class TLSError(POP3Error):
    """Raised when the TLS handshake or certificate validation fails."""


class ProtocolError(POP3Error):
    """Raised on a malformed greeting or unexpected protocol framing."""


class NotAuthenticatedError(POP3Error):
    """Raised when a mailbox operation is attempted before login."""


class BadServerResponseError(POP3Error):
    """Raised when the server answers a command with a non-success status.

    Attributes:
        response: The server's status line, verbatim.
    """

    def __init__(self, response: str) -> None:
        super().__init__(response)
        self.response = response


class InvalidCredentialsError(BadServerResponseError):
    """Raised when the server rejects the supplied credentials."""


class UnsupportedCapabilityError(POP3Error):
    """Raised when the server does not implement capability discovery."""


class UnsupportedAuthMethodError(POP3Error):
    """Raised for authentication methods the client does not implement."""


class ClosedConnectionError(POP3Error):
    """Raised when a session is used after it has been closed."""


class MessageFormatError(POP3Error):
    """Raised when fetched text cannot be assembled into a message."""
