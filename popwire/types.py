# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Value types shared by the POP3 client modules."""

from dataclasses import dataclass
from enum import Enum


#: Largest message number (unsigned 32-bit).
MAX_MESSAGE_NUMBER = 2**32 - 1

#: Largest message size (unsigned 64-bit).
MAX_MESSAGE_SIZE = 2**64 - 1


class ConnectionState(Enum):
    """Lifecycle state of a mailbox session.

    Transitions::

        DISCONNECTED --connect--> CONNECTED --login--> AUTHENTICATED
        AUTHENTICATED --logout/close--> DISCONNECTED
        CONNECTED --close--> DISCONNECTED
    """

    DISCONNECTED = "disconnected"
    CONNECTED = "connected"
    AUTHENTICATED = "authenticated"


class FetchOptions(Enum):
    """Which part of a message to retrieve."""

    #: Entire message (``RETR``).
    NORMAL = "normal"
    #: Header block only (``TOP n 0``).
    HEADERS_ONLY = "headers_only"


class AuthMethod(Enum):
    """Supported means of authenticating with the server."""

    #: Plaintext ``USER``/``PASS``.
    LOGIN = "login"
    #: ``AUTH CRAM-MD5`` challenge-response (RFC 5034).
    CRAM_MD5 = "cram-md5"
    #: OAuth bearer token over SASL.  Not implemented.
    SASL_OAUTH = "sasl-oauth"


@dataclass(frozen=True)
class MessageInfo:
    """Listing entry for one message in the mailbox.

    Message numbers are only meaningful within the session that listed
    them; servers may renumber messages between sessions.

    Attributes:
        number: Message number (1-based).
        size: Message size in octets.
    """

    number: int
    size: int

    def __post_init__(self) -> None:
        """Validate field ranges.

        Raises:
            ValueError: If number or size is out of range.
        """
        if not 1 <= self.number <= MAX_MESSAGE_NUMBER:
            raise ValueError(f"Message number out of range: {self.number}")
        if not 0 <= self.size <= MAX_MESSAGE_SIZE:
            raise ValueError(f"Message size out of range: {self.size}")
