# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""POP3 mailbox client.

Provides:
- MailboxSession: connection lifecycle and mailbox operations
- CommandChannel: serialized command/response framing
- authenticate: USER/PASS and CRAM-MD5 credential exchange
- connect: TCP/TLS stream setup with greeting validation
- Exception hierarchy rooted at POP3Error
"""

from popwire.assembler import (
    EmailMessageAssembler,
    MessageAssembler,
    decode_subject,
)
from popwire.auth import authenticate, cram_md5_response
from popwire.channel import CommandChannel
from popwire.errors import (
    BadServerResponseError,
    ClosedConnectionError,
    InvalidCredentialsError,
    MessageFormatError,
    NotAuthenticatedError,
    POP3ConnectionError,
    POP3Error,
    ProtocolError,
    TLSError,
    UnsupportedAuthMethodError,
    UnsupportedCapabilityError,
)
from popwire.session import MailboxSession, parse_listing
from popwire.transport import (
    POP3_PORT,
    POP3_TLS_PORT,
    CertificateCheck,
    CertificateValidator,
    Connection,
    accept_any_certificate,
    connect,
)
from popwire.types import (
    AuthMethod,
    ConnectionState,
    FetchOptions,
    MessageInfo,
)


__all__ = [
    # assembler
    "EmailMessageAssembler",
    "MessageAssembler",
    "decode_subject",
    # auth
    "authenticate",
    "cram_md5_response",
    # channel
    "CommandChannel",
    # errors
    "BadServerResponseError",
    "ClosedConnectionError",
    "InvalidCredentialsError",
    "MessageFormatError",
    "NotAuthenticatedError",
    "POP3ConnectionError",
    "POP3Error",
    "ProtocolError",
    "TLSError",
    "UnsupportedAuthMethodError",
    "UnsupportedCapabilityError",
    # session
    "MailboxSession",
    "parse_listing",
    # transport
    "POP3_PORT",
    "POP3_TLS_PORT",
    "CertificateCheck",
    "CertificateValidator",
    "Connection",
    "accept_any_certificate",
    "connect",
    # types
    "AuthMethod",
    "ConnectionState",
    "FetchOptions",
    "MessageInfo",
]
