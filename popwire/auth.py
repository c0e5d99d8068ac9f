# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Credential exchange against a POP3 server.

Each authentication attempt runs entirely under the channel's sequence
lock, so the two halves of ``USER``/``PASS`` (or the challenge and the
response of CRAM-MD5) can never be separated by another command.
Nothing here retries; the first rejection is raised to the caller.
"""

import base64
import binascii
import hashlib
import hmac
import logging

from popwire.channel import CommandChannel, is_ok
from popwire.errors import (
    BadServerResponseError,
    InvalidCredentialsError,
    ProtocolError,
    UnsupportedAuthMethodError,
)
from popwire.logging import SecretFilter
from popwire.types import AuthMethod


logger = logging.getLogger(__name__)

#: Marker of a SASL continuation line (RFC 5034).
_CONTINUATION = "+"

#: Client line that aborts a SASL exchange (RFC 5034).
_SASL_CANCEL = "*"


def cram_md5_response(username: str, password: str, challenge: bytes) -> str:
    """Compute the base64 CRAM-MD5 response (RFC 2195).

    Args:
        username: Account name.
        password: Shared secret used as the HMAC key.
        challenge: Decoded server challenge.

    Returns:
        Base64 of ``"<username> <hex HMAC-MD5 digest>"``.
    """
    digest = hmac.new(
        password.encode("utf-8"), challenge, hashlib.md5
    ).hexdigest()
    return base64.b64encode(f"{username} {digest}".encode()).decode("ascii")


def _login(channel: CommandChannel, username: str, password: str) -> None:
    response = channel.exchange(f"USER {username}")
    if not is_ok(response):
        raise BadServerResponseError(response)
    response = channel.exchange(f"PASS {password}")
    if not is_ok(response):
        raise InvalidCredentialsError(response)


def _cram_md5(channel: CommandChannel, username: str, password: str) -> None:
    response = channel.exchange("AUTH CRAM-MD5")
    if is_ok(response) or response.startswith("-"):
        raise BadServerResponseError(response)
    marker, _, encoded = response.partition(" ")
    if marker != _CONTINUATION:
        # The server is still waiting for an answer
        channel.exchange(_SASL_CANCEL)
        raise ProtocolError(f"Unexpected reply to AUTH CRAM-MD5: {response}")

    try:
        challenge = base64.b64decode(encoded.strip(), validate=True)
    except binascii.Error as e:
        # Leave the server ready for the next command
        channel.exchange(_SASL_CANCEL)
        raise ProtocolError(f"Malformed CRAM-MD5 challenge: {response}") from e

    answer = cram_md5_response(username, password, challenge)
    SecretFilter.register_secret(answer)
    response = channel.exchange(answer)
    if not is_ok(response):
        raise InvalidCredentialsError(response)


def authenticate(
    channel: CommandChannel,
    username: str,
    password: str,
    method: AuthMethod = AuthMethod.LOGIN,
) -> None:
    """Authenticate on a connected channel.

    Returns only after the server accepted the credentials.

    Args:
        channel: Channel in the authorization state.
        username: Account name.
        password: Account password or shared secret.
        method: Authentication mechanism.

    Raises:
        UnsupportedAuthMethodError: For mechanisms not implemented here;
            nothing is sent to the server.
        BadServerResponseError: If the server refuses to start the exchange.
        InvalidCredentialsError: If the server rejects the credentials.
        ProtocolError: If the server's challenge is malformed.
    """
    if method is AuthMethod.SASL_OAUTH:
        raise UnsupportedAuthMethodError(
            "SASL OAuth authentication is not implemented"
        )

    SecretFilter.register_secret(password)
    logger.debug("Authenticating %s using %s", username, method.value)
    with channel.sequence():
        if method is AuthMethod.LOGIN:
            _login(channel, username, password)
        elif method is AuthMethod.CRAM_MD5:
            _cram_md5(channel, username, password)
        else:
            raise UnsupportedAuthMethodError(
                f"Unknown authentication method: {method}"
            )
    logger.info("Authenticated as %s", username)
