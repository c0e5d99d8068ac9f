# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Turn fetched message text into message objects.

The session hands the literal content of a ``RETR`` or ``TOP`` block
(lines joined with ``\\n``) to a MessageAssembler.  The default assembler
uses the standard library ``email`` parser; callers can supply any object
with the same two methods.
"""

import logging
from email.header import decode_header
from email.message import Message
from email.parser import Parser
from typing import Any, Protocol

from popwire.errors import MessageFormatError


logger = logging.getLogger(__name__)


class MessageAssembler(Protocol):
    """Builds message values from fetched text."""

    def from_headers(self, text: str) -> Any:
        """Build a message from a header block."""
        ...

    def from_message(self, text: str) -> Any:
        """Build a message from full RFC 5322 text."""
        ...


class EmailMessageAssembler:
    """MessageAssembler producing ``email.message.Message`` objects."""

    def __init__(self) -> None:
        self._parser = Parser()

    def from_headers(self, text: str) -> Message:
        """Parse header fields only.

        Anything after the first empty line is discarded, so the result
        never carries body content.

        Raises:
            MessageFormatError: If no header fields are present.
        """
        header_text = text.split("\n\n", 1)[0]
        return self._parse(header_text, headersonly=True)

    def from_message(self, text: str) -> Message:
        """Parse a full message including its body.

        Raises:
            MessageFormatError: If no header fields are present.
        """
        return self._parse(text, headersonly=False)

    def _parse(self, text: str, headersonly: bool) -> Message:
        if not text.strip():
            raise MessageFormatError("Message text is empty")
        message = self._parser.parsestr(text, headersonly=headersonly)
        if not message.keys():
            raise MessageFormatError("Message has no header fields")
        if message.defects:
            logger.debug(
                "Parsed message with %d defects: %s",
                len(message.defects),
                ", ".join(type(d).__name__ for d in message.defects),
            )
        return message


def decode_subject(message: Message) -> str:
    """Decode the Subject header from an email message.

    Email clients may encode headers using RFC 2047 encoded-words
    (e.g., ``=?big5?B?...?=``).  Python's ``Message.get()`` returns the
    raw encoded form, so this function uses ``email.header.decode_header``
    to produce a proper Unicode string.

    Args:
        message: Parsed email message.

    Returns:
        Decoded subject string, or empty string if not present.
    """
    raw = message.get("Subject", "")
    if not raw:
        return ""

    parts = decode_header(raw)
    decoded_parts: list[str] = []
    for data, charset in parts:
        if isinstance(data, bytes):
            decoded_parts.append(
                data.decode(charset or "utf-8", errors="replace")
            )
        else:
            decoded_parts.append(data)
    return " ".join(decoded_parts)
