# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Command/response framing over a POP3 connection.

POP3 is strictly request/response: the server answers one command at a
time and a second command must not be written while any part of the
previous response (including a multi-line block) is still unread.
CommandChannel enforces this with a reentrant sequence lock that spans the
whole exchange.  Callers that need several exchanges to appear atomic
(login, fetch followed by delete) hold the lock across them with
``sequence()``.

A lower write lock and read lock keep individual writes and line reads
whole even when the sequence lock is bypassed.
"""

import logging
import threading
from collections.abc import Iterator
from contextlib import contextmanager

from popwire.errors import (
    ClosedConnectionError,
    POP3ConnectionError,
    ProtocolError,
)
from popwire.transport import (
    ENCODING,
    ENCODING_ERRORS,
    Connection,
    is_ok,
    read_line,
)


logger = logging.getLogger(__name__)

#: Line terminator on the wire.
CRLF = "\r\n"

#: Line that ends a multi-line response.
TERMINATOR = "."

__all__ = [
    "CRLF",
    "TERMINATOR",
    "CommandChannel",
    "is_ok",
    "join_lines",
]


def join_lines(lines: list[str]) -> str:
    """Join block lines back into text, restoring a newline after each."""
    return "".join(f"{line}\n" for line in lines)


def _loggable(command: str) -> str:
    """Mask the argument of ``PASS`` before a command is logged."""
    if command[:5].upper() == "PASS ":
        return f"{command[:5]}********"
    return command


class CommandChannel:
    """Serialized command/response exchange over one connection.

    Attributes:
        connection: The underlying stream.
    """

    def __init__(self, connection: Connection) -> None:
        """Initialize the channel.

        Args:
            connection: Stream whose greeting has already been read.
        """
        self.connection = connection
        self._closed = False
        self._sequence_lock = threading.RLock()
        self._write_lock = threading.Lock()
        self._read_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        """Whether close() has been called."""
        return self._closed

    def _ensure_open(self) -> None:
        if self._closed:
            raise ClosedConnectionError("Connection is closed")

    @contextmanager
    def sequence(self) -> Iterator[None]:
        """Hold the sequence lock for the duration of the block.

        Raises:
            ClosedConnectionError: If the channel is closed.
        """
        with self._sequence_lock:
            self._ensure_open()
            yield

    def send_line(self, text: str) -> None:
        """Write one command line followed by CRLF.

        Args:
            text: Command without line terminator.

        Raises:
            ValueError: If text contains a line break.
            ClosedConnectionError: If the channel is closed.
            POP3ConnectionError: If the write fails.
        """
        if "\r" in text or "\n" in text:
            raise ValueError("Command must not contain line breaks")
        data = (text + CRLF).encode(ENCODING, ENCODING_ERRORS)
        with self._write_lock:
            self._ensure_open()
            logger.debug("C: %s", _loggable(text))
            try:
                self.connection.sock.sendall(data)
            except (OSError, ValueError) as e:
                if self._closed:
                    raise ClosedConnectionError(
                        "Connection closed during write"
                    ) from e
                raise POP3ConnectionError(
                    f"Failed to write to server: {e}"
                ) from e

    def read_line(self) -> str:
        """Read one response line without its terminator.

        Blocks until a full line arrives, the socket timeout (if any)
        expires, or the channel is closed from another thread.

        Raises:
            ClosedConnectionError: If the channel is or becomes closed.
            POP3ConnectionError: On I/O failure, timeout, or end of stream.
            ProtocolError: If the line is too long; the channel is closed.
        """
        with self._read_lock:
            self._ensure_open()
            try:
                return read_line(self.connection.reader)
            except ProtocolError:
                # The rest of the oversized line is still buffered
                self.close()
                raise
            except (POP3ConnectionError, ValueError) as e:
                if self._closed:
                    raise ClosedConnectionError(
                        "Connection closed during read"
                    ) from e
                raise

    def read_multiline_block(self) -> list[str]:
        """Read lines up to the ``.`` terminator.

        Byte-stuffed lines (leading ``..``) have one dot removed.

        Returns:
            Block lines in order, terminator excluded.
        """
        lines: list[str] = []
        with self.sequence():
            while True:
                line = self.read_line()
                if line == TERMINATOR:
                    break
                if line.startswith(".."):
                    line = line[1:]
                lines.append(line)
        logger.debug("S: <%d lines>", len(lines))
        return lines

    def exchange(self, command: str) -> str:
        """Send a command and return the single status line.

        Returns:
            The status line, verbatim.
        """
        with self.sequence():
            self.send_line(command)
            response = self.read_line()
        logger.debug("S: %s", response)
        return response

    def exchange_multiline(self, command: str) -> tuple[str, list[str]]:
        """Send a command and read its status line and multi-line block.

        The block is only read when the status is ``+OK``; an error
        status carries no block.

        Returns:
            Tuple of (status line, block lines).
        """
        with self.sequence():
            response = self.exchange(command)
            if not is_ok(response):
                return response, []
            return response, self.read_multiline_block()

    def close(self) -> None:
        """Release the connection.

        Does not wait for the sequence lock, so it can unblock a thread
        stuck reading from a stalled server.  Idempotent.
        """
        if self._closed:
            return
        self._closed = True
        self.connection.close()
        logger.debug("Channel closed")
