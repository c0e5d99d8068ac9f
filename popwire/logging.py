# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Log setup for the popwire CLI and redaction of credentials.

``PASS`` carries the password in the clear and a CRAM-MD5 answer can be
replayed within its session.  Both are registered here before they are
sent, and every record passing through a handler built by
:func:`configure_logging` is scrubbed of them after formatting.
"""

import logging
import re
from typing import ClassVar


#: Replacement text for a redacted credential.
REDACTED = "[REDACTED]"

_DEFAULT_FORMAT = "%(asctime)s %(levelname)s %(name)s: %(message)s"


class SecretFilter(logging.Filter):
    """Handler filter masking registered credentials.

    The registry is shared by every instance, so a password registered
    by :mod:`popwire.auth` is masked by whichever handler emits the
    record.  The message is rendered before redaction, which also covers
    credentials inside exception text and other non-string arguments.
    """

    _secrets: ClassVar[set[str]] = set()
    _pattern: ClassVar[re.Pattern[str] | None] = None

    @classmethod
    def register_secret(cls, secret: str) -> None:
        """Mask ``secret`` in all later records.  Empty strings are ignored."""
        if not secret or secret in cls._secrets:
            return
        cls._secrets.add(secret)
        # Longest first so a secret containing another is fully masked
        ordered = sorted(cls._secrets, key=len, reverse=True)
        cls._pattern = re.compile("|".join(map(re.escape, ordered)))

    @classmethod
    def clear_secrets(cls) -> None:
        cls._secrets.clear()
        cls._pattern = None

    @classmethod
    def redact(cls, text: str) -> str:
        """Return ``text`` with every registered credential masked."""
        if cls._pattern is None:
            return text
        return cls._pattern.sub(REDACTED, text)

    def filter(self, record: logging.LogRecord) -> bool:
        if self._pattern is not None:
            record.msg = self.redact(record.getMessage())
            record.args = None
        return True


def configure_logging(
    level: int = logging.WARNING, *, redact: bool = True
) -> None:
    """Send log records to stderr through a single root handler.

    Replaces any handlers already installed on the root logger, so calling
    it twice does not duplicate output.

    Args:
        level: Root logger level.
        redact: Attach a :class:`SecretFilter` to the handler.
    """
    handler = logging.StreamHandler()
    handler.setFormatter(logging.Formatter(_DEFAULT_FORMAT))
    if redact:
        handler.addFilter(SecretFilter())

    root = logging.getLogger()
    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(handler)
    root.setLevel(level)
