# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""One-shot dotenv loading for the command line tool.

The loader reads environment variables from two locations (in order):

1. ``~/.config/popwire/.env`` (XDG config directory), the primary location
2. ``.env`` in the current working directory, for per-invocation
   overrides when running ``popwire`` interactively

Variables set by the first file are **not** overwritten by the second
(``python-dotenv`` respects existing env vars by default).
"""

import logging
from pathlib import Path

from dotenv import load_dotenv


logger = logging.getLogger(__name__)

_dotenv_loaded = False


def load_dotenv_once() -> None:
    """Load .env files once, if not already loaded.

    Idempotent: calling it multiple times has no effect after the first
    load.
    """
    global _dotenv_loaded
    if _dotenv_loaded:
        return

    # Imported here: popwire.config imports this module
    from popwire.config import get_dotenv_path

    xdg_env = get_dotenv_path()
    if xdg_env.exists():
        load_dotenv(xdg_env)
        logger.debug("Loaded .env from %s", xdg_env)

    cwd_env = Path.cwd() / ".env"
    if cwd_env.exists():
        load_dotenv(cwd_env)
        logger.debug("Loaded .env from %s", cwd_env)

    _dotenv_loaded = True


def reset_dotenv_state() -> None:
    """Reset the dotenv loaded state. For testing only."""
    global _dotenv_loaded
    _dotenv_loaded = False
