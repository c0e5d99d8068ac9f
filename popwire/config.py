# Copyright (c) 2026 Pyry Haulos
#
# This software is released under the MIT License.
# https://opensource.org/licenses/MIT

"""Account configuration for the popwire command line tool.

Configuration is loaded from a YAML file.  The default location follows
the XDG Base Directory Specification:

    ``$XDG_CONFIG_HOME/popwire/popwire.yaml``
    (typically ``~/.config/popwire/popwire.yaml``)

``!env`` tags resolve values from environment variables, so passwords
can live in the environment or a ``.env`` file instead of the YAML::

    default_account: personal
    accounts:
      personal:
        host: pop.example.com
        username: me@example.com
        password: !env POP3_PASSWORD

The library itself does not read this file; it only serves the CLI.
"""

import logging
import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, TypeVar, overload

import yaml
from platformdirs import user_config_path

from popwire.dotenv_loader import load_dotenv_once
from popwire.logging import SecretFilter
from popwire.transport import POP3_PORT, POP3_TLS_PORT
from popwire.types import AuthMethod


logger = logging.getLogger(__name__)

#: Application name for XDG path resolution.
_APP_NAME = "popwire"

#: Socket timeout used when an account does not set one.
DEFAULT_TIMEOUT_SECONDS = 30.0

_BOOL_TRUTHY = frozenset({"true", "1", "yes", "on"})
_BOOL_FALSY = frozenset({"false", "0", "no", "off"})


def get_config_path() -> Path:
    """Return the default config file path.

    Uses XDG: ``$XDG_CONFIG_HOME/popwire/popwire.yaml`` (typically
    ``~/.config/popwire/popwire.yaml``).

    Returns:
        Path to the config file.
    """
    return user_config_path(_APP_NAME) / "popwire.yaml"


def get_dotenv_path() -> Path:
    """Return the default ``.env`` file path inside the XDG config directory.

    Returns:
        Path to the ``.env`` file.
    """
    return user_config_path(_APP_NAME) / ".env"


class ConfigError(Exception):
    """Base exception for configuration errors."""


# ---------------------------------------------------------------------------
# YAML tag placeholders
# ---------------------------------------------------------------------------


class _EnvVar:
    """Placeholder for an unresolved ``!env VAR_NAME`` tag."""

    def __init__(self, var_name: str) -> None:
        self.var_name = var_name


def _env_constructor(loader: yaml.SafeLoader, node: yaml.Node) -> _EnvVar:
    """Handle ``!env VAR_NAME`` in YAML."""
    value = loader.construct_scalar(node)
    return _EnvVar(str(value))


def _make_loader() -> type[yaml.SafeLoader]:
    """Create a YAML loader that understands ``!env``."""

    class EnvLoader(yaml.SafeLoader):
        pass

    EnvLoader.add_constructor("!env", _env_constructor)
    return EnvLoader


# ---------------------------------------------------------------------------
# Value resolution
# ---------------------------------------------------------------------------


def _coerce_bool(value: object) -> bool:
    """Coerce a value to bool, handling string representations."""
    if isinstance(value, bool):
        return value
    s = str(value).lower().strip()
    if s in _BOOL_TRUTHY:
        return True
    if s in _BOOL_FALSY:
        return False
    raise ConfigError(f"Cannot convert {value!r} to bool")


def _raw_resolve(value: object) -> str | None:
    """Resolve an ``_EnvVar`` to its string value, or stringify literals.

    Returns None if the value is None or the env var is not set.
    Returns empty string if the env var is set to empty string.
    """
    if isinstance(value, _EnvVar):
        return os.environ.get(value.var_name)
    if value is None:
        return None
    return str(value)


_MISSING = object()

T = TypeVar("T")


@overload
def _resolve(value: object, coerce: type[T], *, default: T) -> T: ...


@overload
def _resolve(
    value: object,
    coerce: type[T],
    *,
    required: str,
) -> T: ...


@overload
def _resolve(value: object, coerce: type[T]) -> T | None: ...


def _resolve(
    value: object,
    coerce: type[Any],
    *,
    default: object = _MISSING,
    required: str = "",
) -> Any:
    """Resolve a YAML value, handling ``!env`` tags and type coercion.

    Args:
        value: Raw value from YAML (may be ``_EnvVar``, None, or a
            literal already parsed by PyYAML).
        coerce: Target type (``str``, ``int``, ``float``, ``bool``).
        default: Default when value is absent.  Not allowed together
            with *required*.
        required: Human-readable field name.  When set, raises
            ``ConfigError`` if the value is absent.

    Returns:
        The resolved, coerced value, or None when optional and absent.
    """
    # For non-EnvVar values that PyYAML already parsed to the right
    # type (e.g. bool, int), skip string round-tripping when possible.
    if not isinstance(value, _EnvVar) and value is not None:
        if coerce is bool:
            return _coerce_bool(value)
        if isinstance(value, coerce) and not isinstance(value, bool):
            return value

    resolved = _raw_resolve(value)

    if resolved is None:
        if required:
            if isinstance(value, _EnvVar):
                raise ConfigError(
                    f"Required config '{required}': environment variable "
                    f"'{value.var_name}' is not set"
                )
            raise ConfigError(f"Required config '{required}' is missing")
        if default is not _MISSING:
            return default
        return None

    if coerce is bool:
        return _coerce_bool(resolved)
    try:
        return coerce(resolved)
    except ValueError as e:
        raise ConfigError(
            f"Cannot convert {resolved!r} to {coerce.__name__}"
        ) from e


def _parse_auth_method(value: str, field_name: str) -> AuthMethod:
    """Map a config string (e.g. ``cram-md5``) to an AuthMethod."""
    try:
        return AuthMethod(value.lower().strip())
    except ValueError:
        choices = ", ".join(m.value for m in AuthMethod)
        raise ConfigError(
            f"Config '{field_name}': unknown auth method {value!r} "
            f"(expected one of: {choices})"
        ) from None


# ---------------------------------------------------------------------------
# Configuration classes
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class AccountConfig:
    """Connection settings for one POP3 mailbox.

    Attributes:
        name: Account identifier (key from ``accounts``).
        host: POP3 server hostname.
        port: POP3 port.
        username: Account username.
        password: Account password (auto-redacted in logs).
        use_tls: Connect with implicit TLS.
        auth_method: Authentication mechanism.
        timeout_seconds: Socket timeout; None blocks indefinitely.
        verify_certificates: Verify the server certificate.  Disabling
            this accepts any certificate and is only meant for
            self-signed test servers.
    """

    name: str
    host: str
    port: int
    username: str
    password: str
    use_tls: bool = True
    auth_method: AuthMethod = AuthMethod.LOGIN
    timeout_seconds: float | None = DEFAULT_TIMEOUT_SECONDS
    verify_certificates: bool = True

    def __post_init__(self) -> None:
        """Validate configuration and register secrets.

        Raises:
            ValueError: If configuration is invalid.
        """
        SecretFilter.register_secret(self.password)

        if not self.host:
            raise ValueError(f"Account '{self.name}': host cannot be empty")
        if not (1 <= self.port <= 65535):
            raise ValueError(
                f"Account '{self.name}': invalid port: {self.port}"
            )
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise ValueError(
                f"Account '{self.name}': timeout must be > 0: "
                f"{self.timeout_seconds}"
            )
        if not self.verify_certificates:
            logger.warning(
                "Account '%s': certificate verification is disabled",
                self.name,
            )


def _parse_account_config(name: str, raw: dict) -> AccountConfig:
    """Parse a single account's configuration.

    Args:
        name: Account identifier (key from ``accounts``).
        raw: Raw YAML dict for this account.

    Returns:
        AccountConfig instance.
    """
    prefix = f"accounts.{name}"
    use_tls = _resolve(raw.get("tls"), bool, default=True)
    timeout = raw.get("timeout", DEFAULT_TIMEOUT_SECONDS)

    return AccountConfig(
        name=name,
        host=_resolve(raw.get("host"), str, required=f"{prefix}.host"),
        port=_resolve(
            raw.get("port"),
            int,
            default=POP3_TLS_PORT if use_tls else POP3_PORT,
        ),
        username=_resolve(
            raw.get("username"), str, required=f"{prefix}.username"
        ),
        password=_resolve(
            raw.get("password"), str, required=f"{prefix}.password"
        ),
        use_tls=use_tls,
        auth_method=_parse_auth_method(
            _resolve(raw.get("auth_method"), str, default="login"),
            f"{prefix}.auth_method",
        ),
        # An explicit null disables the timeout
        timeout_seconds=_resolve(timeout, float),
        verify_certificates=_resolve(
            raw.get("verify_certificates"), bool, default=True
        ),
    )


@dataclass(frozen=True)
class ClientConfig:
    """Complete client configuration.

    Attributes:
        accounts: Account configurations keyed by name.
        default_account: Account used when none is named.
    """

    accounts: dict[str, AccountConfig]
    default_account: str | None = None

    def __post_init__(self) -> None:
        """Validate cross-account constraints.

        Raises:
            ConfigError: If validation fails.
        """
        if not self.accounts:
            raise ConfigError("At least one account must be configured")
        if (
            self.default_account is not None
            and self.default_account not in self.accounts
        ):
            raise ConfigError(
                f"default_account '{self.default_account}' is not a "
                f"configured account"
            )

        logger.debug("Config loaded: %d accounts", len(self.accounts))

    def account(self, name: str | None = None) -> AccountConfig:
        """Return the named account, or the default one.

        Without a name, falls back to ``default_account`` and then to the
        only configured account.

        Raises:
            ConfigError: If the account cannot be determined.
        """
        if name is None:
            name = self.default_account
        if name is None:
            if len(self.accounts) == 1:
                return next(iter(self.accounts.values()))
            raise ConfigError(
                "Several accounts configured; choose one with --account "
                "or set default_account"
            )
        try:
            return self.accounts[name]
        except KeyError:
            raise ConfigError(f"Unknown account: {name}") from None

    @classmethod
    def from_yaml(cls, config_path: Path | None = None) -> "ClientConfig":
        """Load configuration from a YAML file.

        Values tagged with ``!env VAR_NAME`` are resolved from the
        environment at load time.  A ``.env`` file is loaded first if
        present.

        Args:
            config_path: Path to YAML config file.  Defaults to
                ``~/.config/popwire/popwire.yaml`` (XDG).

        Returns:
            ClientConfig instance.

        Raises:
            ConfigError: If the file is missing or required values are absent.
        """
        load_dotenv_once()

        if config_path is None:
            config_path = get_config_path()

        if not config_path.exists():
            raise ConfigError(f"Config file not found: {config_path}")

        with open(config_path) as f:
            try:
                raw = yaml.load(f, Loader=_make_loader())
            except yaml.YAMLError as e:
                raise ConfigError(f"Invalid YAML in {config_path}: {e}") from e

        if not isinstance(raw, dict):
            raise ConfigError(
                f"Config file must be a YAML mapping: {config_path}"
            )

        return cls._from_raw(raw)

    @classmethod
    def _from_raw(cls, raw: dict) -> "ClientConfig":
        """Build config from parsed (but unresolved) YAML dict."""
        raw_accounts = raw.get("accounts", {})
        if not isinstance(raw_accounts, dict):
            raise ConfigError("'accounts' must be a YAML mapping")

        accounts: dict[str, AccountConfig] = {}
        for name, account_raw in raw_accounts.items():
            name = str(name)
            if not isinstance(account_raw, dict):
                raise ConfigError(f"accounts.{name} must be a YAML mapping")
            try:
                accounts[name] = _parse_account_config(name, account_raw)
            except ValueError as e:
                raise ConfigError(str(e)) from e

        return cls(
            accounts=accounts,
            default_account=_resolve(raw.get("default_account"), str),
        )


STUB_CONFIG = """\
# popwire configuration
#
# Values tagged with !env are read from the environment (or from a .env
# file next to this one).

default_account: personal

accounts:
  personal:
    host: pop.example.com
    # port: 995
    # tls: true
    username: me@example.com
    password: !env POP3_PASSWORD
    # auth_method: login        # login or cram-md5
    # timeout: 30               # seconds; null waits forever
    # verify_certificates: true
"""
