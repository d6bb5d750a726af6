"""Build channel configurations from flat settings or the environment.

The flat layout mirrors a tool configuration file section::

    channel_type   = "ssh" | "serial"
    timeout        = 30
    # SSH
    host, port, user, password, ssh_key_path, ssh_multiplex
    # serial
    serial_device, baud_rate, serial_username, serial_password,
    serial_login_prompt, serial_password_prompt, serial_shell_prompt
"""

from __future__ import annotations

import logging
import os
from typing import Any, Callable, Dict, Mapping, Optional

from . import CONNECTION_TIMEOUT, ENV_PREFIX, SERIAL_BAUD_RATE, SSH_PORT
from .exceptions import ChannelConfigError
from .types import ChannelConfig, SerialChannelConfig, SSHChannelConfig

logger = logging.getLogger("device_channels.config")

CHANNEL_TYPES = ("ssh", "serial")

# Environment variable suffix -> flat setting name
_ENV_KEYS = {
    "CHANNEL": "channel_type",
    "HOST": "host",
    "PORT": "port",
    "USER": "user",
    "PASSWORD": "password",
    "KEY_PATH": "ssh_key_path",
    "TIMEOUT": "timeout",
    "SERIAL": "serial_device",
    "BAUD_RATE": "baud_rate",
    "SERIAL_USER": "serial_username",
    "SERIAL_PASSWORD": "serial_password",
    "LOGIN_PROMPT": "serial_login_prompt",
    "PASSWORD_PROMPT": "serial_password_prompt",
    "SHELL_PROMPT": "serial_shell_prompt",
}

_TRUE_VALUES = ("1", "true", "yes", "on")


def _convert(settings: Mapping[str, Any], key: str, convert: Callable[[Any], Any], default: Any) -> Any:
    value = settings.get(key)
    if value is None or value == "":
        return default
    try:
        return convert(value)
    except (TypeError, ValueError) as exc:
        raise ChannelConfigError(f"Invalid value for {key!r}: {value!r} ({exc})") from exc


def _to_bool(value: Any) -> bool:
    if isinstance(value, bool):
        return value
    return str(value).strip().lower() in _TRUE_VALUES


def _optional_str(settings: Mapping[str, Any], key: str) -> Optional[str]:
    value = settings.get(key)
    return None if value is None else str(value)


def channel_config_from_mapping(settings: Mapping[str, Any]) -> ChannelConfig:
    """Turn flat settings into an ``SSHChannelConfig`` or ``SerialChannelConfig``.

    Missing SSH values fall back to ``localhost:22`` as ``root`` with an
    empty password.  A serial configuration requires ``serial_device``.

    Raises:
        ChannelConfigError: For an unknown ``channel_type``, a missing serial
            device or a value that does not convert.
    """
    channel_type = str(settings.get("channel_type") or "ssh").strip().lower()
    timeout = _convert(settings, "timeout", int, CONNECTION_TIMEOUT)

    if channel_type == "ssh":
        config: ChannelConfig = SSHChannelConfig(
            host=str(settings.get("host") or "localhost"),
            port=_convert(settings, "port", int, SSH_PORT),
            user=str(settings.get("user") or "root"),
            password=str(settings.get("password") or ""),
            key_path=_optional_str(settings, "ssh_key_path") or None,
            timeout=timeout,
            multiplex=_convert(settings, "ssh_multiplex", _to_bool, False),
        )
    elif channel_type == "serial":
        device = settings.get("serial_device")
        if not device:
            raise ChannelConfigError("Serial device path is required for serial communication")
        config = SerialChannelConfig(
            device=str(device),
            baud_rate=_convert(settings, "baud_rate", int, SERIAL_BAUD_RATE),
            timeout=timeout,
            login_prompt=_optional_str(settings, "serial_login_prompt"),
            password_prompt=_optional_str(settings, "serial_password_prompt"),
            shell_prompt=_optional_str(settings, "serial_shell_prompt"),
            username=_optional_str(settings, "serial_username"),
            password=_optional_str(settings, "serial_password"),
        )
    else:
        raise ChannelConfigError(
            f"Unsupported communication channel type: {channel_type!r}. "
            f"Expected one of: {', '.join(CHANNEL_TYPES)}"
        )

    logger.debug("[CONFIG] Built %s channel configuration", config.channel_type)
    return config


def settings_from_env(
    environ: Optional[Mapping[str, str]] = None,
    prefix: str = ENV_PREFIX,
) -> Dict[str, str]:
    """Collect the ``<prefix>*`` variables as flat settings."""
    if environ is None:
        environ = os.environ
    settings = {}
    for suffix, key in _ENV_KEYS.items():
        value = environ.get(prefix + suffix)
        if value is not None:
            settings[key] = value
    return settings


def channel_config_from_env(
    environ: Optional[Mapping[str, str]] = None,
    prefix: str = ENV_PREFIX,
) -> ChannelConfig:
    """Build a channel configuration from ``DEVICE_*`` environment variables.

    Raises:
        ChannelConfigError: As for ``channel_config_from_mapping``.
    """
    return channel_config_from_mapping(settings_from_env(environ, prefix))
