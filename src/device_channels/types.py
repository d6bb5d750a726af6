"""Type definitions for Device Channels."""

from __future__ import annotations

import dataclasses
from typing import Optional, Union

from . import (
    SSH_PORT,
    CONNECTION_TIMEOUT,
    SERIAL_BAUD_RATE,
    SERIAL_INTERRUPT_PAUSE_S,
    SERIAL_WAKEUP_PAUSE_S,
    SERIAL_POST_WAKEUP_PAUSE_S,
    SERIAL_SHELL_CHECK_TIMEOUT_S,
    SERIAL_LOGIN_PROMPT_TIMEOUT_S,
    SERIAL_PASSWORD_PROMPT_TIMEOUT_S,
    SERIAL_SHELL_PROMPT_TIMEOUT_S,
    SERIAL_SETTLE_S,
)
from .exceptions import ChannelConfigError


@dataclasses.dataclass(frozen=True)
class CommandOutput:
    """Uniform result of one command execution.

    Serial channels have no side channel for stderr or the exit status:
    ``stderr`` is always ``""`` and ``exit_code`` always ``0`` there.
    """
    stdout: str
    stderr: str
    exit_code: int

    @property
    def success(self) -> bool:
        return self.exit_code == 0


@dataclasses.dataclass(frozen=True)
class SSHChannelConfig:
    """Parameters for an SSH channel.

    Attributes:
        host: IP address or hostname of the device.
        port: SSH port (default: 22).
        user: Login user.
        password: Password used when no key authenticates.
        key_path: Private key to use exclusively.  ``None`` means "try the
            conventional key locations".
        timeout: Connect / handshake / read timeout in seconds.
        multiplex: Connection-sharing flag carried from the caller's
            configuration.  Every exec already runs on its own channel of
            one transport, so the flag is reported but changes nothing.
    """
    host: str
    port: int = SSH_PORT
    user: str = "root"
    password: str = ""
    key_path: Optional[str] = None
    timeout: int = CONNECTION_TIMEOUT
    multiplex: bool = False

    def __post_init__(self) -> None:
        if not self.host:
            raise ChannelConfigError("SSH host must not be empty")
        if not 0 < self.port < 65536:
            raise ChannelConfigError(
                f"Invalid SSH port {self.port!r} for {self.host}. "
                f"Port must be between 1 and 65535."
            )
        if self.timeout <= 0:
            raise ChannelConfigError(
                f"Invalid SSH timeout {self.timeout!r} for {self.host}. "
                f"Timeout must be a positive number of seconds."
            )

    @property
    def channel_type(self) -> str:
        return "ssh"


@dataclasses.dataclass(frozen=True)
class SerialChannelConfig:
    """Parameters for a serial console channel.

    Prompts are matched as substrings of the ANSI-stripped console text.
    Login is only attempted when ``username`` is set.
    """
    device: str
    baud_rate: int = SERIAL_BAUD_RATE
    timeout: int = CONNECTION_TIMEOUT
    login_prompt: Optional[str] = None
    password_prompt: Optional[str] = None
    shell_prompt: Optional[str] = None
    username: Optional[str] = None
    password: Optional[str] = None

    def __post_init__(self) -> None:
        if not self.device:
            raise ChannelConfigError("Serial device path must not be empty")
        if self.baud_rate <= 0:
            raise ChannelConfigError(
                f"Invalid baud rate {self.baud_rate!r} for port {self.device}. "
                f"Baud rate must be a positive integer. "
                f"Common values: 9600, 19200, 38400, 57600, 115200."
            )
        if self.timeout <= 0:
            raise ChannelConfigError(
                f"Invalid serial timeout {self.timeout!r} for port {self.device}. "
                f"Timeout must be a positive number of seconds."
            )

    @property
    def channel_type(self) -> str:
        return "serial"


ChannelConfig = Union[SSHChannelConfig, SerialChannelConfig]


@dataclasses.dataclass(frozen=True)
class LoginTimings:
    """Pauses and prompt deadlines (seconds) used by serial login automation."""
    interrupt_pause: float = SERIAL_INTERRUPT_PAUSE_S
    wakeup_pause: float = SERIAL_WAKEUP_PAUSE_S
    post_wakeup_pause: float = SERIAL_POST_WAKEUP_PAUSE_S
    shell_check_timeout: float = SERIAL_SHELL_CHECK_TIMEOUT_S
    login_prompt_timeout: float = SERIAL_LOGIN_PROMPT_TIMEOUT_S
    password_prompt_timeout: float = SERIAL_PASSWORD_PROMPT_TIMEOUT_S
    shell_prompt_timeout: float = SERIAL_SHELL_PROMPT_TIMEOUT_S
    settle: float = SERIAL_SETTLE_S
