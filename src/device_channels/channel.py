"""Communication channel abstraction shared by every transport."""

from __future__ import annotations

import abc
import logging
import platform

from . import COMMAND_TIMEOUT
from .exceptions import ChannelConfigError, UnsupportedOperationError
from .types import ChannelConfig, CommandOutput, SerialChannelConfig, SSHChannelConfig

logger = logging.getLogger("device_channels.channel")

_IS_WINDOWS = platform.system() == "Windows"


class CommunicationChannel(abc.ABC):
    """Connect / execute / disconnect over one transport.

    A channel is owned by exactly one caller and runs one command at a
    time.  Reconnection is never automatic: after a dropped connection the
    caller must ``connect()`` again.

    Example::

        with create_channel(SSHChannelConfig(host="192.168.1.100")) as channel:
            output = channel.execute_command("uname -r")
            print(output.stdout)
    """

    @abc.abstractmethod
    def connect(self) -> None:
        """Establish the session.

        Raises:
            ChannelConnectionError: If the transport cannot be set up.
            ChannelAuthenticationError: If no credential is accepted.
        """

    @abc.abstractmethod
    def disconnect(self) -> None:
        """Release the session.  Safe to call repeatedly or after a failure."""

    def execute_command(self, command: str) -> CommandOutput:
        """Run *command* with the default timeout."""
        return self.execute_command_with_timeout(command, COMMAND_TIMEOUT)

    @abc.abstractmethod
    def execute_command_with_timeout(self, command: str, timeout: float) -> CommandOutput:
        """Run *command* on the target.

        Args:
            command: Shell command text (no trailing newline).
            timeout: Deadline in seconds.

        Raises:
            ChannelConnectionError: If the channel is not connected.
            CommandExecutionError: If the command cannot be run.
            CommandTimeoutError: If the transport enforces the deadline and
                it elapsed.
        """

    @abc.abstractmethod
    def is_connected(self) -> bool:
        """Return the connection state without touching the transport."""

    @abc.abstractmethod
    def description(self) -> str:
        """Human-readable identity of the channel, for logs."""

    def upload_file(self, local_path: str, remote_path: str) -> None:
        """Copy a local file to the target (not supported by default)."""
        raise UnsupportedOperationError(
            f"File upload not supported by {self.description()}",
            operation="upload_file",
        )

    def download_file(self, remote_path: str, local_path: str) -> None:
        """Copy a file from the target (not supported by default)."""
        raise UnsupportedOperationError(
            f"File download not supported by {self.description()}",
            operation="download_file",
        )

    def __enter__(self) -> CommunicationChannel:
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.disconnect()


def create_channel(config: ChannelConfig) -> CommunicationChannel:
    """Build the channel matching the configuration variant.

    On Windows, serial configurations get the blocking, lock-guarded
    ``WindowsSerialChannel``.

    Raises:
        ChannelConfigError: If *config* is neither an ``SSHChannelConfig``
            nor a ``SerialChannelConfig``.
    """
    # Imported here: the concrete modules import this one.
    from .serial_comm import SerialChannel
    from .serial_windows import WindowsSerialChannel
    from .ssh_channel import SSHChannel

    if isinstance(config, SSHChannelConfig):
        channel: CommunicationChannel = SSHChannel(config)
    elif isinstance(config, SerialChannelConfig):
        if _IS_WINDOWS:
            channel = WindowsSerialChannel(config)
        else:
            channel = SerialChannel(config)
    else:
        raise ChannelConfigError(
            f"Unknown channel configuration: expected SSH or serial parameters, "
            f"got {type(config).__name__}"
        )

    logger.debug("[CHANNEL] Created %s", channel.description())
    return channel
