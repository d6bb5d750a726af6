"""Custom exceptions for SSH and serial channel operations."""

from __future__ import annotations

from typing import Optional


class DeviceChannelError(Exception):
    """Common base exception for all device_channels errors."""
    pass


class ChannelConnectionError(DeviceChannelError):
    """Exception for transport failures (socket, handshake, port I/O).

    Also raised when an operation needs an open connection and the
    channel is not connected.
    """
    pass


class SSHConnectionError(ChannelConnectionError):
    """Exception for SSH connection errors."""
    pass


class SSHTimeoutError(SSHConnectionError):
    """Exception for SSH connection timeouts."""
    pass


class SerialCommunicationError(ChannelConnectionError):
    """Exception for serial communication errors.

    Raised when the serial port cannot be opened, configured, read from
    or written to.
    """
    pass


class ChannelAuthenticationError(DeviceChannelError):
    """Exception raised when every credential strategy has been exhausted."""
    pass


class CommandExecutionError(DeviceChannelError):
    """Exception for failures while running a command on the target.

    Attributes:
        command: The command that was being executed.
    """

    def __init__(self, message: str, *, command: str = "") -> None:
        super().__init__(message)
        self.command = command


class CommandTimeoutError(CommandExecutionError):
    """Exception raised when a command did not complete before its deadline.

    Any partially received output is discarded.

    Attributes:
        elapsed_seconds: Time spent waiting before giving up.
        timeout_seconds: The deadline that was requested.
    """

    def __init__(
        self,
        message: str,
        *,
        command: str = "",
        elapsed_seconds: float,
        timeout_seconds: float,
    ) -> None:
        super().__init__(message, command=command)
        self.elapsed_seconds = elapsed_seconds
        self.timeout_seconds = timeout_seconds


class RemoteCommandError(CommandExecutionError):
    """Exception for non-zero exit codes where a helper needs success.

    Attributes:
        command: The command that failed.
        return_code: The non-zero exit code.
        stdout: Standard output from the command.
        stderr: Standard error from the command.
    """

    def __init__(
        self,
        message: str,
        *,
        command: str,
        return_code: int,
        stdout: str,
        stderr: str,
    ) -> None:
        super().__init__(message, command=command)
        self.return_code = return_code
        self.stdout = stdout
        self.stderr = stderr


class ChannelConfigError(DeviceChannelError):
    """Exception for malformed or mismatched channel configuration."""
    pass


class UnsupportedOperationError(DeviceChannelError):
    """Exception for optional capabilities a transport does not implement."""

    def __init__(self, message: str, *, operation: Optional[str] = None) -> None:
        super().__init__(message)
        self.operation = operation


class FileTransferError(DeviceChannelError):
    """Exception for file transfer errors."""
    pass
