"""Convenience operations on a device, built on one communication channel."""

from __future__ import annotations

import dataclasses
import logging
import shlex
from typing import List, Optional

from typeguard import typechecked

from .channel import CommunicationChannel, create_channel
from .exceptions import DeviceChannelError, RemoteCommandError
from .types import ChannelConfig, CommandOutput

logger = logging.getLogger("device_channels.target")

UNKNOWN = "Unknown"


@dataclasses.dataclass(frozen=True)
class SystemInfo:
    """Snapshot of basic system facts; any field may be ``"Unknown"``."""
    kernel_version: str
    uptime: str
    cpu_info: str
    memory_usage: str
    disk_usage: str
    power_governor: str
    os_release: str


@typechecked
class Target:
    """A device under test, reached through exactly one channel.

    Nothing here knows which transport is in use: every helper is a shell
    command run through ``CommunicationChannel.execute_command``.  Helpers
    that only describe the system fall back to a placeholder value when the
    command fails; helpers whose result the caller relies on raise
    ``RemoteCommandError``.

    Example::

        target = Target.from_config(SSHChannelConfig(host="192.168.1.100"))
        with target:
            if target.file_exists("/etc/os-release"):
                print(target.read_file("/etc/os-release"))
    """

    def __init__(self, channel: CommunicationChannel) -> None:
        self._channel = channel

    @classmethod
    def from_config(cls, config: ChannelConfig) -> "Target":
        return cls(create_channel(config))

    # ------------------------------------------------------------------
    # Channel passthrough
    # ------------------------------------------------------------------

    @property
    def channel(self) -> CommunicationChannel:
        return self._channel

    def connect(self) -> None:
        logger.info("[TARGET] Connecting using %s", self._channel.description())
        self._channel.connect()

    def disconnect(self) -> None:
        logger.info("[TARGET] Disconnecting from %s", self._channel.description())
        self._channel.disconnect()

    def is_connected(self) -> bool:
        return self._channel.is_connected()

    def execute_command(self, command: str) -> CommandOutput:
        logger.debug("[TARGET] Executing command: %r", command)
        return self._channel.execute_command(command)

    def execute_command_with_timeout(self, command: str, timeout: float) -> CommandOutput:
        logger.debug("[TARGET] Executing command with timeout %.3fs: %r", timeout, command)
        return self._channel.execute_command_with_timeout(command, timeout)

    def upload_file(self, local_path: str, remote_path: str) -> None:
        logger.info("[TARGET] Uploading file: %s -> %s", local_path, remote_path)
        self._channel.upload_file(local_path, remote_path)

    def download_file(self, remote_path: str, local_path: str) -> None:
        logger.info("[TARGET] Downloading file: %s -> %s", remote_path, local_path)
        self._channel.download_file(remote_path, local_path)

    def __enter__(self) -> "Target":
        self.connect()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:  # type: ignore[no-untyped-def]
        self.disconnect()

    def _require_success(self, command: str, what: str) -> CommandOutput:
        output = self.execute_command(command)
        if not output.success:
            msg = (
                f"Failed to {what} on {self._channel.description()} "
                f"(exit {output.exit_code}): {output.stderr.strip()[:200] or '(empty)'}"
            )
            logger.warning("[TARGET] %s", msg)
            raise RemoteCommandError(
                msg,
                command=command,
                return_code=output.exit_code,
                stdout=output.stdout,
                stderr=output.stderr,
            )
        return output

    # ------------------------------------------------------------------
    # Files
    # ------------------------------------------------------------------

    def file_exists(self, path: str) -> bool:
        return self.execute_command(f"test -f {shlex.quote(path)}").success

    def directory_exists(self, path: str) -> bool:
        return self.execute_command(f"test -d {shlex.quote(path)}").success

    def read_file(self, path: str) -> str:
        """Return the contents of *path*.

        Raises:
            RemoteCommandError: If ``cat`` fails (missing file, permissions).
        """
        return self._require_success(f"cat {shlex.quote(path)}", f"read file {path}").stdout

    def write_file(self, path: str, content: str) -> None:
        """Replace *path* with *content* followed by a newline.

        Raises:
            RemoteCommandError: If the shell redirection fails.
        """
        command = f"echo {shlex.quote(content)} > {shlex.quote(path)}"
        self._require_success(command, f"write file {path}")

    # ------------------------------------------------------------------
    # System information
    # ------------------------------------------------------------------

    def get_kernel_version(self) -> str:
        return self._require_success("uname -r", "get kernel version").stdout.strip()

    def get_uptime(self) -> str:
        """Pretty uptime, or the classic ``uptime`` line on busybox systems."""
        output = self.execute_command("uptime -p")
        if output.success:
            return output.stdout.strip()
        return self._require_success("uptime", "get uptime").stdout.strip()

    def get_cpu_info(self) -> str:
        output = self.execute_command(
            "cat /proc/cpuinfo | grep 'model name' | head -1 | cut -d':' -f2"
        )
        return output.stdout.strip() if output.success else "Unknown CPU"

    def get_memory_usage(self) -> str:
        output = self.execute_command("free -h | grep Mem | awk '{print $3 \"/\" $2}'")
        return output.stdout.strip() if output.success else "Unknown memory usage"

    def get_disk_usage(self) -> str:
        output = self.execute_command(
            "df -h / | tail -1 | awk '{print $3 \"/\" $2 \" (\" $5 \" used)\"}'"
        )
        return output.stdout.strip() if output.success else "Unknown disk usage"

    def get_power_governor(self) -> str:
        output = self.execute_command(
            "cat /sys/devices/system/cpu/cpu0/cpufreq/scaling_governor 2>/dev/null || echo 'N/A'"
        )
        return output.stdout.strip()

    def get_os_release(self) -> str:
        output = self.execute_command("cat /etc/os-release")
        return output.stdout if output.success else "Unknown OS"

    def get_process_count(self) -> int:
        """Number of processes, not counting the ``ps`` header line."""
        output = self.execute_command("ps aux | wc -l")
        if not output.success:
            return 0
        try:
            count = int(output.stdout.strip())
        except ValueError:
            return 0
        return max(count - 1, 0)

    def get_network_interfaces(self) -> List[str]:
        """Interface names from ``ip link``, loopback excluded."""
        output = self.execute_command(
            "ip link show | grep '^[0-9]' | awk -F': ' '{print $2}' | grep -v lo"
        )
        if not output.success:
            return []
        return [line.strip() for line in output.stdout.splitlines() if line.strip()]

    def get_listening_ports(self) -> List[int]:
        """Listening TCP ports, ascending; unparsable lines are skipped."""
        output = self.execute_command(
            "ss -tlnp | grep LISTEN | awk '{print $4}' | cut -d':' -f2 | sort -n"
        )
        if not output.success:
            return []
        ports = []
        for line in output.stdout.splitlines():
            try:
                port = int(line.strip())
            except ValueError:
                continue
            if 0 <= port < 65536:
                ports.append(port)
        return ports

    def service_is_active(self, service: str) -> bool:
        output = self.execute_command(f"systemctl is-active {shlex.quote(service)}")
        return output.success and output.stdout.strip() == "active"

    def service_is_enabled(self, service: str) -> bool:
        output = self.execute_command(f"systemctl is-enabled {shlex.quote(service)}")
        return output.success and output.stdout.strip() == "enabled"

    def get_boot_time(self) -> float:
        """Seconds until systemd reported "Startup finished", ``0.0`` if unknown."""
        output = self.execute_command(
            "systemd-analyze | grep 'Startup finished' | awk '{print $(NF-1)}' | sed 's/s//'"
        )
        return _parse_float(output) or 0.0

    def get_cpu_usage(self) -> float:
        """User CPU percentage from one ``top`` iteration, ``0.0`` if unknown."""
        output = self.execute_command(
            "top -bn1 | grep 'Cpu(s)' | awk '{print $2}' | sed 's/%us,//'"
        )
        return _parse_float(output) or 0.0

    def get_memory_usage_mb(self) -> int:
        output = self.execute_command("free -m | grep Mem | awk '{print $3}'")
        if not output.success:
            return 0
        try:
            return int(output.stdout.strip())
        except ValueError:
            return 0

    def get_system_info(self) -> SystemInfo:
        """Collect every descriptive field; a failing probe yields ``"Unknown"``."""
        return SystemInfo(
            kernel_version=self._describe(self.get_kernel_version),
            uptime=self._describe(self.get_uptime),
            cpu_info=self._describe(self.get_cpu_info),
            memory_usage=self._describe(self.get_memory_usage),
            disk_usage=self._describe(self.get_disk_usage),
            power_governor=self._describe(self.get_power_governor),
            os_release=self._describe(self.get_os_release),
        )

    def _describe(self, probe) -> str:  # type: ignore[no-untyped-def]
        try:
            return probe()
        except DeviceChannelError as exc:
            logger.warning("[TARGET] %s failed: %s", probe.__name__, exc)
            return UNKNOWN


def _parse_float(output: CommandOutput) -> Optional[float]:
    if not output.success:
        return None
    try:
        return float(output.stdout.strip())
    except ValueError:
        return None
