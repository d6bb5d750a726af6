"""SCP file transfer over an authenticated SSH transport.

Implements both sides of the classic ``scp`` remote-copy protocol on a
paramiko session channel: the remote end runs ``scp -t <path>`` (sink)
for uploads and ``scp -f <path>`` (source) for downloads.  Every control
message is acknowledged by a single NUL byte; ``\\x01`` / ``\\x02``
followed by a text line reports a remote warning / error.

A transfer finishes with send-EOF, wait-EOF, close, wait-close in that
order; skipping a step leaves the remote file handle half-open.
"""

from __future__ import annotations

import os
import posixpath
import shlex
import time
from typing import Optional, Tuple

import paramiko
from tqdm import tqdm
from typeguard import typechecked

from . import CHUNK_SIZE, SCP_FILE_MODE
from .exceptions import FileTransferError

_ACK = b"\x00"


@typechecked
class ScpFileTransfer:
    """Copies single files to and from a device with SCP."""

    def __init__(self, transport: paramiko.Transport, timeout: float = 30.0) -> None:
        """Initialize file transfer handler.

        Args:
            transport: An authenticated, active paramiko transport.
            timeout: Per-read timeout in seconds on the SCP channel.
        """
        self.transport = transport
        self.timeout = timeout

    def _calculate_transfer_speed(self, start_time: float, bytes_transferred: int) -> float:
        """Calculate transfer speed in bytes per second."""
        elapsed = time.time() - start_time
        return bytes_transferred / elapsed if elapsed > 0 else 0.0

    def _open_scp(self, command: str) -> paramiko.Channel:
        try:
            chan = self.transport.open_session(timeout=self.timeout)
            chan.settimeout(self.timeout)
            chan.exec_command(command)
        except (paramiko.SSHException, OSError) as e:
            raise FileTransferError(f"Failed to start {command!r}: {e}") from e
        return chan

    def _read_line(self, chan: paramiko.Channel) -> bytes:
        line = bytearray()
        while not line.endswith(b"\n"):
            byte = chan.recv(1)
            if not byte:
                raise FileTransferError(
                    f"SCP channel closed while reading a control line (got {bytes(line)!r})"
                )
            line.extend(byte)
        return bytes(line)

    def _expect_ack(self, chan: paramiko.Channel, step: str) -> None:
        """Read one acknowledgement; raise on a remote warning or error."""
        code = chan.recv(1)
        if code == _ACK:
            return
        if not code:
            raise FileTransferError(f"SCP channel closed during {step}")
        message = self._read_line(chan).decode("utf-8", errors="replace").strip()
        raise FileTransferError(f"Remote SCP error during {step}: {message or code!r}")

    def _finish(self, chan: paramiko.Channel, description: str) -> None:
        """send-EOF, wait-EOF, close, wait-close."""
        try:
            chan.shutdown_write()
            while chan.recv(CHUNK_SIZE):
                pass
            exit_status = chan.recv_exit_status()
            chan.close()
        except (paramiko.SSHException, OSError) as e:
            raise FileTransferError(f"Failed to close SCP channel for {description}: {e}") from e
        if exit_status != 0:
            raise FileTransferError(
                f"Remote scp exited with status {exit_status} for {description}"
            )

    def _progress(self, total: int, desc: str, show_progress: bool) -> Optional[tqdm]:
        if not show_progress:
            return None
        return tqdm(total=total, unit="B", unit_scale=True, unit_divisor=1024, desc=desc)

    def upload_file(
        self,
        local_path: str,
        remote_path: str,
        show_progress: bool = True,
        chunk_size: int = CHUNK_SIZE,
    ) -> Tuple[int, float]:
        """Upload a file to the device.

        Args:
            local_path: Local file path
            remote_path: Remote destination path, or a directory ending in ``/``
            show_progress: Whether to display a progress bar
            chunk_size: Chunk size for reading

        Returns:
            Tuple of (bytes_transferred, transfer_speed)

        Raises:
            FileTransferError: If the local file is unusable or the copy fails.
        """
        if not os.path.isfile(local_path):
            raise FileTransferError(f"Local file does not exist or is not a file: {local_path}")
        if not os.access(local_path, os.R_OK):
            raise FileTransferError(f"Cannot read file: {local_path}")

        file_size = os.path.getsize(local_path)
        # A trailing slash names a remote directory; the file keeps its local name
        file_name = posixpath.basename(remote_path) or os.path.basename(local_path)
        description = f"upload {local_path} -> {remote_path}"
        start_time = time.time()
        bytes_transferred = 0

        chan = self._open_scp(f"scp -t {shlex.quote(remote_path)}")
        progress_bar = self._progress(file_size, f"Uploading {file_name}", show_progress)
        try:
            self._expect_ack(chan, "session start")
            header = f"C{SCP_FILE_MODE} {file_size} {file_name}\n"
            chan.sendall(header.encode("utf-8"))
            self._expect_ack(chan, "file header")

            with open(local_path, "rb") as local_file:
                while bytes_transferred < file_size:
                    chunk = local_file.read(chunk_size)
                    if not chunk:
                        break
                    chan.sendall(chunk)
                    bytes_transferred += len(chunk)
                    if progress_bar is not None:
                        progress_bar.update(len(chunk))

            if bytes_transferred != file_size:
                raise FileTransferError(
                    f"{local_path} shrank during {description}: "
                    f"sent {bytes_transferred} of {file_size} bytes"
                )
            chan.sendall(_ACK)
            self._expect_ack(chan, "file data")
            self._finish(chan, description)
        except FileTransferError:
            chan.close()
            raise
        except (paramiko.SSHException, OSError) as e:
            chan.close()
            raise FileTransferError(f"I/O error during {description}: {e}") from e
        finally:
            if progress_bar is not None:
                progress_bar.close()

        return (bytes_transferred, self._calculate_transfer_speed(start_time, bytes_transferred))

    def download_file(
        self,
        remote_path: str,
        local_path: str,
        show_progress: bool = True,
        chunk_size: int = CHUNK_SIZE,
    ) -> Tuple[int, float]:
        """Download a file from the device.

        Args:
            remote_path: Remote file path
            local_path: Local destination path
            show_progress: Whether to display a progress bar
            chunk_size: Chunk size for reading

        Returns:
            Tuple of (bytes_transferred, transfer_speed)

        Raises:
            FileTransferError: If the remote file is missing or the copy fails.
        """
        local_dir = os.path.dirname(local_path)
        if local_dir and not os.path.exists(local_dir):
            os.makedirs(local_dir, exist_ok=True)

        description = f"download {remote_path} -> {local_path}"
        start_time = time.time()
        bytes_transferred = 0
        progress_bar = None

        chan = self._open_scp(f"scp -f {shlex.quote(remote_path)}")
        try:
            chan.sendall(_ACK)
            header = self._read_line(chan)
            if header[:1] in (b"\x01", b"\x02"):
                message = header[1:].decode("utf-8", errors="replace").strip()
                raise FileTransferError(f"Remote SCP error during {description}: {message}")
            if not header.startswith(b"C"):
                raise FileTransferError(f"Unexpected SCP header during {description}: {header!r}")
            try:
                _mode, size_field, _name = header[1:].decode("utf-8").rstrip("\n").split(" ", 2)
                file_size = int(size_field)
            except ValueError as e:
                raise FileTransferError(f"Malformed SCP header during {description}: {header!r}") from e

            chan.sendall(_ACK)
            progress_bar = self._progress(file_size, f"Downloading {posixpath.basename(remote_path)}", show_progress)

            with open(local_path, "wb") as local_file:
                while bytes_transferred < file_size:
                    chunk = chan.recv(min(chunk_size, file_size - bytes_transferred))
                    if not chunk:
                        raise FileTransferError(
                            f"SCP channel closed after {bytes_transferred} of "
                            f"{file_size} bytes during {description}"
                        )
                    local_file.write(chunk)
                    bytes_transferred += len(chunk)
                    if progress_bar is not None:
                        progress_bar.update(len(chunk))

            self._expect_ack(chan, "file data")
            chan.sendall(_ACK)
            self._finish(chan, description)
        except FileTransferError:
            chan.close()
            raise
        except (paramiko.SSHException, OSError) as e:
            chan.close()
            raise FileTransferError(f"I/O error during {description}: {e}") from e
        finally:
            if progress_bar is not None:
                progress_bar.close()

        return (bytes_transferred, self._calculate_transfer_speed(start_time, bytes_transferred))
