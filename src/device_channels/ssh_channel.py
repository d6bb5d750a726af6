"""SSH channel with key/password authentication fallback.

Host keys are not verified: the targets are stateless devices on internal
test networks whose keys change with every reflash.
"""

from __future__ import annotations

import logging
import os
import socket
import time
from pathlib import Path
from typing import List, Optional, Tuple

import paramiko
from paramiko.pkey import UnknownKeyType

from . import CHUNK_SIZE, SSH_LOCAL_KEY_FILES, SSH_HOME_KEY_FILES, SSH_POLL_INTERVAL_S
from .channel import CommunicationChannel
from .exceptions import (
    ChannelAuthenticationError,
    ChannelConfigError,
    CommandExecutionError,
    SSHConnectionError,
    SSHTimeoutError,
)
from .file_transfer import ScpFileTransfer
from .types import CommandOutput, SSHChannelConfig

logger = logging.getLogger("device_channels.ssh_channel")

# Key type announced in a ``.pub`` file -> paramiko key class
_KEY_CLASSES = {
    "ssh-ed25519": paramiko.Ed25519Key,
    "ssh-rsa": paramiko.RSAKey,
    "ecdsa-sha2-nistp256": paramiko.ECDSAKey,
    "ecdsa-sha2-nistp384": paramiko.ECDSAKey,
    "ecdsa-sha2-nistp521": paramiko.ECDSAKey,
}
if hasattr(paramiko, "DSSKey"):
    _KEY_CLASSES["ssh-dss"] = paramiko.DSSKey


def default_key_paths() -> List[str]:
    """Conventional private key locations, in the order they are tried.

    The tool's own generated key comes first (working directory, then
    ``~/.ssh``), followed by ed25519, RSA, ECDSA and DSA user keys.
    """
    home = Path.home()
    return [str(Path(name)) for name in SSH_LOCAL_KEY_FILES] + [
        str(home / name) for name in SSH_HOME_KEY_FILES
    ]


def load_private_key(key_path: str) -> paramiko.PKey:
    """Load the private key at *key_path*.

    When ``<key_path>.pub`` exists its announced key type selects the key
    class; otherwise the type is detected from the private key file.

    Raises:
        paramiko.SSHException: If the key cannot be parsed (including
            passphrase-protected keys and unknown key types).
        OSError: If the file cannot be read.
    """
    public_key_path = f"{key_path}.pub"
    if os.path.isfile(public_key_path):
        try:
            blob = paramiko.PublicBlob.from_file(public_key_path)
        except ValueError as exc:
            logger.debug("[SSH-AUTH] Ignoring unreadable public key %s: %s", public_key_path, exc)
        else:
            key_class = _KEY_CLASSES.get(blob.key_type)
            if key_class is not None:
                logger.debug("[SSH-AUTH] Loading %s key %s (type from %s)", blob.key_type, key_path, public_key_path)
                return key_class.from_private_key_file(key_path)
    try:
        return paramiko.PKey.from_path(key_path)
    except (UnknownKeyType, ValueError, TypeError) as exc:
        raise paramiko.SSHException(f"Cannot load private key {key_path}: {exc}") from exc


class SSHChannel(CommunicationChannel):
    """Runs commands over one authenticated SSH transport.

    Each command gets its own exec channel on the transport, so stdout,
    stderr and the exit status come back separately.

    Example::

        config = SSHChannelConfig(host="192.168.1.100", user="root", password="secret")
        with SSHChannel(config) as channel:
            output = channel.execute_command("cat /etc/os-release")
            print(output.exit_code, output.stdout)
    """

    def __init__(self, config: SSHChannelConfig) -> None:
        """Initialize the channel.  No I/O happens until ``connect()``.

        Raises:
            ChannelConfigError: If *config* is not an ``SSHChannelConfig``.
        """
        if not isinstance(config, SSHChannelConfig):
            raise ChannelConfigError(
                f"Invalid channel config for SSH: expected SSH parameters, "
                f"got {type(config).__name__}"
            )
        self.config = config
        self.transport: Optional[paramiko.Transport] = None
        self.show_progress = False

    @property
    def _target(self) -> str:
        return f"{self.config.user}@{self.config.host}:{self.config.port}"

    # ------------------------------------------------------------------
    # Connection
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the TCP connection, run the SSH handshake and authenticate.

        Raises:
            SSHTimeoutError: If the TCP connection or handshake times out.
            SSHConnectionError: If the TCP connection or handshake fails.
            ChannelAuthenticationError: If no key and no password is accepted.
        """
        if self.is_connected():
            logger.debug("[SSH-CONNECT] Already connected to %s — skipping", self._target)
            return

        timeout = self.config.timeout
        logger.info(
            "[SSH-CONNECT] Connecting to %s (timeout=%ds, multiplex=%s) ...",
            self._target, timeout, self.config.multiplex,
        )
        start_time = time.time()

        sock: Optional[socket.socket] = None
        transport: Optional[paramiko.Transport] = None
        try:
            sock = socket.create_connection((self.config.host, self.config.port), timeout=timeout)
            sock.settimeout(timeout)

            transport = paramiko.Transport(sock)
            transport.banner_timeout = timeout
            transport.handshake_timeout = timeout
            transport.auth_timeout = timeout
            transport.start_client(timeout=timeout)
            # start_client returns silently when its own deadline passes
            # first; this raises unless the key exchange completed.
            transport.get_remote_server_key()
        except socket.timeout as e:
            self._abandon(transport, sock)
            elapsed = time.time() - start_time
            msg = (
                f"Connection to {self.config.host}:{self.config.port} timed out "
                f"after {elapsed:.1f}s (limit {timeout}s)"
            )
            logger.error("[SSH-CONNECT] TIMEOUT — %s", msg)
            raise SSHTimeoutError(msg) from e
        except paramiko.SSHException as e:
            self._abandon(transport, sock)
            elapsed = time.time() - start_time
            if elapsed >= timeout:
                msg = (
                    f"SSH handshake with {self.config.host}:{self.config.port} timed out "
                    f"after {elapsed:.1f}s (limit {timeout}s): {e}"
                )
                logger.error("[SSH-CONNECT] TIMEOUT — %s", msg)
                raise SSHTimeoutError(msg) from e
            msg = f"SSH handshake with {self.config.host}:{self.config.port} failed: {e}"
            logger.error("[SSH-CONNECT] SSH ERROR — %s", msg)
            raise SSHConnectionError(msg) from e
        except OSError as e:
            self._abandon(transport, sock)
            msg = f"TCP connection to {self.config.host}:{self.config.port} failed: {e}"
            logger.error("[SSH-CONNECT] OS ERROR — %s", msg)
            raise SSHConnectionError(msg) from e

        try:
            self._authenticate(transport)
        except Exception:
            self._abandon(transport, sock)
            raise

        self.transport = transport
        logger.info(
            "[SSH-CONNECT] Connected to %s in %.2fs", self._target, time.time() - start_time,
        )

    @staticmethod
    def _abandon(transport: Optional[paramiko.Transport], sock: Optional[socket.socket]) -> None:
        if transport is not None:
            transport.close()
        if sock is not None:
            sock.close()

    def _candidate_keys(self) -> List[str]:
        if self.config.key_path is not None:
            # Only the configured key: trying more would burn through the
            # server's MaxAuthTries before the password gets a chance.
            return [self.config.key_path]
        return default_key_paths()

    def _try_key_auth(self, transport: paramiko.Transport) -> bool:
        """Try public key authentication with each candidate key once."""
        for key_path in self._candidate_keys():
            if not os.path.isfile(key_path):
                continue

            logger.debug("[SSH-AUTH] Trying SSH key %s for %s", key_path, self._target)
            try:
                key = load_private_key(key_path)
                transport.auth_publickey(self.config.user, key)
            except (paramiko.SSHException, OSError) as exc:
                logger.debug("[SSH-AUTH] Key authentication failed for %s: %s", key_path, exc)
                if self.config.key_path is not None:
                    logger.debug(
                        "[SSH-AUTH] Specific key failed, not trying additional keys",
                    )
                    break
                continue

            if transport.is_authenticated():
                logger.info("[SSH-AUTH] Key authentication successful with %s", key_path)
                return True
        return False

    def _authenticate(self, transport: paramiko.Transport) -> None:
        if self._try_key_auth(transport):
            return

        logger.debug("[SSH-AUTH] Key authentication failed, trying password for %s", self._target)
        try:
            transport.auth_password(self.config.user, self.config.password)
        except paramiko.SSHException as e:
            msg = f"Password authentication failed for {self._target}: {e}"
            logger.error("[SSH-AUTH] AUTH FAILED — %s", msg)
            raise ChannelAuthenticationError(msg) from e

        if not transport.is_authenticated():
            msg = f"Authentication failed for {self._target}"
            logger.error("[SSH-AUTH] AUTH FAILED — %s", msg)
            raise ChannelAuthenticationError(msg)

    def is_connected(self) -> bool:
        """Check if the SSH transport is active."""
        return self.transport is not None and self.transport.is_active()

    def disconnect(self) -> None:
        """Close the SSH transport if open."""
        was_connected = self.is_connected()

        if self.transport is not None:
            try:
                self.transport.close()
            except Exception as exc:
                logger.warning("[SSH-DISCONNECT] Error closing connection to %s: %s", self._target, exc)
            finally:
                self.transport = None

        if was_connected:
            logger.info("[SSH-DISCONNECT] Disconnected from %s", self._target)
        else:
            logger.debug("[SSH-DISCONNECT] disconnect() called on already-closed connection to %s", self._target)

    def description(self) -> str:
        return f"SSH connection to {self._target}"

    def __del__(self) -> None:
        try:
            self.disconnect()
        except Exception:
            pass

    # ------------------------------------------------------------------
    # Commands
    # ------------------------------------------------------------------

    def _active_transport(self, operation: str) -> paramiko.Transport:
        if self.transport is None or not self.transport.is_active():
            msg = f"Cannot {operation}: not connected to {self.config.host}:{self.config.port}"
            logger.error("[SSH-EXEC] %s", msg)
            raise SSHConnectionError(msg)
        return self.transport

    def _read_both_streams(self, chan: paramiko.Channel) -> Tuple[bytes, bytes]:
        """Collect stdout and stderr of *chan* until the remote side sends EOF.

        Both streams are drained in the same loop, so a command that fills
        the stderr window before writing stdout cannot stall the transfer.

        Raises:
            socket.timeout: If neither stream delivers data for the
                configured read timeout.
        """
        stdout = bytearray()
        stderr = bytearray()
        last_data = time.monotonic()
        while True:
            received = False
            while chan.recv_ready():
                stdout.extend(chan.recv(CHUNK_SIZE))
                received = True
            while chan.recv_stderr_ready():
                stderr.extend(chan.recv_stderr(CHUNK_SIZE))
                received = True

            if received:
                last_data = time.monotonic()
                continue
            if chan.eof_received or chan.closed:
                # Extended data may still be queued behind the EOF
                if not (chan.recv_ready() or chan.recv_stderr_ready()):
                    return bytes(stdout), bytes(stderr)
                continue
            if time.monotonic() - last_data > self.config.timeout:
                raise socket.timeout(f"no data for {self.config.timeout}s")
            time.sleep(SSH_POLL_INTERVAL_S)

    def execute_command_with_timeout(self, command: str, timeout: float) -> CommandOutput:
        """Run *command* on a fresh exec channel.

        The *timeout* is advisory: when the command takes longer a warning
        is logged after it finishes, the remote process is never
        interrupted.  A channel that stays silent for longer than the
        configured read timeout fails the command.

        Raises:
            SSHConnectionError: If the channel is not connected.
            CommandExecutionError: If the exec channel fails.
        """
        transport = self._active_transport("execute command")
        logger.debug("[SSH-EXEC] Running on %s — %r", self._target, command)
        start_time = time.monotonic()

        try:
            chan = transport.open_session(timeout=self.config.timeout)
        except (paramiko.SSHException, OSError) as e:
            msg = f"Failed to create channel on {self._target}: {e}"
            logger.error("[SSH-EXEC] %s", msg)
            raise CommandExecutionError(msg, command=command) from e

        try:
            chan.settimeout(self.config.timeout)
            chan.exec_command(command)
            raw_stdout, raw_stderr = self._read_both_streams(chan)
            exit_code = chan.recv_exit_status()
        except socket.timeout as e:
            msg = (
                f"No data from {self._target} for {self.config.timeout}s while "
                f"running {command!r}"
            )
            logger.error("[SSH-EXEC] READ TIMEOUT — %s", msg)
            raise CommandExecutionError(msg, command=command) from e
        except (paramiko.SSHException, OSError) as e:
            msg = f"Error executing {command!r} on {self._target}: {e}"
            logger.error("[SSH-EXEC] SSH ERROR — %s", msg)
            raise CommandExecutionError(msg, command=command) from e
        finally:
            chan.close()

        stdout = raw_stdout.decode("utf-8", errors="replace")
        stderr = raw_stderr.decode("utf-8", errors="replace")
        elapsed = time.monotonic() - start_time
        if elapsed > timeout:
            logger.warning(
                "[SSH-EXEC] Command %r on %s took %.2fs, longer than the requested %.2fs",
                command, self._target, elapsed, timeout,
            )

        logger.debug(
            "[SSH-EXEC] Completed on %s — rc=%d, stdout=%d chars, stderr=%d chars",
            self._target, exit_code, len(stdout), len(stderr),
        )
        return CommandOutput(stdout=stdout, stderr=stderr, exit_code=exit_code)

    # ------------------------------------------------------------------
    # File transfer
    # ------------------------------------------------------------------

    def upload_file(self, local_path: str, remote_path: str) -> None:
        """Copy *local_path* to *remote_path* with SCP.

        Raises:
            SSHConnectionError: If the channel is not connected.
            FileTransferError: If the copy fails.
        """
        transport = self._active_transport("upload file")
        ScpFileTransfer(transport, timeout=float(self.config.timeout)).upload_file(
            local_path, remote_path, show_progress=self.show_progress,
        )
        logger.info("[SSH-SCP] File uploaded: %s -> %s:%s", local_path, self.config.host, remote_path)

    def download_file(self, remote_path: str, local_path: str) -> None:
        """Copy *remote_path* to *local_path* with SCP.

        Raises:
            SSHConnectionError: If the channel is not connected.
            FileTransferError: If the copy fails.
        """
        transport = self._active_transport("download file")
        ScpFileTransfer(transport, timeout=float(self.config.timeout)).download_file(
            remote_path, local_path, show_progress=self.show_progress,
        )
        logger.info("[SSH-SCP] File downloaded: %s:%s -> %s", self.config.host, remote_path, local_path)
