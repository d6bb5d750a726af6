"""Serial console channel with login automation and output extraction.

A serial console has no framing, no authentication protocol and no
separate error stream: it is a character stream that a human would
normally type into.  ``SerialChannel`` automates that human:

1. **Wake up** the line (Ctrl-C, then ``\\r\\n``, ``\\n``, ``\\r``).
2. **Log in** if the console asks for it (username, optional password).
3. For every command: **send** ``command\\r\\n``, then **read** until the
   shell prompt comes back, dropping the command echo and the prompt.

The login sequence runs once per connection and is written as a small
state machine (``LoginState``).  Some prompt timeouts are deliberately
forgiven and lead to ``READY`` instead of an error: a console that does
not ask for a login is assumed to be at a shell already.

Cross-platform: works on both Windows 10 (COMx) and Linux
(/dev/ttyUSB*, /dev/ttyS*, /dev/ttyACM*).  On Windows ``create_channel``
selects ``WindowsSerialChannel`` which runs the same state machine over a
blocking, lock-guarded handle.

Default line settings: 115200 8N1 (no flow control).
"""

from __future__ import annotations

import abc
import enum
import logging
import platform
import time
from typing import Callable, Dict, List, Optional

import serial
import serial.tools.list_ports

from . import (
    SERIAL_BYTESIZE,
    SERIAL_PARITY,
    SERIAL_STOPBITS,
    SERIAL_READ_TIMEOUT,
    SERIAL_WRITE_TIMEOUT,
    SERIAL_POLL_INTERVAL_S,
    SERIAL_DEFAULT_SHELL_PROMPT,
)
from .channel import CommunicationChannel
from .console import CommandOutputExtractor, looks_like_shell, strip_ansi_codes
from .exceptions import (
    ChannelAuthenticationError,
    ChannelConfigError,
    CommandExecutionError,
    CommandTimeoutError,
    SerialCommunicationError,
    UnsupportedOperationError,
)
from .types import CommandOutput, LoginTimings, SerialChannelConfig

logger = logging.getLogger("device_channels.serial_comm")

_IS_WINDOWS = platform.system() == "Windows"

_CTRL_C = b"\x03"
_WAKEUP_LINE_ENDINGS = (b"\r\n", b"\n", b"\r")

# Map string parity values to pyserial constants
_PARITY_MAP = {
    "N": serial.PARITY_NONE,
    "E": serial.PARITY_EVEN,
    "O": serial.PARITY_ODD,
}

# Map integer stopbits to pyserial constants
_STOPBITS_MAP = {
    1: serial.STOPBITS_ONE,
    2: serial.STOPBITS_TWO,
}

# Map integer bytesize to pyserial constants
_BYTESIZE_MAP = {
    7: serial.SEVENBITS,
    8: serial.EIGHTBITS,
}


class LoginState(enum.Enum):
    """States of the serial login automation."""
    AWAITING_WAKEUP = "awaiting-wakeup"
    CHECKING_SHELL_PROMPT = "checking-shell-prompt"
    AWAITING_LOGIN_PROMPT = "awaiting-login-prompt"
    AWAITING_PASSWORD_PROMPT = "awaiting-password-prompt"
    AWAITING_SHELL_PROMPT = "awaiting-shell-prompt"
    READY = "ready"


def list_available_ports() -> List[str]:
    """Return the serial ports visible to the operating system.

    Useful for diagnostics when the caller is unsure which port to use.
    """
    descriptions = []
    for p in serial.tools.list_ports.comports():
        descriptions.append(f"{p.device} — {p.description}")
        logger.debug("[SERIAL-LIST] Found port: %s (%s)", p.device, p.description)
    return descriptions


def _platform_hint() -> str:
    """Return a platform-specific troubleshooting hint."""
    available = ", ".join(p.device for p in serial.tools.list_ports.comports())
    if _IS_WINDOWS:
        return (
            "On Windows: verify the COM port number in Device Manager "
            "(Ports → COM & LPT). Ensure no other application (PuTTY, "
            "TeraTerm) has the port open. "
            f"Available ports: {available or '(none)'}."
        )
    return (
        "On Linux: verify the device path exists (ls /dev/ttyUSB* /dev/ttyACM* "
        "/dev/ttyS*). Ensure your user is in the 'dialout' group "
        "(sudo usermod -aG dialout $USER) and that no other process "
        "(minicom, screen, picocom) has the port open. "
        f"Available ports: {available or '(none)'}."
    )


class SerialChannelBase(CommunicationChannel):
    """Login automation and command extraction shared by the serial channels.

    Subclasses provide the substrate: how the port is opened, how pending
    bytes are read and how bytes are written.  Everything observable (the
    wake-up burst, prompt waits, echo and prompt handling, timeouts) lives
    here so both variants behave identically.
    """

    def __init__(
        self,
        config: SerialChannelConfig,
        timings: Optional[LoginTimings] = None,
        poll_interval_s: float = SERIAL_POLL_INTERVAL_S,
    ) -> None:
        """Initialize the channel.  No I/O happens until ``connect()``.

        Args:
            config: Serial parameters (device, baud rate, prompts, credentials).
            timings: Login pauses and prompt deadlines.  Default: ``LoginTimings()``.
            poll_interval_s: Sleep between empty reads while waiting for output.

        Raises:
            ChannelConfigError: If *config* is not a ``SerialChannelConfig``.
        """
        if not isinstance(config, SerialChannelConfig):
            raise ChannelConfigError(
                f"Invalid channel config for {type(self).__name__}: "
                f"expected serial parameters, got {type(config).__name__}"
            )
        self.config = config
        self.timings = timings or LoginTimings()
        self.poll_interval_s = poll_interval_s
        self.login_state = LoginState.AWAITING_WAKEUP
        self._serial: Optional[serial.Serial] = None
        self._connected = False
        self._logged_in = False
        # Console text seen by a prompt wait that did not satisfy it; the
        # next wait of the same login sequence starts from it.
        self._pending = ""

    # ------------------------------------------------------------------
    # Substrate
    # ------------------------------------------------------------------

    @abc.abstractmethod
    def _open_port(self) -> serial.Serial:
        """Open and return the configured port (pyserial errors propagate)."""

    @abc.abstractmethod
    def _read_available(self) -> bytes:
        """Return the bytes received so far, possibly ``b""``."""

    @abc.abstractmethod
    def _write(self, data: bytes, label: str) -> None:
        """Write *data* completely and flush it to the device."""

    def _port(self) -> serial.Serial:
        if self._serial is None or not self._serial.is_open:
            raise SerialCommunicationError(
                f"Serial port {self.config.device} is not connected. "
                f"Call connect() or use the context manager first."
            )
        return self._serial

    def _write_all(self, ser: serial.Serial, data: bytes, label: str) -> None:
        """Write all of *data* and flush the OS transmit buffer.

        Raises:
            SerialCommunicationError: On a short write or any I/O failure.
        """
        port_name = self.config.device
        try:
            n = ser.write(data)
            if n is not None and n != len(data):
                raise SerialCommunicationError(
                    f"Short write ({label}) on {port_name}: wrote {n}/{len(data)} bytes."
                )
            ser.flush()
        except serial.SerialException as exc:
            msg = (
                f"Failed to write ({label}) to serial port {port_name}: {exc}. "
                f"The device may have been disconnected."
            )
            logger.error("[SERIAL-WRITE] ERROR — %s", msg)
            raise SerialCommunicationError(msg) from exc
        except OSError as exc:
            msg = (
                f"OS error writing ({label}) to serial port {port_name}: {exc}. "
                f"The device may have been physically removed."
            )
            logger.error("[SERIAL-WRITE] OS ERROR — %s", msg)
            raise SerialCommunicationError(msg) from exc
        logger.debug("[SERIAL-WRITE] [%s] Sent %d bytes to %s", label, len(data), port_name)

    def _read_error(self, exc: Exception) -> SerialCommunicationError:
        msg = (
            f"Serial read error on {self.config.device}: {exc}. "
            f"The device may have been disconnected during the read."
        )
        logger.error("[SERIAL-READ] ERROR — %s", msg)
        return SerialCommunicationError(msg)

    def _send_line(self, text: str, label: str) -> None:
        self._write((text + "\r\n").encode("utf-8"), label)

    def _drain_input(self, max_drain_s: float = 2.0) -> int:
        """Discard bytes that arrived since the last read.

        A deadline of *max_drain_s* seconds stops the drain on a line that
        never goes quiet.
        """
        discarded = 0
        drain_deadline = time.monotonic() + max_drain_s
        while time.monotonic() < drain_deadline:
            chunk = self._read_available()
            if not chunk:
                break
            discarded += len(chunk)
        if discarded:
            logger.debug(
                "[SERIAL-CMD] Discarded %d stale bytes on %s", discarded, self.config.device,
            )
        return discarded

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the port and run the login automation.

        Raises:
            SerialCommunicationError: If the port cannot be opened.  The
                message includes the OS-level reason and a platform hint.
            ChannelAuthenticationError: If the console asked for a password
                and never showed the password prompt.
        """
        if self._connected:
            logger.debug("[SERIAL-OPEN] %s is already connected — skipping", self.config.device)
            return

        logger.info(
            "[SERIAL-OPEN] Connecting to serial device %s at %d baud ...",
            self.config.device, self.config.baud_rate,
        )
        try:
            self._serial = self._open_port()
        except serial.SerialException as exc:
            msg = (
                f"Failed to open serial port {self.config.device} at "
                f"{self.config.baud_rate} baud: {exc}. {_platform_hint()}"
            )
            logger.error("[SERIAL-OPEN] FAILED — %s", msg)
            raise SerialCommunicationError(msg) from exc
        except OSError as exc:
            msg = f"OS error opening serial port {self.config.device}: {exc}. {_platform_hint()}"
            logger.error("[SERIAL-OPEN] OS ERROR — %s", msg)
            raise SerialCommunicationError(msg) from exc

        self._connected = True
        try:
            self.login_if_needed()
        except Exception:
            self.disconnect()
            raise

        logger.info("[SERIAL-OPEN] Serial connection to %s established", self.config.device)

    def disconnect(self) -> None:
        """Close the port and forget the login."""
        was_connected = self._connected
        if self._serial is not None:
            try:
                self._serial.close()
            except Exception as exc:
                logger.warning("[SERIAL-CLOSE] Error closing port %s: %s", self.config.device, exc)
            finally:
                self._serial = None

        self._connected = False
        self._logged_in = False
        self._pending = ""
        self.login_state = LoginState.AWAITING_WAKEUP

        if was_connected:
            logger.info("[SERIAL-CLOSE] Closed %s", self.config.device)
        else:
            logger.debug("[SERIAL-CLOSE] disconnect() called on already-closed port %s", self.config.device)

    def is_connected(self) -> bool:
        return self._connected

    @property
    def logged_in(self) -> bool:
        return self._logged_in

    def description(self) -> str:
        return f"Serial connection to {self.config.device} at {self.config.baud_rate} baud"

    def __del__(self) -> None:
        try:
            self.disconnect()
        except Exception:
            pass

    # ------------------------------------------------------------------
    # Login automation
    # ------------------------------------------------------------------

    def login_if_needed(self) -> None:
        """Bring the console to a shell prompt, once per connection."""
        if self._logged_in:
            return

        handlers: Dict[LoginState, Callable[[], LoginState]] = {
            LoginState.AWAITING_WAKEUP: self._on_awaiting_wakeup,
            LoginState.CHECKING_SHELL_PROMPT: self._on_checking_shell_prompt,
            LoginState.AWAITING_LOGIN_PROMPT: self._on_awaiting_login_prompt,
            LoginState.AWAITING_PASSWORD_PROMPT: self._on_awaiting_password_prompt,
            LoginState.AWAITING_SHELL_PROMPT: self._on_awaiting_shell_prompt,
        }

        self._pending = ""
        state = LoginState.AWAITING_WAKEUP
        while state is not LoginState.READY:
            self.login_state = state
            logger.debug("[SERIAL-LOGIN] State %s on %s", state.value, self.config.device)
            state = handlers[state]()

        self.login_state = LoginState.READY
        self._logged_in = True
        self._pending = ""
        logger.info("[SERIAL-LOGIN] Console on %s is ready", self.config.device)

    def _after_shell_check(self) -> LoginState:
        if self.config.login_prompt is not None:
            return LoginState.AWAITING_LOGIN_PROMPT
        return LoginState.AWAITING_SHELL_PROMPT

    def _on_awaiting_wakeup(self) -> LoginState:
        logger.debug("[SERIAL-LOGIN] Sending Ctrl-C to break out of any running process")
        self._write(_CTRL_C, "ctrl-c")
        time.sleep(self.timings.interrupt_pause)

        for attempt, ending in enumerate(_WAKEUP_LINE_ENDINGS, start=1):
            self._write(ending, f"wake-up-{attempt}")
            time.sleep(self.timings.wakeup_pause)

            data = self._read_available()
            if not data:
                logger.debug("[SERIAL-LOGIN] No immediate response to line ending %d", attempt)
                continue

            response = strip_ansi_codes(data.decode("utf-8", errors="replace"))
            logger.info(
                "[SERIAL-LOGIN] Received after line ending %d: %r", attempt, response.strip(),
            )
            if looks_like_shell(response):
                logger.info("[SERIAL-LOGIN] Shell prompt detected in response, assuming ready")
                return LoginState.READY
            self._pending += response

        time.sleep(self.timings.post_wakeup_pause)

        if self.config.username is None:
            logger.info("[SERIAL-LOGIN] No username configured, assuming shell is ready")
            return LoginState.READY
        if self.config.shell_prompt is not None:
            return LoginState.CHECKING_SHELL_PROMPT
        return self._after_shell_check()

    def _on_checking_shell_prompt(self) -> LoginState:
        prompt = self.config.shell_prompt or SERIAL_DEFAULT_SHELL_PROMPT
        if self._wait_for_prompt(prompt, self.timings.shell_check_timeout):
            logger.info("[SERIAL-LOGIN] Already at shell prompt, no login needed")
            return LoginState.READY
        logger.debug("[SERIAL-LOGIN] Not at shell prompt, checking for login prompt")
        return self._after_shell_check()

    def _on_awaiting_login_prompt(self) -> LoginState:
        login_prompt = self.config.login_prompt or ""
        username = self.config.username or ""

        logger.info("[SERIAL-LOGIN] Waiting for login prompt %r", login_prompt)
        if not self._wait_for_prompt(login_prompt, self.timings.login_prompt_timeout):
            logger.info("[SERIAL-LOGIN] No login prompt found, assuming shell is ready")
            return LoginState.READY

        logger.info("[SERIAL-LOGIN] Login prompt found, sending username")
        self._send_line(username, "username")

        if self.config.password_prompt is not None and self.config.password is not None:
            return LoginState.AWAITING_PASSWORD_PROMPT
        return LoginState.AWAITING_SHELL_PROMPT

    def _on_awaiting_password_prompt(self) -> LoginState:
        password_prompt = self.config.password_prompt or ""
        logger.info("[SERIAL-LOGIN] Waiting for password prompt %r", password_prompt)
        if not self._wait_for_prompt(password_prompt, self.timings.password_prompt_timeout):
            msg = (
                f"Timeout waiting for password prompt {password_prompt!r} on "
                f"{self.config.device} after sending username "
                f"({self.timings.password_prompt_timeout:.1f}s)"
            )
            logger.error("[SERIAL-LOGIN] FAILED — %s", msg)
            raise ChannelAuthenticationError(msg)

        self._send_line(self.config.password or "", "password")
        return LoginState.AWAITING_SHELL_PROMPT

    def _on_awaiting_shell_prompt(self) -> LoginState:
        shell_prompt = self.config.shell_prompt
        if shell_prompt is None:
            time.sleep(self.timings.settle)
            return LoginState.READY

        logger.info("[SERIAL-LOGIN] Waiting for shell prompt %r", shell_prompt)
        if self._wait_for_prompt(shell_prompt, self.timings.shell_prompt_timeout):
            logger.info("[SERIAL-LOGIN] Shell prompt detected")
        else:
            logger.warning(
                "[SERIAL-LOGIN] Expected shell prompt %r not found on %s, "
                "assuming shell is ready",
                shell_prompt, self.config.device,
            )
        return LoginState.READY

    def _wait_for_prompt(self, prompt: str, timeout_s: float) -> bool:
        """Read until *prompt* shows up in the stripped text.

        Returns ``False`` on timeout; the text read so far is kept for the
        next wait.
        """
        prefix = self._pending
        raw = bytearray()
        text = prefix
        deadline = time.monotonic() + timeout_s

        while True:
            if prompt in text:
                self._pending = ""
                return True

            remaining = deadline - time.monotonic()
            if remaining <= 0:
                self._pending = text
                logger.debug(
                    "[SERIAL-LOGIN] Timeout (%.1fs) waiting for %r; saw %r",
                    timeout_s, prompt, text[-200:],
                )
                return False

            chunk = self._read_available()
            if chunk:
                raw.extend(chunk)
                text = prefix + strip_ansi_codes(raw.decode("utf-8", errors="replace"))
                logger.debug("[SERIAL-RX] %r (looking for %r)", text[-200:], prompt)
            else:
                time.sleep(min(self.poll_interval_s, remaining))

    # ------------------------------------------------------------------
    # Command execution
    # ------------------------------------------------------------------

    def execute_command_with_timeout(self, command: str, timeout: float) -> CommandOutput:
        """Send *command* and return its output once the prompt comes back.

        ``stderr`` is always empty and ``exit_code`` always 0: a serial
        console mixes both streams and never reports an exit status.

        Raises:
            SerialCommunicationError: If the channel is not connected or a
                read/write fails.
            CommandExecutionError: If *timeout* is not positive.
            CommandTimeoutError: If the prompt did not come back in time.
        """
        if timeout <= 0:
            raise CommandExecutionError(
                f"Invalid timeout {timeout!r}s for {command!r} on {self.config.device}. "
                f"Timeout must be positive.",
                command=command,
            )
        if not self._connected:
            raise SerialCommunicationError(
                f"Cannot execute {command!r}: serial port {self.config.device} is not connected"
            )

        self.login_if_needed()

        logger.debug(
            "[SERIAL-CMD] Executing on %s: %r (timeout=%.3fs)",
            self.config.device, command, timeout,
        )
        self._drain_input()
        self._send_line(command, "command")

        extractor = CommandOutputExtractor(command, shell_prompt=self.config.shell_prompt)
        start = time.monotonic()
        deadline = start + timeout

        while True:
            remaining = deadline - time.monotonic()
            if remaining <= 0:
                elapsed = time.monotonic() - start
                msg = (
                    f"Command timeout after {elapsed:.3f}s (limit {timeout:.3f}s) on "
                    f"{self.config.device}. Command: {command!r}. "
                    f"Echo seen: {extractor.echo_seen}, bytes received: {extractor.bytes_received}"
                )
                logger.warning("[SERIAL-CMD] TIMEOUT — %s", msg)
                raise CommandTimeoutError(
                    msg, command=command, elapsed_seconds=elapsed, timeout_seconds=timeout,
                )

            chunk = self._read_available()
            if not chunk:
                time.sleep(min(self.poll_interval_s, remaining))
                continue

            if extractor.feed(chunk):
                break

        logger.debug(
            "[SERIAL-CMD] Completed on %s in %.3fs — %d bytes received, stdout=%d chars",
            self.config.device, time.monotonic() - start,
            extractor.bytes_received, len(extractor.stdout),
        )
        return CommandOutput(stdout=extractor.stdout, stderr="", exit_code=0)

    # ------------------------------------------------------------------
    # File transfer
    # ------------------------------------------------------------------

    def upload_file(self, local_path: str, remote_path: str) -> None:
        raise UnsupportedOperationError(
            "File upload not supported over serial connection",
            operation="upload_file",
        )

    def download_file(self, remote_path: str, local_path: str) -> None:
        raise UnsupportedOperationError(
            "File download not supported over serial connection",
            operation="download_file",
        )


class SerialChannel(SerialChannelBase):
    """Serial channel over a non-blocking port handle.

    Reads never block: the poll loops ask the driver how many bytes are
    waiting and sleep between empty reads, so timing is managed by our
    code, not the driver.

    Example::

        config = SerialChannelConfig(
            device="/dev/ttyUSB0",
            username="root",
            login_prompt="login:",
            shell_prompt="# ",
        )
        with SerialChannel(config) as channel:
            print(channel.execute_command("uname -a").stdout)
    """

    def _open_port(self) -> serial.Serial:
        return serial.Serial(
            port=self.config.device,
            baudrate=self.config.baud_rate,
            bytesize=_BYTESIZE_MAP[SERIAL_BYTESIZE],
            parity=_PARITY_MAP[SERIAL_PARITY],
            stopbits=_STOPBITS_MAP[SERIAL_STOPBITS],
            timeout=SERIAL_READ_TIMEOUT,
            write_timeout=SERIAL_WRITE_TIMEOUT,
            xonxoff=False,
            rtscts=False,
            dsrdtr=False,
        )

    def _read_available(self) -> bytes:
        ser = self._port()
        try:
            waiting = ser.in_waiting
            if waiting <= 0:
                return b""
            return ser.read(waiting)
        except (serial.SerialException, OSError) as exc:
            raise self._read_error(exc) from exc

    def _write(self, data: bytes, label: str) -> None:
        self._write_all(self._port(), data, label)
