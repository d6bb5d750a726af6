"""Serial channel over a blocking, lock-guarded port handle.

On Windows the port is driven through blocking reads with a short driver
timeout instead of non-blocking polls.  The handle is exclusively owned by
the channel and every read or write holds ``_port_lock``: this is a
substrate adapter that keeps one blocking I/O call on the handle at a
time, not a concurrency feature.  Login automation, echo and prompt
handling are inherited unchanged from ``SerialChannelBase``.
"""

from __future__ import annotations

import logging
import threading
from typing import Optional

import serial

from . import (
    SERIAL_BLOCKING_READ_TIMEOUT,
    SERIAL_POLL_INTERVAL_S,
    SERIAL_READ_CHUNK,
    SERIAL_WRITE_TIMEOUT,
)
from .serial_comm import SerialChannelBase
from .types import LoginTimings, SerialChannelConfig

logger = logging.getLogger("device_channels.serial_windows")


class WindowsSerialChannel(SerialChannelBase):
    """Serial channel whose reads block for up to ``read_timeout`` seconds."""

    def __init__(
        self,
        config: SerialChannelConfig,
        timings: Optional[LoginTimings] = None,
        poll_interval_s: float = SERIAL_POLL_INTERVAL_S,
        read_timeout: float = SERIAL_BLOCKING_READ_TIMEOUT,
    ) -> None:
        super().__init__(config, timings=timings, poll_interval_s=poll_interval_s)
        self.read_timeout = read_timeout
        self._port_lock = threading.Lock()

    def _open_port(self) -> serial.Serial:
        with self._port_lock:
            return serial.Serial(
                port=self.config.device,
                baudrate=self.config.baud_rate,
                bytesize=serial.EIGHTBITS,
                parity=serial.PARITY_NONE,
                stopbits=serial.STOPBITS_ONE,
                timeout=self.read_timeout,
                write_timeout=SERIAL_WRITE_TIMEOUT,
                xonxoff=False,
                rtscts=False,
                dsrdtr=False,
            )

    def _read_available(self) -> bytes:
        ser = self._port()
        with self._port_lock:
            try:
                # Blocks until a byte arrives or read_timeout elapses, then
                # picks up whatever else is already buffered.
                data = ser.read(1)
                if data:
                    waiting = ser.in_waiting
                    if waiting > 0:
                        data += ser.read(min(waiting, SERIAL_READ_CHUNK))
                return data
            except (serial.SerialException, OSError) as exc:
                raise self._read_error(exc) from exc

    def _write(self, data: bytes, label: str) -> None:
        ser = self._port()
        with self._port_lock:
            self._write_all(ser, data, label)

    def disconnect(self) -> None:
        with self._port_lock:
            super().disconnect()

    def description(self) -> str:
        return f"Windows serial connection to {self.config.device} at {self.config.baud_rate} baud"
