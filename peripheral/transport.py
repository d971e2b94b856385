"""Duplex byte-stream transports to the peripheral."""

from __future__ import annotations

import errno
import logging
from typing import Optional

import serial

logger = logging.getLogger(__name__)


class TransportError(OSError):
    """The transport could not be opened, written or read."""


class PermissionDenied(TransportError):
    """Access to the device was refused by the OS."""


class Transport:
    """Minimal blocking byte stream.  ``read`` returns ``b""`` on timeout."""

    def open(self) -> None:
        raise NotImplementedError

    def write(self, data: bytes) -> None:
        raise NotImplementedError

    def read(self, max_bytes: int = 1024) -> bytes:
        raise NotImplementedError

    def close(self) -> None:
        raise NotImplementedError

    @property
    def is_open(self) -> bool:
        raise NotImplementedError


class SerialTransport(Transport):
    """Serial port (USB-UART, or an RFCOMM device bound to a tty) via pyserial."""

    def __init__(self, port: str, baudrate: int = 115200, timeout_s: float = 0.5) -> None:
        self.port = port
        self.baudrate = baudrate
        self.timeout_s = timeout_s
        self._serial: Optional[serial.Serial] = None

    def open(self) -> None:
        if self.is_open:
            return
        ser = serial.Serial()
        ser.port = self.port
        ser.baudrate = self.baudrate
        ser.timeout = self.timeout_s
        ser.write_timeout = self.timeout_s * 4
        try:
            ser.open()
        except serial.SerialException as exc:
            if exc.errno in (errno.EACCES, errno.EPERM):
                raise PermissionDenied(exc.errno, f"No permission for {self.port}") from exc
            raise TransportError(exc.errno, f"Cannot open {self.port}: {exc}") from exc
        self._serial = ser
        logger.info("Serial port opened: %s @ %d baud", self.port, self.baudrate)

    def write(self, data: bytes) -> None:
        ser = self._require_open()
        try:
            ser.write(data)
            ser.flush()
        except serial.SerialException as exc:
            raise TransportError(exc.errno, f"Write to {self.port} failed: {exc}") from exc

    def read(self, max_bytes: int = 1024) -> bytes:
        ser = self._require_open()
        try:
            waiting = ser.in_waiting
            return ser.read(max(1, min(max_bytes, waiting or 1)))
        except serial.SerialException as exc:
            raise TransportError(exc.errno, f"Read from {self.port} failed: {exc}") from exc

    def close(self) -> None:
        if self._serial is None:
            return
        try:
            self._serial.close()
        except serial.SerialException as exc:
            logger.warning("Error closing %s: %s", self.port, exc)
        finally:
            self._serial = None
            logger.info("Serial port closed: %s", self.port)

    @property
    def is_open(self) -> bool:
        return self._serial is not None and self._serial.is_open

    def _require_open(self) -> serial.Serial:
        if self._serial is None:
            raise TransportError(errno.ENOTCONN, f"{self.port} is not open")
        return self._serial
