"""Line-delimited JSON command protocol spoken to the desk peripheral."""

from __future__ import annotations

import json
import logging
from enum import Enum
from typing import Optional

logger = logging.getLogger(__name__)

KEEPALIVE = "KEEPALIVE"
ENCODING = "utf-8"


class ConnectionState(str, Enum):
    DISCONNECTED = "DISCONNECTED"
    CONNECTING = "CONNECTING"
    CONNECTED = "CONNECTED"
    CONNECTION_FAILED = "CONNECTION_FAILED"
    PERMISSION_DENIED = "PERMISSION_DENIED"


def encode_command(command: str) -> bytes:
    """``{"type":"<COMMAND>"}\\n`` as UTF-8 bytes."""
    if not command:
        raise ValueError("Command must be a non-empty string.")
    return (json.dumps({"type": command}, separators=(",", ":")) + "\n").encode(ENCODING)


def decode_command(line: bytes) -> Optional[str]:
    """Inverse of :func:`encode_command`; ``None`` for anything malformed."""
    try:
        data = json.loads(line.decode(ENCODING))
    except (UnicodeDecodeError, json.JSONDecodeError):
        return None
    if not isinstance(data, dict):
        return None
    value = data.get("type")
    return value if isinstance(value, str) else None


class LineBuffer:
    """Reassembles newline-terminated lines from arbitrary read chunks."""

    def __init__(self, max_bytes: int = 4096) -> None:
        self.max_bytes = max_bytes
        self._buf = bytearray()

    def feed(self, chunk: bytes) -> list[bytes]:
        self._buf.extend(chunk)
        lines: list[bytes] = []
        while True:
            idx = self._buf.find(b"\n")
            if idx < 0:
                break
            line = bytes(self._buf[:idx]).rstrip(b"\r")
            del self._buf[: idx + 1]
            if line:
                lines.append(line)
        if len(self._buf) > self.max_bytes:
            logger.warning("Discarding %d bytes of unterminated input.", len(self._buf))
            self._buf.clear()
        return lines
