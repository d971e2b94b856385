"""Connection lifecycle, ordered command sending and receive loop for the
peripheral, each running on its own worker thread."""

from __future__ import annotations

import logging
import queue
import threading
import time
from collections import deque
from dataclasses import dataclass
from typing import Callable, Optional

from peripheral.protocol import KEEPALIVE, ConnectionState, LineBuffer, encode_command
from peripheral.transport import PermissionDenied, Transport

logger = logging.getLogger(__name__)

_HISTORY_SIZE = 20


@dataclass(frozen=True)
class ConnectionEvent:
    """A connection-state change, or a line received from the peripheral."""

    state: ConnectionState
    message: str = ""
    received: Optional[str] = None


class PeripheralLink:
    """Owns one :class:`Transport` and everything that touches it.

    :meth:`send` only enqueues; a single writer thread performs the blocking
    writes in the order commands were sent, so a stalled transport never
    blocks the caller.  Write failures surface as a ``CONNECTION_FAILED``
    event on :meth:`poll_event` and are not retried.
    """

    def __init__(
        self,
        transport: Transport,
        keepalive_interval_s: float = 30.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.transport = transport
        self.keepalive_interval_s = keepalive_interval_s
        self._clock = clock

        self._state = ConnectionState.DISCONNECTED
        self._state_lock = threading.Lock()
        self._events: queue.Queue[ConnectionEvent] = queue.Queue(maxsize=100)
        self._outbox: queue.Queue[Optional[str]] = queue.Queue()
        self._history: deque[str] = deque(maxlen=_HISTORY_SIZE)
        self._last_keepalive_at: Optional[float] = None

        self._running = False
        self._connect_thread: Optional[threading.Thread] = None
        self._writer_thread: Optional[threading.Thread] = None
        self._reader_thread: Optional[threading.Thread] = None
        self._released = False

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def connect(self) -> None:
        """Open the transport in the background; watch :meth:`poll_event`
        for ``CONNECTED`` or a failure state."""
        if self._released:
            raise RuntimeError("Link has been released.")
        if self.state in (ConnectionState.CONNECTING, ConnectionState.CONNECTED):
            logger.info("Link already %s.", self.state.value.lower())
            return
        # Workers left over from a failed session must exit before new ones start
        self._stop_workers()
        self._set_state(ConnectionState.CONNECTING)
        self._connect_thread = threading.Thread(
            target=self._connect, daemon=True, name="PeripheralConnect"
        )
        self._connect_thread.start()

    def wait_connected(self, timeout_s: float = 5.0) -> bool:
        thread = self._connect_thread
        if thread is not None:
            thread.join(timeout=timeout_s)
        return self.is_connected

    def close(self) -> None:
        self._stop_workers()
        with self._state_lock:
            was_connected = self._state is ConnectionState.CONNECTED
        if was_connected:
            self._set_state(ConnectionState.DISCONNECTED)

    def release(self) -> None:
        """Close and refuse further connects.  Safe to call more than once."""
        if self._released:
            return
        self._released = True
        self.close()
        logger.info("Peripheral link released.")

    # ------------------------------------------------------------------
    # Sending
    # ------------------------------------------------------------------

    def send(self, command: str) -> bool:
        """Queue *command* for transmission; ``False`` when not connected."""
        if not self.is_connected:
            logger.warning("Not connected – dropping command %s", command)
            return False
        self._outbox.put(command)
        return True

    def send_keepalive(self, now_s: Optional[float] = None) -> bool:
        self._last_keepalive_at = self._clock() if now_s is None else now_s
        return self.send(KEEPALIVE)

    def keepalive_due(self, now_s: Optional[float] = None) -> bool:
        if not self.is_connected:
            return False
        if self._last_keepalive_at is None:
            return True
        now = self._clock() if now_s is None else now_s
        return now - self._last_keepalive_at >= self.keepalive_interval_s

    def maybe_keepalive(self, now_s: Optional[float] = None) -> bool:
        if self.keepalive_due(now_s):
            return self.send_keepalive(now_s)
        return False

    # ------------------------------------------------------------------
    # Status
    # ------------------------------------------------------------------

    def poll_event(self) -> Optional[ConnectionEvent]:
        """Non-blocking read from the event queue."""
        try:
            return self._events.get_nowait()
        except queue.Empty:
            return None

    @property
    def state(self) -> ConnectionState:
        with self._state_lock:
            return self._state

    @property
    def is_connected(self) -> bool:
        return self.state is ConnectionState.CONNECTED

    @property
    def history(self) -> list[str]:
        """Commands actually written, oldest first."""
        return list(self._history)

    # ------------------------------------------------------------------
    # Worker threads
    # ------------------------------------------------------------------

    def _connect(self) -> None:
        try:
            self.transport.open()
        except PermissionDenied as exc:
            logger.error("Peripheral permission denied: %s", exc)
            self._set_state(ConnectionState.PERMISSION_DENIED, str(exc))
            return
        except OSError as exc:
            logger.error("Peripheral connection failed: %s", exc)
            self._set_state(ConnectionState.CONNECTION_FAILED, str(exc))
            return

        self._outbox = queue.Queue()
        self._running = True
        self._writer_thread = threading.Thread(
            target=self._writer_loop, daemon=True, name="PeripheralWriter"
        )
        self._reader_thread = threading.Thread(
            target=self._reader_loop, daemon=True, name="PeripheralReader"
        )
        self._writer_thread.start()
        self._reader_thread.start()
        self._set_state(ConnectionState.CONNECTED)
        self.send_keepalive()

    def _writer_loop(self) -> None:
        outbox = self._outbox
        while True:
            command = outbox.get()
            if command is None:
                break
            try:
                self.transport.write(encode_command(command))
            except OSError as exc:
                logger.error("Command send failed (%s): %s", command, exc)
                self._fail(str(exc))
                break
            self._history.append(command)
            logger.debug("Command sent: %s", command)

    def _reader_loop(self) -> None:
        lines = LineBuffer()
        while self._running:
            try:
                chunk = self.transport.read(1024)
            except OSError as exc:
                if self._running:
                    logger.error("Peripheral read failed: %s", exc)
                    self._fail(str(exc))
                break
            if not chunk:
                continue
            for line in lines.feed(chunk):
                text = line.decode("utf-8", errors="replace")
                logger.debug("Received: %s", text)
                self._post(ConnectionEvent(ConnectionState.CONNECTED, received=text))

    # ------------------------------------------------------------------
    # Private
    # ------------------------------------------------------------------

    def _fail(self, message: str) -> None:
        self._running = False
        dropped = 0
        while True:
            try:
                if self._outbox.get_nowait() is not None:
                    dropped += 1
            except queue.Empty:
                break
        if dropped:
            logger.warning("Dropped %d queued command(s) after failure.", dropped)
        self._outbox.put(None)  # wake the writer so it exits
        self.transport.close()
        self._set_state(ConnectionState.CONNECTION_FAILED, message)

    def _stop_workers(self) -> None:
        self._running = False
        self._outbox.put(None)
        self.transport.close()
        current = threading.current_thread()
        for thread in (self._connect_thread, self._writer_thread, self._reader_thread):
            if thread is not None and thread is not current:
                thread.join(timeout=2.0)
        self._connect_thread = None
        self._writer_thread = None
        self._reader_thread = None

    def _set_state(self, state: ConnectionState, message: str = "") -> None:
        with self._state_lock:
            if self._state is state:
                return
            self._state = state
        logger.info("Peripheral: %s %s", state.value, message)
        self._post(ConnectionEvent(state, message))

    def _post(self, event: ConnectionEvent) -> None:
        try:
            self._events.put_nowait(event)
        except queue.Full:
            pass  # drop event – caller is not polling
