import asyncio
import logging
import time

import serial

from serial_gps import probe
from serial_gps.config import Settings
from serial_gps.connection import ConnectionState, Effect, Event, Lifecycle, transition
from serial_gps.debounce import StatePublisher
from serial_gps.gps_state import CONNECTION
from serial_gps.stream import StreamProcessor

logger = logging.getLogger(__name__)


class GPSReader:
    """Owns the serial GPS port and drives its connection state machine.

    Blocking pyserial calls run in worker threads; every state change,
    decode and publish happens on the event loop.
    """

    def __init__(self, config: Settings, processor: StreamProcessor) -> None:
        self.config = config
        self.processor = processor
        self.publisher: StatePublisher = processor.publisher

        self._lifecycle = Lifecycle()
        self._serial: serial.Serial | None = None
        self._attempt = 0
        self._open_task: asyncio.Task | None = None
        self._read_task: asyncio.Task | None = None
        self._retry_handle: asyncio.TimerHandle | None = None
        # Released open/read tasks whose worker thread may still hold a handle
        self._closing: set[asyncio.Task] = set()
        self._probe_lock = asyncio.Lock()
        self.last_activity: float | None = None

    @property
    def state(self) -> ConnectionState:
        return self._lifecycle.state

    # ── Lifecycle ──────────────────────────────────────────

    async def start(self) -> None:
        if not self.config.serial_enabled:
            logger.info("GPSReader disabled — no serial port configured")
            return
        self.open()
        logger.info(
            "GPSReader started — port=%s baud=%s",
            self.config.serial_port,
            self.config.baud_rate,
        )

    async def stop(self) -> None:
        self.close()
        await self._settle()
        logger.info("GPSReader stopped")

    def open(self) -> None:
        self.dispatch(Event.OPEN_REQUESTED)

    def close(self) -> None:
        self.dispatch(Event.CLOSE_REQUESTED)

    # ── State machine driver ──────────────────────────────

    def dispatch(self, event: Event) -> None:
        result = transition(self._lifecycle, event)
        if result.lifecycle.state is not self._lifecycle.state:
            logger.debug(
                "Serial %s: %s --%s--> %s",
                self.config.serial_port,
                self._lifecycle.state.value,
                event.value,
                result.lifecycle.state.value,
            )
        self._lifecycle = result.lifecycle
        self.publisher.state.serial_state = result.lifecycle.state.value

        for effect in result.effects:
            self._apply(effect)

    def _apply(self, effect: Effect) -> None:
        if effect is Effect.CLOSE_PORT:
            self._release_port()
        elif effect is Effect.OPEN_PORT:
            self._attempt += 1
            # Waits only on tasks released before it was created
            self._open_task = asyncio.create_task(
                self._open_port(self._attempt, tuple(self._closing)), name="gps-open"
            )
        elif effect is Effect.SCHEDULE_RETRY:
            if self._retry_handle is None:
                logger.info(
                    "Reconnecting to serial port %s in %.0fs",
                    self.config.serial_port,
                    self.config.reconnect_delay,
                )
                self._retry_handle = asyncio.get_running_loop().call_later(
                    self.config.reconnect_delay, self._on_retry
                )
        elif effect is Effect.CANCEL_RETRY:
            if self._retry_handle is not None:
                self._retry_handle.cancel()
                self._retry_handle = None
        elif effect is Effect.SIGNAL_DISCONNECTED:
            self.publisher.publish(CONNECTION, False)

    def _on_retry(self) -> None:
        self._retry_handle = None
        self.dispatch(Event.RETRY_FIRED)

    # ── Transport ─────────────────────────────────────────

    def _release_port(self) -> None:
        # Invalidate any open still in flight
        self._attempt += 1
        for task in (self._open_task, self._read_task):
            if task and not task.done() and task is not asyncio.current_task():
                self._closing.add(task)
                task.add_done_callback(self._closing.discard)
        self._read_task = None

        if self._serial is not None:
            try:
                self._serial.close()
                logger.info("Serial port %s closed", self.config.serial_port)
            except (serial.SerialException, OSError) as exc:
                logger.error("Error closing serial port: %s", exc)
            self._serial = None
        self.processor.reset()

    async def _settle(self) -> None:
        """Wait until released tasks have let go of their serial handles."""
        if self._closing:
            await asyncio.gather(*self._closing, return_exceptions=True)

    async def _open_port(self, attempt: int, released: tuple[asyncio.Task, ...] = ()) -> None:
        if released:
            await asyncio.gather(*released, return_exceptions=True)
            if attempt != self._attempt:
                return

        try:
            handle = await asyncio.to_thread(
                serial.Serial,
                self.config.serial_port,
                self.config.baud_rate,
                timeout=1.0,
            )
        except (serial.SerialException, OSError, ValueError) as exc:
            logger.error("Failed to open serial port %s: %s", self.config.serial_port, exc)
            if attempt == self._attempt:
                self.dispatch(Event.OPEN_FAILED)
            return

        if attempt != self._attempt:
            # Superseded by a close or a newer open
            handle.close()
            return

        self._serial = handle
        self.dispatch(Event.OPENED)
        if self.state is ConnectionState.OPEN:
            logger.info(
                "Serial port opened: %s @ %s", self.config.serial_port, self.config.baud_rate
            )
            self._read_task = asyncio.create_task(self._read_loop(handle), name="gps-reader")

    async def _read_loop(self, handle: serial.Serial) -> None:
        try:
            while handle is self._serial:
                data = await asyncio.to_thread(probe.read_chunk, handle)
                if not data or handle is not self._serial:
                    continue
                self.last_activity = time.monotonic()
                self.dispatch(Event.DATA)
                self.processor.feed(data)
        except asyncio.CancelledError:
            return
        except (serial.SerialException, OSError, TypeError) as exc:
            # pyserial raises TypeError when the handle is closed under a read
            if handle is not self._serial:
                return
            logger.warning("Serial error on %s: %s", self.config.serial_port, exc)
            self.dispatch(Event.ERROR)
        except Exception as exc:
            if handle is not self._serial:
                return
            logger.error("Unexpected GPS error on %s: %s", self.config.serial_port, exc)
            self.dispatch(Event.ERROR)

    # ── Port probing ──────────────────────────────────────

    async def _suspend_for(self, path: str) -> bool:
        suspend = path == self.config.serial_port and self.state is not ConnectionState.CLOSED
        if suspend:
            self.close()
        await self._settle()
        return suspend

    async def test_port(self, path: str, baud_rate: int) -> bool:
        async with self._probe_lock:
            reopen = await self._suspend_for(path)
            try:
                return await probe.probe_port(path, baud_rate, window=self.config.probe_window)
            finally:
                if reopen:
                    self.open()

    async def detect_baud_rate(self, path: str) -> int | None:
        async with self._probe_lock:
            reopen = await self._suspend_for(path)
            try:
                for baud_rate in probe.BAUD_RATES:
                    logger.info("Testing baud rate: %s", baud_rate)
                    if await probe.probe_port(path, baud_rate, window=self.config.probe_window):
                        logger.info("Detected baud rate %s on %s", baud_rate, path)
                        return baud_rate
                logger.warning("Could not detect baud rate for port: %s", path)
                return None
            finally:
                if reopen:
                    self.open()
