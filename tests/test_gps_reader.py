import asyncio
import time
from datetime import datetime, timezone
from unittest.mock import MagicMock, patch

import serial

from serial_gps.config import Settings
from serial_gps.connection import ConnectionState, Event, Lifecycle
from serial_gps.debounce import DebounceCache, StatePublisher
from serial_gps.gps_reader import GPSReader
from serial_gps.gps_state import GPSState
from serial_gps.sentences import DecoderSession
from serial_gps.stream import StreamProcessor

GGA = "$GNGGA,191721.000,4331.6629,N,01557.8394,E,2,18,0.70,-4.7,M,40.9,M,,*5F"


def _make_reader(**overrides) -> tuple[GPSReader, GPSState]:
    config = Settings(serial_port="/dev/ttyUSB0", probe_window=0.05, **overrides)
    state = GPSState()
    session = DecoderSession(clock=lambda: datetime(2026, 5, 17, tzinfo=timezone.utc))
    processor = StreamProcessor("serial", session, StatePublisher(state, DebounceCache()))
    return GPSReader(config, processor), state


def _fake_port(chunks: list[bytes], error: Exception | None = None) -> MagicMock:
    pending = list(chunks)

    def read(size):
        if pending:
            return pending.pop(0)
        if error is not None:
            raise error
        time.sleep(0.01)
        return b""

    port = MagicMock()
    port.in_waiting = 0
    port.read.side_effect = read
    return port


async def _wait_for(predicate, timeout: float = 2.0) -> None:
    deadline = time.monotonic() + timeout
    while not predicate():
        assert time.monotonic() < deadline, "condition not reached in time"
        await asyncio.sleep(0.01)


def _slow_serial(events: list, delay: float = 0.1):
    """A `serial.Serial` stand-in that takes `delay` seconds to open and logs open/close."""

    def open_port(*args, **kwargs):
        time.sleep(delay)
        events.append("main-open")
        port = _fake_port([])
        port.close.side_effect = lambda: events.append("main-close")
        return port

    return open_port


class TestLifecycle:
    def test_disabled_without_port(self):
        async def scenario():
            reader, _ = _make_reader()
            reader.config.serial_port = ""
            await reader.start()
            assert reader.state is ConnectionState.CLOSED

        asyncio.run(scenario())

    def test_open_read_and_stop(self):
        async def scenario():
            reader, state = _make_reader()
            port = _fake_port([GGA[:40].encode(), GGA[40:].encode() + b"\r\n"])
            with patch("serial_gps.gps_reader.serial.Serial", return_value=port):
                await reader.start()
                await _wait_for(lambda: state.sentences_received == 1)
                assert reader.state is ConnectionState.OPEN
                assert state.serial_state == "open"
                assert state.get("info.connection") is True
                assert reader.last_activity is not None
                await reader.stop()

            assert reader.state is ConnectionState.CLOSED
            assert state.get("info.connection") is False
            port.close.assert_called()

        asyncio.run(scenario())

    def test_failed_open_is_retried(self):
        async def scenario():
            reader, state = _make_reader(reconnect_delay=0.01)
            port = _fake_port([f"{GGA}\n".encode()])
            with patch(
                "serial_gps.gps_reader.serial.Serial",
                side_effect=[serial.SerialException("busy"), port],
            ) as ctor:
                await reader.start()
                await _wait_for(lambda: state.sentences_received == 1)
                assert ctor.call_count == 2
                assert reader.state is ConnectionState.OPEN
                await reader.stop()

        asyncio.run(scenario())

    def test_read_error_enters_backoff(self):
        async def scenario():
            reader, state = _make_reader(reconnect_delay=30)
            port = _fake_port([f"{GGA}\n".encode()], error=serial.SerialException("gone"))
            with patch("serial_gps.gps_reader.serial.Serial", return_value=port):
                await reader.start()
                await _wait_for(lambda: reader.state is ConnectionState.BACKOFF)
                assert state.get("info.connection") is False
                assert reader._retry_handle is not None
                port.close.assert_called()
                await reader.stop()
            assert reader._retry_handle is None

        asyncio.run(scenario())

    def test_unexpected_read_error_enters_backoff(self):
        async def scenario():
            reader, state = _make_reader(reconnect_delay=30)
            port = _fake_port([f"{GGA}\n".encode()], error=RuntimeError("driver bug"))
            with patch("serial_gps.gps_reader.serial.Serial", return_value=port):
                await reader.start()
                await _wait_for(lambda: reader.state is ConnectionState.BACKOFF)
                assert state.sentences_received == 1
                assert state.get("info.connection") is False
                assert reader._retry_handle is not None
                port.close.assert_called()
                await reader.stop()

        asyncio.run(scenario())

    def test_stop_waits_for_reader_task(self):
        async def scenario():
            reader, _ = _make_reader()
            port = _fake_port([])
            with patch("serial_gps.gps_reader.serial.Serial", return_value=port):
                await reader.start()
                await _wait_for(lambda: reader._read_task is not None)
                task = reader._read_task
                await reader.stop()

                assert task.done()
                reads = port.read.call_count
                await asyncio.sleep(0.05)
                assert port.read.call_count == reads

        asyncio.run(scenario())

    def test_reopen_waits_for_open_in_flight(self):
        events: list = []

        async def scenario():
            reader, _ = _make_reader()
            with patch("serial_gps.gps_reader.serial.Serial", side_effect=_slow_serial(events)):
                await reader.start()
                reader.close()
                reader.open()
                await _wait_for(lambda: reader.state is ConnectionState.OPEN)
                await reader.stop()

        asyncio.run(scenario())
        assert events == ["main-open", "main-close", "main-open", "main-close"]


class TestReconnect:
    def test_two_closes_schedule_one_retry(self):
        async def scenario():
            reader, state = _make_reader(reconnect_delay=30)
            reader._lifecycle = Lifecycle(ConnectionState.OPEN)
            loop = asyncio.get_running_loop()
            with patch.object(loop, "call_later", wraps=loop.call_later) as call_later:
                reader.dispatch(Event.PORT_CLOSED)
                handle = reader._retry_handle
                reader.dispatch(Event.PORT_CLOSED)

                assert call_later.call_count == 1
                assert reader._retry_handle is handle
                assert reader.state is ConnectionState.BACKOFF
                assert state.get("info.connection") is False
            reader.close()
            assert handle.cancelled()

        asyncio.run(scenario())

    def test_data_clears_pending_retry(self):
        async def scenario():
            reader, _ = _make_reader(reconnect_delay=30)
            reader._lifecycle = Lifecycle(ConnectionState.OPEN)
            reader.dispatch(Event.ERROR)
            handle = reader._retry_handle
            reader.dispatch(Event.DATA)
            assert handle.cancelled()
            assert reader._retry_handle is None
            assert reader.state is ConnectionState.OPEN

        asyncio.run(scenario())


class TestProbeCommands:
    def _recording_reader(self, calls: list):
        reader, _ = _make_reader()
        reader._lifecycle = Lifecycle(ConnectionState.OPEN)
        reader.close = MagicMock(side_effect=lambda: calls.append("close"))
        reader.open = MagicMock(side_effect=lambda: calls.append("open"))
        return reader

    def test_test_port_closes_and_reopens_active_port(self):
        calls: list = []

        async def fake_probe(path, baud_rate, window):
            calls.append(("probe", baud_rate))
            return False

        async def scenario():
            reader = self._recording_reader(calls)
            with patch("serial_gps.probe.probe_port", side_effect=fake_probe):
                assert await reader.test_port("/dev/ttyUSB0", 9600) is False

        asyncio.run(scenario())
        assert calls == ["close", ("probe", 9600), "open"]

    def test_test_port_leaves_other_ports_alone(self):
        calls: list = []

        async def fake_probe(path, baud_rate, window):
            calls.append(("probe", baud_rate))
            return True

        async def scenario():
            reader = self._recording_reader(calls)
            with patch("serial_gps.probe.probe_port", side_effect=fake_probe):
                assert await reader.test_port("/dev/ttyACM0", 4800) is True

        asyncio.run(scenario())
        assert calls == [("probe", 4800)]

    def test_detect_baud_rate_stops_at_first_match(self):
        calls: list = []

        async def fake_probe(path, baud_rate, window):
            calls.append(("probe", baud_rate))
            return baud_rate == 38400

        async def scenario():
            reader = self._recording_reader(calls)
            with patch("serial_gps.probe.probe_port", side_effect=fake_probe):
                assert await reader.detect_baud_rate("/dev/ttyUSB0") == 38400

        asyncio.run(scenario())
        assert calls == [
            "close",
            ("probe", 4800),
            ("probe", 9600),
            ("probe", 19200),
            ("probe", 38400),
            "open",
        ]

    def test_detect_baud_rate_none_found(self):
        calls: list = []

        async def fake_probe(path, baud_rate, window):
            calls.append(("probe", baud_rate))
            return False

        async def scenario():
            reader = self._recording_reader(calls)
            with patch("serial_gps.probe.probe_port", side_effect=fake_probe):
                assert await reader.detect_baud_rate("/dev/ttyUSB0") is None

        asyncio.run(scenario())
        assert len(calls) == 8
        assert calls[-1] == "open"


class TestPortCheckExclusivity:
    def test_port_check_waits_for_open_in_flight(self):
        events: list = []

        async def slow_check(path, baud_rate, window):
            events.append("check-open")
            await asyncio.sleep(0.1)
            events.append("check-close")
            return True

        async def scenario():
            reader, _ = _make_reader()
            serial_patch = patch("serial_gps.gps_reader.serial.Serial", side_effect=_slow_serial(events, 0.2))
            with serial_patch, patch("serial_gps.probe.probe_port", side_effect=slow_check):
                await reader.start()
                assert reader.state is ConnectionState.OPENING
                assert await reader.test_port("/dev/ttyUSB0", 9600) is True
                await reader.stop()

        asyncio.run(scenario())
        assert events[:4] == ["main-open", "main-close", "check-open", "check-close"]

    def test_baud_detection_waits_for_reader_to_let_go(self):
        events: list = []

        async def fake_check(path, baud_rate, window):
            events.append(("check", baud_rate))
            return True

        async def scenario():
            reader, _ = _make_reader()
            port = _fake_port([])
            port.close.side_effect = lambda: events.append("main-close")
            serial_patch = patch("serial_gps.gps_reader.serial.Serial", return_value=port)
            with serial_patch, patch("serial_gps.probe.probe_port", side_effect=fake_check):
                await reader.start()
                await _wait_for(lambda: reader._read_task is not None)
                task = reader._read_task
                assert await reader.detect_baud_rate("/dev/ttyUSB0") == 4800
                assert task.done()
                await reader.stop()

        asyncio.run(scenario())
        assert events[:2] == ["main-close", ("check", 4800)]
