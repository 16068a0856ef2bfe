import asyncio
import logging

import serial
from serial.tools import list_ports as serial_list_ports

logger = logging.getLogger(__name__)

BAUD_RATES = (4800, 9600, 19200, 38400, 57600, 115200)
SENTENCE_MARKERS = ("$GPGGA", "$GPRMC", "$GNGGA", "$GNRMC")


def list_ports() -> list[str]:
    """Device paths of all serial ports present on this host."""
    return [p.device for p in serial_list_ports.comports() if p.device]


def read_chunk(handle: serial.Serial) -> bytes:
    """Blocking read of whatever is buffered (at least one byte or a timeout)."""
    return handle.read(handle.in_waiting or 1)


async def probe_port(path: str, baud_rate: int, window: float = 2.0) -> bool:
    """Listen on ``path`` for up to ``window`` seconds and look for GGA/RMC sentence starts.

    The caller must make sure nothing else holds the port. Any failure is
    reported as ``False``.
    """
    logger.info("Testing port %s with baud rate %s", path, baud_rate)
    try:
        handle = await asyncio.to_thread(
            serial.Serial, path, baud_rate, timeout=min(0.25, window)
        )
    except (serial.SerialException, OSError, ValueError) as exc:
        logger.error("Failed to open serial port %s at %s: %s", path, baud_rate, exc)
        return False

    loop = asyncio.get_running_loop()
    deadline = loop.time() + window
    received = ""
    detected = False
    try:
        while not detected and loop.time() < deadline:
            chunk = await asyncio.to_thread(read_chunk, handle)
            if not chunk:
                continue
            received += chunk.decode("ascii", errors="replace")
            detected = any(marker in received for marker in SENTENCE_MARKERS)
    except (serial.SerialException, OSError) as exc:
        logger.warning("Read failed while testing %s at %s: %s", path, baud_rate, exc)
    finally:
        handle.close()
        logger.info("Test serial port closed: %s @ %s", path, baud_rate)

    if detected:
        logger.info("Detected NMEA data on %s at %s baud", path, baud_rate)
    return detected
