import asyncio
import logging

from serial_gps.config import Settings
from serial_gps.gps_state import CONNECTION
from serial_gps.stream import StreamProcessor

logger = logging.getLogger(__name__)


class _NMEADatagramProtocol(asyncio.DatagramProtocol):
    def __init__(self, server: "UDPServer") -> None:
        self.server = server

    def datagram_received(self, data: bytes, addr) -> None:
        self.server.handle_datagram(data, addr)

    def error_received(self, exc: Exception) -> None:
        logger.error("UDP server error: %s", exc)


class UDPServer:
    """Accepts NMEA sentences over UDP (test and bridge mode).

    Every datagram already delimits its sentences, so a line terminator is
    appended before it is framed.
    """

    def __init__(self, config: Settings, processor: StreamProcessor) -> None:
        self.config = config
        self.processor = processor
        self._transport: asyncio.DatagramTransport | None = None

    async def start(self) -> None:
        loop = asyncio.get_running_loop()
        try:
            self._transport, _ = await loop.create_datagram_endpoint(
                lambda: _NMEADatagramProtocol(self),
                local_addr=(self.config.udp_host, self.config.udp_port),
            )
        except OSError as exc:
            logger.error("Failed to start UDP server: %s", exc)
            return
        logger.info("UDP server listening on %s:%s", self.config.udp_host, self.config.udp_port)

    async def stop(self) -> None:
        if self._transport:
            self._transport.close()
            self._transport = None
            logger.info("UDP server closed")

    def handle_datagram(self, data: bytes, addr=None) -> None:
        self.processor.publisher.publish(CONNECTION, True)
        self.processor.feed(data + b"\n")
