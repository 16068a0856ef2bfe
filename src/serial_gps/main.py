import logging
import time
from contextlib import asynccontextmanager

from fastapi import FastAPI

from serial_gps.config import Settings
from serial_gps.debounce import DebounceCache, StatePublisher
from serial_gps.gps_reader import GPSReader
from serial_gps.gps_state import CONNECTION, GPSState
from serial_gps.routes.gps import router as gps_router
from serial_gps.routes.ports import router as ports_router
from serial_gps.routes.status import router as status_router
from serial_gps.sentences import DecoderSession
from serial_gps.stream import StreamProcessor
from serial_gps.udp_server import UDPServer


@asynccontextmanager
async def lifespan(app: FastAPI):
    config = Settings()
    logging.basicConfig(
        level=config.log_level,
        format="%(asctime)s %(levelname)-8s %(name)s  %(message)s",
    )
    logger = logging.getLogger("serial_gps")

    state = GPSState()
    state.set(CONNECTION, False)
    publisher = StatePublisher(state, DebounceCache(config.refresh_interval))
    # Carried date and debounce cache are shared by both sources; framers are not
    session = DecoderSession()

    reader = GPSReader(
        config,
        StreamProcessor("serial", session, publisher, config.max_buffer_bytes),
    )
    udp = None
    if config.udp_enabled:
        udp = UDPServer(
            config,
            StreamProcessor("udp", session, publisher, config.max_buffer_bytes),
        )

    app.state.config = config
    app.state.gps_state = state
    app.state.gps_reader = reader
    app.state.start_time = time.monotonic()

    if udp:
        await udp.start()
    await reader.start()
    logger.info("Serial GPS ready — port=%s udp=%s", config.serial_port or "-", config.udp_enabled)

    yield

    await reader.stop()
    if udp:
        await udp.stop()
    logger.info("Serial GPS stopped")


app = FastAPI(
    title="Serial GPS",
    description="NMEA-0183 GPS receiver over serial or UDP, exposed as debounced state",
    version="0.1.0",
    lifespan=lifespan,
)

app.include_router(gps_router)
app.include_router(ports_router)
app.include_router(status_router)
