import asyncio
import logging

from fastapi import APIRouter, Request

from serial_gps import probe
from serial_gps.models import (
    DetectBaudRequest,
    DetectBaudResponse,
    PortItem,
    PortTestRequest,
    PortTestResponse,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/ports", tags=["ports"])


@router.get("", response_model=list[PortItem])
async def list_ports() -> list[PortItem]:
    try:
        ports = await asyncio.to_thread(probe.list_ports)
    except OSError as exc:
        logger.error("Cannot list ports: %s", exc)
        return [PortItem(label="Not available", value="")]
    logger.info("List of ports: %s", ports)
    return [PortItem(label=path, value=path) for path in ports]


@router.post("/test", response_model=PortTestResponse)
async def test_port(req: PortTestRequest, request: Request) -> PortTestResponse:
    reader = request.app.state.gps_reader
    detected = await reader.test_port(req.serial_port, req.baud_rate)
    if detected:
        return PortTestResponse(detected=True, result="GPS Receiver detected")
    return PortTestResponse(
        detected=False,
        result="GPS Receiver not detected",
        error="GPS Receiver not detected",
    )


@router.post("/detect-baud", response_model=DetectBaudResponse)
async def detect_baud(req: DetectBaudRequest, request: Request) -> DetectBaudResponse:
    reader = request.app.state.gps_reader
    baud_rate = await reader.detect_baud_rate(req.serial_port)
    if baud_rate is None:
        return DetectBaudResponse(error="Cannot detect baud rate")
    return DetectBaudResponse(baud_rate=baud_rate)
