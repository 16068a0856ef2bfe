import time

from fastapi import APIRouter, Request

from serial_gps.gps_state import CONNECTION
from serial_gps.models import HealthResponse

router = APIRouter(tags=["status"])

STALE_AFTER_S = 5.0


@router.get("/health", response_model=HealthResponse)
async def get_health(request: Request) -> HealthResponse:
    s = request.app.state.gps_state
    config = request.app.state.config
    start = request.app.state.start_time
    age = time.monotonic() - s.last_sentence_time

    if not s.get(CONNECTION, False):
        status = "disconnected"
    elif age > STALE_AFTER_S:
        status = "degraded"
    else:
        status = "ok"

    return HealthResponse(
        status=status,
        serial_enabled=config.serial_enabled,
        serial_state=s.serial_state,
        udp_enabled=config.udp_enabled,
        last_sentence_age_s=round(age, 1),
        uptime_s=round(time.monotonic() - start, 1),
    )
