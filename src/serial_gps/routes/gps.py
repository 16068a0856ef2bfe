import time

from fastapi import APIRouter, Request

from serial_gps import gps_state as ch
from serial_gps.models import ChannelValueResponse, GPSStatusResponse

router = APIRouter(tags=["gps"])


@router.get("/gps", response_model=GPSStatusResponse)
async def get_gps(request: Request) -> GPSStatusResponse:
    s = request.app.state.gps_state
    return GPSStatusResponse(
        connected=bool(s.get(ch.CONNECTION, False)),
        serial_state=s.serial_state,
        latitude=s.get(ch.LATITUDE),
        longitude=s.get(ch.LONGITUDE),
        altitude=s.get(ch.ALTITUDE),
        fix_quality=s.get(ch.FIX_QUALITY),
        fix_mode=s.get(ch.FIX_MODE),
        satellites=s.get(ch.SATELLITES),
        hdop=s.get(ch.HDOP),
        pdop=s.get(ch.PDOP),
        vdop=s.get(ch.VDOP),
        speed_knots=s.get(ch.SPEED_KNOTS),
        speed_kmh=s.get(ch.SPEED_KMH),
        course=s.get(ch.COURSE),
        date=s.get(ch.DATE),
        timestamp=s.get(ch.TIMESTAMP),
        last_sentence_age_s=round(time.monotonic() - s.last_sentence_time, 1),
        sentences_received=s.sentences_received,
        parse_errors=s.parse_errors,
        buffer_overflows=s.buffer_overflows,
    )


@router.get("/states", response_model=dict[str, ChannelValueResponse])
async def get_states(request: Request) -> dict[str, ChannelValueResponse]:
    values = request.app.state.gps_state.values
    return {
        channel: ChannelValueResponse(val=entry.value, ts=entry.ts)
        for channel, entry in sorted(values.items())
    }
