from typing import Any

from pydantic import BaseModel, Field


# ── Requests ───────────────────────────────────────────────


class PortTestRequest(BaseModel):
    serial_port: str = Field(..., min_length=1, description="Device path, e.g. /dev/ttyUSB0")
    baud_rate: int = Field(9600, gt=0)


class DetectBaudRequest(BaseModel):
    serial_port: str = Field(..., min_length=1)


# ── Responses ──────────────────────────────────────────────


class PortItem(BaseModel):
    label: str
    value: str


class PortTestResponse(BaseModel):
    detected: bool
    result: str
    error: str | None = None


class DetectBaudResponse(BaseModel):
    baud_rate: int | None = None
    error: str | None = None


class ChannelValueResponse(BaseModel):
    val: Any
    ts: float


class GPSStatusResponse(BaseModel):
    connected: bool
    serial_state: str
    latitude: float | None = None
    longitude: float | None = None
    altitude: float | None = None
    fix_quality: int | None = None
    fix_mode: str | None = None
    satellites: int | None = None
    hdop: float | None = None
    pdop: float | None = None
    vdop: float | None = None
    speed_knots: float | None = None
    speed_kmh: float | None = None
    course: float | None = None
    date: str | None = None
    timestamp: int | None = None
    last_sentence_age_s: float
    sentences_received: int
    parse_errors: int
    buffer_overflows: int


class HealthResponse(BaseModel):
    status: str
    serial_enabled: bool
    serial_state: str
    udp_enabled: bool
    last_sentence_age_s: float
    uptime_s: float
