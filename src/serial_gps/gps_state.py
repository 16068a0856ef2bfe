import time
from dataclasses import dataclass, field
from typing import Any

# Output channel ids
CONNECTION = "info.connection"
LATITUDE = "gps.latitude"
LONGITUDE = "gps.longitude"
POSITION = "gps.position"
LATLON = "gps.latlon"
ALTITUDE = "gps.altitude"
FIX_QUALITY = "gps.fix_quality"
FIX_MODE = "gps.fix_mode"
SATELLITES = "gps.satellites"
HDOP = "gps.hdop"
PDOP = "gps.pdop"
VDOP = "gps.vdop"
SPEED_KNOTS = "gps.speed_knots"
SPEED_KMH = "gps.speed_kmh"
COURSE = "gps.course"
DATE = "gps.date"
TIMESTAMP = "gps.timestamp"


@dataclass
class ChannelValue:
    value: Any
    ts: float = field(default_factory=time.time)


@dataclass
class GPSState:
    """State sink: the last forwarded value of every output channel."""

    values: dict[str, ChannelValue] = field(default_factory=dict)

    # Transport
    serial_state: str = "closed"

    # Counters
    sentences_received: int = 0
    parse_errors: int = 0
    buffer_overflows: int = 0
    last_sentence_time: float = field(default_factory=time.monotonic)

    def set(self, channel: str, value: Any) -> None:
        self.values[channel] = ChannelValue(value)

    def get(self, channel: str, default: Any = None) -> Any:
        entry = self.values.get(channel)
        return entry.value if entry else default
