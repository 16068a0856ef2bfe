"""Decoding of NMEA-0183 GGA, RMC and GSA sentences into typed fix updates.

Only the fix/position/DOP-bearing sentences are decoded; everything else is
ignored. A decode never raises: malformed input comes back as a
:class:`DecodeError` and numeric fields that do not parse default to ``0``.
"""

import enum
import logging
import math
from collections.abc import Callable, Iterator
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Union

import pynmea2

from serial_gps import gps_state as ch
from serial_gps.conversions import nmea_to_decimal, parse_nmea_datetime

TRACE = 5
logging.addLevelName(TRACE, "TRACE")

logger = logging.getLogger(__name__)

KNOTS_TO_KMH = 1.852

FIX_MODES = {"2": "2D", "3": "3D"}


class SentenceKind(enum.Enum):
    GGA = "GGA"
    RMC = "RMC"
    GSA = "GSA"
    UNKNOWN = ""

    @classmethod
    def from_type(cls, talker_and_type: str) -> "SentenceKind":
        # Suffix match, so any talker id (GP, GN, GL, ...) is accepted
        for kind in (cls.GGA, cls.RMC, cls.GSA):
            if talker_and_type.endswith(kind.value):
                return kind
        return cls.UNKNOWN


@dataclass(frozen=True)
class NmeaSentence:
    talker_and_type: str
    fields: tuple[str, ...]
    checksum: str | None = None
    talker: str | None = None

    @classmethod
    def parse(cls, text: str) -> "NmeaSentence":
        """Parse one sentence with pynmea2; ``fields[0]`` is the talker and type.

        Raises :class:`pynmea2.ParseError` (or one of its subclasses) when the
        text is not a sentence, its checksum does not match, or pynmea2 has no
        definition for its type.
        """
        msg = pynmea2.parse(text)
        if isinstance(msg, pynmea2.TalkerSentence):
            talker = msg.talker
            talker_and_type = msg.talker + msg.sentence_type
        else:
            # Proprietary and query sentences carry no talker id
            talker = None
            talker_and_type = msg.identifier().split(",")[0]

        _, marker, provided = text.strip().partition("*")
        return cls(
            talker_and_type=talker_and_type,
            fields=(talker_and_type, *msg.data),
            checksum=provided.upper() if marker else None,
            talker=talker,
        )

    @property
    def kind(self) -> SentenceKind:
        if self.talker is None:
            return SentenceKind.UNKNOWN
        return SentenceKind.from_type(self.talker_and_type)

    def field(self, index: int) -> str:
        return self.fields[index] if index < len(self.fields) else ""


# ── Fix updates ───────────────────────────────────────────


@dataclass(frozen=True)
class Position:
    latitude: float | None = None
    longitude: float | None = None
    altitude: float | None = None
    fix_quality: int | None = None
    satellites: int | None = None
    hdop: float | None = None

    def channels(self) -> Iterator[tuple[str, Any]]:
        if self.fix_quality is not None:
            yield ch.FIX_QUALITY, self.fix_quality
        if self.latitude is not None and self.longitude is not None:
            yield ch.LATITUDE, self.latitude
            yield ch.LONGITUDE, self.longitude
            yield ch.POSITION, f"{self.longitude};{self.latitude}"
            yield ch.LATLON, f"{self.latitude};{self.longitude}"
        if self.satellites is not None:
            yield ch.SATELLITES, self.satellites
        if self.hdop is not None:
            yield ch.HDOP, self.hdop
        if self.altitude is not None:
            yield ch.ALTITUDE, self.altitude


@dataclass(frozen=True)
class Velocity:
    speed_knots: float
    speed_kmh: float
    course: float

    def channels(self) -> Iterator[tuple[str, Any]]:
        yield ch.SPEED_KNOTS, self.speed_knots
        yield ch.SPEED_KMH, self.speed_kmh
        yield ch.COURSE, self.course


@dataclass(frozen=True)
class Dilution:
    pdop: float
    hdop: float
    vdop: float
    fix_mode: str

    def channels(self) -> Iterator[tuple[str, Any]]:
        yield ch.FIX_MODE, self.fix_mode
        yield ch.PDOP, self.pdop
        yield ch.HDOP, self.hdop
        yield ch.VDOP, self.vdop


@dataclass(frozen=True)
class Timestamp:
    epoch_ms: int

    def channels(self) -> Iterator[tuple[str, Any]]:
        yield ch.TIMESTAMP, self.epoch_ms


@dataclass(frozen=True)
class DateTag:
    ddmmyy: str

    def channels(self) -> Iterator[tuple[str, Any]]:
        yield ch.DATE, self.ddmmyy


@dataclass(frozen=True)
class ConnectionSignal:
    connected: bool

    def channels(self) -> Iterator[tuple[str, Any]]:
        yield ch.CONNECTION, self.connected


FixUpdate = Union[Position, Velocity, Dilution, Timestamp, DateTag, ConnectionSignal]


@dataclass(frozen=True)
class DecodeError:
    reason: str
    sentence: str


DecodeResult = Union[tuple[FixUpdate, ...], DecodeError]


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class DecoderSession:
    """Cross-sentence memory: the last date seen in an RMC sentence.

    GGA only carries the time of day, so its absolute timestamp borrows the
    most recent RMC date (or today's UTC date before any RMC arrived).
    """

    last_date: str | None = None
    clock: Callable[[], datetime] = field(default=_utc_now, repr=False)


# ── Field helpers ─────────────────────────────────────────


def _to_float(text: str) -> float:
    try:
        value = float(text)
    except ValueError:
        return 0.0
    return value if math.isfinite(value) else 0.0


def _to_int(text: str) -> int:
    try:
        return int(text)
    except ValueError:
        return 0


def _timestamp(time_str: str, date_str: str | None, session: DecoderSession) -> list[FixUpdate]:
    if not time_str:
        return []
    ts = parse_nmea_datetime(time_str, date_str, today=session.clock())
    if ts is None:
        logger.debug("Unparseable NMEA time %r / date %r", time_str, date_str)
        return []
    return [Timestamp(ts)]


# ── Per-type decoders ─────────────────────────────────────


def _decode_gga(sentence: NmeaSentence, session: DecoderSession) -> list[FixUpdate]:
    # $--GGA,time,lat,NS,lon,EW,fix,numSat,hdop,alt,altUnit,...
    fix = _to_int(sentence.field(6))
    updates = _timestamp(sentence.field(1), session.last_date, session)
    updates.append(
        Position(
            latitude=nmea_to_decimal(sentence.field(2), sentence.field(3)),
            longitude=nmea_to_decimal(sentence.field(4), sentence.field(5)),
            altitude=_to_float(sentence.field(9)),
            fix_quality=fix,
            satellites=_to_int(sentence.field(7)),
            hdop=_to_float(sentence.field(8)),
        )
    )
    updates.append(ConnectionSignal(fix > 0))
    return updates


def _decode_rmc(sentence: NmeaSentence, session: DecoderSession) -> list[FixUpdate]:
    # $--RMC,time,status,lat,NS,lon,EW,sog,cog,date,...
    date_str = sentence.field(9)
    updates: list[FixUpdate] = []
    if date_str:
        session.last_date = date_str
        updates.append(DateTag(date_str))
    updates.extend(_timestamp(sentence.field(1), date_str, session))

    updates.append(
        Position(
            latitude=nmea_to_decimal(sentence.field(3), sentence.field(4)),
            longitude=nmea_to_decimal(sentence.field(5), sentence.field(6)),
        )
    )
    knots = _to_float(sentence.field(7))
    updates.append(
        Velocity(
            speed_knots=knots,
            speed_kmh=round(knots * KNOTS_TO_KMH, 2),
            course=_to_float(sentence.field(8)),
        )
    )
    updates.append(ConnectionSignal(sentence.field(2) == "A"))
    return updates


def _decode_gsa(sentence: NmeaSentence, session: DecoderSession) -> list[FixUpdate]:
    # $--GSA,mode,fixType,SV1,...,SV12,pdop,hdop,vdop
    mode = sentence.field(2)
    return [
        Dilution(
            pdop=_to_float(sentence.field(15)),
            hdop=_to_float(sentence.field(16)),
            vdop=_to_float(sentence.field(17)),
            fix_mode=FIX_MODES.get(mode, mode),
        )
    ]


DECODERS: dict[SentenceKind, Callable[[NmeaSentence, DecoderSession], list[FixUpdate]]] = {
    SentenceKind.GGA: _decode_gga,
    SentenceKind.RMC: _decode_rmc,
    SentenceKind.GSA: _decode_gsa,
}


def decode_sentence(text: str, session: DecoderSession) -> DecodeResult:
    """Verify and decode one ``$``-prefixed sentence."""
    text = text.strip()
    if not text.startswith("$"):
        return DecodeError("missing '$' start marker", text)

    try:
        sentence = NmeaSentence.parse(text)
    except pynmea2.ChecksumError:
        return DecodeError("checksum mismatch", text)
    except pynmea2.SentenceTypeError:
        logger.log(TRACE, "Unhandled NMEA sentence: %s", text)
        return ()
    except (pynmea2.ParseError, IndexError):
        # IndexError: some proprietary parsers index into fields that are not there
        return DecodeError("malformed sentence", text)

    decoder = DECODERS.get(sentence.kind)
    if decoder is None:
        logger.log(TRACE, "Unhandled NMEA sentence: %s", sentence.talker_and_type)
        return ()

    return tuple(decoder(sentence, session))


def split_sentences(line: str) -> list[str]:
    """Split a framed line into ``$``-prefixed sentences.

    Some receivers fuse several sentences into one line. Text before the first
    ``$`` is the tail of a sentence whose start was lost and is dropped; a
    line with no ``$`` at all is returned unchanged so it decodes as an error.
    """
    line = line.strip()
    if not line:
        return []
    if "$" not in line:
        return [line]
    return ["$" + part.strip() for part in line.split("$")[1:] if part.strip()]
