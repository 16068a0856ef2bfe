"""Connection lifecycle of one serial transport as a pure state machine.

``transition`` maps ``(lifecycle, event)`` to the next lifecycle plus the
side effects the driver (:class:`serial_gps.gps_reader.GPSReader`) must carry
out. At most one reconnect retry is ever pending: ``SCHEDULE_RETRY`` is only
emitted when ``retry_pending`` is false.
"""

import enum
from dataclasses import dataclass, replace


class ConnectionState(enum.Enum):
    CLOSED = "closed"
    OPENING = "opening"
    OPEN = "open"
    BACKOFF = "backoff"


class Event(enum.Enum):
    OPEN_REQUESTED = "open_requested"
    OPENED = "opened"
    OPEN_FAILED = "open_failed"
    DATA = "data"
    ERROR = "error"
    PORT_CLOSED = "port_closed"
    RETRY_FIRED = "retry_fired"
    CLOSE_REQUESTED = "close_requested"


class Effect(enum.Enum):
    CLOSE_PORT = "close_port"
    OPEN_PORT = "open_port"
    SCHEDULE_RETRY = "schedule_retry"
    CANCEL_RETRY = "cancel_retry"
    SIGNAL_DISCONNECTED = "signal_disconnected"


@dataclass(frozen=True)
class Lifecycle:
    state: ConnectionState = ConnectionState.CLOSED
    retry_pending: bool = False


@dataclass(frozen=True)
class Transition:
    lifecycle: Lifecycle
    effects: tuple[Effect, ...] = ()


FAULTS = (Event.OPEN_FAILED, Event.ERROR, Event.PORT_CLOSED)


def _cancel(lc: Lifecycle) -> tuple[Effect, ...]:
    return (Effect.CANCEL_RETRY,) if lc.retry_pending else ()


def _backoff(lc: Lifecycle, effects: tuple[Effect, ...]) -> Transition:
    if not lc.retry_pending:
        effects += (Effect.SCHEDULE_RETRY,)
    return Transition(Lifecycle(ConnectionState.BACKOFF, retry_pending=True), effects)


def transition(lc: Lifecycle, event: Event) -> Transition:
    state = lc.state

    if event is Event.OPEN_REQUESTED:
        # Any previously held handle is released before reopening
        return Transition(
            Lifecycle(ConnectionState.OPENING),
            _cancel(lc) + (Effect.CLOSE_PORT, Effect.OPEN_PORT),
        )

    if event is Event.CLOSE_REQUESTED:
        return Transition(
            Lifecycle(ConnectionState.CLOSED),
            _cancel(lc) + (Effect.CLOSE_PORT, Effect.SIGNAL_DISCONNECTED),
        )

    if event is Event.OPENED:
        if state is ConnectionState.OPENING:
            return Transition(Lifecycle(ConnectionState.OPEN), _cancel(lc))
        # Completion of an attempt nobody is waiting for any more
        return Transition(lc, (Effect.CLOSE_PORT,))

    if event in FAULTS:
        if state in (ConnectionState.OPENING, ConnectionState.OPEN):
            return _backoff(lc, (Effect.CLOSE_PORT, Effect.SIGNAL_DISCONNECTED))
        if state is ConnectionState.BACKOFF:
            return _backoff(lc, (Effect.SIGNAL_DISCONNECTED,))
        return Transition(lc)

    if event is Event.RETRY_FIRED:
        if state is ConnectionState.BACKOFF:
            return Transition(Lifecycle(ConnectionState.OPENING), (Effect.OPEN_PORT,))
        return Transition(replace(lc, retry_pending=False))

    if event is Event.DATA:
        # Inbound data proves the link is alive
        if state in (ConnectionState.OPEN, ConnectionState.BACKOFF):
            return Transition(Lifecycle(ConnectionState.OPEN), _cancel(lc))
        return Transition(lc)

    return Transition(lc)
