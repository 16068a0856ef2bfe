import time
from collections.abc import Callable, Iterable
from dataclasses import dataclass
from typing import Any

from serial_gps.gps_state import GPSState
from serial_gps.sentences import FixUpdate


@dataclass
class ChannelCacheEntry:
    last_value: Any
    last_emitted_at: float


def _same(a: Any, b: Any) -> bool:
    # True == 1 in Python, but a boolean channel flipping to an int is a change
    return type(a) is type(b) and a == b


class DebounceCache:
    """Decides per channel whether a value is worth forwarding.

    A value is forwarded when the channel has never been emitted, when it
    differs from the last forwarded value, or when the last emission is at
    least ``refresh_interval`` seconds old.
    """

    def __init__(
        self,
        refresh_interval: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self.refresh_interval = refresh_interval
        self._clock = clock
        self._entries: dict[str, ChannelCacheEntry] = {}

    def should_emit(self, channel: str, value: Any, now: float | None = None) -> bool:
        if now is None:
            now = self._clock()

        prev = self._entries.get(channel)
        if (
            prev is not None
            and _same(prev.last_value, value)
            and now - prev.last_emitted_at < self.refresh_interval
        ):
            return False

        self._entries[channel] = ChannelCacheEntry(value, now)
        return True

    def entry(self, channel: str) -> ChannelCacheEntry | None:
        return self._entries.get(channel)


class StatePublisher:
    """The single gate between decoded facts and the state sink."""

    def __init__(self, state: GPSState, cache: DebounceCache) -> None:
        self.state = state
        self.cache = cache

    def publish(self, channel: str, value: Any) -> bool:
        if not self.cache.should_emit(channel, value):
            return False
        self.state.set(channel, value)
        return True

    def publish_updates(self, updates: Iterable[FixUpdate]) -> int:
        forwarded = 0
        for update in updates:
            for channel, value in update.channels():
                if self.publish(channel, value):
                    forwarded += 1
        return forwarded
