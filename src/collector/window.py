"""
Sliding-window deduplication of viewing events.

Repeated hits for the same identity collapse into one view for as long as the
identity keeps being seen within the window. An identity is evicted (and only
then counted) once the newest event's timestamp is at least one window past
the identity's last sighting.

advance() is a pure function of (prior cache, event, window). SlidingWindow is
the small stateful wrapper used by the pipeline's fold stage.
"""

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from types import MappingProxyType

from collector.models import RawEvent

_EMPTY: Mapping[RawEvent, datetime] = MappingProxyType({})


@dataclass(frozen=True)
class Cache:
    """
    Immutable window state.

    Attributes:
        impressions: Active events (keyed by identity) mapped to last-seen time.
            The stored key is always the identity's most recent sighting.
        evictions: Events removed by the transition that produced this cache
    """

    impressions: Mapping[RawEvent, datetime] = field(default_factory=lambda: _EMPTY)
    evictions: frozenset[RawEvent] = field(default=frozenset())

    @classmethod
    def empty(cls) -> "Cache":
        return cls()

    def close(self) -> "Cache":
        """Flush: every held event becomes an eviction, impressions become empty."""
        return Cache(impressions=_EMPTY, evictions=frozenset(self.impressions))

    def __len__(self) -> int:
        return len(self.impressions)

    def __contains__(self, event: object) -> bool:
        return event in self.impressions


def advance(prior: Cache, event: RawEvent, window: timedelta) -> Cache:
    """
    Fold one event into the window.

    Every entry whose last sighting is at least `window` before
    event.timestamp is evicted. The event is then inserted, or refreshed if
    its identity is already present. Refreshing never emits.

    A zero or negative window evicts every prior entry on each call. Input is
    not sorted: an out-of-order event is compared against its own timestamp.
    """
    impressions: dict[RawEvent, datetime] = {}
    evicted: set[RawEvent] = set()

    for held, last_seen in prior.impressions.items():
        if event.timestamp - last_seen >= window:
            evicted.add(held)
        else:
            impressions[held] = last_seen

    # Equal keys keep the old key object on assignment
    impressions.pop(event, None)
    impressions[event] = event.timestamp

    return Cache(impressions=MappingProxyType(impressions), evictions=frozenset(evicted))


class SlidingWindow:
    """
    Stateful owner of the Cache for a single sequential consumer.

    Not safe for concurrent use; the pipeline calls it from one coroutine.
    """

    def __init__(self, window: timedelta):
        self.window = window
        self._cache = Cache.empty()
        self._closed = False

    @property
    def cache(self) -> Cache:
        return self._cache

    def push(self, event: RawEvent) -> frozenset[RawEvent]:
        """Advance the window by one event and return what it evicted."""
        if self._closed:
            raise RuntimeError("Sliding window is closed")
        self._cache = advance(self._cache, event, self.window)
        return self._cache.evictions

    def close(self) -> frozenset[RawEvent]:
        """Flush every held event. Further pushes are rejected."""
        if self._closed:
            return frozenset()
        self._closed = True
        self._cache = self._cache.close()
        return self._cache.evictions

    def __len__(self) -> int:
        return len(self._cache)


def run_window(events, window: timedelta) -> list[RawEvent]:
    """
    Push a whole sequence through a fresh window, close it and return every
    eviction in emission order. Used for replay and offline analysis.
    """
    sliding = SlidingWindow(window)
    evicted: list[RawEvent] = []
    for event in events:
        evicted.extend(sliding.push(event))
    evicted.extend(sliding.close())
    return evicted
