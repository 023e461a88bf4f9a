"""
Data model for the impression collector.

EventIdentity decides when two access-log hits are the same logical view.
RawEvent is one accepted hit; its equality and hash delegate to the identity
so that a set of RawEvents is a set of identities. EnrichedRecord is the
sink-ready result of enrichment.
"""

from dataclasses import dataclass, field
from datetime import datetime


@dataclass(frozen=True, slots=True)
class EventIdentity:
    """(subject, tenant, source address): the key that defines one view."""

    subject_id: str
    tenant_id: str
    source_address: str

    def __str__(self) -> str:
        return f"{self.tenant_id}/{self.subject_id}@{self.source_address}"


@dataclass(frozen=True, slots=True, eq=False)
class RawEvent:
    """
    A single accepted access-log hit.

    Attributes:
        identity: Which logical view this hit belongs to
        channel: Publication channel the asset was served from
        timestamp: Timezone-aware time of the hit
        origin: The source log line, for diagnostics only
    """

    identity: EventIdentity
    channel: str
    timestamp: datetime
    origin: str = field(default="", repr=False)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, RawEvent):
            return NotImplemented
        return self.identity == other.identity

    def __hash__(self) -> int:
        return hash(self.identity)

    @property
    def subject_id(self) -> str:
        return self.identity.subject_id

    @property
    def tenant_id(self) -> str:
        return self.identity.tenant_id

    @property
    def source_address(self) -> str:
        return self.identity.source_address


@dataclass(frozen=True, slots=True)
class EnrichedRecord:
    """One counted view, ready for the sink. series_id may be empty."""

    subject_id: str
    tenant_id: str
    source_address: str
    channel: str
    series_id: str
    timestamp: datetime

    @classmethod
    def from_event(cls, event: RawEvent, series_id: str = "") -> "EnrichedRecord":
        return cls(
            subject_id=event.subject_id,
            tenant_id=event.tenant_id,
            source_address=event.source_address,
            channel=event.channel,
            series_id=series_id,
            timestamp=event.timestamp,
        )
