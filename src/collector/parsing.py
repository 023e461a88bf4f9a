"""
Access-log parsing: lines to RawEvents.

LogLine parses one combined-format access-log line, RequestLine parses the
request part of it, and EventFilter decides whether the hit counts as a view.
Every rejected line is debug-logged with a SKIP reason; nothing here raises
on bad input.
"""

import logging
import re
from collections.abc import AsyncIterator, Iterable
from dataclasses import dataclass, field
from datetime import datetime

from collector.models import EventIdentity, RawEvent

logger = logging.getLogger(__name__)

# Apache/nginx "combined" format
DEFAULT_LOG_LINE_PATTERN = (
    r"^(?P<ip>(?:[0-9]{1,3}\.){3}[0-9]{1,3}) - (-|[^ ]+) \[(?P<date>[^]]+)\] "
    r'"(?P<request>[^"]*)" (?P<httpret>[0-9]+) (?P<unknown1>(?:[0-9]+|-)) '
    r'"(?P<referrer>[^"]*)" "(?P<agent>[^"]+)"'
)

# METHOD /[static/]tenant/channel/subject/asset/...
DEFAULT_REQUEST_LINE_PATTERN = (
    r"^(?P<method>[^ ]+) /(static/)?(?P<organizationid>[^/]+)/(?P<publicationchannel>[^/]+)"
    r"/(?P<episodeid>[^/]+)/(?P<assetid>[^/]+).*"
)

DEFAULT_LOG_DATE_FORMAT = "%d/%b/%Y:%H:%M:%S %z"

# Agents of internal proxy health probes start with this
PROBE_AGENT_PREFIX = "Apache"

_JAVA_NAMED_GROUP = re.compile(r"\(\?<(?=[A-Za-z_])")


def compile_pattern(pattern: str) -> re.Pattern:
    """Compile a configured pattern, accepting (?<name>...) as well as (?P<name>...) groups."""
    return re.compile(_JAVA_NAMED_GROUP.sub("(?P<", pattern))


@dataclass(frozen=True, slots=True)
class RequestLine:
    method: str
    tenant_id: str
    channel: str
    subject_id: str
    asset_id: str

    @classmethod
    def parse(cls, request: str, pattern: re.Pattern | None = None) -> "RequestLine | None":
        match = (pattern or _DEFAULT_REQUEST_RE).match(request)
        if match is None:
            return None
        return cls(
            method=match.group("method"),
            tenant_id=match.group("organizationid"),
            channel=match.group("publicationchannel"),
            subject_id=match.group("episodeid"),
            asset_id=match.group("assetid"),
        )


@dataclass(frozen=True, slots=True)
class LogLine:
    origin: str
    ip: str
    timestamp: datetime
    request: str
    status: int
    referrer: str
    agent: str

    @classmethod
    def from_line(
        cls,
        line: str,
        pattern: re.Pattern | None = None,
        date_format: str = DEFAULT_LOG_DATE_FORMAT,
    ) -> "LogLine | None":
        line = line.rstrip("\r\n")
        if not line:
            return None

        match = (pattern or _DEFAULT_LOG_LINE_RE).match(line)
        if match is None:
            logger.debug("SKIP, wrong line pattern", extra={"reason": "pattern", "line": line})
            return None

        try:
            timestamp = datetime.strptime(match.group("date"), date_format)
        except ValueError:
            logger.debug("SKIP, unparseable date", extra={"reason": "date", "line": line})
            return None
        if timestamp.tzinfo is None:
            logger.debug("SKIP, date without UTC offset", extra={"reason": "date", "line": line})
            return None

        groups = match.groupdict()
        return cls(
            origin=line,
            ip=groups["ip"],
            timestamp=timestamp,
            request=groups["request"],
            status=int(groups["httpret"]),
            referrer=groups.get("referrer") or "",
            agent=groups.get("agent") or "",
        )


_DEFAULT_LOG_LINE_RE = compile_pattern(DEFAULT_LOG_LINE_PATTERN)
_DEFAULT_REQUEST_RE = compile_pattern(DEFAULT_REQUEST_LINE_PATTERN)


@dataclass
class EventFilter:
    """
    Turns parsed lines into RawEvents, dropping hits that are not views.

    Attributes:
        invalid_user_agents: Agent substrings of clients that are not viewers
        valid_file_extensions: If set, the request must contain one of these
        invalid_channels: Publication channels that are never counted
        request_pattern: Request-line grammar (default: DEFAULT_REQUEST_LINE_PATTERN)
    """

    invalid_user_agents: list[str] = field(default_factory=list)
    valid_file_extensions: list[str] = field(default_factory=list)
    invalid_channels: list[str] = field(default_factory=list)
    request_pattern: re.Pattern | None = None

    def to_raw_event(self, log_line: LogLine) -> RawEvent | None:
        extra = {"line": log_line.origin}

        if not 200 <= log_line.status < 300:
            logger.debug(
                f"SKIP, HTTP {log_line.status} is not a success",
                extra={**extra, "reason": "status", "http_status": log_line.status},
            )
            return None

        if self.valid_file_extensions and not any(
            ext in log_line.request for ext in self.valid_file_extensions
        ):
            logger.debug("SKIP, invalid extension", extra={**extra, "reason": "extension"})
            return None

        request = RequestLine.parse(log_line.request, self.request_pattern)
        if request is None:
            logger.debug("SKIP, unparseable request line", extra={**extra, "reason": "request"})
            return None

        if request.channel in self.invalid_channels:
            logger.debug(
                f"SKIP, invalid publication channel {request.channel}",
                extra={**extra, "reason": "channel", "channel": request.channel},
            )
            return None

        if request.method != "GET":
            logger.debug(
                f"SKIP, method {request.method} is not GET",
                extra={**extra, "reason": "method", "http_method": request.method},
            )
            return None

        if self._is_invalid_agent(log_line.agent):
            logger.debug(
                f'SKIP, invalid agent "{log_line.agent}"', extra={**extra, "reason": "agent"}
            )
            return None

        return RawEvent(
            identity=EventIdentity(
                subject_id=request.subject_id,
                tenant_id=request.tenant_id,
                source_address=log_line.ip,
            ),
            channel=request.channel,
            timestamp=log_line.timestamp,
            origin=log_line.origin,
        )

    def _is_invalid_agent(self, agent: str) -> bool:
        return agent.startswith(PROBE_AGENT_PREFIX) or any(
            invalid in agent for invalid in self.invalid_user_agents
        )


@dataclass
class LineParser:
    """Line grammar plus filter: the whole str -> RawEvent adapter."""

    event_filter: EventFilter = field(default_factory=EventFilter)
    line_pattern: re.Pattern | None = None
    date_format: str = DEFAULT_LOG_DATE_FORMAT
    lines_seen: int = 0
    events_accepted: int = 0

    @classmethod
    def from_config(cls, adapter) -> "LineParser":
        """Build from an AdapterConfig."""
        return cls(
            event_filter=EventFilter(
                invalid_user_agents=list(adapter.invalid_user_agents),
                valid_file_extensions=list(adapter.valid_file_extensions),
                invalid_channels=list(adapter.invalid_publication_channels),
                request_pattern=(
                    compile_pattern(adapter.request_line_pattern)
                    if adapter.request_line_pattern
                    else None
                ),
            ),
            line_pattern=(
                compile_pattern(adapter.log_line_pattern) if adapter.log_line_pattern else None
            ),
            date_format=adapter.log_date_format,
        )

    @property
    def events_skipped(self) -> int:
        return self.lines_seen - self.events_accepted

    def parse(self, line: str) -> RawEvent | None:
        self.lines_seen += 1
        log_line = LogLine.from_line(line, self.line_pattern, self.date_format)
        if log_line is None:
            return None
        event = self.event_filter.to_raw_event(log_line)
        if event is not None:
            self.events_accepted += 1
        return event


def parse_events(lines: Iterable[str], parser: LineParser | None = None) -> list[RawEvent]:
    """Parse a batch of lines, keeping only accepted events, in order."""
    parser = parser or LineParser()
    events = []
    for line in lines:
        event = parser.parse(line)
        if event is not None:
            events.append(event)
    return events


async def aparse_events(
    lines: AsyncIterator[str], parser: LineParser | None = None
) -> AsyncIterator[RawEvent]:
    """Async counterpart of parse_events over a tailed line stream."""
    parser = parser or LineParser()
    async for line in lines:
        event = parser.parse(line)
        if event is not None:
            yield event
