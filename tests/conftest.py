"""
pytest configuration for the collector tests.

Adds src directory to Python path for imports and provides shared fixtures.
"""

import sys
from datetime import UTC, datetime, timedelta
from pathlib import Path

import pytest

# Add src directory to Python path
src_dir = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_dir))

from collector.models import EventIdentity, RawEvent  # noqa: E402
from core.logging.context import clear_log_context  # noqa: E402

T0 = datetime(2019, 2, 10, 10, 0, 0, tzinfo=UTC)


def _make_event(
    subject_id: str = "episode-1",
    at: datetime | timedelta = T0,
    tenant_id: str = "mh_default_org",
    source_address: str = "10.0.0.1",
    channel: str = "engage-player",
) -> RawEvent:
    """Build a RawEvent; `at` may be an offset from T0."""
    timestamp = T0 + at if isinstance(at, timedelta) else at
    return RawEvent(
        identity=EventIdentity(
            subject_id=subject_id,
            tenant_id=tenant_id,
            source_address=source_address,
        ),
        channel=channel,
        timestamp=timestamp,
        origin=f"{source_address} {subject_id}",
    )


@pytest.fixture
def make_event():
    return _make_event


@pytest.fixture(autouse=True)
def _clear_log_context():
    clear_log_context()
    yield
    clear_log_context()


@pytest.fixture
def access_line():
    """Factory for combined-format access-log lines."""

    def _line(
        ip: str = "10.0.0.1",
        date: str = "10/Feb/2019:03:38:22 +0100",
        request: str = (
            "GET /mh_default_org/engage-player/5a990722-6f18-4c69-ac84-4721934cb58b/"
            "c5f2ac27-0da1-4d91-952c-771905058ef5/myvideo.mp4 HTTP/1.1"
        ),
        status: int = 200,
        size: str = "1024",
        referrer: str = "-",
        agent: str = "Mozilla/5.0 (X11; Linux x86_64)",
    ) -> str:
        return f'{ip} - - [{date}] "{request}" {status} {size} "{referrer}" "{agent}"'

    return _line
