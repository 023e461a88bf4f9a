"""Tests for access-log tailing."""

import asyncio
import os

import pytest

from collector.source import tail_lines
from core.errors import LogFileNotFoundError

POLL = 0.01


async def _collect(stream):
    return [line async for line in stream]


async def _wait_for(predicate, timeout=5.0):
    deadline = asyncio.get_running_loop().time() + timeout
    while not predicate():
        if asyncio.get_running_loop().time() > deadline:
            raise AssertionError("condition not met in time")
        await asyncio.sleep(POLL)


@pytest.fixture
def log_file(tmp_path):
    path = tmp_path / "access.log"
    path.write_text("first\nsecond\r\n")
    return path


class TestBatchMode:

    @pytest.mark.asyncio
    async def test_reads_whole_file(self, log_file):
        lines = await _collect(tail_lines(log_file, from_beginning=True, follow=False))
        assert lines == ["first", "second"]

    @pytest.mark.asyncio
    async def test_keeps_unterminated_last_line(self, log_file):
        with open(log_file, "a") as f:
            f.write("third")

        lines = await _collect(tail_lines(log_file, from_beginning=True, follow=False))
        assert lines == ["first", "second", "third"]

    @pytest.mark.asyncio
    async def test_from_end_reads_nothing(self, log_file):
        assert await _collect(tail_lines(log_file, follow=False)) == []

    @pytest.mark.asyncio
    async def test_invalid_utf8_is_replaced(self, tmp_path):
        path = tmp_path / "access.log"
        path.write_bytes(b"caf\xe9\n")

        lines = await _collect(tail_lines(path, from_beginning=True, follow=False))
        assert lines == ["caf�"]

    @pytest.mark.asyncio
    async def test_missing_file(self, tmp_path):
        with pytest.raises(LogFileNotFoundError):
            await _collect(tail_lines(tmp_path / "missing.log", follow=False))


@pytest.mark.slow
class TestFollowMode:

    @pytest.mark.asyncio
    async def test_picks_up_appended_lines(self, log_file):
        stop = asyncio.Event()
        seen = []

        async def consume():
            async for line in tail_lines(log_file, poll_interval=POLL, stop_event=stop):
                seen.append(line)

        task = asyncio.create_task(consume())
        # Let the tail open the file and seek to its end
        await asyncio.sleep(0.2)
        with open(log_file, "a") as f:
            f.write("third\n")
        await _wait_for(lambda: seen == ["third"])

        stop.set()
        await asyncio.wait_for(task, timeout=5)

    @pytest.mark.asyncio
    async def test_waits_for_line_terminator(self, tmp_path):
        path = tmp_path / "access.log"
        path.write_text("")
        stop = asyncio.Event()
        seen = []

        async def consume():
            async for line in tail_lines(path, from_beginning=True, poll_interval=POLL, stop_event=stop):
                seen.append(line)

        task = asyncio.create_task(consume())
        with open(path, "a") as f:
            f.write("hal")
        await asyncio.sleep(POLL * 10)
        assert seen == []

        with open(path, "a") as f:
            f.write("f\n")
        await _wait_for(lambda: seen == ["half"])

        stop.set()
        await asyncio.wait_for(task, timeout=5)

    @pytest.mark.asyncio
    async def test_truncation_restarts_from_top(self, log_file):
        stop = asyncio.Event()
        seen = []

        async def consume():
            async for line in tail_lines(log_file, from_beginning=True, poll_interval=POLL, stop_event=stop):
                seen.append(line)

        task = asyncio.create_task(consume())
        await _wait_for(lambda: seen == ["first", "second"])

        log_file.write_text("new\n")
        await _wait_for(lambda: seen[-1:] == ["new"])

        stop.set()
        await asyncio.wait_for(task, timeout=5)

    @pytest.mark.asyncio
    async def test_rotation_reopens(self, log_file):
        stop = asyncio.Event()
        seen = []

        async def consume():
            async for line in tail_lines(log_file, from_beginning=True, poll_interval=POLL, stop_event=stop):
                seen.append(line)

        task = asyncio.create_task(consume())
        await _wait_for(lambda: len(seen) == 2)

        os.rename(log_file, log_file.with_suffix(".log.1"))
        log_file.write_text("rotated\n")
        await _wait_for(lambda: seen[-1:] == ["rotated"])

        stop.set()
        await asyncio.wait_for(task, timeout=5)
        assert seen == ["first", "second", "rotated"]

    @pytest.mark.asyncio
    async def test_rotation_keeps_unterminated_last_line(self, log_file):
        with open(log_file, "a") as f:
            f.write("tail")
        stop = asyncio.Event()
        seen = []

        async def consume():
            async for line in tail_lines(log_file, from_beginning=True, poll_interval=POLL, stop_event=stop):
                seen.append(line)

        task = asyncio.create_task(consume())
        await _wait_for(lambda: len(seen) == 2)
        # Give the tail a few polls to reach the end of the old file
        await asyncio.sleep(POLL * 10)

        os.rename(log_file, log_file.with_suffix(".log.1"))
        log_file.write_text("rotated\n")
        await _wait_for(lambda: seen[-1:] == ["rotated"])

        stop.set()
        await asyncio.wait_for(task, timeout=5)
        assert seen == ["first", "second", "tail", "rotated"]

    @pytest.mark.asyncio
    async def test_stop_event_ends_stream(self, log_file):
        stop = asyncio.Event()
        stop.set()

        assert await _collect(tail_lines(log_file, from_beginning=True, stop_event=stop)) == []
