"""
Access-log tailing.

tail_lines() yields lines of a log file as an async stream, following the file
as it grows (like `tail -F`): a truncated file is re-read from the start and a
rotated file (new inode at the same path) is reopened once the old one has
been read to the end. Blocking file calls run in worker threads.
"""

import asyncio
import logging
import os
from collections.abc import AsyncIterator
from pathlib import Path
from typing import BinaryIO

from core.errors import LogFileNotFoundError, LogFileReadError

logger = logging.getLogger(__name__)

DEFAULT_POLL_INTERVAL = 1.0
READ_BATCH_LINES = 1000


def _open(path: Path) -> BinaryIO:
    try:
        return open(path, "rb")
    except FileNotFoundError as e:
        raise LogFileNotFoundError(f"Log file not found: {path}", cause=e) from e
    except OSError as e:
        raise LogFileReadError(f"Cannot open log file {path}", cause=e) from e


def _read_batch(f: BinaryIO, max_lines: int = READ_BATCH_LINES) -> list[bytes]:
    lines = []
    for _ in range(max_lines):
        line = f.readline()
        if not line:
            break
        lines.append(line)
    return lines


def _stat(path: Path) -> os.stat_result | None:
    try:
        return os.stat(path)
    except FileNotFoundError:
        # Between rotation's rename and the new file's creation
        return None


def _decode(line: bytes) -> str:
    return line.decode("utf-8", errors="replace").rstrip("\r\n")


async def _wait(stop_event: asyncio.Event | None, seconds: float) -> bool:
    """Sleep for `seconds`; True if stop_event was set meanwhile."""
    if stop_event is None:
        await asyncio.sleep(seconds)
        return False
    try:
        await asyncio.wait_for(stop_event.wait(), timeout=seconds)
    except TimeoutError:
        return False
    return True


async def tail_lines(
    path: str | Path,
    from_beginning: bool = False,
    follow: bool = True,
    poll_interval: float = DEFAULT_POLL_INTERVAL,
    stop_event: asyncio.Event | None = None,
) -> AsyncIterator[str]:
    """
    Yield lines of `path` without their line terminator.

    Args:
        path: Log file to read
        from_beginning: Start at the first line instead of the current end
        follow: Keep polling for new lines; False stops at end of file
        poll_interval: Seconds between polls at end of file
        stop_event: Ends the stream (cleanly) when set

    Raises:
        LogFileNotFoundError: The file does not exist at start
        LogFileReadError: The file cannot be opened or read
    """
    path = Path(path)
    f = await asyncio.to_thread(_open, path)
    try:
        if not from_beginning:
            await asyncio.to_thread(f.seek, 0, os.SEEK_END)
        inode = os.fstat(f.fileno()).st_ino

        logger.info(
            "Reading log file",
            extra={"log_file": str(path), "state": "follow" if follow else "batch"},
        )

        partial = b""
        while True:
            if stop_event is not None and stop_event.is_set():
                return

            try:
                batch = await asyncio.to_thread(_read_batch, f)
            except OSError as e:
                raise LogFileReadError(f"Cannot read log file {path}", cause=e) from e

            for raw in batch:
                if not raw.endswith(b"\n") and follow:
                    # Writer is mid-line; wait for the rest
                    partial += raw
                    continue
                yield _decode(partial + raw)
                partial = b""

            if batch:
                continue

            if not follow:
                return

            current = await asyncio.to_thread(_stat, path)
            if current is not None and current.st_ino != inode:
                logger.info("Log file rotated, reopening", extra={"log_file": str(path)})
                # Old file is read to the end, its unterminated last line is complete
                if partial:
                    yield _decode(partial)
                f.close()
                f = await asyncio.to_thread(_open, path)
                inode = os.fstat(f.fileno()).st_ino
                partial = b""
                continue
            if current is not None and current.st_size < f.tell():
                logger.info("Log file truncated, reading from start", extra={"log_file": str(path)})
                await asyncio.to_thread(f.seek, 0)
                partial = b""
                continue

            if await _wait(stop_event, poll_interval):
                return
    finally:
        f.close()
