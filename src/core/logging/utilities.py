"""Logging utility functions."""

import logging
from typing import Any


def log_exception(
    logger: logging.Logger,
    exc: BaseException,
    msg: str,
    level: int = logging.ERROR,
    include_traceback: bool = True,
    **kwargs: Any,
) -> None:
    """
    Log exception with context and optional traceback.

    Automatically extracts error_category and exit_status from PipelineError
    subclasses and truncates long error messages.

    Example:
        try:
            await sink.write(record)
        except SinkConnectionError as e:
            log_exception(logger, e, "Sink write failed", tenant_id=record.tenant_id)
    """
    if kwargs.get("error_category") is None and hasattr(exc, "category"):
        cat = exc.category
        kwargs["error_category"] = cat.value if hasattr(cat, "value") else str(cat)
    if kwargs.get("exit_status") is None and hasattr(exc, "exit_status"):
        kwargs["exit_status"] = int(exc.exit_status)

    error_msg = str(exc)
    if len(error_msg) > 500:
        error_msg = error_msg[:500] + "..."
    kwargs["error_message"] = error_msg
    kwargs.setdefault("error_type", type(exc).__name__)

    if include_traceback:
        logger.log(level, msg, exc_info=exc, extra=kwargs)
    else:
        logger.log(level, msg, extra=kwargs)


def format_cycle_output(
    cycle_count: int,
    received: int,
    written: int,
    skipped: int = 0,
    failed: int = 0,
    since_last: dict[str, int] | None = None,
    interval_seconds: float = 60,
) -> str:
    """
    Format a periodic progress line for the collector.

    Example:
        >>> format_cycle_output(1, 1200, 300, 850, 2)
        'Cycle 1: received=1200, written=300, skipped=850, failed=2'
        >>> format_cycle_output(5, 1200, 300, 0, 0, {"received": 240, "written": 60}, 60)
        'Cycle 5: +240 received, +60 written | total: 1200 received, 300 written | 4.0 events/s'
    """
    if since_last is None:
        parts = [f"received={received}", f"written={written}"]
        if skipped > 0:
            parts.append(f"skipped={skipped}")
        if failed > 0:
            parts.append(f"failed={failed}")
        return f"Cycle {cycle_count}: {', '.join(parts)}"

    delta_received = since_last.get("received", 0)
    rate = delta_received / interval_seconds if interval_seconds > 0 else 0

    total_parts = [f"{received} received", f"{written} written"]
    if skipped > 0:
        total_parts.append(f"{skipped} skipped")
    if failed > 0:
        total_parts.append(f"{failed} failed")

    parts = [
        f"+{delta_received} received, +{since_last.get('written', 0)} written",
        f"total: {', '.join(total_parts)}",
        f"{rate:.1f} events/s",
    ]
    return f"Cycle {cycle_count}: {' | '.join(parts)}"
