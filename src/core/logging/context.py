"""Context variables for structured logging."""

from contextvars import ContextVar

_stage_name: ContextVar[str] = ContextVar("stage_name", default="")
_worker_id: ContextVar[str] = ContextVar("worker_id", default="")
_tenant_id: ContextVar[str] = ContextVar("tenant_id", default="")
_subject_id: ContextVar[str] = ContextVar("subject_id", default="")


def set_log_context(
    stage: str | None = None,
    worker_id: str | None = None,
    tenant_id: str | None = None,
    subject_id: str | None = None,
) -> None:
    if stage is not None:
        _stage_name.set(stage)
    if worker_id is not None:
        _worker_id.set(worker_id)
    if tenant_id is not None:
        _tenant_id.set(tenant_id)
    if subject_id is not None:
        _subject_id.set(subject_id)


def get_log_context() -> dict[str, str]:
    return {
        "stage": _stage_name.get(),
        "worker_id": _worker_id.get(),
        "tenant_id": _tenant_id.get(),
        "subject_id": _subject_id.get(),
    }


def clear_log_context() -> None:
    _stage_name.set("")
    _worker_id.set("")
    _tenant_id.set("")
    _subject_id.set("")
