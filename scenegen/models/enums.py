"""Document lifecycle status and its transition rules."""

from enum import Enum

from scenegen.errors import IllegalTransition


class DocumentStatus(str, Enum):
    """Lifecycle status of a document."""

    UPLOADED = "uploaded"
    CHAPTER_READY = "chapterReady"
    ROLE_READY = "roleReady"
    SCENE_READY = "sceneReady"
    IMG_READY = "imgReady"
    FAILED = "failed"


# Forward order of the pipeline; FAILED sits outside it.
PIPELINE_ORDER: tuple[DocumentStatus, ...] = (
    DocumentStatus.UPLOADED,
    DocumentStatus.CHAPTER_READY,
    DocumentStatus.ROLE_READY,
    DocumentStatus.SCENE_READY,
    DocumentStatus.IMG_READY,
)

TERMINAL_STATUSES = frozenset({DocumentStatus.IMG_READY, DocumentStatus.FAILED})

_NEXT_STATUS: dict[DocumentStatus, DocumentStatus] = {
    current: following for current, following in zip(PIPELINE_ORDER, PIPELINE_ORDER[1:])
}

# Every non-terminal status must have exactly one successor.
if set(_NEXT_STATUS) != set(DocumentStatus) - TERMINAL_STATUSES:
    raise RuntimeError("Status transition table does not cover every non-terminal status")


def is_terminal(status: DocumentStatus) -> bool:
    return status in TERMINAL_STATUSES


def next_status(status: DocumentStatus) -> DocumentStatus:
    """Return the status that follows ``status`` in the pipeline.

    Raises:
        IllegalTransition: If ``status`` is terminal.
    """
    try:
        return _NEXT_STATUS[status]
    except KeyError:
        raise IllegalTransition(f"{status.value} is terminal") from None


def check_transition(current: DocumentStatus, target: DocumentStatus) -> None:
    """Validate a committed status change.

    Allowed: staying on a non-terminal status (partial progress), moving to
    the immediate next status, or moving to FAILED from any non-terminal
    status.

    Raises:
        IllegalTransition: For every other pair.
    """
    if is_terminal(current):
        raise IllegalTransition(f"Cannot leave terminal status {current.value}")
    if target == current or target == DocumentStatus.FAILED:
        return
    if target != next_status(current):
        raise IllegalTransition(f"Cannot move from {current.value} to {target.value}")


def status_rank(status: DocumentStatus) -> int:
    """Position of ``status`` in the forward order; FAILED ranks last."""
    if status == DocumentStatus.FAILED:
        return len(PIPELINE_ORDER)
    return PIPELINE_ORDER.index(status)
