"""
Import session lifecycle.

    PENDING -> PARSING -> MAPPED -> VALIDATING -> IMPORTING -> {COMPLETED | FAILED}

CANCELLED is reachable from PENDING, PARSING, MAPPED and VALIDATING only.
Any non-terminal status may fall to FAILED on an unrecoverable error.
Re-entry edges keep the normal editing loop open: re-preview, re-map after
validation, and re-validate.  FAILED -> IMPORTING is reserved for the job
queue re-running a failed apply attempt.
"""

from uuid import UUID

from coop_kernel.exceptions import InvalidStatusTransitionError

from coop_ingestion.domain.types import ImportStatus

S = ImportStatus

# Allowed status transitions (from -> set of valid next states)
ALLOWED_TRANSITIONS: dict[ImportStatus, frozenset[ImportStatus]] = {
    S.PENDING: frozenset({S.PARSING, S.CANCELLED, S.FAILED}),
    S.PARSING: frozenset({S.PARSING, S.MAPPED, S.CANCELLED, S.FAILED}),
    S.MAPPED: frozenset({S.MAPPED, S.VALIDATING, S.CANCELLED, S.FAILED}),
    S.VALIDATING: frozenset({S.MAPPED, S.VALIDATING, S.IMPORTING, S.CANCELLED, S.FAILED}),
    S.IMPORTING: frozenset({S.COMPLETED, S.FAILED}),
    S.COMPLETED: frozenset(),  # Terminal
    S.FAILED: frozenset({S.IMPORTING}),  # Terminal for callers; queue retry only
    S.CANCELLED: frozenset(),  # Terminal
}

CANCELLABLE_STATUSES: frozenset[ImportStatus] = frozenset(
    {S.PENDING, S.PARSING, S.MAPPED, S.VALIDATING}
)

# Statuses from which a preview may be generated without leaving the flow
PREVIEWABLE_STATUSES: frozenset[ImportStatus] = frozenset(
    {S.PENDING, S.PARSING, S.MAPPED, S.VALIDATING}
)

TERMINAL_STATUSES: frozenset[ImportStatus] = frozenset(
    {S.COMPLETED, S.FAILED, S.CANCELLED}
)


def validate_transition(current: ImportStatus, target: ImportStatus) -> bool:
    """Check if a status transition is valid."""
    return target in ALLOWED_TRANSITIONS.get(current, frozenset())


def assert_transition(
    session_id: UUID | str,
    current: ImportStatus,
    target: ImportStatus,
) -> None:
    """Raise InvalidStatusTransitionError unless current -> target is allowed."""
    if not validate_transition(current, target):
        raise InvalidStatusTransitionError(str(session_id), current.value, target.value)
