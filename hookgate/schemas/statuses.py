"""
Status vocabularies stored as plain strings in the database.
"""


class ValidationStatus:
    """WebhookEvent.validation_status - moves once from UNVALIDATED to a terminal value."""
    UNVALIDATED = "UNVALIDATED"
    VALID = "VALID"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    EXPIRED_TIMESTAMP = "EXPIRED_TIMESTAMP"

    ALL = frozenset({UNVALIDATED, VALID, INVALID_SIGNATURE, EXPIRED_TIMESTAMP})


class AuditStatus:
    """AuditLogEntry.status - one row per lifecycle transition."""
    RECEIVED = "RECEIVED"
    VALIDATION_FAILED = "VALIDATION_FAILED"
    DUPLICATE = "DUPLICATE"
    UNHANDLED = "UNHANDLED"
    PROCESSED = "PROCESSED"
    RETRYING = "RETRYING"
    PROCESSING_FAILED = "PROCESSING_FAILED"
    DEAD_LETTERED = "DEAD_LETTERED"

    ALL = frozenset({
        RECEIVED, VALIDATION_FAILED, DUPLICATE, UNHANDLED,
        PROCESSED, RETRYING, PROCESSING_FAILED, DEAD_LETTERED,
    })
    TERMINAL = frozenset({VALIDATION_FAILED, DUPLICATE, UNHANDLED, PROCESSED, DEAD_LETTERED})


# current status -> statuses that may follow it (None = no entries yet)
AUDIT_TRANSITIONS: dict = {
    None: frozenset({AuditStatus.RECEIVED}),
    AuditStatus.RECEIVED: frozenset({
        AuditStatus.VALIDATION_FAILED,
        AuditStatus.DUPLICATE,
        AuditStatus.UNHANDLED,
        AuditStatus.PROCESSED,
        AuditStatus.RETRYING,
        AuditStatus.PROCESSING_FAILED,
    }),
    AuditStatus.RETRYING: frozenset({
        AuditStatus.RETRYING,
        AuditStatus.PROCESSED,
        AuditStatus.PROCESSING_FAILED,
    }),
    AuditStatus.PROCESSING_FAILED: frozenset({AuditStatus.DEAD_LETTERED}),
    AuditStatus.VALIDATION_FAILED: frozenset(),
    AuditStatus.DUPLICATE: frozenset(),
    AuditStatus.UNHANDLED: frozenset(),
    AuditStatus.PROCESSED: frozenset(),
    AuditStatus.DEAD_LETTERED: frozenset(),
}


def is_valid_transition(current, requested: str) -> bool:
    return requested in AUDIT_TRANSITIONS.get(current, frozenset())


def is_valid_trail(statuses: list[str]) -> bool:
    """True if the statuses, in order, form a path through the lifecycle state machine."""
    current = None
    for status in statuses:
        if not is_valid_transition(current, status):
            return False
        current = status
    return True
