"""
Processing outcome - what a handler invocation resolved to.
"""
from dataclasses import dataclass
from typing import Optional


class OutcomeKind:
    SUCCESS = "success"
    TRANSIENT_FAILURE = "transient_failure"
    PERMANENT_FAILURE = "permanent_failure"


@dataclass(frozen=True)
class ProcessingOutcome:
    kind: str
    reason: Optional[str] = None

    @classmethod
    def success(cls) -> "ProcessingOutcome":
        return cls(OutcomeKind.SUCCESS)

    @classmethod
    def transient(cls, reason: str) -> "ProcessingOutcome":
        return cls(OutcomeKind.TRANSIENT_FAILURE, reason)

    @classmethod
    def permanent(cls, reason: str) -> "ProcessingOutcome":
        return cls(OutcomeKind.PERMANENT_FAILURE, reason)

    @property
    def is_success(self) -> bool:
        return self.kind == OutcomeKind.SUCCESS

    @property
    def is_transient(self) -> bool:
        return self.kind == OutcomeKind.TRANSIENT_FAILURE

    @property
    def is_permanent(self) -> bool:
        return self.kind == OutcomeKind.PERMANENT_FAILURE
