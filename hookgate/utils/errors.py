"""
Gateway exception taxonomy.

ValidationError  -> 401, terminal, never retried by the gateway
ParseError       -> 400, terminal
ProcessingError  -> transient (retry) or permanent (dead letter), raised by handlers
InfrastructureError -> 500, the provider redelivers
"""
from hookgate.schemas.statuses import ValidationStatus


class GatewayError(Exception):
    """Base class for all gateway errors."""


# --- Signature validation ---

class ValidationError(GatewayError):
    validation_status = ValidationStatus.INVALID_SIGNATURE


class InvalidSignature(ValidationError):
    pass


class ExpiredTimestamp(ValidationError):
    validation_status = ValidationStatus.EXPIRED_TIMESTAMP


class MissingSecret(ValidationError):
    pass


class MalformedSignatureHeader(ValidationError):
    pass


# --- Parsing ---

class ParseError(GatewayError):
    pass


class MalformedPayload(ParseError):
    pass


# --- Handler processing ---

class ProcessingError(GatewayError):
    pass


class TransientProcessingError(ProcessingError):
    """Network blip, downstream 5xx, timeout - eligible for retry."""


class PermanentProcessingError(ProcessingError):
    """Business-rule rejection or data the handler can never accept."""


# --- Infrastructure ---

class InfrastructureError(GatewayError):
    pass


class DedupStoreUnavailable(InfrastructureError):
    pass


class AuditWriteError(InfrastructureError):
    pass


class InvalidAuditTransition(GatewayError):
    def __init__(self, webhook_id, current: str | None, requested: str):
        self.webhook_id = webhook_id
        self.current = current
        self.requested = requested
        super().__init__(
            f"Invalid audit transition for {webhook_id}: {current} -> {requested}"
        )


class ProcessorSaturated(GatewayError):
    """The worker pool queue is full or the processor is not running."""
