"""
Error taxonomy for the schema generation pipeline.

Every error carries a message that is safe to show to the end user;
stack traces and structured diagnostics stay server-side.
"""
from typing import Any, Dict, List, Optional


class PipelineError(Exception):
    """Base class for failures the orchestrator reports to the caller."""

    kind: str = "pipeline_error"
    status_code: int = 500
    retryable: bool = False

    def __init__(self, message: str, *, retryable: Optional[bool] = None, **details: Any):
        super().__init__(message)
        self.user_message = message
        if retryable is not None:
            self.retryable = retryable
        self.details: Dict[str, Any] = details


class UrlUnreachableError(PipelineError):
    """Pre-flight reachability check failed; nothing was recorded or charged."""

    kind = "url_unreachable"
    status_code = 400


class InsufficientCreditsError(PipelineError):
    """Balance below the generation cost, or the credit lock was unavailable."""

    kind = "insufficient_credits"
    status_code = 402


class ScrapeError(PipelineError):
    """Navigation error, timeout or extraction failure in the headless browser."""

    kind = "scrape_failure"
    status_code = 502


class SchemaGenerationError(PipelineError):
    """The AI provider failed to produce a response."""

    kind = "ai_generation_failure"
    status_code = 502

    def __init__(
        self,
        message: str,
        *,
        status: Optional[int] = None,
        error_type: Optional[str] = None,
        retryable: Optional[bool] = None,
        **details: Any,
    ):
        super().__init__(message, retryable=retryable, **details)
        self.status = status
        self.error_type = error_type


class NoSchemasGeneratedError(PipelineError):
    """The AI returned empty or unusable output."""

    kind = "no_schemas_generated"
    status_code = 422


class SchemaValidationError(PipelineError):
    """Every generated candidate failed validation."""

    kind = "validation_failure"
    status_code = 422

    def __init__(self, message: str, *, errors: Optional[List[Dict[str, Any]]] = None, **details: Any):
        super().__init__(message, **details)
        self.errors = errors or []


class CreditConsumptionError(PipelineError):
    """The ledger raised while decrementing credits for a usable result."""

    kind = "credit_consumption_failure"
    status_code = 500


class PersistenceError(PipelineError):
    """A database write failed after a schema was generated."""

    kind = "persistence_failure"
    status_code = 500


class RefinementLimitError(PipelineError):
    """The stored generation has already been refined the maximum number of times."""

    kind = "refinement_limit_reached"
    status_code = 429


class GenerationNotFoundError(PipelineError):
    """No stored generation with that id belongs to the requesting user."""

    kind = "generation_not_found"
    status_code = 404


def status_for_kind(kind: Optional[str]) -> int:
    """HTTP status for a failure ``kind``; unknown kinds map to 500."""
    pending = list(PipelineError.__subclasses__())
    while pending:
        cls = pending.pop()
        if cls.kind == kind:
            return cls.status_code
        pending.extend(cls.__subclasses__())
    return PipelineError.status_code
