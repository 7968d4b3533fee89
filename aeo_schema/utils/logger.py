"""
Structured logging for the AEO Schema Generator.

Every entry carries the trace ID of the request that produced it, so one
generation can be followed from scrape to persistence.
"""
import logging
import uuid
from contextvars import ContextVar
from typing import Any, Dict, List, Optional

import structlog

from aeo_schema.config import config

trace_id_var: ContextVar[str] = ContextVar("trace_id", default="")


def _new_trace_id() -> str:
    return uuid.uuid4().hex[:8]


def get_trace_id() -> str:
    """Current trace ID, minting one if this context has none yet."""
    trace_id = trace_id_var.get()
    if not trace_id:
        trace_id = set_trace_id()
    return trace_id


def set_trace_id(trace_id: Optional[str] = None) -> str:
    """Start a new trace for the current request context."""
    trace_id = trace_id or _new_trace_id()
    trace_id_var.set(trace_id)
    structlog.contextvars.bind_contextvars(trace_id=trace_id)
    return trace_id


def _ensure_trace_id(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    event_dict.setdefault("trace_id", get_trace_id())
    return event_dict


def _drop_empty_fields(logger: Any, method_name: str, event_dict: Dict[str, Any]) -> Dict[str, Any]:
    return {key: value for key, value in event_dict.items() if value is not None}


def configure_logging(level: Optional[str] = None, fmt: Optional[str] = None) -> None:
    """Configure structlog; JSON lines by default, colored console for local runs."""
    fmt = fmt or config.LOG_FORMAT
    level_name = (level or config.LOG_LEVEL).upper()

    renderer = (
        structlog.processors.JSONRenderer()
        if fmt == "json"
        else structlog.dev.ConsoleRenderer(colors=True)
    )
    structlog.configure(
        processors=[
            structlog.contextvars.merge_contextvars,
            _ensure_trace_id,
            _drop_empty_fields,
            structlog.processors.add_log_level,
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            renderer,
        ],
        wrapper_class=structlog.make_filtering_bound_logger(getattr(logging, level_name, logging.INFO)),
        context_class=dict,
        logger_factory=structlog.PrintLoggerFactory(),
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.BoundLogger:
    return structlog.get_logger(name)


class LayerLogger:
    """
    Component logger for the scrape -> generate -> validate -> persist pipeline.

    Event names are fixed per method so log queries do not depend on
    free-text messages; every entry is tagged with the component name.
    """

    def __init__(self, layer_name: str):
        self.layer_name = layer_name
        self.logger = get_logger(layer_name)

    def _emit(self, level: str, event: str, **fields: Any) -> None:
        getattr(self.logger, level)(event, layer=self.layer_name, **fields)

    def log_decision(self, decision: str, reason: str, url: Optional[str] = None, **extra: Any) -> None:
        """A branch taken by heuristics or policy."""
        self._emit("info", "decision_made", decision=decision, reason=reason, url=url, **extra)

    def log_action(self, action: str, status: str = "started", **extra: Any) -> None:
        self._emit("info", f"action_{status}", action=action, **extra)

    def log_fallback(self, from_source: str, to_source: str, reason: str, **extra: Any) -> None:
        """A primary source failed and a secondary one was used instead."""
        self._emit("warning", "fallback_triggered", from_source=from_source, to_source=to_source, reason=reason, **extra)

    def log_warning(self, message: str, **extra: Any) -> None:
        self._emit("warning", "warning_raised", message=message, **extra)

    def log_error(self, error: str, error_type: str = "unknown", **extra: Any) -> None:
        self._emit("error", "error_occurred", error=error, error_type=error_type, **extra)

    def log_stage(self, from_stage: str, to_stage: str, generation_id: Optional[str] = None, **extra: Any) -> None:
        """Generation state-machine transition."""
        self._emit(
            "info", "stage_transition",
            from_stage=from_stage, to_stage=to_stage, generation_id=generation_id, **extra,
        )

    def log_extraction(
        self,
        url: str,
        fields_present: List[str],
        fields_missing: List[str],
        word_count: int,
        **extra: Any,
    ) -> None:
        self._emit(
            "info", "content_extracted",
            url=url,
            fields_present=fields_present,
            fields_missing=fields_missing,
            word_count=word_count,
            **extra,
        )


configure_logging()
