"""Utils package initialization."""
from aeo_schema.utils.logger import get_logger, LayerLogger, set_trace_id, get_trace_id
from aeo_schema.utils.retry import RetryPolicy

__all__ = ["get_logger", "LayerLogger", "set_trace_id", "get_trace_id", "RetryPolicy"]
