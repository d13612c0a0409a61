import os, sys, json, logging, time, uuid
from typing import Optional, Dict, Any
from contextvars import ContextVar

LOG_LEVEL = os.getenv("LOG_LEVEL", "INFO").upper()
SERVICE_NAME = os.getenv("SERVICE_NAME") or "shelf-recommender"

# --- Request context --------------------------------------------------------
# Request-scoped values that persist across awaits inside one pipeline run
request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
session_id_var: ContextVar[Optional[str]] = ContextVar('session_id', default=None)


def set_request_context(request_id: str = None, session_id: str = None):
    """Bind request-scoped context variables for log correlation.

    Args:
        request_id: Unique identifier for the request (generated when omitted)
        session_id: Caller session identifier, if any

    Returns:
        The request id now bound to the current context.
    """
    if request_id is None:
        request_id = str(uuid.uuid4())

    request_id_var.set(request_id)
    if session_id:
        session_id_var.set(session_id)

    return request_id


def get_request_context() -> Dict[str, Any]:
    """Get current request context for logging."""
    return {
        "request_id": request_id_var.get(),
        "session_id": session_id_var.get(),
    }


class PerformanceLogger:
    """Context manager for performance logging."""

    def __init__(self, logger: logging.Logger, operation: str, **context):
        self.logger = logger
        self.operation = operation
        self.context = context
        self.start_time = None

    def __enter__(self):
        self.start_time = time.time()
        self.logger.debug(f"Starting {self.operation}", extra={
            "operation": self.operation,
            "phase": "start",
            **self.context
        })
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        duration = time.time() - self.start_time
        level = logging.ERROR if exc_type else logging.INFO
        status = "error" if exc_type else "success"

        self.logger.log(level, f"Completed {self.operation}", extra={
            "operation": self.operation,
            "phase": "complete",
            "duration_seconds": round(duration, 3),
            "status": status,
            "error_type": exc_type.__name__ if exc_type else None,
            **self.context
        })


class JsonFormatter(logging.Formatter):
    """One JSON object per line: base fields, request context, then extras."""

    _builtin_keys = set(logging.LogRecord(None, 0, "", 0, "", (), None, None).__dict__.keys())

    def format(self, record):
        context = get_request_context()

        payload = {
            "timestamp": time.strftime("%Y-%m-%dT%H:%M:%SZ", time.gmtime(record.created)),
            "service": SERVICE_NAME,
            "level": record.levelname,
            "event": record.getMessage(),
            "logger": record.name,
            **{k: v for k, v in context.items() if v is not None}
        }

        # Merge user-supplied extras except builtin attributes
        for key, value in record.__dict__.items():
            if key not in self._builtin_keys and key not in payload and key != "message":
                payload[key] = value

        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        return json.dumps(payload, default=str)


def get_logger(name: str | None = None):
    """Return a JSON-logging logger bound to stdout."""
    logger = logging.getLogger(name or SERVICE_NAME)
    logger.setLevel(getattr(logging, LOG_LEVEL, logging.INFO))

    if not any(isinstance(h, logging.StreamHandler) for h in logger.handlers):
        ch = logging.StreamHandler(sys.stdout)
        ch.setFormatter(JsonFormatter())
        logger.addHandler(ch)

    logger.propagate = False

    def log_performance(operation: str, **context):
        return PerformanceLogger(logger, operation, **context)

    logger.log_performance = log_performance

    return logger


def log_error_with_context(logger: logging.Logger, error: Exception, operation: str, **context):
    """Log errors with full context for debugging."""
    logger.error(f"Error in {operation}: {str(error)}", extra={
        "operation": operation,
        "error_type": type(error).__name__,
        "error_message": str(error),
        "category": "error",
        **context
    }, exc_info=True)
