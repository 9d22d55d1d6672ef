"""
Structured Logging Service

Provides JSON-formatted structured logging with correlation context for
request tracing and per-file reconciliation tracking.

Features:
- JSON log formatter for machine-parseable output
- Request correlation via X-Request-ID
- Source file and folder mapping correlation for reconciliation passes
- Context propagation via contextvars (safe across asyncio tasks)
"""

import json
import logging
import uuid
from contextvars import ContextVar
from datetime import datetime
from typing import Optional, Dict, Any


request_id_var: ContextVar[Optional[str]] = ContextVar('request_id', default=None)
source_file_var: ContextVar[Optional[str]] = ContextVar('source_file', default=None)
mapping_var: ContextVar[Optional[str]] = ContextVar('mapping', default=None)
extra_context_var: ContextVar[Dict[str, Any]] = ContextVar('extra_context', default={})


def get_request_id() -> Optional[str]:
    return request_id_var.get()


def set_request_id(request_id: Optional[str]) -> None:
    request_id_var.set(request_id)


def get_source_file() -> Optional[str]:
    return source_file_var.get()


def set_source_file(source_file: Optional[str]) -> None:
    source_file_var.set(source_file)


def get_mapping() -> Optional[str]:
    return mapping_var.get()


def set_mapping(mapping: Optional[str]) -> None:
    mapping_var.set(mapping)


def get_extra_context() -> Dict[str, Any]:
    return extra_context_var.get()


def set_extra_context(context: Dict[str, Any]) -> None:
    extra_context_var.set(context)


def clear_context() -> None:
    """Clear all context variables."""
    request_id_var.set(None)
    source_file_var.set(None)
    mapping_var.set(None)
    extra_context_var.set({})


def generate_request_id() -> str:
    """Generate a new unique request ID."""
    return str(uuid.uuid4())[:8]


class JSONLogFormatter(logging.Formatter):
    """
    JSON formatter for structured logging output.

    Produces one JSON object per line with correlation IDs and extra context.
    """

    def __init__(self, include_extra: bool = True):
        super().__init__()
        self.include_extra = include_extra

    def format(self, record: logging.LogRecord) -> str:
        log_data = {
            "timestamp": datetime.utcnow().isoformat() + "Z",
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "module": record.module,
            "function": record.funcName,
            "line": record.lineno,
        }

        request_id = get_request_id()
        if request_id:
            log_data["request_id"] = request_id

        mapping = get_mapping()
        if mapping:
            log_data["mapping"] = mapping

        source_file = get_source_file()
        if source_file:
            log_data["source_file"] = source_file

        if self.include_extra:
            extra_context = get_extra_context()
            if extra_context:
                log_data["context"] = extra_context

        if record.exc_info:
            log_data["exception"] = {
                "type": record.exc_info[0].__name__ if record.exc_info[0] else None,
                "message": str(record.exc_info[1]) if record.exc_info[1] else None,
            }

        return json.dumps(log_data, default=str)


class CorrelationContext:
    """
    Context manager for setting correlation values.

    Usage:
        with CorrelationContext(mapping="/downloads/movies", source_file=path):
            logger.info("This log will include mapping and source_file")
    """

    def __init__(
        self,
        request_id: Optional[str] = None,
        source_file: Optional[str] = None,
        mapping: Optional[str] = None,
        **extra_context
    ):
        self.request_id = request_id
        self.source_file = source_file
        self.mapping = mapping
        self.extra_context = extra_context
        self._old_values = None

    def __enter__(self):
        self._old_values = (get_request_id(), get_source_file(), get_mapping(), get_extra_context())

        if self.request_id:
            set_request_id(self.request_id)
        if self.source_file:
            set_source_file(self.source_file)
        if self.mapping:
            set_mapping(self.mapping)
        if self.extra_context:
            set_extra_context(self.extra_context)

        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        request_id, source_file, mapping, extra = self._old_values
        set_request_id(request_id)
        set_source_file(source_file)
        set_mapping(mapping)
        set_extra_context(extra or {})
        return False


def setup_json_logging(
    logger_name: Optional[str] = None,
    level: int = logging.INFO,
    json_output: bool = True
) -> logging.Handler:
    """
    Set up a stream handler for a logger.

    Args:
        logger_name: Logger name (None for root logger)
        level: Minimum log level
        json_output: Whether to output JSON (True) or plain text (False)

    Returns:
        The configured handler
    """
    logger = logging.getLogger(logger_name) if logger_name else logging.getLogger()

    handler = logging.StreamHandler()
    handler.setLevel(level)

    if json_output:
        handler.setFormatter(JSONLogFormatter())
    else:
        handler.setFormatter(logging.Formatter(
            '%(asctime)s [%(levelname)s] %(name)s:%(lineno)d - %(message)s'
        ))

    logger.addHandler(handler)
    return handler
