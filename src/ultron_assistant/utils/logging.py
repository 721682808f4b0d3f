import json
import structlog
import logging
import inspect
from typing import Any

from ultron_assistant.config import get_settings
from ultron_assistant.config_constants import LogFormat

# Module-level flag to prevent multiple configuration
_logging_configured = False

# Project loggers get a shortened module name ("services.assistant_service")
PROJECT_LOGGER_PREFIX = "ultron_assistant."


def _add_module_info(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> structlog.types.EventDict:
    """
    Add a short 'module' field derived from the logger name.

    "ultron_assistant.repositories.sql_validation" becomes
    "repositories.sql_validation"; third-party loggers keep their full name.
    """
    logger_name = event_dict.get('logger', 'unknown')

    if logger_name.startswith(PROJECT_LOGGER_PREFIX):
        module_parts = logger_name.split('.')
        event_dict['module'] = '.'.join(module_parts[-2:])
    else:
        event_dict['module'] = logger_name

    return event_dict


def _pretty_json_renderer(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> str:
    """Render the event as indented JSON. Non-serializable values fall back to str()."""
    return json.dumps(event_dict, indent=2, ensure_ascii=False, default=str)


def _console_renderer(logger: Any, method_name: str, event_dict: structlog.types.EventDict) -> str:
    """
    Single-line coloured renderer for local development.

    Output: "<timestamp> [LEVEL] module: event (trace: abcd1234) | key=value, ..."
    """
    timestamp = event_dict.get('timestamp', '')
    level = event_dict.get('level', '').upper()
    module = event_dict.get('module', '')
    event = event_dict.get('event', '')
    trace_id = event_dict.get('trace_id') or ''

    colors = {
        'DEBUG': '\033[36m',    # Cyan
        'INFO': '\033[32m',     # Green
        'WARNING': '\033[33m',  # Yellow
        'ERROR': '\033[31m',    # Red
        'CRITICAL': '\033[35m', # Magenta
    }
    reset = '\033[0m'
    color = colors.get(level, '')

    line = f"{timestamp} {color}[{level}]{reset} {module}: {event}"
    if trace_id:
        line += f" (trace: {trace_id[:8]})"

    skip_fields = {'timestamp', 'level', 'module', 'event', 'trace_id', 'logger'}
    extras = [f"{key}={value}" for key, value in event_dict.items() if key not in skip_fields]
    if extras:
        line += f" | {', '.join(extras)}"

    return line


def configure_logging() -> None:
    """Configure structured logging for the application."""

    global _logging_configured

    # ---- guard: run only once ----
    if _logging_configured:
        return
    _logging_configured = True

    settings = get_settings()

    logging.basicConfig(
        format="%(message)s",
        level=getattr(logging, settings.app.log_level.value),
        handlers=[logging.StreamHandler()]
    )

    renderer = (
        _console_renderer
        if settings.app.log_format == LogFormat.CONSOLE
        else _pretty_json_renderer
    )

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,  # Adds 'logger' field with module name
            structlog.stdlib.add_log_level,    # Adds 'level' field
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            _add_module_info,
            renderer,
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """
    Get a configured logger instance.

    Usage:
        logger = get_logger(__name__)
        logger.info("SQL generated", sql_preview="SELECT ...", trace_id="abc-123")

        # Output (JSON format):
        # {
        #   "event": "SQL generated",
        #   "sql_preview": "SELECT ...",
        #   "trace_id": "abc-123",
        #   "logger": "ultron_assistant.repositories.sql_generation",
        #   "level": "info",
        #   "timestamp": "2025-01-22T10:30:00Z",
        #   "module": "repositories.sql_generation"
        # }
    """
    return structlog.get_logger(name)


def get_module_logger() -> structlog.stdlib.BoundLogger:
    """
    Get a logger named after the calling module.

    Falls back to 'unknown' if frame inspection fails.
    """
    module_name = 'unknown'
    frame = None

    try:
        frame = inspect.currentframe()
        if frame is not None and frame.f_back is not None:
            module_name = frame.f_back.f_globals.get('__name__', 'unknown')
    except (AttributeError, RuntimeError):
        # Frame inspection is unavailable in some interpreters
        pass
    finally:
        if frame is not None:
            del frame

    return get_logger(module_name)
