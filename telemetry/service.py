"""
Telemetry service for session layer diagnostics.

Two sinks are configured on the root logger:
- JSON lines on stdout, with timestamp, level, message and context fields
- an append-only diagnostics file, one ``[timestamp] [level] message``
  line per record

The file sink sits behind a queue so that writing diagnostics never
blocks or fails a session operation.
"""

import atexit
import json
import logging
import logging.handlers
import queue
import sys
from contextvars import ContextVar
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Dict

# Session key of the request being served, set by the session middleware
session_key_var: ContextVar[str] = ContextVar("session_key", default="")

DIAGNOSTICS_FORMAT = "[%(asctime)s] [%(levelname)s] %(message)s"
DIAGNOSTICS_DATE_FORMAT = "%Y-%m-%d %H:%M:%S"


class JSONFormatter(logging.Formatter):
    """
    Log formatter that outputs logs in JSON format.
    
    Each log entry contains:
    - timestamp: ISO 8601 formatted UTC timestamp
    - level: Log level (DEBUG, INFO, WARNING, ERROR, CRITICAL)
    - message: The log message
    - logger: Name of the logger that produced the entry
    - session_key: Session being served, when inside a request
    
    Additional fields can be included via the 'extra_data' attribute
    on the log record.
    """
    
    def format(self, record: logging.LogRecord) -> str:
        """
        Format a log record as a JSON string.
        
        Args:
            record: The log record to format
            
        Returns:
            JSON-formatted string containing the log entry
        """
        log_data: Dict[str, Any] = {
            "timestamp": datetime.now(timezone.utc).isoformat().replace("+00:00", "Z"),
            "level": record.levelname,
            "message": record.getMessage(),
            "logger": record.name,
        }
        
        session_key = get_session_key()
        if session_key:
            log_data["session_key"] = session_key
        
        if record.funcName and record.funcName != "<module>":
            log_data["function"] = record.funcName
        
        if hasattr(record, "extra_data") and record.extra_data:
            log_data.update(record.extra_data)
        
        if record.exc_info:
            log_data["exception"] = self.formatException(record.exc_info)
        
        return json.dumps(log_data, default=str)


def create_diagnostics_formatter() -> logging.Formatter:
    """Formatter for the ``[timestamp] [level] message`` diagnostics file."""
    return logging.Formatter(DIAGNOSTICS_FORMAT, datefmt=DIAGNOSTICS_DATE_FORMAT)


class TelemetryService:
    """
    Centralized logging setup for the session layer.
    
    Configures the root logger once; modules keep using
    ``logging.getLogger(__name__)`` and attach structured context through
    ``extra={"extra_data": {...}}``.
    """
    
    def __init__(self, settings: Optional[Any] = None, stream: Any = None):
        """
        Initialize the telemetry service.
        
        Args:
            settings: Settings carrying log_level and log_file
            stream: Console stream (defaults to stdout)
        """
        self.settings = settings
        self.stream = stream or sys.stdout
        self.log_file: Optional[Path] = None
        self._handlers: list[logging.Handler] = []
        self._listener: Optional[logging.handlers.QueueListener] = None
        self._logger = logging.getLogger("telemetry")
        self._setup_logging()
    
    def _setup_logging(self) -> None:
        """
        Attach the JSON console handler and the queued diagnostics file
        handler to the root logger.
        """
        log_level_str = getattr(self.settings, "log_level", None) or "INFO"
        log_level = getattr(logging, log_level_str.upper(), logging.INFO)
        
        root_logger = logging.getLogger()
        root_logger.setLevel(log_level)
        
        for handler in root_logger.handlers[:]:
            root_logger.removeHandler(handler)
        
        console_handler = logging.StreamHandler(self.stream)
        console_handler.setLevel(log_level)
        console_handler.setFormatter(JSONFormatter())
        root_logger.addHandler(console_handler)
        self._handlers.append(console_handler)
        
        log_file = getattr(self.settings, "log_file", None)
        if log_file:
            self._setup_file_sink(Path(log_file), log_level, root_logger)
        
        self._logger.debug("Telemetry service initialized", extra={
            "extra_data": {
                "log_level": log_level_str,
                "log_file": str(self.log_file) if self.log_file else None,
            }
        })
    
    def _setup_file_sink(self, path: Path, log_level: int, root_logger: logging.Logger) -> None:
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            file_handler = logging.FileHandler(path, mode="a", encoding="utf-8", delay=True)
        except OSError as e:
            self._logger.warning(
                "Diagnostics log file unavailable, file sink disabled",
                extra={"extra_data": {"log_file": str(path), "error": str(e)}}
            )
            return
        
        file_handler.setLevel(log_level)
        file_handler.setFormatter(create_diagnostics_formatter())
        
        log_queue: queue.SimpleQueue = queue.SimpleQueue()
        queue_handler = logging.handlers.QueueHandler(log_queue)
        queue_handler.setLevel(log_level)
        root_logger.addHandler(queue_handler)
        
        self._listener = logging.handlers.QueueListener(
            log_queue, file_handler, respect_handler_level=True
        )
        self._listener.start()
        self._handlers.extend([queue_handler, file_handler])
        self.log_file = path
        atexit.register(self.shutdown)
    
    def shutdown(self) -> None:
        """Stop the file sink and detach every handler this service added."""
        if self._listener is not None:
            self._listener.stop()
            self._listener = None
        
        root_logger = logging.getLogger()
        for handler in self._handlers:
            root_logger.removeHandler(handler)
            handler.close()
        self._handlers = []


_telemetry_service: Optional[TelemetryService] = None


def get_telemetry_service() -> Optional[TelemetryService]:
    """
    Get the global telemetry service instance.
    
    Returns:
        The telemetry service instance, or None if not initialized
    """
    return _telemetry_service


def initialize_telemetry(settings: Optional[Any] = None) -> TelemetryService:
    """
    Initialize the global telemetry service, replacing any previous one.
    
    Args:
        settings: Settings for configuration
        
    Returns:
        The initialized telemetry service
    """
    global _telemetry_service
    if _telemetry_service is not None:
        _telemetry_service.shutdown()
    _telemetry_service = TelemetryService(settings)
    return _telemetry_service


def set_session_key(session_key: str):
    """
    Set the session key for the current context.
    
    Returns:
        Token to pass to ``session_key_var.reset``
    """
    return session_key_var.set(session_key)


def get_session_key() -> str:
    """Get the session key of the current context, or empty string."""
    return session_key_var.get("")
