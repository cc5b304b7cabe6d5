"""
Telemetry module for session layer logging.

This module provides:
- JSONFormatter for structured console output
- the ``[timestamp] [level] message`` diagnostics file sink
- TelemetryService for centralized logging setup
"""

from telemetry.service import (
    DIAGNOSTICS_FORMAT,
    JSONFormatter,
    TelemetryService,
    create_diagnostics_formatter,
    get_session_key,
    get_telemetry_service,
    initialize_telemetry,
    session_key_var,
    set_session_key,
)

__all__ = [
    "DIAGNOSTICS_FORMAT",
    "JSONFormatter",
    "TelemetryService",
    "create_diagnostics_formatter",
    "get_session_key",
    "get_telemetry_service",
    "initialize_telemetry",
    "session_key_var",
    "set_session_key",
]
