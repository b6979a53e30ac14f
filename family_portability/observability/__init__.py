"""
Observability Module.

Structured logging for the family data-portability engine:
- JSON or console output via structlog
- Operation context binding
- Redaction of credentials and e-mail addresses
"""

from family_portability.observability.logging import (
    LogContext,
    configure_logging,
    get_log_context,
    get_logger,
)

__all__ = [
    "configure_logging",
    "get_logger",
    "get_log_context",
    "LogContext",
]
