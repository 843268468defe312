"""
Monitoring module exports.
"""

from visual_replay.monitoring.logger import (
    ContextLogAdapter,
    JSONFormatter,
    SanitizingHandler,
    get_logger,
    log_capture_event,
    log_performance_metric,
    setup_logging,
)

__all__ = [
    "ContextLogAdapter",
    "JSONFormatter",
    "SanitizingHandler",
    "get_logger",
    "log_capture_event",
    "log_performance_metric",
    "setup_logging",
]
