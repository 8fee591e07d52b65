"""Structured logging configuration."""

import logging
import sys
from typing import Dict, Any, TextIO
import structlog


def setup_logging(level: str = "INFO", environment: str = "production", stream: TextIO = None) -> None:
    """Setup structured logging with structlog."""

    structlog.configure(
        processors=[
            structlog.stdlib.filter_by_level,
            structlog.stdlib.add_logger_name,
            structlog.stdlib.add_log_level,
            structlog.stdlib.PositionalArgumentsFormatter(),
            structlog.processors.TimeStamper(fmt="iso"),
            structlog.processors.StackInfoRenderer(),
            structlog.processors.format_exc_info,
            structlog.processors.UnicodeDecoder(),
            structlog.processors.JSONRenderer() if environment != "development"
            else structlog.dev.ConsoleRenderer()
        ],
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=True,
    )

    logging.basicConfig(
        format="%(message)s",
        stream=stream or sys.stdout,
        level=getattr(logging, level.upper()),
    )


class AuditLogger:
    """Audit trail for regression and rollback decisions."""

    def __init__(self):
        self.logger = structlog.get_logger("audit")

    def log_regression_detected(self, alert_id: str, metric: str, severity: str,
                                degradation_percentage: float, confidence: float):
        self.logger.info(
            "Regression detected",
            event_type="regression_detected",
            alert_id=alert_id,
            metric=metric,
            severity=severity,
            degradation_percentage=round(degradation_percentage, 2),
            confidence=round(confidence, 3)
        )

    def log_rollback_scheduled(self, alert_id: str, metric: str, confirmation_window: float):
        self.logger.info(
            "Rollback confirmation scheduled",
            event_type="rollback_scheduled",
            alert_id=alert_id,
            metric=metric,
            confirmation_window=confirmation_window
        )

    def log_rollback_cancelled(self, alert_id: str, metric: str, reason: str):
        self.logger.info(
            "Rollback cancelled",
            event_type="rollback_cancelled",
            alert_id=alert_id,
            metric=metric,
            reason=reason
        )

    def log_rollback_executed(self, alert_id: str, metric: str, success: bool,
                              details: Dict[str, Any] = None):
        """Log the outcome of an executed rollback."""
        log = self.logger.warning if success else self.logger.error
        log(
            "AUTO-ROLLBACK TRIGGERED" if success else "AUTO-ROLLBACK FAILED",
            event_type="rollback_executed",
            alert_id=alert_id,
            metric=metric,
            success=success,
            details=details or {}
        )

    def log_notification(self, alert_id: str, endpoint: str, success: bool, message: str = ""):
        self.logger.info(
            "Rollback notification sent" if success else "Rollback notification failed",
            event_type="rollback_notification",
            alert_id=alert_id,
            endpoint=endpoint,
            success=success,
            message=message
        )


audit_logger = AuditLogger()
