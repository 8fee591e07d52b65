"""Interfaces for the external collaborators the rollback coordinator drives."""

from abc import ABC, abstractmethod
from typing import Dict, Any
from dataclasses import dataclass, field

import structlog

from ..core.models import RegressionAlert

logger = structlog.get_logger(__name__)


@dataclass
class ActionResult:
    """Result of an external action."""
    success: bool
    message: str
    data: Dict[str, Any] = field(default_factory=dict)
    execution_time: float = 0.0


class BaseAction(ABC):
    """Common configuration for external actions."""

    def __init__(self, config: Dict[str, Any] = None):
        self.config = config or {}
        self.enabled = self.config.get("enabled", True)
        self.timeout = self.config.get("timeout", 60)
        self.dry_run = self.config.get("dry_run", False)

    def is_enabled(self) -> bool:
        return self.enabled

    def is_dry_run(self) -> bool:
        return self.dry_run

    def create_result(self, success: bool, message: str, data: Dict[str, Any] = None) -> ActionResult:
        """Create a standardized action result."""
        return ActionResult(
            success=success,
            message=message,
            data=data or {}
        )


class RollbackExecutor(BaseAction):
    """Performs the actual rollback. How is up to the implementation."""

    @abstractmethod
    async def execute(self, alert: RegressionAlert) -> ActionResult:
        """Roll back the change blamed for ``alert``."""


class Notifier(BaseAction):
    """Delivers a rollback notification to one opaque endpoint."""

    @abstractmethod
    async def notify(self, endpoint: str, alert: RegressionAlert) -> ActionResult:
        """Tell ``endpoint`` that a rollback happened for ``alert``."""

    def skipped_result(self, endpoint: str) -> ActionResult:
        logger.info("Notifier disabled, notification skipped", endpoint=endpoint)
        return self.create_result(False, "Notifier disabled", {"endpoint": endpoint, "skipped": True})
