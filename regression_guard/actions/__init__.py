"""Rollback coordination and the collaborators it drives."""

from .base import ActionResult, RollbackExecutor, Notifier
from .notifications import LoggingNotifier, WebhookNotifier
from .rollback import RollbackCoordinator, CommandRollbackExecutor

__all__ = [
    "ActionResult",
    "RollbackExecutor",
    "Notifier",
    "LoggingNotifier",
    "WebhookNotifier",
    "RollbackCoordinator",
    "CommandRollbackExecutor",
]
