"""Configuration management for the regression guard."""

from typing import Optional, Dict, List, Annotated
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .models import AutoRollbackConfig


DEFAULT_CRITICAL_METRICS = [
    "page.loadComplete",
    "navigation.firstPaint",
    "api.responseTime",
    "error.occurrence",
    "ai.accuracy",
    "database.queryTime",
]

DEFAULT_BUDGETS = {
    "page.loadComplete": 2000.0,  # ms
    "navigation.firstPaint": 1000.0,  # ms
    "component.renderTime": 16.0,  # one frame at 60fps
    "api.responseTime": 500.0,  # ms
    "bundle.totalSize": 250.0 * 1024,  # bytes
    "memory.heapUsed": 100.0 * 1024 * 1024,  # bytes
}


class GuardSettings(BaseSettings):
    """Main configuration for the regression guard."""

    model_config = SettingsConfigDict(
        env_prefix="REGRESSION_GUARD_",
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore"
    )

    # Logging
    log_level: Annotated[str, Field(description="Log level")] = "INFO"
    environment: Annotated[str, Field(description="Environment")] = "production"

    # Storage
    baseline_store_path: Annotated[str, Field(description="Directory for persisted baselines")] = ".regression_guard/baselines"

    # Ingestion
    sample_buffer_size: Annotated[int, Field(description="Ring buffer capacity for raw samples", gt=0)] = 10000
    history_window: Annotated[int, Field(description="Samples kept per metric for baselines", gt=0)] = 500

    # Detection thresholds
    warning_threshold: Annotated[float, Field(description="Degradation % for a regression")] = 15.0
    critical_threshold: Annotated[float, Field(description="Degradation % for critical severity")] = 25.0
    emergency_threshold: Annotated[float, Field(description="Degradation % for emergency severity")] = 40.0
    confidence_minimum: Annotated[float, Field(description="Minimum confidence", ge=0.0, le=1.0)] = 0.8
    sample_size_minimum: Annotated[int, Field(description="Minimum samples for a baseline", gt=1)] = 20
    recent_window: Annotated[int, Field(description="Recent samples compared to baseline", gt=1)] = 10
    min_analysis_samples: Annotated[int, Field(description="Minimum samples before analysis", gt=1)] = 5
    confidence_method: Annotated[str, Field(description="heuristic or welch")] = "heuristic"

    # Cadence (seconds)
    detection_interval: Annotated[float, Field(description="Detection cadence", gt=0)] = 120.0
    baseline_update_interval: Annotated[float, Field(description="Baseline refresh cadence", gt=0)] = 24 * 60 * 60.0
    budget_check_interval: Annotated[float, Field(description="Budget check cadence", gt=0)] = 30.0

    # Alerts
    alert_retention: Annotated[float, Field(description="Alert log retention (s)", gt=0)] = 24 * 60 * 60.0
    active_alert_window: Annotated[float, Field(description="Active alert window (s)", gt=0)] = 60 * 60.0
    alert_dedup_window: Annotated[float, Field(description="Dedup window per metric+severity (s)", ge=0)] = 10 * 60.0
    max_alerts: Annotated[int, Field(description="Hard cap on the alert log", gt=0)] = 1000

    # Budgets
    budgets: Annotated[Dict[str, float], Field(description="Budget per metric")] = Field(
        default_factory=lambda: dict(DEFAULT_BUDGETS)
    )
    budget_trend_window: Annotated[int, Field(description="Samples used for budget trend", gt=0)] = 5
    budget_frequency_window: Annotated[int, Field(description="Evaluations used for violation frequency", gt=0)] = 20

    # Auto-rollback
    auto_rollback_enabled: Annotated[bool, Field(description="Enable auto-rollback")] = False
    critical_metrics: Annotated[List[str], Field(description="Metrics eligible for rollback")] = Field(
        default_factory=lambda: list(DEFAULT_CRITICAL_METRICS)
    )
    rollback_degradation_threshold: Annotated[float, Field(description="Degradation % that permits rollback")] = 30.0
    confirmation_window: Annotated[float, Field(description="Seconds to wait before confirming", ge=0)] = 5 * 60.0
    notification_endpoints: Annotated[List[str], Field(description="Rollback notification destinations")] = Field(
        default_factory=list
    )
    rollback_command: Annotated[Optional[str], Field(description="Shell command performing the rollback")] = None
    rollback_timeout: Annotated[float, Field(description="Rollback executor timeout (s)", gt=0)] = 60.0
    notification_timeout: Annotated[float, Field(description="Per-endpoint notification timeout (s)", gt=0)] = 10.0

    # API
    host: Annotated[str, Field(description="Server host")] = "0.0.0.0"
    port: Annotated[int, Field(description="Server port")] = 8080

    @field_validator("log_level")
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level."""
        valid_levels = ["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"]
        if v.upper() not in valid_levels:
            raise ValueError(f"Invalid log level: {v}. Must be one of {valid_levels}")
        return v.upper()

    @field_validator("confidence_method")
    @classmethod
    def validate_confidence_method(cls, v: str) -> str:
        if v.lower() not in ("heuristic", "welch"):
            raise ValueError(f"Invalid confidence method: {v}. Must be 'heuristic' or 'welch'")
        return v.lower()

    @field_validator("budgets")
    @classmethod
    def validate_budgets(cls, v: Dict[str, float]) -> Dict[str, float]:
        for metric, budget in v.items():
            if budget <= 0:
                raise ValueError(f"Budget for {metric} must be positive, got {budget}")
        return v

    def auto_rollback_config(self) -> AutoRollbackConfig:
        """Build the immutable auto-rollback policy from these settings."""
        return AutoRollbackConfig(
            enabled=self.auto_rollback_enabled,
            critical_metrics=tuple(self.critical_metrics),
            degradation_threshold=self.rollback_degradation_threshold,
            confirmation_window=self.confirmation_window,
            notification_endpoints=tuple(self.notification_endpoints),
        )


def load_settings(**overrides) -> GuardSettings:
    """Load settings from the environment, applying explicit overrides."""
    return GuardSettings(**overrides)


class AutoRollbackUpdate(BaseModel):
    """Partial auto-rollback configuration; unset fields keep their value."""

    model_config = ConfigDict(extra="forbid")

    enabled: Optional[bool] = None
    critical_metrics: Optional[List[str]] = None
    degradation_threshold: Optional[float] = Field(default=None, ge=0)
    confirmation_window: Optional[float] = Field(default=None, ge=0)
    notification_endpoints: Optional[List[str]] = None
