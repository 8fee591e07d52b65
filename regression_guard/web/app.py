"""FastAPI application exposing the regression detector."""

import time
from contextlib import asynccontextmanager
from typing import Dict, Any, List, Optional

from fastapi import FastAPI, HTTPException, status
from fastapi.responses import PlainTextResponse
from prometheus_client import CONTENT_TYPE_LATEST
from pydantic import BaseModel, Field
import structlog

from ..core.detector import PerformanceRegressionDetector
from ..core.config import AutoRollbackUpdate
from ..core.errors import ConfigurationError

logger = structlog.get_logger(__name__)


# Pydantic models
class SampleIn(BaseModel):
    """A single performance sample."""
    metric_name: str = Field(..., min_length=1, description="Dotted metric name, e.g. api.responseTime")
    value: float = Field(..., description="Observed value, higher is worse")
    unit: str = Field(default="ms", description="Unit label")
    tags: Dict[str, str] = Field(default_factory=dict)
    timestamp: Optional[int] = Field(default=None, description="Epoch milliseconds, defaults to now")


class SampleBatch(BaseModel):
    samples: List[SampleIn]


def create_app(detector: PerformanceRegressionDetector, manage_lifecycle: bool = True) -> FastAPI:
    """Build the API around ``detector``.

    With ``manage_lifecycle`` the detector is started and stopped together
    with the application.
    """
    state: Dict[str, Any] = {"startup_time": None}

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        state["startup_time"] = time.time()
        if manage_lifecycle:
            detector.start()
        logger.info("Regression guard API started")
        yield
        if manage_lifecycle:
            detector.stop()
        logger.info("Regression guard API stopped")

    app = FastAPI(
        title="Performance Regression Guard",
        description="Statistical performance regression detection with confirmed auto-rollback",
        version="1.0.0",
        lifespan=lifespan
    )

    @app.get("/health", tags=["system"])
    async def health():
        """Detector status and uptime."""
        uptime = time.time() - state["startup_time"] if state["startup_time"] else 0
        return {**detector.health(), "uptime_seconds": uptime}

    @app.post("/samples", status_code=status.HTTP_202_ACCEPTED, tags=["ingestion"])
    async def record_samples(batch: SampleBatch):
        """Buffer a batch of samples for the next detection cycle."""
        accepted = 0
        for sample in batch.samples:
            if detector.record(sample.metric_name, sample.value, sample.unit, sample.tags, sample.timestamp):
                accepted += 1
        return {"accepted": accepted, "rejected": len(batch.samples) - accepted}

    @app.get("/alerts", tags=["alerts"])
    async def list_alerts():
        return [alert.to_dict() for alert in detector.get_alerts()]

    @app.get("/alerts/active", tags=["alerts"])
    async def list_active_alerts():
        """Alerts raised within the active window."""
        return [alert.to_dict() for alert in detector.get_active_alerts()]

    @app.get("/baselines", tags=["baselines"])
    async def list_baselines():
        return [baseline.to_dict() for baseline in detector.get_baselines()]

    @app.get("/budgets", tags=["budgets"])
    async def list_budgets():
        return {
            "budgets": [budget.to_dict() for budget in detector.get_budgets()],
            "violations": [violation.to_dict() for violation in detector.get_violations()],
        }

    @app.post("/detect", tags=["operations"])
    async def run_detection():
        """Run one detection cycle and one budget check immediately."""
        alerts = await detector.detect_regressions()
        violations = detector.analyze_budgets()
        return {
            "alerts": [alert.to_dict() for alert in alerts],
            "violations": [violation.to_dict() for violation in violations],
        }

    @app.put("/auto-rollback", tags=["operations"])
    async def configure_auto_rollback(update: AutoRollbackUpdate):
        """Merge a partial auto-rollback configuration."""
        try:
            config = detector.configure_auto_rollback(**update.model_dump(exclude_unset=True, exclude_none=True))
        except ConfigurationError as e:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
        return config.to_dict()

    @app.get("/metrics/prometheus", response_class=PlainTextResponse, tags=["system"])
    async def prometheus_metrics():
        """Prometheus text exposition of the detector's own metrics."""
        return PlainTextResponse(detector.metrics.render(), media_type=CONTENT_TYPE_LATEST)

    return app
