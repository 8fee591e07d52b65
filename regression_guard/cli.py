"""Command-line interface for the regression guard."""

import asyncio
import json
import sys
import time
from typing import Optional

import click

from .core.config import load_settings
from .core.detector import PerformanceRegressionDetector
from .core.scheduler import ManualScheduler
from .detectors.baseline import BaselineManager
from .monitoring.logging import setup_logging
from .storage.stores import FileStore


@click.group()
@click.option("--log-level", default=None, help="Logging level (defaults to settings)")
@click.option("--debug", is_flag=True, help="Enable debug logging with console output")
@click.option("--store-path", default=None, help="Directory holding persisted baselines")
@click.pass_context
def cli(ctx, log_level, debug, store_path):
    """Performance Regression Guard CLI."""
    overrides = {}
    if store_path:
        overrides["baseline_store_path"] = store_path
    if debug:
        overrides["log_level"] = "DEBUG"
        overrides["environment"] = "development"
    elif log_level:
        overrides["log_level"] = log_level

    try:
        settings = load_settings(**overrides)
    except ValueError as e:
        raise click.BadParameter(str(e))

    setup_logging(settings.log_level, settings.environment, stream=sys.stderr)
    ctx.obj = settings


@cli.command()
@click.option("--duration", type=float, default=None, help="Seconds to run (default: until interrupted)")
@click.option("--auto-rollback/--no-auto-rollback", default=None, help="Override auto-rollback setting")
@click.pass_obj
def run(settings, duration: Optional[float], auto_rollback: Optional[bool]):
    """Run the detector's periodic detection, baseline and budget jobs."""
    detector = PerformanceRegressionDetector.from_settings(settings)
    if auto_rollback is not None:
        detector.configure_auto_rollback(enabled=auto_rollback)

    async def run_detector():
        detector.start()
        try:
            if duration is None:
                await asyncio.Event().wait()
            else:
                await asyncio.sleep(duration)
        finally:
            detector.stop()

    click.echo(f"Starting regression detector (detection every {settings.detection_interval:g}s)")
    try:
        asyncio.run(run_detector())
    except KeyboardInterrupt:
        click.echo("Interrupted")


@cli.command()
@click.argument("samples_file", type=click.File("r"))
@click.pass_obj
def analyze(settings, samples_file):
    """Run one detection and budget cycle over a JSON-lines sample file.

    Each line holds an object with ``metric_name`` and ``value`` and
    optionally ``unit``, ``tags`` and ``timestamp`` (epoch ms). Metrics
    without a stored baseline get one from this file instead of being
    analyzed.
    """
    detector = PerformanceRegressionDetector.from_settings(settings, scheduler=ManualScheduler(start_time=time.time()))
    detector.baselines.load_all()

    rejected = 0
    for line_number, line in enumerate(samples_file, start=1):
        line = line.strip()
        if not line:
            continue
        try:
            sample = json.loads(line)
            accepted = detector.record(
                sample["metric_name"],
                sample["value"],
                sample.get("unit", "ms"),
                sample.get("tags"),
                sample.get("timestamp")
            )
        except (ValueError, KeyError, TypeError) as e:
            click.echo(f"Skipping line {line_number}: {e}", err=True)
            accepted = False
        if not accepted:
            rejected += 1

    known = {b.metric_name for b in detector.get_baselines()}
    alerts = asyncio.run(detector.detect_regressions())
    violations = detector.analyze_budgets()

    report = {
        "alerts": [alert.to_dict() for alert in alerts],
        "violations": [violation.to_dict() for violation in violations],
        "baselines_created": sorted(b.metric_name for b in detector.get_baselines() if b.metric_name not in known),
        "rejected_samples": rejected,
    }
    click.echo(json.dumps(report, indent=2))


@cli.command()
@click.option("--json", "as_json", is_flag=True, help="Print full baselines as JSON")
@click.pass_obj
def baselines(settings, as_json: bool):
    """List persisted baselines."""
    manager = BaselineManager(FileStore(settings.baseline_store_path), settings.model_dump())
    manager.load_all()

    stored = sorted(manager.all(), key=lambda b: b.metric_name)
    if as_json:
        click.echo(json.dumps([baseline.to_dict() for baseline in stored], indent=2))
        return

    if not stored:
        click.echo("No baselines stored")
        return

    click.echo("Stored baselines:")
    for baseline in stored:
        click.echo(
            f"  • {baseline.metric_name}: mean={baseline.mean:.2f} std={baseline.standard_deviation:.2f} "
            f"p95={baseline.percentiles.p95:.2f} n={baseline.sample_size}"
        )


@cli.command()
@click.option("--host", default=None, help="Host to bind to")
@click.option("--port", default=None, type=int, help="Port to bind to")
@click.pass_obj
def serve(settings, host: Optional[str], port: Optional[int]):
    """Run the HTTP API with the detector attached."""
    import uvicorn
    from .web.app import create_app

    detector = PerformanceRegressionDetector.from_settings(settings)
    host = host or settings.host
    port = port or settings.port

    click.echo(f"Serving regression guard on {host}:{port}")
    uvicorn.run(create_app(detector), host=host, port=port, log_config=None)


def main():
    """Main CLI entry point."""
    cli()


if __name__ == "__main__":
    main()
