"""Tests for the command-line interface."""

import json

import pytest
from click.testing import CliRunner

from regression_guard.cli import cli

from conftest import STEADY_VALUES


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def store_path(tmp_path):
    return str(tmp_path / "baselines")


def write_samples(path, metric, values):
    with open(path, "w") as f:
        for value in values:
            f.write(json.dumps({"metric_name": metric, "value": value}) + "\n")


class TestAnalyzeCommand:
    """Test cases for `regression-guard analyze`."""

    def test_first_run_creates_baselines(self, runner, tmp_path, store_path):
        samples = tmp_path / "samples.jsonl"
        write_samples(samples, "api.responseTime", STEADY_VALUES)

        result = runner.invoke(cli, ["--store-path", store_path, "analyze", str(samples)])

        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert report["alerts"] == []
        assert report["baselines_created"] == ["api.responseTime"]

    def test_second_run_detects_regression(self, runner, tmp_path, store_path):
        baseline_file = tmp_path / "baseline.jsonl"
        write_samples(baseline_file, "api.responseTime", STEADY_VALUES)
        runner.invoke(cli, ["--store-path", store_path, "analyze", str(baseline_file)])

        slow_file = tmp_path / "slow.jsonl"
        write_samples(slow_file, "api.responseTime", [150.0] * 10)
        result = runner.invoke(cli, ["--store-path", store_path, "analyze", str(slow_file)])

        assert result.exit_code == 0, result.output
        report = json.loads(result.stdout)
        assert len(report["alerts"]) == 1
        assert report["alerts"][0]["severity"] == "emergency"

    def test_bad_lines_are_counted(self, runner, tmp_path, store_path):
        samples = tmp_path / "samples.jsonl"
        samples.write_text('{"metric_name": "m", "value": 1}\nnot json\n{"value": 3}\n')

        result = runner.invoke(cli, ["--store-path", store_path, "analyze", str(samples)])

        assert result.exit_code == 0
        assert json.loads(result.stdout)["rejected_samples"] == 2


class TestBaselinesCommand:
    """Test cases for `regression-guard baselines`."""

    def test_empty_store(self, runner, store_path):
        result = runner.invoke(cli, ["--store-path", store_path, "baselines"])

        assert result.exit_code == 0
        assert "No baselines stored" in result.output

    def test_lists_stored_baselines(self, runner, tmp_path, store_path):
        samples = tmp_path / "samples.jsonl"
        write_samples(samples, "api.responseTime", STEADY_VALUES)
        runner.invoke(cli, ["--store-path", store_path, "analyze", str(samples)])

        result = runner.invoke(cli, ["--store-path", store_path, "baselines", "--json"])

        assert result.exit_code == 0
        baselines = json.loads(result.stdout)
        assert baselines[0]["metric_name"] == "api.responseTime"
        assert baselines[0]["mean"] == pytest.approx(100.0)


class TestGlobalOptions:
    """Test cases for group options."""

    def test_invalid_log_level(self, runner, store_path):
        result = runner.invoke(cli, ["--log-level", "LOUD", "--store-path", store_path, "baselines"])

        assert result.exit_code != 0
