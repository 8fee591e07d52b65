"""Baseline, regression and budget analysis."""

from .baseline import BaselineManager, calculate_percentile
from .regression import RegressionAnalyzer
from .budget import BudgetTracker, calculate_trend, calculate_impact

__all__ = [
    "BaselineManager",
    "calculate_percentile",
    "RegressionAnalyzer",
    "BudgetTracker",
    "calculate_trend",
    "calculate_impact",
]
