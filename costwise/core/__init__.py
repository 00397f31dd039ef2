"""
Core package for costwise.

Contains the quantity parser, resource extraction, cost engine, waste
detector, optimization engine and the services built on them.
"""

from costwise.core.cost_engine import CostEstimator, PricingModel
from costwise.core.manifest import ConfigUnit
from costwise.core.optimizer import OptimizationEngine, SafetyConfiguration
from costwise.core.waste_detector import WasteDetector

__all__ = [
    "ConfigUnit",
    "CostEstimator",
    "OptimizationEngine",
    "PricingModel",
    "SafetyConfiguration",
    "WasteDetector",
]
