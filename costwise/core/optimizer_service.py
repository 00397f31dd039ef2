"""
Optimizer service orchestration for costwise.

This module ties together the manifest scanner, cost estimator, waste
detector and optimization engine to run cost, waste and optimization
analysis over many workloads at once. A failure in one workload is
logged and recorded; its siblings are still processed and the partial
results are returned.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Mapping, Optional

from costwise.core.cost_engine import CostEstimator, SpaceCostAnalysis, UnitCostEstimate
from costwise.core.manifest import ConfigUnit, WorkloadError
from costwise.core.manifest_scanner import ManifestScanError, ManifestScanner
from costwise.core.optimizer import (
    OptimizationEngine,
    OptimizationError,
    OptimizedConfiguration,
    WasteMetrics,
)
from costwise.core.resource_extractor import ExtractionError, ResourceExtractor
from costwise.core.schemas import ActualUsageMetrics
from costwise.core.waste_detector import SpaceWasteAnalysis, WasteDetector

logger = logging.getLogger(__name__)


class ServiceError(Exception):
    """Exception raised when a batch run cannot start at all."""
    pass


@dataclass
class BatchOptimizationResult:
    """Optimized configurations of a batch, plus per-workload failures."""
    configurations: list[OptimizedConfiguration] = field(default_factory=list)
    errors: list[WorkloadError] = field(default_factory=list)
    skipped: list[str] = field(default_factory=list)

    @property
    def total_monthly_savings(self) -> float:
        return sum(c.estimated_savings.monthly_savings for c in self.configurations)

    def to_dict(self) -> dict:
        return {
            "configurations": [c.to_dict() for c in self.configurations],
            "errors": [e.to_dict() for e in self.errors],
            "skipped": list(self.skipped),
            "total_monthly_savings": round(self.total_monthly_savings, 2),
        }


@dataclass
class PipelineResult:
    """Outcome of a full cost, waste and optimization run."""
    cost_analysis: SpaceCostAnalysis
    waste_analysis: SpaceWasteAnalysis
    optimization: BatchOptimizationResult

    @property
    def errors(self) -> list[WorkloadError]:
        return self.cost_analysis.errors + self.optimization.errors


def _lookup(mapping: Mapping, unit: ConfigUnit):
    """Find a unit's entry by id, then by slug."""
    if unit.unit_id in mapping:
        return mapping[unit.unit_id]
    return mapping.get(unit.slug)


class OptimizerService:
    """
    Service for batch cost, waste and optimization analysis.

    All components are built from the same configuration values so a run
    prices, detects and optimizes consistently.
    """

    def __init__(
        self,
        estimator: Optional[CostEstimator] = None,
        detector: Optional[WasteDetector] = None,
        engine: Optional[OptimizationEngine] = None,
        space_id: str = "",
    ):
        """
        Initialize the optimizer service.

        Args:
            estimator: Cost estimator; a default one is created if omitted.
            detector: Waste detector; a default one is created if omitted.
            engine: Optimization engine; defaults to one sharing the estimator.
            space_id: Space the analyzed units belong to.
        """
        self.estimator = estimator or CostEstimator()
        self.detector = detector or WasteDetector()
        self.engine = engine or OptimizationEngine(estimator=self.estimator)
        self.space_id = space_id
        self._scanner = ManifestScanner(space_id=space_id)

    def analyze_costs(self, units: Iterable[ConfigUnit]) -> SpaceCostAnalysis:
        """Estimate the cost of every unit, skipping those that fail."""
        return self.estimator.analyze_units(units, space_id=self.space_id)

    def detect_waste(
        self,
        units: Iterable[ConfigUnit],
        usage_by_unit: Optional[Mapping[str, ActualUsageMetrics]] = None,
        now: Optional[datetime] = None,
    ) -> SpaceWasteAnalysis:
        """
        Estimate costs and detect waste for every unit.

        Args:
            units: Units to analyze.
            usage_by_unit: Usage metrics keyed by unit id or slug.
            now: Reference time for data quality grading.

        Returns:
            SpaceWasteAnalysis over the units whose cost could be estimated.
        """
        cost_analysis = self.analyze_costs(units)
        return self.detector.analyze_space(
            cost_analysis.units, usage_by_unit, space_id=self.space_id, now=now,
        )

    def optimize_units(
        self,
        units: Iterable[ConfigUnit],
        waste_by_unit: Mapping[str, WasteMetrics],
        now: Optional[datetime] = None,
    ) -> BatchOptimizationResult:
        """
        Optimize every unit that has waste metrics.

        Units without an entry in ``waste_by_unit`` are skipped. Units that
        fail are recorded as errors and the rest are still optimized.

        Args:
            units: Units to optimize.
            waste_by_unit: Waste metrics keyed by unit id or slug.
            now: Timestamp recorded on the optimized units.

        Returns:
            BatchOptimizationResult with configurations and errors.
        """
        result = BatchOptimizationResult()
        for unit in units:
            waste = _lookup(waste_by_unit, unit)
            if waste is None:
                logger.debug(f"No waste metrics for {unit.slug}, skipping optimization")
                result.skipped.append(unit.slug)
                continue
            try:
                result.configurations.append(self.engine.optimize(unit, waste, now=now))
            except (ExtractionError, OptimizationError) as e:
                logger.warning(f"Failed to optimize {unit.slug}: {e}")
                result.errors.append(WorkloadError.from_exception(unit, "optimize", e))
            except Exception as e:
                logger.exception(f"Unexpected error optimizing {unit.slug}: {e}")
                result.errors.append(WorkloadError.from_exception(unit, "optimize", e))

        logger.info(
            f"Optimized {len(result.configurations)} units, {len(result.errors)} failed, "
            f"${result.total_monthly_savings:.2f}/month estimated savings"
        )
        return result

    def run_pipeline(
        self,
        units: Iterable[ConfigUnit],
        usage_by_unit: Optional[Mapping[str, ActualUsageMetrics]] = None,
        now: Optional[datetime] = None,
    ) -> PipelineResult:
        """
        Run cost estimation, waste detection and optimization end to end.

        Units whose waste was detected with usage data are optimized using
        waste metrics derived from their detection.

        Args:
            units: Units to process.
            usage_by_unit: Usage metrics keyed by unit id or slug.
            now: Reference time for the whole run.

        Returns:
            PipelineResult with the three stage results.
        """
        now = now or datetime.now(timezone.utc)
        units = list(units)
        usage_by_unit = usage_by_unit or {}
        logger.info(f"Starting pipeline for {len(units)} units in space '{self.space_id}'")

        cost_analysis = self.analyze_costs(units)
        usage_by_id = {}
        for unit in units:
            usage = _lookup(usage_by_unit, unit)
            if usage is not None:
                usage_by_id[unit.unit_id] = usage

        waste_analysis = self.detector.analyze_space(
            cost_analysis.units, usage_by_id, space_id=self.space_id, now=now,
        )

        waste_by_id = {}
        for detection in waste_analysis.detections:
            if detection.has_usage_data:
                waste_by_id[detection.unit_id] = WasteMetrics.from_detection(
                    detection, usage_by_id.get(detection.unit_id), now=now,
                )

        optimization = self.optimize_units(units, waste_by_id, now=now)
        logger.info(f"Pipeline for space '{self.space_id}' completed")
        return PipelineResult(
            cost_analysis=cost_analysis,
            waste_analysis=waste_analysis,
            optimization=optimization,
        )

    def scan_and_run(
        self,
        manifest_path: str,
        usage_by_unit: Optional[Mapping[str, ActualUsageMetrics]] = None,
        now: Optional[datetime] = None,
    ) -> PipelineResult:
        """
        Scan manifests from disk and run the full pipeline on them.

        Raises:
            ServiceError: If the manifests cannot be scanned.
        """
        try:
            units = self._scanner.scan_directory(manifest_path)
        except ManifestScanError as e:
            raise ServiceError(f"Failed to scan manifests: {e}") from e
        return self.run_pipeline(units, usage_by_unit, now=now)

    def estimate(self, unit: ConfigUnit) -> UnitCostEstimate:
        """Estimate a single unit, raising on failure."""
        return self.estimator.estimate_unit(unit)


def create_optimizer_service(app_config=None, space_id: str = "") -> OptimizerService:
    """
    Factory function to create an optimizer service with configuration.

    Args:
        app_config: Configuration object; defaults to ``get_config()``.
        space_id: Space the analyzed units belong to.

    Returns:
        Configured OptimizerService instance.
    """
    if app_config is None:
        from costwise.config import get_config
        app_config = get_config()

    extractor = ResourceExtractor(daemonset_nodes=app_config.DAEMONSET_NODES)
    estimator = CostEstimator(pricing=app_config.pricing_model(), extractor=extractor)
    return OptimizerService(
        estimator=estimator,
        detector=WasteDetector(thresholds=app_config.waste_thresholds()),
        engine=OptimizationEngine(safety=app_config.safety_configuration(), estimator=estimator),
        space_id=space_id,
    )
