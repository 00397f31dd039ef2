"""
Cost estimation engine for costwise.

This module turns the declared resources of a workload into an estimated
monthly cost using a simple linear pricing model:

    monthly = (cores * cpu_hourly + GiB * memory_hourly) * 720 * replicas
              + storage GiB * storage_monthly * replicas

It also builds space-level cost analyses, allocation-based recommendations
that need no usage data, the cost annotations attached to analyzed units,
and savings comparisons between an original and an optimized workload.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional

from costwise.core.manifest import ConfigUnit, WorkloadError
from costwise.core.quantity import GIB, ResourceQuantity, format_mebibytes
from costwise.core.resource_extractor import (
    ExtractionError,
    ResourceExtractor,
    ResourceSpecs,
)
from costwise.core.schemas import Severity

logger = logging.getLogger(__name__)

HOURS_PER_MONTH = 720

ANNOTATION_PREFIX = "cost-optimizer.io"


def finite_cost(value: float) -> float:
    """Clamp a cost figure: NaN, infinities and negatives become 0."""
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


@dataclass(frozen=True)
class PricingModel:
    """
    Unit prices used for cost estimation.

    Values are not validated on construction; a negative price makes every
    estimate computed with this model collapse to zero.
    """
    cpu_hourly: float = 0.024  # USD per core-hour
    memory_hourly: float = 0.006  # USD per GiB-hour
    storage_monthly: float = 0.10  # USD per GiB-month
    currency: str = "USD"

    @property
    def is_valid(self) -> bool:
        prices = (self.cpu_hourly, self.memory_hourly, self.storage_monthly)
        return all(math.isfinite(p) and p >= 0 for p in prices)


DEFAULT_PRICING = PricingModel()


@dataclass(frozen=True)
class CostBreakdown:
    """Monthly cost split by resource type."""
    cpu_cost: float = 0.0
    memory_cost: float = 0.0
    storage_cost: float = 0.0

    @property
    def total(self) -> float:
        return self.cpu_cost + self.memory_cost + self.storage_cost

    def to_dict(self) -> dict:
        return {
            "cpu": round(self.cpu_cost, 2),
            "memory": round(self.memory_cost, 2),
            "storage": round(self.storage_cost, 2),
        }


@dataclass(frozen=True)
class UnitCostEstimate:
    """Estimated monthly cost of one workload."""
    unit_id: str
    unit_name: str
    space: str
    kind: str
    specs: ResourceSpecs
    breakdown: CostBreakdown
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def monthly_cost(self) -> float:
        return self.breakdown.total

    @property
    def replicas(self) -> int:
        return self.specs.replicas

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "unit_name": self.unit_name,
            "space": self.space,
            "kind": self.kind,
            "resources": self.specs.to_dict(),
            "monthly_cost": round(self.monthly_cost, 2),
            "breakdown": self.breakdown.to_dict(),
            "analyzed_at": self.analyzed_at.isoformat(),
        }


@dataclass
class SpaceCostAnalysis:
    """Cost analysis of all workloads in one space."""
    space_id: str
    units: list[UnitCostEstimate] = field(default_factory=list)
    errors: list[WorkloadError] = field(default_factory=list)
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def total_monthly_cost(self) -> float:
        return sum(unit.monthly_cost for unit in self.units)

    @property
    def unit_count(self) -> int:
        return len(self.units)

    def to_dict(self) -> dict:
        return {
            "space_id": self.space_id,
            "total_monthly_cost": round(self.total_monthly_cost, 2),
            "unit_count": self.unit_count,
            "units": [unit.to_dict() for unit in self.units],
            "errors": [error.to_dict() for error in self.errors],
            "analyzed_at": self.analyzed_at.isoformat(),
        }


@dataclass(frozen=True)
class CostRecommendation:
    """An allocation-based cost reduction suggestion."""
    unit_id: str
    unit_name: str
    resource: str
    current_value: str
    recommended_value: str
    monthly_savings: float
    reason: str
    risk: Severity


@dataclass(frozen=True)
class CostSavings:
    """
    Cost comparison between an original and an optimized workload.

    Deltas are reported as computed; a zero or negative saving is a valid
    result, not an error.
    """
    current_monthly_cost: float
    optimized_monthly_cost: float
    breakdown: dict[str, float] = field(default_factory=dict)

    @property
    def monthly_savings(self) -> float:
        return self.current_monthly_cost - self.optimized_monthly_cost

    @property
    def annual_savings(self) -> float:
        return self.monthly_savings * 12

    @property
    def savings_percent(self) -> float:
        if self.current_monthly_cost <= 0:
            return 0.0
        return self.monthly_savings / self.current_monthly_cost * 100

    def to_dict(self) -> dict:
        return {
            "monthly_savings": round(self.monthly_savings, 2),
            "annual_savings": round(self.annual_savings, 2),
            "current_monthly_cost": round(self.current_monthly_cost, 2),
            "optimized_monthly_cost": round(self.optimized_monthly_cost, 2),
            "savings_percent": round(self.savings_percent, 1),
            "breakdown": {k: round(v, 2) for k, v in self.breakdown.items()},
        }


def calculate_monthly_cost(specs: ResourceSpecs, pricing: PricingModel = DEFAULT_PRICING) -> CostBreakdown:
    """
    Calculate the monthly cost breakdown for aggregated resources.

    Args:
        specs: Per-replica resources and replica count.
        pricing: Unit prices.

    Returns:
        CostBreakdown with every component clamped to a finite, non-negative
        value. Invalid pricing yields an all-zero breakdown.
    """
    if not pricing.is_valid:
        logger.warning(f"Invalid pricing model {pricing}, estimating zero cost")
        return CostBreakdown()

    replicas = max(specs.replicas, 0)

    cpu_cost = finite_cost(specs.cpu.cores * pricing.cpu_hourly * HOURS_PER_MONTH * replicas)
    memory_cost = finite_cost(specs.memory.gib * pricing.memory_hourly * HOURS_PER_MONTH * replicas)
    # Storage is charged per replica too
    storage_cost = finite_cost(specs.storage.gib * pricing.storage_monthly * replicas)

    return CostBreakdown(cpu_cost=cpu_cost, memory_cost=memory_cost, storage_cost=storage_cost)


def calculate_cost_savings(original: UnitCostEstimate, optimized: UnitCostEstimate) -> CostSavings:
    """
    Compare an original estimate with an optimized one.

    Args:
        original: Estimate of the workload as currently declared.
        optimized: Estimate of the optimized workload.

    Returns:
        CostSavings with per-resource deltas.
    """
    return CostSavings(
        current_monthly_cost=original.monthly_cost,
        optimized_monthly_cost=optimized.monthly_cost,
        breakdown={
            "cpu": original.breakdown.cpu_cost - optimized.breakdown.cpu_cost,
            "memory": original.breakdown.memory_cost - optimized.breakdown.memory_cost,
            "storage": original.breakdown.storage_cost - optimized.breakdown.storage_cost,
        },
    )


class CostEstimator:
    """
    Estimate workload costs from declared resources.

    Estimation is a pure function of the resource specs and the pricing
    model; the estimator holds no state between calls.
    """

    CPU_RECOMMENDATION_THRESHOLD_MILLI = 2000
    MEMORY_RECOMMENDATION_THRESHOLD_BYTES = 4 * GIB
    REPLICA_RECOMMENDATION_THRESHOLD = 3
    REPLICA_RECOMMENDATION_MAX_COST = 50.0
    RECOMMENDED_REPLICAS = 2

    def __init__(
        self,
        pricing: Optional[PricingModel] = None,
        extractor: Optional[ResourceExtractor] = None,
    ):
        """
        Initialize the estimator.

        Args:
            pricing: Unit prices; defaults to DEFAULT_PRICING.
            extractor: Resource extractor used for config units.
        """
        self.pricing = pricing or DEFAULT_PRICING
        self.extractor = extractor or ResourceExtractor()

    def estimate(
        self,
        specs: ResourceSpecs,
        pricing: Optional[PricingModel] = None,
        unit_id: str = "",
        unit_name: str = "",
        space: str = "",
        kind: str = "",
    ) -> UnitCostEstimate:
        """
        Estimate the monthly cost of a set of resources.

        Args:
            specs: Aggregated resources.
            pricing: Optional pricing overriding the estimator's own.
            unit_id: Identity of the workload, carried into the result.
            unit_name: Display name of the workload.
            space: Space (namespace) of the workload.
            kind: Workload kind.

        Returns:
            UnitCostEstimate with its cost breakdown.
        """
        breakdown = calculate_monthly_cost(specs, pricing or self.pricing)
        return UnitCostEstimate(
            unit_id=unit_id,
            unit_name=unit_name,
            space=space,
            kind=kind,
            specs=specs,
            breakdown=breakdown,
        )

    def estimate_unit(self, unit: ConfigUnit) -> UnitCostEstimate:
        """
        Extract resources from a unit and estimate its cost.

        Raises:
            ExtractionError: If the unit's manifest cannot be analyzed.
        """
        specs = self.extractor.extract_unit(unit)
        return self.estimate(
            specs,
            unit_id=unit.unit_id,
            unit_name=unit.slug,
            space=unit.space_id,
            kind=unit.kind,
        )

    def estimate_manifest(self, manifest: dict, reference: UnitCostEstimate) -> UnitCostEstimate:
        """Estimate a manifest variant under the identity of an existing estimate."""
        specs = self.extractor.extract(manifest)
        return self.estimate(
            specs,
            unit_id=reference.unit_id,
            unit_name=reference.unit_name,
            space=reference.space,
            kind=reference.kind,
        )

    def analyze_units(self, units: Iterable[ConfigUnit], space_id: str = "") -> SpaceCostAnalysis:
        """
        Estimate every unit of a space.

        Units that cannot be analyzed are logged and recorded as errors;
        the remaining units are still estimated.

        Args:
            units: Config units to estimate.
            space_id: Identifier of the space being analyzed.

        Returns:
            SpaceCostAnalysis with per-unit estimates and errors.
        """
        analysis = SpaceCostAnalysis(space_id=space_id)
        for unit in units:
            try:
                analysis.units.append(self.estimate_unit(unit))
            except ExtractionError as e:
                logger.warning(f"Skipping cost analysis for {unit.slug}: {e}")
                analysis.errors.append(WorkloadError.from_exception(unit, "cost", e))

        logger.info(
            f"Cost analysis for space '{space_id}': {analysis.unit_count} units, "
            f"${analysis.total_monthly_cost:.2f}/month, {len(analysis.errors)} skipped"
        )
        return analysis

    def get_recommendations(self, analysis: SpaceCostAnalysis) -> list[CostRecommendation]:
        """
        Suggest reductions from declared allocations alone.

        These heuristics need no usage data: large CPU or memory requests
        are suggested to be halved, and many replicas of a cheap workload
        are suggested to be consolidated.

        Args:
            analysis: A space cost analysis.

        Returns:
            List of recommendations, largest savings first.
        """
        recommendations = []
        for estimate in analysis.units:
            specs = estimate.specs

            if specs.cpu.milli > self.CPU_RECOMMENDATION_THRESHOLD_MILLI:
                recommendations.append(CostRecommendation(
                    unit_id=estimate.unit_id,
                    unit_name=estimate.unit_name,
                    resource="cpu",
                    current_value=str(specs.cpu),
                    recommended_value=str(ResourceQuantity.from_millis(specs.cpu.milli // 2)),
                    monthly_savings=estimate.breakdown.cpu_cost * 0.5,
                    reason="CPU allocation above 2 cores may be over-provisioned",
                    risk=Severity.LOW,
                ))

            if specs.memory.byte_count > self.MEMORY_RECOMMENDATION_THRESHOLD_BYTES:
                recommendations.append(CostRecommendation(
                    unit_id=estimate.unit_id,
                    unit_name=estimate.unit_name,
                    resource="memory",
                    current_value=str(specs.memory),
                    recommended_value=format_mebibytes(specs.memory.byte_count / 2),
                    monthly_savings=estimate.breakdown.memory_cost * 0.5,
                    reason="Memory allocation above 4Gi may be over-provisioned",
                    risk=Severity.MEDIUM,
                ))

            if (specs.replicas > self.REPLICA_RECOMMENDATION_THRESHOLD
                    and estimate.monthly_cost < self.REPLICA_RECOMMENDATION_MAX_COST):
                recommendations.append(CostRecommendation(
                    unit_id=estimate.unit_id,
                    unit_name=estimate.unit_name,
                    resource="replicas",
                    current_value=str(specs.replicas),
                    recommended_value=str(self.RECOMMENDED_REPLICAS),
                    monthly_savings=estimate.monthly_cost * 0.33,
                    reason="Many replicas of a low-cost workload; consider consolidating",
                    risk=Severity.HIGH,
                ))

        recommendations.sort(key=lambda r: r.monthly_savings, reverse=True)
        return recommendations

    def cost_annotations(self, estimate: UnitCostEstimate, now: Optional[datetime] = None) -> dict[str, str]:
        """
        Build the annotations recording a pre-deployment cost analysis.

        Args:
            estimate: The estimate to record.
            now: Analysis timestamp; defaults to the current UTC time.

        Returns:
            Annotation key/value map.
        """
        analyzed_at = now or datetime.now(timezone.utc)
        return {
            f"{ANNOTATION_PREFIX}/monthly-cost": f"{estimate.monthly_cost:.2f}",
            f"{ANNOTATION_PREFIX}/cpu-cost": f"{estimate.breakdown.cpu_cost:.2f}",
            f"{ANNOTATION_PREFIX}/memory-cost": f"{estimate.breakdown.memory_cost:.2f}",
            f"{ANNOTATION_PREFIX}/storage-cost": f"{estimate.breakdown.storage_cost:.2f}",
            f"{ANNOTATION_PREFIX}/analyzed-at": analyzed_at.isoformat(),
            f"{ANNOTATION_PREFIX}/analysis-type": "pre-deployment",
        }
