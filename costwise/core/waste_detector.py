"""
Waste detection for costwise.

Compares the estimated cost of a workload with observed usage to find
over-provisioned CPU and memory, idle replicas and largely unused
workloads. Each analyzed workload gets a 0-100 waste score, a severity,
waste categories and ranked recommendations; a space-level aggregation
summarizes the results by severity, category and resource.

Without usage data only coarse allocation heuristics apply and the
result always carries a fixed low-confidence score.
"""

import logging
import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from typing import Iterable, Mapping, Optional

from costwise.core.cost_engine import UnitCostEstimate, finite_cost
from costwise.core.quantity import GIB, MIB, format_mebibytes, format_millicores
from costwise.core.schemas import (
    ActualUsageMetrics,
    DataQuality,
    RecommendationType,
    Severity,
    WasteCategoryType,
)

logger = logging.getLogger(__name__)

NO_USAGE_WASTE_SCORE = 25.0
TOP_RESULTS = 10

QUALITY_MULTIPLIERS = {
    DataQuality.EXCELLENT: 1.0,
    DataQuality.GOOD: 0.9,
    DataQuality.FAIR: 0.7,
    DataQuality.POOR: 0.5,
}

RECOMMENDATION_CATEGORIES = {
    RecommendationType.RESIZE_CPU: WasteCategoryType.CPU_OVER_PROVISIONED,
    RecommendationType.RESIZE_MEMORY: WasteCategoryType.MEMORY_OVER_PROVISIONED,
    RecommendationType.SCALE_DOWN_REPLICAS: WasteCategoryType.OVER_REPLICATED,
    RecommendationType.TERMINATE_IF_IDLE: WasteCategoryType.IDLE,
}

RECOMMENDATION_RESOURCES = {
    RecommendationType.RESIZE_CPU: "cpu",
    RecommendationType.RESIZE_MEMORY: "memory",
    RecommendationType.SCALE_DOWN_REPLICAS: "replicas",
}


@dataclass(frozen=True)
class WasteThresholds:
    """Utilization thresholds (percent) and score bands used for detection."""
    cpu_idle_threshold: float = 5.0
    cpu_underutilized_threshold: float = 30.0
    memory_idle_threshold: float = 10.0
    memory_underutilized_threshold: float = 40.0
    min_monthly_cost_for_analysis: float = 1.0
    waste_score_high_threshold: float = 80.0
    waste_score_medium_threshold: float = 50.0


DEFAULT_THRESHOLDS = WasteThresholds()


@dataclass(frozen=True)
class ResourceWaste:
    """Waste of one resource type."""
    allocated: str = ""
    used: str = ""
    utilization_percent: float = 0.0
    waste_percent: float = 0.0
    wasted_cost: float = 0.0
    recommendation: str = ""


@dataclass(frozen=True)
class ReplicaWaste:
    """Waste from replicas that run but are not needed."""
    configured_replicas: int = 0
    average_replicas: float = 0.0
    idle_replicas: float = 0.0
    wasted_cost: float = 0.0
    recommended_replicas: int = 0


@dataclass(frozen=True)
class WasteCategory:
    """A classified kind of waste with its monthly dollar impact."""
    type: WasteCategoryType
    severity: Severity
    impact: float
    description: str


@dataclass(frozen=True)
class WasteRecommendation:
    """An actionable waste reduction suggestion."""
    type: RecommendationType
    priority: Severity
    action: str
    implementation: str
    potential_savings: float
    risk: Severity
    risk_description: str
    auto_applyable: bool = False
    unit_id: str = ""
    unit_name: str = ""

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "priority": self.priority.value,
            "action": self.action,
            "implementation": self.implementation,
            "potential_savings": round(self.potential_savings, 2),
            "risk": self.risk.value,
            "risk_description": self.risk_description,
            "auto_applyable": self.auto_applyable,
            "unit_id": self.unit_id,
            "unit_name": self.unit_name,
        }


@dataclass
class WasteDetection:
    """Waste analysis result for one workload."""
    unit_id: str
    unit_name: str
    space: str
    kind: str
    estimated_monthly_cost: float
    actual_monthly_cost: float
    wasted_monthly_cost: float = 0.0
    cpu_waste: ResourceWaste = field(default_factory=ResourceWaste)
    memory_waste: ResourceWaste = field(default_factory=ResourceWaste)
    storage_waste: ResourceWaste = field(default_factory=ResourceWaste)
    replica_waste: ReplicaWaste = field(default_factory=ReplicaWaste)
    categories: list[WasteCategory] = field(default_factory=list)
    waste_score: float = 0.0
    waste_severity: Severity = Severity.LOW
    recommendations: list[WasteRecommendation] = field(default_factory=list)
    potential_savings: float = 0.0
    data_quality: DataQuality = DataQuality.POOR
    has_usage_data: bool = False
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "unit_name": self.unit_name,
            "space": self.space,
            "kind": self.kind,
            "estimated_monthly_cost": round(self.estimated_monthly_cost, 2),
            "actual_monthly_cost": round(self.actual_monthly_cost, 2),
            "wasted_monthly_cost": round(self.wasted_monthly_cost, 2),
            "waste_score": round(self.waste_score, 1),
            "waste_severity": self.waste_severity.value,
            "categories": [
                {
                    "type": c.type.value,
                    "severity": c.severity.value,
                    "impact": round(c.impact, 2),
                    "description": c.description,
                }
                for c in self.categories
            ],
            "recommendations": [r.to_dict() for r in self.recommendations],
            "potential_savings": round(self.potential_savings, 2),
            "data_quality": self.data_quality.value,
            "analyzed_at": self.analyzed_at.isoformat(),
        }


@dataclass
class WasteSummary:
    """Aggregated waste for one severity, category or resource."""
    count: int = 0
    total_cost: float = 0.0
    potential_savings: float = 0.0

    @property
    def average_cost(self) -> float:
        return self.total_cost / self.count if self.count else 0.0


@dataclass
class SpaceWasteAnalysis:
    """Waste analysis aggregated over all workloads of a space."""
    space_id: str
    detections: list[WasteDetection] = field(default_factory=list)
    total_estimated_cost: float = 0.0
    total_actual_cost: float = 0.0
    total_wasted_cost: float = 0.0
    units_with_waste: int = 0
    by_severity: dict[Severity, WasteSummary] = field(default_factory=dict)
    by_category: dict[WasteCategoryType, WasteSummary] = field(default_factory=dict)
    by_resource: dict[str, WasteSummary] = field(default_factory=dict)
    top_units: list[WasteDetection] = field(default_factory=list)
    top_recommendations: list[WasteRecommendation] = field(default_factory=list)
    skipped_unit_ids: list[str] = field(default_factory=list)
    analyzed_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def units_analyzed(self) -> int:
        return len(self.detections)

    @property
    def waste_percent(self) -> float:
        if self.total_estimated_cost <= 0:
            return 0.0
        return self.total_wasted_cost / self.total_estimated_cost * 100


def assess_data_quality(usage: ActualUsageMetrics, now: Optional[datetime] = None) -> DataQuality:
    """
    Grade a usage window by its freshness and span.

    Args:
        usage: Usage metrics to grade.
        now: Reference time; defaults to the current UTC time.

    Returns:
        EXCELLENT for fresh data (< 1 day old) spanning a week, down to POOR.
    """
    now = now or datetime.now(timezone.utc)
    end = _aware(usage.time_range_end)
    age = now - end
    span = end - _aware(usage.time_range_start)

    if age < timedelta(days=1) and span >= timedelta(days=7):
        return DataQuality.EXCELLENT
    if age < timedelta(days=3) and span >= timedelta(days=3):
        return DataQuality.GOOD
    if age < timedelta(days=7) and span >= timedelta(days=1):
        return DataQuality.FAIR
    return DataQuality.POOR


def _aware(moment: datetime) -> datetime:
    """Treat naive datetimes as UTC."""
    return moment if moment.tzinfo else moment.replace(tzinfo=timezone.utc)


def determine_priority(savings: float) -> Severity:
    """Priority of a recommendation by its monthly dollar impact."""
    if savings >= 50.0:
        return Severity.HIGH
    if savings >= 20.0:
        return Severity.MEDIUM
    return Severity.LOW


class WasteDetector:
    """
    Detect waste by comparing estimated allocations with actual usage.

    The detector is stateless between calls; thresholds are fixed at
    construction.
    """

    CPU_RECOMMENDATION_BUFFER = 1.1
    MEMORY_RECOMMENDATION_BUFFER = 1.2
    MIN_RECOMMENDED_CPU_CORES = 0.1
    MIN_RECOMMENDED_MEMORY_BYTES = 128 * MIB
    RESIZE_WASTE_PERCENT = 30.0
    IDLE_REPLICA_THRESHOLD = 0.5

    def __init__(self, thresholds: Optional[WasteThresholds] = None):
        """
        Initialize the detector.

        Args:
            thresholds: Detection thresholds; defaults to DEFAULT_THRESHOLDS.
        """
        self.thresholds = thresholds or DEFAULT_THRESHOLDS

    def analyze(
        self,
        estimate: UnitCostEstimate,
        usage: Optional[ActualUsageMetrics] = None,
        now: Optional[datetime] = None,
    ) -> WasteDetection:
        """
        Analyze waste for one workload.

        Args:
            estimate: Cost estimate of the workload.
            usage: Observed usage, or None when no metrics are available.
            now: Reference time for data quality grading.

        Returns:
            A fresh WasteDetection.
        """
        now = now or datetime.now(timezone.utc)

        if usage is None:
            logger.info(f"No usage data for {estimate.unit_name}, using allocation heuristics")
            return self._analyze_without_usage(estimate, now)

        detection = WasteDetection(
            unit_id=estimate.unit_id,
            unit_name=estimate.unit_name,
            space=estimate.space,
            kind=estimate.kind,
            estimated_monthly_cost=estimate.monthly_cost,
            actual_monthly_cost=usage.actual_monthly_cost,
            data_quality=assess_data_quality(usage, now),
            has_usage_data=True,
            analyzed_at=now,
        )
        detection.cpu_waste = self._analyze_cpu(estimate, usage)
        detection.memory_waste = self._analyze_memory(estimate, usage)
        detection.storage_waste = self._analyze_storage(estimate, usage)
        detection.replica_waste = self._analyze_replicas(estimate, usage)
        detection.categories = self._categorize(detection, usage)
        detection.recommendations = self._recommend(detection, usage)

        detection.wasted_monthly_cost = finite_cost(detection.estimated_monthly_cost - detection.actual_monthly_cost)
        detection.waste_score = self.calculate_waste_score(detection)
        detection.waste_severity = self.determine_severity(detection.waste_score)
        detection.potential_savings = self._potential_savings(detection)

        logger.debug(
            f"Waste for {estimate.unit_name}: score={detection.waste_score:.1f} "
            f"severity={detection.waste_severity.value} savings=${detection.potential_savings:.2f}"
        )
        return detection

    def analyze_space(
        self,
        estimates: Iterable[UnitCostEstimate],
        usage_by_unit: Optional[Mapping[str, ActualUsageMetrics]] = None,
        space_id: str = "",
        now: Optional[datetime] = None,
    ) -> SpaceWasteAnalysis:
        """
        Analyze every estimate of a space and aggregate the results.

        Usage is looked up by unit id, then by unit name. Units cheaper than
        the minimum monthly cost for analysis are skipped.

        Args:
            estimates: Cost estimates of the space's workloads.
            usage_by_unit: Usage metrics keyed by unit id or name.
            space_id: Identifier of the space.
            now: Reference time for data quality grading.

        Returns:
            SpaceWasteAnalysis with summaries and top opportunities.
        """
        usage_by_unit = usage_by_unit or {}
        detections = []
        skipped = []

        for estimate in estimates:
            if estimate.monthly_cost < self.thresholds.min_monthly_cost_for_analysis:
                logger.debug(f"Skipping {estimate.unit_name}: below minimum cost for analysis")
                skipped.append(estimate.unit_id)
                continue
            usage = usage_by_unit.get(estimate.unit_id) or usage_by_unit.get(estimate.unit_name)
            detections.append(self.analyze(estimate, usage, now))

        analysis = aggregate(detections, space_id=space_id)
        analysis.skipped_unit_ids = skipped
        logger.info(
            f"Waste analysis for space '{space_id}': {analysis.waste_percent:.1f}% waste, "
            f"${analysis.total_wasted_cost:.2f}/month wasted across {analysis.units_analyzed} units"
        )
        return analysis

    def calculate_waste_score(self, detection: WasteDetection) -> float:
        """
        Compute the 0-100 waste score of a detection.

        The score is the wasted share of the estimated cost, scaled up by the
        worst category severity and down by the data quality.
        """
        if detection.estimated_monthly_cost <= 0:
            return 0.0

        ratio = detection.wasted_monthly_cost / detection.estimated_monthly_cost
        if not math.isfinite(ratio):
            return 0.0
        ratio = min(max(ratio, 0.0), 1.0)

        severities = {category.severity for category in detection.categories}
        if Severity.HIGH in severities:
            severity_multiplier = 1.5
        elif Severity.MEDIUM in severities:
            severity_multiplier = 1.2
        else:
            severity_multiplier = 1.0

        score = ratio * 100 * severity_multiplier * QUALITY_MULTIPLIERS[detection.data_quality]
        return min(score, 100.0)

    def determine_severity(self, score: float) -> Severity:
        if score >= self.thresholds.waste_score_high_threshold:
            return Severity.HIGH
        if score >= self.thresholds.waste_score_medium_threshold:
            return Severity.MEDIUM
        return Severity.LOW

    def _analyze_cpu(self, estimate: UnitCostEstimate, usage: ActualUsageMetrics) -> ResourceWaste:
        allocated = estimate.specs.cpu.cores
        used = usage.cpu_cores_used
        waste_percent = _waste_percent(allocated, used)
        recommended = max(
            usage.cpu_peak_percent / 100.0 * allocated * self.CPU_RECOMMENDATION_BUFFER,
            self.MIN_RECOMMENDED_CPU_CORES,
        )
        return ResourceWaste(
            allocated=f"{allocated:.2f} cores",
            used=f"{used:.2f} cores",
            utilization_percent=usage.cpu_utilization_percent,
            waste_percent=waste_percent,
            wasted_cost=estimate.breakdown.cpu_cost * waste_percent / 100.0,
            recommendation=format_millicores(recommended * 1000),
        )

    def _analyze_memory(self, estimate: UnitCostEstimate, usage: ActualUsageMetrics) -> ResourceWaste:
        allocated = float(estimate.specs.memory.byte_count)
        used = usage.memory_bytes_used
        waste_percent = _waste_percent(allocated, used)
        recommended = max(
            allocated * usage.memory_peak_percent / 100.0 * self.MEMORY_RECOMMENDATION_BUFFER,
            self.MIN_RECOMMENDED_MEMORY_BYTES,
        )
        return ResourceWaste(
            allocated=f"{allocated / GIB:.2f}Gi",
            used=f"{used / GIB:.2f}Gi",
            utilization_percent=usage.memory_utilization_percent,
            waste_percent=waste_percent,
            wasted_cost=estimate.breakdown.memory_cost * waste_percent / 100.0,
            recommendation=format_mebibytes(recommended),
        )

    def _analyze_storage(self, estimate: UnitCostEstimate, usage: ActualUsageMetrics) -> ResourceWaste:
        allocated = float(estimate.specs.storage.byte_count)
        if allocated <= 0:
            return ResourceWaste()
        used = usage.storage_bytes_used
        waste_percent = _waste_percent(allocated, used)
        return ResourceWaste(
            allocated=f"{allocated / GIB:.2f}Gi",
            used=f"{used / GIB:.2f}Gi",
            utilization_percent=min(used / allocated * 100, 100.0),
            waste_percent=waste_percent,
            wasted_cost=estimate.breakdown.storage_cost * waste_percent / 100.0,
        )

    def _analyze_replicas(self, estimate: UnitCostEstimate, usage: ActualUsageMetrics) -> ReplicaWaste:
        configured = estimate.replicas
        average = usage.average_replicas
        idle = max(configured - average, 0.0)
        cost_per_replica = estimate.monthly_cost / configured if configured > 0 else 0.0
        return ReplicaWaste(
            configured_replicas=configured,
            average_replicas=average,
            idle_replicas=idle,
            wasted_cost=idle * cost_per_replica,
            # One spare replica for availability, never fewer than two
            recommended_replicas=max(math.ceil(average) + 1, 2),
        )

    def _categorize(self, detection: WasteDetection, usage: ActualUsageMetrics) -> list[WasteCategory]:
        t = self.thresholds
        categories = []

        if (usage.cpu_utilization_percent < t.cpu_idle_threshold
                and usage.memory_utilization_percent < t.memory_idle_threshold):
            categories.append(WasteCategory(
                type=WasteCategoryType.IDLE,
                severity=Severity.HIGH,
                impact=detection.estimated_monthly_cost * 0.8,
                description="Resource is largely idle with minimal CPU and memory usage",
            ))

        cpu = detection.cpu_waste
        if cpu.utilization_percent < t.cpu_underutilized_threshold:
            categories.append(WasteCategory(
                type=WasteCategoryType.CPU_OVER_PROVISIONED,
                severity=Severity.HIGH if cpu.utilization_percent < t.cpu_idle_threshold else Severity.MEDIUM,
                impact=cpu.wasted_cost,
                description=f"CPU utilization is only {cpu.utilization_percent:.1f}%, significantly over-provisioned",
            ))

        memory = detection.memory_waste
        if memory.utilization_percent < t.memory_underutilized_threshold:
            categories.append(WasteCategory(
                type=WasteCategoryType.MEMORY_OVER_PROVISIONED,
                severity=Severity.HIGH if memory.utilization_percent < t.memory_idle_threshold else Severity.MEDIUM,
                impact=memory.wasted_cost,
                description=f"Memory utilization is only {memory.utilization_percent:.1f}%, significantly over-provisioned",
            ))

        replicas = detection.replica_waste
        if replicas.idle_replicas > self.IDLE_REPLICA_THRESHOLD:
            categories.append(WasteCategory(
                type=WasteCategoryType.OVER_REPLICATED,
                severity=Severity.MEDIUM,
                impact=replicas.wasted_cost,
                description=f"Average of {replicas.idle_replicas:.1f} idle replicas detected",
            ))

        return categories

    def _recommend(self, detection: WasteDetection, usage: ActualUsageMetrics) -> list[WasteRecommendation]:
        recommendations = []
        identity = {"unit_id": detection.unit_id, "unit_name": detection.unit_name}

        cpu = detection.cpu_waste
        if cpu.waste_percent > self.RESIZE_WASTE_PERCENT:
            recommendations.append(WasteRecommendation(
                type=RecommendationType.RESIZE_CPU,
                priority=determine_priority(cpu.wasted_cost),
                action=f"Reduce CPU allocation from {cpu.allocated} to {cpu.recommendation}",
                implementation=f"Update resources.requests.cpu to {cpu.recommendation}",
                potential_savings=cpu.wasted_cost * 0.8,
                risk=Severity.LOW,
                risk_description="CPU reduction based on actual usage patterns with 10% safety buffer",
                auto_applyable=True,
                **identity,
            ))

        memory = detection.memory_waste
        if memory.waste_percent > self.RESIZE_WASTE_PERCENT:
            recommendations.append(WasteRecommendation(
                type=RecommendationType.RESIZE_MEMORY,
                priority=determine_priority(memory.wasted_cost),
                action=f"Reduce memory allocation from {memory.allocated} to {memory.recommendation}",
                implementation=f"Update resources.requests.memory to {memory.recommendation}",
                potential_savings=memory.wasted_cost * 0.8,
                risk=Severity.MEDIUM,
                risk_description="Memory reduction requires careful monitoring to avoid OOM kills",
                **identity,
            ))

        replicas = detection.replica_waste
        if replicas.idle_replicas > self.IDLE_REPLICA_THRESHOLD:
            recommendations.append(WasteRecommendation(
                type=RecommendationType.SCALE_DOWN_REPLICAS,
                priority=determine_priority(replicas.wasted_cost),
                action=(
                    f"Reduce replica count from {replicas.configured_replicas} "
                    f"to {replicas.recommended_replicas}"
                ),
                implementation=f"Update spec.replicas to {replicas.recommended_replicas}",
                potential_savings=replicas.wasted_cost * 0.9,
                risk=Severity.HIGH,
                risk_description="Scaling down reduces availability and may impact performance during traffic spikes",
                **identity,
            ))

        if (usage.cpu_utilization_percent < 1.0
                and usage.memory_utilization_percent < 5.0
                and usage.uptime_percent < 50.0):
            recommendations.append(WasteRecommendation(
                type=RecommendationType.TERMINATE_IF_IDLE,
                priority=Severity.HIGH,
                action="Consider terminating this largely unused resource",
                implementation="Review application requirements and consider removing the workload",
                potential_savings=detection.estimated_monthly_cost * 0.95,
                risk=Severity.HIGH,
                risk_description="Termination may impact dependent services or future requirements",
                **identity,
            ))

        return recommendations

    def _analyze_without_usage(self, estimate: UnitCostEstimate, now: datetime) -> WasteDetection:
        detection = WasteDetection(
            unit_id=estimate.unit_id,
            unit_name=estimate.unit_name,
            space=estimate.space,
            kind=estimate.kind,
            estimated_monthly_cost=estimate.monthly_cost,
            actual_monthly_cost=estimate.monthly_cost,
            data_quality=DataQuality.POOR,
            analyzed_at=now,
        )

        if estimate.specs.cpu.cores > 2.0:
            detection.categories.append(WasteCategory(
                type=WasteCategoryType.POTENTIALLY_OVER_PROVISIONED,
                severity=Severity.MEDIUM,
                impact=estimate.breakdown.cpu_cost * 0.3,
                description="High CPU allocation may indicate over-provisioning",
            ))

        if estimate.specs.memory.gib > 4.0:
            detection.categories.append(WasteCategory(
                type=WasteCategoryType.POTENTIALLY_OVER_PROVISIONED,
                severity=Severity.MEDIUM,
                impact=estimate.breakdown.memory_cost * 0.3,
                description="High memory allocation may indicate over-provisioning",
            ))

        # Fixed low-confidence score; never recomputed from categories
        detection.waste_score = NO_USAGE_WASTE_SCORE
        detection.waste_severity = Severity.LOW
        return detection

    def _potential_savings(self, detection: WasteDetection) -> float:
        total = sum(r.potential_savings for r in detection.recommendations)
        return min(total, detection.estimated_monthly_cost * 0.9)


def _waste_percent(allocated: float, used: float) -> float:
    """Unused share of an allocation in percent, never negative."""
    if allocated <= 0:
        return 0.0
    return max((allocated - used) / allocated * 100, 0.0)


def aggregate(detections: list[WasteDetection], space_id: str = "") -> SpaceWasteAnalysis:
    """
    Aggregate per-workload detections into a space analysis.

    Args:
        detections: Detections to aggregate.
        space_id: Identifier of the space.

    Returns:
        SpaceWasteAnalysis with totals, summaries by severity, category and
        resource, and the top units and recommendations by savings.
    """
    analysis = SpaceWasteAnalysis(space_id=space_id, detections=list(detections))

    for detection in analysis.detections:
        analysis.total_estimated_cost += detection.estimated_monthly_cost
        analysis.total_actual_cost += detection.actual_monthly_cost
        analysis.total_wasted_cost += finite_cost(detection.wasted_monthly_cost)
        if detection.waste_score > 0:
            analysis.units_with_waste += 1

        severity = analysis.by_severity.setdefault(detection.waste_severity, WasteSummary())
        severity.count += 1
        severity.total_cost += finite_cost(detection.wasted_monthly_cost)
        severity.potential_savings += detection.potential_savings

        for category in detection.categories:
            summary = analysis.by_category.setdefault(category.type, WasteSummary())
            summary.count += 1
            summary.total_cost += category.impact
            summary.potential_savings += sum(
                r.potential_savings for r in detection.recommendations
                if RECOMMENDATION_CATEGORIES[r.type] == category.type
            )

        resource_waste = {
            "cpu": detection.cpu_waste.wasted_cost,
            "memory": detection.memory_waste.wasted_cost,
            "storage": detection.storage_waste.wasted_cost,
            "replicas": detection.replica_waste.wasted_cost,
        }
        for resource, wasted_cost in resource_waste.items():
            if wasted_cost <= 0:
                continue
            summary = analysis.by_resource.setdefault(resource, WasteSummary())
            summary.count += 1
            summary.total_cost += wasted_cost
            summary.potential_savings += sum(
                r.potential_savings for r in detection.recommendations
                if RECOMMENDATION_RESOURCES.get(r.type) == resource
            )

    ranked = sorted(analysis.detections, key=lambda d: d.potential_savings, reverse=True)
    analysis.top_units = ranked[:TOP_RESULTS]

    recommendations = [r for d in analysis.detections for r in d.recommendations]
    recommendations.sort(key=lambda r: r.potential_savings, reverse=True)
    analysis.top_recommendations = recommendations[:TOP_RESULTS]

    return analysis
