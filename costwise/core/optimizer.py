"""
Optimization engine for costwise.

Turns detected waste into a resized workload configuration. Every proposed
change is bounded by a safety configuration (margins on top of the reduced
value, minimum floors, a cap on replica reduction), redistributed across
containers in proportion to their existing share, risk-assessed, and
re-costed against the original to report the savings.

The input unit and its manifest are never modified; the optimized manifest
is a structural clone carried by a new unit linked back to the original.
"""

import logging
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta, timezone
from typing import Optional

from costwise.core.cost_engine import CostEstimator, CostSavings, calculate_cost_savings
from costwise.core.manifest import (
    ConfigUnit,
    clone_manifest,
    ensure_mapping,
    get_containers,
    get_mapping,
)
from costwise.core.quantity import (
    GIB,
    ResourceQuantity,
    format_mebibytes,
    format_millicores,
)
from costwise.core.resource_extractor import (
    ContainerResourceInfo,
    ResourceSpecs,
    UnsupportedWorkloadKindError,
)
from costwise.core.schemas import (
    ActualUsageMetrics,
    DataQuality,
    DeploymentPhase,
    OptimizationType,
    Severity,
    WorkloadKind,
    max_severity,
)
from costwise.core.waste_detector import WasteDetection

logger = logging.getLogger(__name__)

LABEL_PREFIX = "costwise.io"
ENGINE_NAME = "costwise"
ENGINE_VERSION = "v1"

# Confidence given to optimizer input derived from a waste detection
CONFIDENCE_BY_QUALITY = {
    DataQuality.EXCELLENT: 0.95,
    DataQuality.GOOD: 0.85,
    DataQuality.FAIR: 0.7,
    DataQuality.POOR: 0.4,
}

MITIGATIONS = {
    OptimizationType.CPU: "Monitor CPU utilization closely after deployment",
    OptimizationType.MEMORY: "Watch for OOMKilled events and memory pressure",
    OptimizationType.REPLICAS: "Set up HPA for automatic scaling if needed",
}


class OptimizationError(Exception):
    """Exception raised when a unit cannot be optimized."""
    pass


@dataclass(frozen=True)
class RiskThresholds:
    """Reduction fractions separating LOW, MEDIUM and HIGH risk."""
    low_cpu_reduction: float = 0.30
    high_cpu_reduction: float = 0.60
    low_memory_reduction: float = 0.25
    high_memory_reduction: float = 0.50


@dataclass(frozen=True)
class SafetyConfiguration:
    """Bounds applied to every optimization."""
    cpu_safety_margin: float = 0.20
    memory_safety_margin: float = 0.15
    min_cpu_cores: float = 0.1
    min_memory_gb: float = 0.125  # 128Mi
    min_replicas: int = 1
    max_replica_reduction: float = 0.5
    risk_thresholds: RiskThresholds = field(default_factory=RiskThresholds)

    @property
    def min_cpu_millis(self) -> float:
        return self.min_cpu_cores * 1000

    @property
    def min_memory_bytes(self) -> float:
        return self.min_memory_gb * GIB


DEFAULT_SAFETY = SafetyConfiguration()


@dataclass(frozen=True)
class WasteMetrics:
    """
    Waste input for the optimizer.

    Waste values are fractions (0.75 means 75% of the allocation is unused).
    ``confidence`` expresses how much the measurements can be trusted.
    """
    cpu_waste: float = 0.0
    memory_waste: float = 0.0
    storage_waste: float = 0.0
    idle_replicas: int = 0
    confidence: float = 0.0
    underutilized_pods: tuple[str, ...] = ()
    metrics_age: timedelta = timedelta(0)

    @classmethod
    def from_detection(
        cls,
        detection: WasteDetection,
        usage: Optional[ActualUsageMetrics] = None,
        now: Optional[datetime] = None,
    ) -> "WasteMetrics":
        """
        Build optimizer input from a waste detection.

        Confidence follows the detection's data quality; a detection made
        without usage data gets zero confidence, so nothing is optimized.

        Args:
            detection: Result of the waste detector.
            usage: The usage metrics the detection was made from, if any.
            now: Reference time for the metrics age.
        """
        now = now or datetime.now(timezone.utc)
        metrics_age = timedelta(0)
        if usage is not None:
            end = usage.time_range_end
            if end.tzinfo is None:
                end = end.replace(tzinfo=timezone.utc)
            metrics_age = max(now - end, timedelta(0))

        confidence = CONFIDENCE_BY_QUALITY[detection.data_quality] if detection.has_usage_data else 0.0
        return cls(
            cpu_waste=detection.cpu_waste.waste_percent / 100.0,
            memory_waste=detection.memory_waste.waste_percent / 100.0,
            storage_waste=detection.storage_waste.waste_percent / 100.0,
            idle_replicas=int(detection.replica_waste.idle_replicas),
            confidence=confidence,
            metrics_age=metrics_age,
        )


@dataclass(frozen=True)
class ResourceOptimization:
    """One proposed change to a workload dimension."""
    type: OptimizationType
    original_value: str
    optimized_value: str
    reduction_percent: float
    reasoning: str
    risk: Severity

    def to_dict(self) -> dict:
        return {
            "type": self.type.value,
            "original_value": self.original_value,
            "optimized_value": self.optimized_value,
            "reduction_percent": round(self.reduction_percent, 1),
            "reasoning": self.reasoning,
            "risk": self.risk.value,
        }


@dataclass(frozen=True)
class OptimizationRisk:
    """Overall risk of applying a set of optimizations."""
    overall_risk: Severity = Severity.LOW
    risk_factors: tuple[str, ...] = ()
    mitigations: tuple[str, ...] = ()
    confidence: float = 1.0
    recommended_phase: DeploymentPhase = DeploymentPhase.PROD


@dataclass(frozen=True)
class SafetyMargins:
    """Which safety bounds shaped the result."""
    cpu_margin_applied: bool = False
    memory_margin_applied: bool = False
    replica_floor_applied: bool = False
    actual_cpu_margin: float = 0.0
    actual_memory_margin: float = 0.0


@dataclass
class OptimizedConfiguration:
    """Result of optimizing one unit."""
    original_unit: ConfigUnit
    optimized_unit: ConfigUnit
    optimizations: list[ResourceOptimization]
    estimated_savings: CostSavings
    risk_assessment: OptimizationRisk
    applied_safety: SafetyMargins

    @property
    def has_changes(self) -> bool:
        return bool(self.optimizations)

    def get_optimization(self, opt_type: OptimizationType) -> Optional[ResourceOptimization]:
        for optimization in self.optimizations:
            if optimization.type == opt_type:
                return optimization
        return None

    def to_dict(self) -> dict:
        risk = self.risk_assessment
        return {
            "original_unit_id": self.original_unit.unit_id,
            "original_slug": self.original_unit.slug,
            "optimized_unit_id": self.optimized_unit.unit_id,
            "optimized_slug": self.optimized_unit.slug,
            "optimizations": [o.to_dict() for o in self.optimizations],
            "estimated_savings": self.estimated_savings.to_dict(),
            "risk_assessment": {
                "overall_risk": risk.overall_risk.value,
                "risk_factors": list(risk.risk_factors),
                "mitigations": list(risk.mitigations),
                "confidence": round(risk.confidence, 3),
                "recommended_phase": risk.recommended_phase.value,
            },
            "applied_safety": {
                "cpu_margin_applied": self.applied_safety.cpu_margin_applied,
                "memory_margin_applied": self.applied_safety.memory_margin_applied,
                "replica_floor_applied": self.applied_safety.replica_floor_applied,
                "actual_cpu_margin": self.applied_safety.actual_cpu_margin,
                "actual_memory_margin": self.applied_safety.actual_memory_margin,
            },
        }


def categorize_risk(reduction: float, low_threshold: float, high_threshold: float) -> Severity:
    """Risk of a reduction fraction against a pair of thresholds."""
    if reduction < low_threshold:
        return Severity.LOW
    if reduction > high_threshold:
        return Severity.HIGH
    return Severity.MEDIUM


class OptimizationEngine:
    """
    Generate safety-bounded optimized configurations from waste metrics.

    Deployments get CPU, memory and replica optimizations. StatefulSets go
    through the same path with dampened waste and confidence because their
    pods carry state. DaemonSets run one pod per node, so only CPU and
    memory are touched, behind a higher activation threshold.
    """

    MIN_CONFIDENCE = 0.5
    CPU_ACTIVATION_THRESHOLD = 0.10
    MEMORY_ACTIVATION_THRESHOLD = 0.10
    DAEMONSET_ACTIVATION_THRESHOLD = 0.15
    MAX_CPU_REDUCTION = 0.7
    MAX_MEMORY_REDUCTION = 0.6
    MIN_NET_REDUCTION = 0.05
    CPU_LIMIT_RATIO = 1.5
    MEMORY_LIMIT_RATIO = 1.2
    STATEFULSET_WASTE_FACTOR = 0.7
    STATEFULSET_CONFIDENCE_FACTOR = 0.8
    REPLICA_HIGH_RISK_REDUCTION = 0.5

    def __init__(
        self,
        safety: Optional[SafetyConfiguration] = None,
        estimator: Optional[CostEstimator] = None,
    ):
        """
        Initialize the engine.

        Args:
            safety: Safety bounds; defaults to DEFAULT_SAFETY.
            estimator: Cost estimator used to price original and optimized
                manifests. Its extractor is used to read resources.
        """
        self.safety = safety or DEFAULT_SAFETY
        self.estimator = estimator or CostEstimator()

    def optimize(
        self,
        unit: ConfigUnit,
        waste: WasteMetrics,
        now: Optional[datetime] = None,
    ) -> OptimizedConfiguration:
        """
        Produce an optimized configuration for a unit.

        Args:
            unit: The unit to optimize; left untouched.
            waste: Detected waste for the unit.
            now: Timestamp recorded on the optimized unit.

        Returns:
            OptimizedConfiguration, possibly with no optimizations when the
            waste does not justify any change.

        Raises:
            OptimizationError: If the unit has no manifest mapping.
            UnsupportedWorkloadKindError: If the kind cannot be optimized.
            NoResourceSpecsError: If the manifest declares no resources.
        """
        if not isinstance(unit.manifest, dict):
            raise OptimizationError(f"Unit {unit.slug} has no manifest to optimize")

        kind = unit.kind
        if kind == WorkloadKind.DEPLOYMENT.value:
            return self._optimize_deployment(unit, waste, now)
        if kind == WorkloadKind.STATEFULSET.value:
            return self._optimize_statefulset(unit, waste, now)
        if kind == WorkloadKind.DAEMONSET.value:
            return self._optimize_daemonset(unit, waste, now)
        raise UnsupportedWorkloadKindError(kind)

    def _optimize_deployment(
        self,
        unit: ConfigUnit,
        waste: WasteMetrics,
        now: Optional[datetime],
    ) -> OptimizedConfiguration:
        specs = self.estimator.extractor.extract(unit.manifest)
        optimizations = []

        cpu_opt = self.optimize_cpu(specs.cpu, waste.cpu_waste, waste.confidence)
        if cpu_opt:
            optimizations.append(cpu_opt)

        memory_opt = self.optimize_memory(specs.memory, waste.memory_waste, waste.confidence)
        if memory_opt:
            optimizations.append(memory_opt)

        replica_opt = self.optimize_replicas(specs.replicas, waste.idle_replicas)
        if replica_opt:
            optimizations.append(replica_opt)

        replica_floor_applied = bool(replica_opt) and (
            int(replica_opt.optimized_value) != specs.replicas - waste.idle_replicas
        )
        return self._build_configuration(unit, specs, optimizations, waste, replica_floor_applied, now)

    def _optimize_statefulset(
        self,
        unit: ConfigUnit,
        waste: WasteMetrics,
        now: Optional[datetime],
    ) -> OptimizedConfiguration:
        dampened = replace(
            waste,
            cpu_waste=waste.cpu_waste * self.STATEFULSET_WASTE_FACTOR,
            memory_waste=waste.memory_waste * self.STATEFULSET_WASTE_FACTOR,
            idle_replicas=waste.idle_replicas // 2,
            confidence=waste.confidence * self.STATEFULSET_CONFIDENCE_FACTOR,
        )
        logger.debug(f"Dampened StatefulSet waste for {unit.slug}: {dampened}")
        return self._optimize_deployment(unit, dampened, now)

    def _optimize_daemonset(
        self,
        unit: ConfigUnit,
        waste: WasteMetrics,
        now: Optional[datetime],
    ) -> OptimizedConfiguration:
        specs = self.estimator.extractor.extract(unit.manifest)
        optimizations = []

        cpu_opt = self.optimize_cpu(
            specs.cpu, waste.cpu_waste, waste.confidence,
            activation=self.DAEMONSET_ACTIVATION_THRESHOLD,
        )
        if cpu_opt:
            optimizations.append(cpu_opt)

        memory_opt = self.optimize_memory(
            specs.memory, waste.memory_waste, waste.confidence,
            activation=self.DAEMONSET_ACTIVATION_THRESHOLD,
        )
        if memory_opt:
            optimizations.append(memory_opt)

        return self._build_configuration(unit, specs, optimizations, waste, False, now)

    def optimize_cpu(
        self,
        current: ResourceQuantity,
        waste: float,
        confidence: float,
        activation: float = CPU_ACTIVATION_THRESHOLD,
    ) -> Optional[ResourceOptimization]:
        """
        Propose a reduced total CPU request.

        Args:
            current: Current aggregated CPU request.
            waste: Wasted fraction of the CPU allocation.
            confidence: Confidence in the waste figure.
            activation: Minimum waste fraction worth acting on.

        Returns:
            The optimization, or None when waste, confidence or the net
            reduction is too small.
        """
        if waste < activation or confidence < self.MIN_CONFIDENCE:
            return None

        current_millis = float(current.milli)
        if current_millis <= 0:
            return None

        reduction = min(waste * confidence, self.MAX_CPU_REDUCTION)
        optimized = current_millis * (1 - reduction) * (1 + self.safety.cpu_safety_margin)
        optimized = max(optimized, self.safety.min_cpu_millis)

        final_reduction = (current_millis - optimized) / current_millis
        if final_reduction < self.MIN_NET_REDUCTION:
            return None

        thresholds = self.safety.risk_thresholds
        return ResourceOptimization(
            type=OptimizationType.CPU,
            original_value=str(current),
            optimized_value=format_millicores(optimized),
            reduction_percent=final_reduction * 100,
            reasoning=(
                f"Detected {waste * 100:.1f}% CPU waste with {confidence * 100:.1f}% confidence, "
                f"applied {self.safety.cpu_safety_margin * 100:.1f}% safety margin"
            ),
            risk=categorize_risk(final_reduction, thresholds.low_cpu_reduction, thresholds.high_cpu_reduction),
        )

    def optimize_memory(
        self,
        current: ResourceQuantity,
        waste: float,
        confidence: float,
        activation: float = MEMORY_ACTIVATION_THRESHOLD,
    ) -> Optional[ResourceOptimization]:
        """
        Propose a reduced total memory request.

        Args:
            current: Current aggregated memory request.
            waste: Wasted fraction of the memory allocation.
            confidence: Confidence in the waste figure.
            activation: Minimum waste fraction worth acting on.

        Returns:
            The optimization, or None when not worthwhile.
        """
        if waste < activation or confidence < self.MIN_CONFIDENCE:
            return None

        current_bytes = float(current.byte_count)
        if current_bytes <= 0:
            return None

        reduction = min(waste * confidence, self.MAX_MEMORY_REDUCTION)
        optimized = current_bytes * (1 - reduction) * (1 + self.safety.memory_safety_margin)
        optimized = max(optimized, self.safety.min_memory_bytes)

        final_reduction = (current_bytes - optimized) / current_bytes
        if final_reduction < self.MIN_NET_REDUCTION:
            return None

        thresholds = self.safety.risk_thresholds
        return ResourceOptimization(
            type=OptimizationType.MEMORY,
            original_value=str(current),
            optimized_value=format_mebibytes(optimized),
            reduction_percent=final_reduction * 100,
            reasoning=(
                f"Detected {waste * 100:.1f}% memory waste with {confidence * 100:.1f}% confidence, "
                f"applied {self.safety.memory_safety_margin * 100:.1f}% safety margin"
            ),
            risk=categorize_risk(final_reduction, thresholds.low_memory_reduction, thresholds.high_memory_reduction),
        )

    def optimize_replicas(self, current: int, idle: int) -> Optional[ResourceOptimization]:
        """
        Propose a lower replica count.

        The result never goes below the minimum replica count and never
        removes more than the maximum replica reduction fraction.
        """
        min_replicas = self.safety.min_replicas
        if idle <= 0 or current <= min_replicas:
            return None

        optimized = max(current - idle, min_replicas)
        if (current - optimized) / current > self.safety.max_replica_reduction:
            optimized = current - int(current * self.safety.max_replica_reduction)

        if optimized >= current:
            return None

        final_reduction = (current - optimized) / current
        # Replica changes are never LOW risk
        risk = Severity.HIGH if final_reduction > self.REPLICA_HIGH_RISK_REDUCTION else Severity.MEDIUM

        return ResourceOptimization(
            type=OptimizationType.REPLICAS,
            original_value=str(current),
            optimized_value=str(optimized),
            reduction_percent=final_reduction * 100,
            reasoning=f"Detected {idle} idle replicas, maintaining minimum of {min_replicas} replicas",
            risk=risk,
        )

    def assess_risk(self, optimizations: list[ResourceOptimization], confidence: float) -> OptimizationRisk:
        """
        Assess the combined risk of a set of optimizations.

        Args:
            optimizations: Proposed optimizations.
            confidence: Confidence of the waste input.

        Returns:
            OptimizationRisk with the highest dimension risk, adjusted
            confidence and the environment to roll out to first.
        """
        if not optimizations:
            return OptimizationRisk()

        risk_factors = []
        mitigations = []
        for opt in optimizations:
            if opt.risk != Severity.LOW:
                level = "High" if opt.risk == Severity.HIGH else "Medium"
                risk_factors.append(f"{level} risk {opt.type.value} reduction: {opt.reduction_percent:.1f}%")
            mitigations.append(MITIGATIONS[opt.type])

        overall = max_severity(*(opt.risk for opt in optimizations))
        adjusted = confidence
        if overall == Severity.HIGH:
            adjusted *= 0.7
        elif overall == Severity.MEDIUM:
            adjusted *= 0.85

        phase = DeploymentPhase.PROD
        if overall == Severity.HIGH or adjusted < 0.6:
            phase = DeploymentPhase.STAGING
        if adjusted < 0.4:
            phase = DeploymentPhase.DEV

        return OptimizationRisk(
            overall_risk=overall,
            risk_factors=tuple(risk_factors),
            mitigations=tuple(mitigations),
            confidence=adjusted,
            recommended_phase=phase,
        )

    def _build_configuration(
        self,
        unit: ConfigUnit,
        specs: ResourceSpecs,
        optimizations: list[ResourceOptimization],
        waste: WasteMetrics,
        replica_floor_applied: bool,
        now: Optional[datetime],
    ) -> OptimizedConfiguration:
        now = now or datetime.now(timezone.utc)
        manifest = clone_manifest(unit.manifest)

        for opt in optimizations:
            if opt.type == OptimizationType.CPU:
                redistribute_resource(manifest, specs.containers, "cpu", opt.optimized_value, self.CPU_LIMIT_RATIO)
            elif opt.type == OptimizationType.MEMORY:
                redistribute_resource(manifest, specs.containers, "memory", opt.optimized_value, self.MEMORY_LIMIT_RATIO)
            elif opt.type == OptimizationType.REPLICAS:
                ensure_mapping(manifest, "spec")["replicas"] = int(opt.optimized_value)

        optimized_unit = ConfigUnit(
            slug=f"{unit.slug}-optimized",
            manifest=manifest,
            unit_id=str(uuid.uuid4()),
            space_id=unit.space_id,
            display_name=f"{unit.display_name} (Optimized)",
            labels=self._optimized_labels(unit.labels),
            annotations=self._optimized_annotations(unit.annotations, optimizations, now),
            upstream_unit_id=unit.unit_id,
            source_path=unit.source_path,
        )

        original_estimate = self.estimator.estimate(
            specs, unit_id=unit.unit_id, unit_name=unit.slug, space=unit.space_id, kind=unit.kind,
        )
        optimized_estimate = self.estimator.estimate_manifest(manifest, original_estimate)
        savings = calculate_cost_savings(original_estimate, optimized_estimate)

        has_cpu = any(o.type == OptimizationType.CPU for o in optimizations)
        has_memory = any(o.type == OptimizationType.MEMORY for o in optimizations)
        applied = SafetyMargins(
            cpu_margin_applied=has_cpu,
            memory_margin_applied=has_memory,
            replica_floor_applied=replica_floor_applied,
            actual_cpu_margin=self.safety.cpu_safety_margin if has_cpu else 0.0,
            actual_memory_margin=self.safety.memory_safety_margin if has_memory else 0.0,
        )

        configuration = OptimizedConfiguration(
            original_unit=unit,
            optimized_unit=optimized_unit,
            optimizations=optimizations,
            estimated_savings=savings,
            risk_assessment=self.assess_risk(optimizations, waste.confidence),
            applied_safety=applied,
        )
        logger.info(
            f"Optimized {unit.slug}: {len(optimizations)} changes, "
            f"${savings.monthly_savings:.2f}/month savings, "
            f"risk {configuration.risk_assessment.overall_risk.value}"
        )
        return configuration

    def _optimized_labels(self, labels: dict[str, str]) -> dict[str, str]:
        result = dict(labels)
        result[f"{LABEL_PREFIX}/optimized"] = "true"
        result[f"{LABEL_PREFIX}/version"] = ENGINE_VERSION
        result[f"{LABEL_PREFIX}/engine"] = ENGINE_NAME
        return result

    def _optimized_annotations(
        self,
        annotations: dict[str, str],
        optimizations: list[ResourceOptimization],
        now: datetime,
    ) -> dict[str, str]:
        result = dict(annotations)
        result[f"{LABEL_PREFIX}/optimized-at"] = now.isoformat()
        result[f"{LABEL_PREFIX}/optimization-count"] = str(len(optimizations))
        for index, opt in enumerate(optimizations):
            prefix = f"{LABEL_PREFIX}/optimization-{index}"
            result[f"{prefix}-type"] = opt.type.value
            result[f"{prefix}-original"] = opt.original_value
            result[f"{prefix}-optimized"] = opt.optimized_value
            result[f"{prefix}-reduction"] = f"{opt.reduction_percent:.1f}%"
            result[f"{prefix}-risk"] = opt.risk.value
        return result


def _baseline(info: ContainerResourceInfo, resource: str) -> int:
    """A container's current share of a resource: requests, else limits."""
    if resource == "cpu":
        return info.cpu.milli
    return info.memory.byte_count


def redistribute_resource(
    manifest: dict,
    containers_info: tuple[ContainerResourceInfo, ...],
    resource: str,
    total_value: str,
    limit_ratio: float,
) -> None:
    """
    Split a new total request across the manifest's containers in place.

    Each container receives a share proportional to its current baseline.
    When no container has a baseline the total is split equally. Limits are
    set to ``limit_ratio`` times the new request; missing ``resources``,
    ``requests`` and ``limits`` sections are created, a new ``requests``
    section starting from the declared cpu and memory limits.

    Args:
        manifest: Manifest tree to update (a clone, never the original).
        containers_info: Per-container resources read from the original.
        resource: "cpu" or "memory".
        total_value: New aggregated request, e.g. "780m" or "2591Mi".
        limit_ratio: Limit to request ratio.
    """
    containers = get_containers(manifest)
    if not containers:
        return

    if resource == "cpu":
        total = float(ResourceQuantity.parse(total_value).milli)
        fmt = format_millicores
    else:
        total = float(ResourceQuantity.parse_bytes(total_value).byte_count)
        fmt = format_mebibytes

    baselines = [_baseline(info, resource) for info in containers_info]
    baseline_total = sum(baselines)
    if baseline_total > 0 and len(baselines) == len(containers):
        shares = [b / baseline_total for b in baselines]
    else:
        shares = [1 / len(containers)] * len(containers)

    for container, share in zip(containers, shares):
        if share <= 0:
            continue
        value = total * share
        resources = ensure_mapping(container, "resources")
        if get_mapping(resources, "requests") is None:
            _seed_requests_from_limits(resources)
        ensure_mapping(resources, "requests")[resource] = fmt(value)
        ensure_mapping(resources, "limits")[resource] = fmt(value * limit_ratio)


def _seed_requests_from_limits(resources: dict) -> None:
    """Start a missing requests section from the declared cpu and memory limits."""
    limits = get_mapping(resources, "limits") or {}
    resources["requests"] = {key: limits[key] for key in ("cpu", "memory") if key in limits}
