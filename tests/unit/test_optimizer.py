"""
Unit tests for the optimization engine.

Tests safety-bounded CPU, memory and replica optimizations, risk
assessment, proportional redistribution across containers and the
optimized configuration produced for each workload kind.
"""

import copy
from datetime import timedelta

import pytest

from costwise.core.manifest import ConfigUnit
from costwise.core.optimizer import (
    OptimizationEngine,
    OptimizationError,
    ResourceOptimization,
    SafetyConfiguration,
    WasteMetrics,
    categorize_risk,
    redistribute_resource,
)
from costwise.core.quantity import ResourceQuantity
from costwise.core.resource_extractor import (
    ContainerResourceInfo,
    NoResourceSpecsError,
    UnsupportedWorkloadKindError,
)
from costwise.core.schemas import DeploymentPhase, OptimizationType, Severity


@pytest.fixture
def waste():
    """75% CPU waste, 50% memory waste, 2 idle replicas at 0.9 confidence."""
    return WasteMetrics(cpu_waste=0.75, memory_waste=0.50, idle_replicas=2, confidence=0.9)


def container_resources(manifest, index=0):
    return manifest["spec"]["template"]["spec"]["containers"][index]["resources"]


def opt(opt_type, risk, reduction=40.0):
    return ResourceOptimization(
        type=opt_type,
        original_value="1",
        optimized_value="1",
        reduction_percent=reduction,
        reasoning="",
        risk=risk,
    )


class TestDeploymentOptimization:
    """End-to-end optimization of a five replica Deployment."""

    @pytest.fixture
    def result(self, engine, deployment_unit, waste, now):
        return engine.optimize(deployment_unit, waste, now=now)

    def test_cpu(self, result):
        """CPU is reduced by waste times confidence plus the safety margin."""
        cpu = result.get_optimization(OptimizationType.CPU)
        assert cpu.original_value == "2"
        assert cpu.optimized_value == "780m"
        assert cpu.reduction_percent == pytest.approx(61.0)
        assert cpu.risk == Severity.HIGH
        assert "75.0% CPU waste" in cpu.reasoning

    def test_memory(self, result):
        """Memory is reduced with its own margin."""
        memory = result.get_optimization(OptimizationType.MEMORY)
        assert memory.original_value == "4Gi"
        assert memory.optimized_value == "2591Mi"
        assert memory.reduction_percent == pytest.approx(36.75)
        assert memory.risk == Severity.MEDIUM

    def test_replicas(self, result):
        """Idle replicas are removed."""
        replicas = result.get_optimization(OptimizationType.REPLICAS)
        assert replicas.original_value == "5"
        assert replicas.optimized_value == "3"
        assert replicas.reduction_percent == pytest.approx(40.0)
        assert replicas.risk == Severity.MEDIUM

    def test_risk_assessment(self, result):
        """The highest dimension risk drives the overall risk."""
        risk = result.risk_assessment
        assert risk.overall_risk == Severity.HIGH
        assert risk.confidence == pytest.approx(0.63)
        assert risk.recommended_phase == DeploymentPhase.STAGING
        assert len(risk.risk_factors) == 3
        assert risk.risk_factors[0] == "High risk cpu reduction: 61.0%"
        assert len(risk.mitigations) == 3

    def test_optimized_manifest(self, result):
        """Requests, limits and replicas are written to the clone."""
        manifest = result.optimized_unit.manifest
        resources = container_resources(manifest)
        assert resources["requests"] == {"cpu": "780m", "memory": "2591Mi"}
        assert resources["limits"] == {"cpu": "1170m", "memory": "3109Mi"}
        assert manifest["spec"]["replicas"] == 3

    def test_savings(self, result):
        """Savings compare the original and optimized manifests."""
        savings = result.estimated_savings
        assert savings.current_monthly_cost == pytest.approx(259.2)
        assert savings.optimized_monthly_cost == pytest.approx(40.4352 + 2591 / 1024 * 0.006 * 720 * 3)
        assert savings.monthly_savings == pytest.approx(259.2 - savings.optimized_monthly_cost)
        assert savings.breakdown["cpu"] == pytest.approx(172.8 - 40.4352)

    def test_safety_applied(self, result):
        """Applied margins are reported."""
        applied = result.applied_safety
        assert applied.cpu_margin_applied
        assert applied.memory_margin_applied
        assert not applied.replica_floor_applied
        assert applied.actual_cpu_margin == 0.20
        assert applied.actual_memory_margin == 0.15

    def test_optimized_unit_identity(self, result, deployment_unit, now):
        """The optimized unit is new and linked to the original."""
        optimized = result.optimized_unit
        assert optimized.unit_id != deployment_unit.unit_id
        assert optimized.upstream_unit_id == deployment_unit.unit_id
        assert optimized.slug == "checkout-optimized"
        assert optimized.display_name == "checkout (Optimized)"
        assert optimized.space_id == "shop"
        assert optimized.labels == {
            "app": "checkout",
            "costwise.io/optimized": "true",
            "costwise.io/version": "v1",
            "costwise.io/engine": "costwise",
        }

    def test_annotations(self, result, now):
        """Each optimization is recorded in the annotations."""
        annotations = result.optimized_unit.annotations
        assert annotations["costwise.io/optimized-at"] == now.isoformat()
        assert annotations["costwise.io/optimization-count"] == "3"
        assert annotations["costwise.io/optimization-0-type"] == "cpu"
        assert annotations["costwise.io/optimization-0-original"] == "2"
        assert annotations["costwise.io/optimization-0-optimized"] == "780m"
        assert annotations["costwise.io/optimization-0-reduction"] == "61.0%"
        assert annotations["costwise.io/optimization-0-risk"] == "HIGH"
        assert annotations["costwise.io/optimization-2-type"] == "replicas"

    def test_original_untouched(self, engine, deployment_unit, waste, now):
        """Optimizing never modifies the input unit."""
        before = copy.deepcopy(deployment_unit.manifest)
        labels = dict(deployment_unit.labels)
        result = engine.optimize(deployment_unit, waste, now=now)
        assert deployment_unit.manifest == before
        assert deployment_unit.labels == labels
        assert deployment_unit.annotations == {}
        assert result.original_unit is deployment_unit
        assert result.optimized_unit.manifest is not deployment_unit.manifest

    def test_to_dict(self, result):
        """Configurations serialize for reporting."""
        data = result.to_dict()
        assert data["optimized_slug"] == "checkout-optimized"
        assert data["risk_assessment"]["overall_risk"] == "HIGH"
        assert data["risk_assessment"]["recommended_phase"] == "staging"
        assert [o["type"] for o in data["optimizations"]] == ["cpu", "memory", "replicas"]

    def test_no_changes_when_unconfident(self, engine, deployment_unit, now):
        """Low confidence yields no optimizations and an unchanged clone."""
        result = engine.optimize(
            deployment_unit,
            WasteMetrics(cpu_waste=0.9, memory_waste=0.9, idle_replicas=0, confidence=0.3),
            now=now,
        )
        assert not result.has_changes
        assert result.optimized_unit.manifest == deployment_unit.manifest
        assert result.estimated_savings.monthly_savings == pytest.approx(0.0)
        assert result.risk_assessment.overall_risk == Severity.LOW
        assert result.risk_assessment.recommended_phase == DeploymentPhase.PROD
        assert result.optimized_unit.annotations["costwise.io/optimization-count"] == "0"

    def test_replica_floor_flag(self, engine, manifest_factory, now):
        """The flag is set when the replica cap changes the result."""
        unit = ConfigUnit.from_manifest(manifest_factory(replicas=10))
        result = engine.optimize(unit, WasteMetrics(idle_replicas=8, confidence=0.9), now=now)
        assert result.get_optimization(OptimizationType.REPLICAS).optimized_value == "5"
        assert result.applied_safety.replica_floor_applied
        assert result.optimized_unit.manifest["spec"]["replicas"] == 5

    def test_single_replica_left_alone(self, engine, manifest_factory, now):
        """A workload without a replica field runs one pod and is not scaled."""
        unit = ConfigUnit.from_manifest(manifest_factory(replicas=None))
        result = engine.optimize(unit, WasteMetrics(idle_replicas=1, confidence=0.9), now=now)
        assert not result.has_changes
        assert "replicas" not in result.optimized_unit.manifest["spec"]


class TestOtherKinds:
    """Tests for StatefulSets, DaemonSets and unsupported kinds."""

    def test_statefulset_is_dampened(self, engine, manifest_factory, waste, now):
        """StatefulSets get less aggressive optimizations."""
        unit = ConfigUnit.from_manifest(manifest_factory(kind="StatefulSet"))
        result = engine.optimize(unit, waste, now=now)

        cpu = result.get_optimization(OptimizationType.CPU)
        assert cpu.optimized_value == "1493m"
        assert cpu.risk == Severity.LOW
        memory = result.get_optimization(OptimizationType.MEMORY)
        assert memory.optimized_value == "3523Mi"
        assert memory.risk == Severity.LOW
        replicas = result.get_optimization(OptimizationType.REPLICAS)
        assert replicas.optimized_value == "4"

        risk = result.risk_assessment
        assert risk.overall_risk == Severity.MEDIUM
        assert risk.confidence == pytest.approx(0.9 * 0.8 * 0.85)
        assert risk.recommended_phase == DeploymentPhase.PROD

    def test_daemonset_never_changes_replicas(self, engine, manifest_factory, now):
        """DaemonSets only get CPU and memory changes above a higher threshold."""
        unit = ConfigUnit.from_manifest(manifest_factory(kind="DaemonSet", replicas=None))
        waste = WasteMetrics(cpu_waste=0.12, memory_waste=0.5, idle_replicas=2, confidence=0.9)
        result = engine.optimize(unit, waste, now=now)

        assert [o.type for o in result.optimizations] == [OptimizationType.MEMORY]
        assert "replicas" not in result.optimized_unit.manifest["spec"]
        assert not result.applied_safety.replica_floor_applied
        assert container_resources(result.optimized_unit.manifest)["requests"]["cpu"] == "2000m"

    def test_unsupported_kind(self, engine, manifest_factory, waste):
        """Unsupported kinds are rejected."""
        unit = ConfigUnit.from_manifest(manifest_factory(kind="Job"))
        with pytest.raises(UnsupportedWorkloadKindError):
            engine.optimize(unit, waste)

    def test_missing_manifest(self, engine, waste):
        """Units without a manifest mapping cannot be optimized."""
        with pytest.raises(OptimizationError):
            engine.optimize(ConfigUnit(slug="empty", manifest=None), waste)

    def test_no_resources(self, engine, manifest_factory, waste):
        """Manifests without resources raise an extraction error."""
        unit = ConfigUnit.from_manifest(manifest_factory(containers=[{"name": "app"}]))
        with pytest.raises(NoResourceSpecsError):
            engine.optimize(unit, waste)


class TestOptimizeCpu:
    """Tests for CPU optimization bounds."""

    def test_below_activation(self, engine):
        assert engine.optimize_cpu(ResourceQuantity.parse("1"), 0.09, 1.0) is None

    def test_activation_inclusive(self):
        """Waste equal to the activation threshold is acted on."""
        engine = OptimizationEngine(SafetyConfiguration(cpu_safety_margin=0.0))
        result = engine.optimize_cpu(ResourceQuantity.parse("1"), 0.10, 1.0)
        assert result.optimized_value == "900m"

    def test_low_confidence(self, engine):
        assert engine.optimize_cpu(ResourceQuantity.parse("1"), 0.9, 0.49) is None

    def test_reduction_capped(self, engine):
        """Reduction never exceeds 70% before the margin."""
        result = engine.optimize_cpu(ResourceQuantity.parse("2"), 1.0, 1.0)
        assert result.optimized_value == "720m"
        assert result.risk == Severity.HIGH

    def test_floor(self, engine):
        """Results never drop below the minimum CPU."""
        result = engine.optimize_cpu(ResourceQuantity.parse("200m"), 0.9, 1.0)
        assert result.optimized_value == "100m"
        assert result.risk == Severity.MEDIUM

    def test_floor_above_current(self, engine):
        """Workloads at the floor are left alone."""
        assert engine.optimize_cpu(ResourceQuantity.parse("100m"), 0.9, 1.0) is None

    def test_small_net_reduction(self, engine):
        """Net reductions under 5% are not worth a change."""
        assert engine.optimize_cpu(ResourceQuantity.parse("2"), 0.2, 0.9) is None

    def test_zero_current(self, engine):
        assert engine.optimize_cpu(ResourceQuantity.zero(), 0.9, 1.0) is None


class TestOptimizeMemory:
    """Tests for memory optimization bounds."""

    def test_floor(self, engine):
        """Results never drop below the minimum memory."""
        result = engine.optimize_memory(ResourceQuantity.parse("256Mi"), 0.9, 1.0)
        assert result.optimized_value == "128Mi"
        assert result.reduction_percent == pytest.approx(50.0)
        assert result.risk == Severity.MEDIUM

    def test_reduction_capped(self, engine):
        """Reduction never exceeds 60% before the margin."""
        result = engine.optimize_memory(ResourceQuantity.parse("10Gi"), 1.0, 1.0)
        assert result.optimized_value == "4710Mi"
        assert result.risk == Severity.HIGH

    def test_not_worthwhile(self, engine):
        assert engine.optimize_memory(ResourceQuantity.parse("4Gi"), 0.05, 1.0) is None
        assert engine.optimize_memory(ResourceQuantity.parse("128Mi"), 0.9, 1.0) is None


class TestOptimizeReplicas:
    """Tests for replica optimization bounds."""

    @pytest.mark.parametrize("current, idle, expected", [
        (5, 2, "3"),
        (10, 8, "5"),
        (3, 5, "2"),
        (2, 1, "1"),
    ])
    def test_bounded(self, engine, current, idle, expected):
        """Reductions keep the minimum and respect the maximum reduction."""
        assert engine.optimize_replicas(current, idle).optimized_value == expected

    @pytest.mark.parametrize("current, idle", [(1, 3), (4, 0), (5, -1)])
    def test_no_change(self, engine, current, idle):
        assert engine.optimize_replicas(current, idle) is None

    def test_never_low_risk(self, engine):
        """Replica changes carry at least medium risk."""
        assert engine.optimize_replicas(10, 1).risk == Severity.MEDIUM

    def test_high_risk_above_half(self):
        """Removing more than half the replicas is high risk."""
        engine = OptimizationEngine(SafetyConfiguration(max_replica_reduction=0.8))
        result = engine.optimize_replicas(10, 8)
        assert result.optimized_value == "2"
        assert result.risk == Severity.HIGH

    def test_min_replicas(self):
        """The minimum replica count is kept."""
        engine = OptimizationEngine(SafetyConfiguration(min_replicas=3, max_replica_reduction=1.0))
        assert engine.optimize_replicas(5, 4).optimized_value == "3"


class TestAssessRisk:
    """Tests for combined risk assessment."""

    def test_empty(self, engine):
        risk = engine.assess_risk([], 0.9)
        assert risk.overall_risk == Severity.LOW
        assert risk.confidence == 1.0
        assert risk.recommended_phase == DeploymentPhase.PROD

    @pytest.mark.parametrize("risks, confidence, overall, adjusted, phase", [
        ([Severity.LOW], 0.9, Severity.LOW, 0.9, DeploymentPhase.PROD),
        ([Severity.LOW, Severity.MEDIUM], 0.9, Severity.MEDIUM, 0.765, DeploymentPhase.PROD),
        ([Severity.MEDIUM], 0.6, Severity.MEDIUM, 0.51, DeploymentPhase.STAGING),
        ([Severity.LOW], 0.35, Severity.LOW, 0.35, DeploymentPhase.DEV),
        ([Severity.HIGH, Severity.LOW], 0.9, Severity.HIGH, 0.63, DeploymentPhase.STAGING),
        ([Severity.HIGH], 0.5, Severity.HIGH, 0.35, DeploymentPhase.DEV),
    ])
    def test_levels(self, engine, risks, confidence, overall, adjusted, phase):
        """Overall risk, adjusted confidence and phase."""
        optimizations = [opt(OptimizationType.CPU, r) for r in risks]
        risk = engine.assess_risk(optimizations, confidence)
        assert risk.overall_risk == overall
        assert risk.confidence == pytest.approx(adjusted)
        assert risk.recommended_phase == phase

    def test_factors_and_mitigations(self, engine):
        """Non-low optimizations are listed as risk factors."""
        risk = engine.assess_risk([
            opt(OptimizationType.CPU, Severity.LOW, 20.0),
            opt(OptimizationType.MEMORY, Severity.MEDIUM, 30.0),
        ], 0.9)
        assert risk.risk_factors == ("Medium risk memory reduction: 30.0%",)
        assert risk.mitigations == (
            "Monitor CPU utilization closely after deployment",
            "Watch for OOMKilled events and memory pressure",
        )

    @pytest.mark.parametrize("reduction, expected", [
        (0.29, Severity.LOW),
        (0.30, Severity.MEDIUM),
        (0.60, Severity.MEDIUM),
        (0.61, Severity.HIGH),
    ])
    def test_categorize_risk(self, reduction, expected):
        assert categorize_risk(reduction, 0.30, 0.60) == expected


class TestRedistribution:
    """Tests for splitting new totals across containers."""

    @pytest.fixture
    def two_containers(self, manifest_factory):
        return manifest_factory(replicas=2, containers=[
            {"name": "app", "resources": {"requests": {"cpu": "300m", "memory": "768Mi"}}},
            {"name": "proxy", "resources": {"requests": {"cpu": "100m", "memory": "256Mi"}}},
        ])

    def test_proportional_split(self, engine, two_containers, now):
        """Each container keeps its share of the total."""
        unit = ConfigUnit.from_manifest(two_containers)
        waste = WasteMetrics(cpu_waste=0.5, memory_waste=0.5, confidence=1.0)
        result = engine.optimize(unit, waste, now=now)

        assert result.get_optimization(OptimizationType.CPU).optimized_value == "240m"
        assert result.get_optimization(OptimizationType.MEMORY).optimized_value == "589Mi"

        manifest = result.optimized_unit.manifest
        app = container_resources(manifest, 0)
        proxy = container_resources(manifest, 1)
        assert app["requests"] == {"cpu": "180m", "memory": "442Mi"}
        assert proxy["requests"] == {"cpu": "60m", "memory": "147Mi"}
        assert app["limits"] == {"cpu": "270m", "memory": "530Mi"}
        assert proxy["limits"] == {"cpu": "90m", "memory": "177Mi"}

    def test_zero_share_container_unchanged(self, engine, manifest_factory, now):
        """Containers without a baseline keep their resources."""
        unit = ConfigUnit.from_manifest(manifest_factory(containers=[
            {"name": "app", "resources": {"requests": {"cpu": "1", "memory": "1Gi"}}},
            {"name": "init-helper"},
        ]))
        result = engine.optimize(unit, WasteMetrics(cpu_waste=0.5, confidence=1.0), now=now)
        containers = result.optimized_unit.manifest["spec"]["template"]["spec"]["containers"]
        assert containers[0]["resources"]["requests"]["cpu"] == "600m"
        assert "resources" not in containers[1]

    def test_equal_split_without_baseline(self, manifest_factory):
        """Without any baseline the total is split equally."""
        manifest = manifest_factory(containers=[{"name": "a"}, {"name": "b"}])
        infos = (ContainerResourceInfo(name="a"), ContainerResourceInfo(name="b"))
        redistribute_resource(manifest, infos, "cpu", "1000m", 1.5)
        for index in (0, 1):
            resources = container_resources(manifest, index)
            assert resources["requests"]["cpu"] == "500m"
            assert resources["limits"]["cpu"] == "750m"

    def test_sections_created(self, manifest_factory):
        """Missing requests and limits sections are created."""
        manifest = manifest_factory(containers=[
            {"name": "a", "resources": {"limits": {"memory": "1Gi"}}},
        ])
        infos = (ContainerResourceInfo(
            name="a", memory_limits=ResourceQuantity.parse("1Gi"), has_limits=True,
        ),)
        redistribute_resource(manifest, infos, "memory", "512Mi", 1.2)
        resources = container_resources(manifest)
        assert resources["requests"] == {"memory": "512Mi"}
        assert resources["limits"] == {"memory": "614Mi"}

    def test_limits_only_container_keeps_untouched_memory(self, engine, manifest_factory, now):
        """New requests start from the limits, so unchanged memory is not counted as saved."""
        unit = ConfigUnit.from_manifest(manifest_factory(replicas=2, containers=[
            {"name": "app", "resources": {"limits": {"cpu": "2", "memory": "4Gi"}}},
        ]))
        result = engine.optimize(unit, WasteMetrics(cpu_waste=0.5, memory_waste=0.0, confidence=1.0), now=now)

        assert result.get_optimization(OptimizationType.MEMORY) is None
        resources = container_resources(result.optimized_unit.manifest)
        assert resources["requests"] == {"cpu": "1200m", "memory": "4Gi"}
        assert resources["limits"] == {"cpu": "1800m", "memory": "4Gi"}

        savings = result.estimated_savings
        assert savings.breakdown["memory"] == pytest.approx(0.0)
        assert savings.breakdown["cpu"] == pytest.approx(0.8 * 0.024 * 720 * 2)
        assert savings.monthly_savings == pytest.approx(savings.breakdown["cpu"])

    def test_no_containers(self):
        """Manifests without containers are left alone."""
        manifest = {"kind": "Deployment", "spec": {}}
        redistribute_resource(manifest, (), "cpu", "100m", 1.5)
        assert manifest == {"kind": "Deployment", "spec": {}}


class TestWasteMetrics:
    """Tests for building optimizer input from detections."""

    def test_from_detection(self, estimator, detector, deployment_unit, fresh_usage, now):
        """Waste fractions and confidence come from the detection."""
        detection = detector.analyze(estimator.estimate_unit(deployment_unit), fresh_usage, now)
        metrics = WasteMetrics.from_detection(detection, fresh_usage, now)
        assert metrics.cpu_waste == pytest.approx(0.75)
        assert metrics.memory_waste == pytest.approx(0.5)
        assert metrics.idle_replicas == 2
        assert metrics.confidence == 0.95
        assert metrics.metrics_age == timedelta(hours=1)

    def test_without_usage_has_no_confidence(self, estimator, detector, deployment_unit, now):
        """Detections without usage data are never acted on."""
        detection = detector.analyze(estimator.estimate_unit(deployment_unit), None, now)
        metrics = WasteMetrics.from_detection(detection, now=now)
        assert metrics.confidence == 0.0
        assert metrics.metrics_age == timedelta(0)
