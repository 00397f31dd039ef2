"""
Unit tests for resource extraction from workload manifests.
"""

import pytest

from costwise.core.quantity import GIB, MIB
from costwise.core.resource_extractor import (
    ExtractionError,
    NoResourceSpecsError,
    ResourceExtractor,
    UnsupportedWorkloadKindError,
)


@pytest.fixture
def extractor():
    return ResourceExtractor()


class TestResourceExtractor:
    """Tests for ResourceExtractor."""

    def test_single_container(self, extractor, deployment_manifest):
        """Requests of a single container are extracted."""
        specs = extractor.extract(deployment_manifest)
        assert specs.cpu.milli == 2000
        assert specs.memory.byte_count == 4 * GIB
        assert specs.storage.is_zero
        assert specs.replicas == 5

    def test_multi_container_sums(self, extractor, manifest_factory):
        """Per-container requests are summed."""
        manifest = manifest_factory(containers=[
            {"name": "web", "resources": {"requests": {"cpu": "100m", "memory": "128Mi"}}},
            {"name": "sidecar", "resources": {"requests": {"cpu": "50m", "memory": "64Mi"}}},
        ])
        specs = extractor.extract(manifest)
        assert specs.cpu.milli == 150
        assert str(specs.cpu) == "150m"
        assert specs.memory.byte_count == 192 * MIB
        assert [c.name for c in specs.containers] == ["web", "sidecar"]

    def test_limits_used_when_no_requests(self, extractor, manifest_factory):
        """A container with only limits is counted at its limits."""
        manifest = manifest_factory(containers=[
            {"name": "app", "resources": {"limits": {"cpu": "500m", "memory": "1Gi"}}},
        ])
        specs = extractor.extract(manifest)
        assert specs.cpu.milli == 500
        assert specs.memory.byte_count == GIB
        assert specs.containers[0].has_limits
        assert not specs.containers[0].has_requests

    def test_requests_win_over_limits(self, extractor, deployment_manifest):
        """Requests are counted even when limits are higher."""
        info = extractor.extract(deployment_manifest).containers[0]
        assert info.cpu.milli == 2000
        assert info.cpu_limits.milli == 4000
        assert info.memory_limits.byte_count == 8 * GIB

    def test_container_without_resources(self, extractor, manifest_factory):
        """Containers without resources contribute zero."""
        manifest = manifest_factory(containers=[
            {"name": "app", "resources": {"requests": {"cpu": "1"}}},
            {"image": "busybox"},
        ])
        specs = extractor.extract(manifest)
        assert specs.cpu.milli == 1000
        assert specs.memory.is_zero
        assert specs.containers[1].name == "container-1"

    def test_missing_replicas_defaults_to_one(self, extractor, manifest_factory):
        """Deployments without replicas run one pod."""
        specs = extractor.extract(manifest_factory(replicas=None))
        assert specs.replicas == 1

    @pytest.mark.parametrize("value, expected", [(4, 4), (3.0, 3), ("3", 1), (True, 1), (2.5, 1)])
    def test_replica_values(self, extractor, manifest_factory, value, expected):
        """Only integral numbers are accepted as replica counts."""
        assert extractor.extract(manifest_factory(replicas=value)).replicas == expected

    def test_daemonset_uses_node_count(self, manifest_factory):
        """DaemonSets use the assumed node count as replicas."""
        manifest = manifest_factory(kind="DaemonSet", replicas=None)
        assert ResourceExtractor().extract(manifest).replicas == 3
        assert ResourceExtractor(daemonset_nodes=7).extract(manifest).replicas == 7

    def test_statefulset_storage(self, extractor, manifest_factory):
        """StatefulSet storage comes from volume claim templates."""
        manifest = manifest_factory(kind="StatefulSet", replicas=2)
        manifest["spec"]["volumeClaimTemplates"] = [
            {"metadata": {"name": "data"}, "spec": {"resources": {"requests": {"storage": "10Gi"}}}},
            {"metadata": {"name": "wal"}, "spec": {"resources": {"requests": {"storage": "2Gi"}}}},
            {"metadata": {"name": "empty"}},
        ]
        specs = extractor.extract(manifest)
        assert specs.storage.byte_count == 12 * GIB
        assert str(specs.storage) == "12Gi"

    def test_storage_ignored_for_deployments(self, extractor, deployment_manifest):
        """Only StatefulSets carry storage."""
        deployment_manifest["spec"]["volumeClaimTemplates"] = [
            {"spec": {"resources": {"requests": {"storage": "10Gi"}}}},
        ]
        assert extractor.extract(deployment_manifest).storage.is_zero

    def test_storage_only_statefulset(self, extractor, manifest_factory):
        """Storage alone is enough to analyze a StatefulSet."""
        manifest = manifest_factory(kind="StatefulSet", containers=[{"name": "db"}])
        manifest["spec"]["volumeClaimTemplates"] = [
            {"spec": {"resources": {"requests": {"storage": "5Gi"}}}},
        ]
        specs = extractor.extract(manifest)
        assert specs.cpu.is_zero
        assert specs.storage.byte_count == 5 * GIB

    def test_no_resources_raises(self, extractor, manifest_factory):
        """Manifests declaring nothing cannot be analyzed."""
        manifest = manifest_factory(containers=[{"name": "app"}])
        with pytest.raises(NoResourceSpecsError, match="no resource specifications found"):
            extractor.extract(manifest)

    def test_no_containers_raises(self, extractor, deployment_manifest):
        """A pod template without containers cannot be analyzed."""
        del deployment_manifest["spec"]["template"]
        with pytest.raises(NoResourceSpecsError):
            extractor.extract(deployment_manifest)

    @pytest.mark.parametrize("kind", ["Service", "CronJob", ""])
    def test_unsupported_kind(self, extractor, manifest_factory, kind):
        """Unsupported kinds are rejected."""
        with pytest.raises(UnsupportedWorkloadKindError) as exc_info:
            extractor.extract(manifest_factory(kind=kind))
        assert isinstance(exc_info.value, ExtractionError)
        assert exc_info.value.kind == kind

    def test_unsupported_kind_message(self, extractor, manifest_factory):
        """The error names the kind."""
        with pytest.raises(UnsupportedWorkloadKindError, match="unsupported workload kind: Job"):
            extractor.extract(manifest_factory(kind="Job"))

    def test_extract_unit(self, extractor, deployment_unit):
        """Units are extracted from their manifest."""
        assert extractor.extract_unit(deployment_unit).replicas == 5

    def test_to_dict(self, extractor, deployment_manifest):
        """Specs serialize with their text spellings."""
        assert extractor.extract(deployment_manifest).to_dict() == {
            "cpu": "2",
            "memory": "4Gi",
            "storage": "0",
            "replicas": 5,
            "containers": ["app"],
        }
