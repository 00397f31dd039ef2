"""
Unit tests for manifest diff generation.
"""

import pytest
import yaml

from costwise.core.optimizer import WasteMetrics
from costwise.core.yaml_diff import (
    ManifestDiffGenerator,
    ResourceChange,
    WorkloadDiff,
    generate_diff_for_configuration,
)


@pytest.fixture
def generator():
    return ManifestDiffGenerator()


@pytest.fixture
def configuration(engine, deployment_unit, now):
    """Optimized configuration of the five replica Deployment."""
    waste = WasteMetrics(cpu_waste=0.75, memory_waste=0.5, idle_replicas=2, confidence=0.9)
    return engine.optimize(deployment_unit, waste, now=now)


class TestManifestDiffGenerator:
    """Tests for ManifestDiffGenerator."""

    def test_generate(self, generator, configuration):
        """Changed requests, limits and replicas are listed."""
        diff = generator.generate(configuration)

        assert diff.workload_name == "checkout"
        assert diff.namespace == "shop"
        assert diff.kind == "Deployment"
        assert diff.has_changes
        assert diff.replica_change == ResourceChange("spec.replicas", "5", "3")

        assert len(diff.container_diffs) == 1
        changes = {c.path: (c.old_value, c.new_value) for c in diff.container_diffs[0].changes}
        assert changes == {
            "resources.requests.cpu": ("2000m", "780m"),
            "resources.requests.memory": ("4Gi", "2591Mi"),
            "resources.limits.cpu": ("4000m", "1170m"),
            "resources.limits.memory": ("8Gi", "3109Mi"),
        }
        assert len(diff.reasoning) == 3

    def test_compare_identical(self, generator, deployment_manifest):
        """Identical manifests have no changes."""
        diff = generator.compare(deployment_manifest, deployment_manifest)
        assert not diff.has_changes
        assert diff.replica_change is None
        assert diff.container_diffs[0].changes == []

    def test_compare_added_values(self, generator, manifest_factory):
        """Values missing from the original have no old value."""
        original = manifest_factory(containers=[{"name": "app", "resources": {"requests": {"cpu": "1"}}}])
        optimized = manifest_factory(containers=[
            {"name": "app", "resources": {"requests": {"cpu": "600m"}, "limits": {"cpu": "900m"}}},
        ])
        changes = generator.compare(original, optimized).container_diffs[0].changes
        assert ResourceChange("resources.requests.cpu", "1", "600m") in changes
        assert ResourceChange("resources.limits.cpu", None, "900m") in changes

    def test_format_diff_text(self, generator, configuration):
        """Text diffs use - and + markers per value."""
        text = generator.format_diff_text(generator.generate(configuration))
        lines = text.splitlines()

        assert lines[0] == "# Deployment: shop/checkout"
        assert "- spec.replicas: 5" in lines
        assert "+ spec.replicas: 3" in lines
        assert "## Container: app" in lines
        assert "- resources.requests.cpu: 2000m" in lines
        assert "+ resources.requests.cpu: 780m" in lines
        assert "+ resources.limits.memory: 3109Mi" in lines
        assert any(line.startswith("Reasoning: Detected 75.0% CPU waste") for line in lines)

    def test_format_skips_unchanged_containers(self, generator):
        """Containers without changes are not listed."""
        diff = WorkloadDiff(workload_name="api", namespace="default", kind="Deployment")
        text = generator.format_diff_text(diff)
        assert "## Container" not in text
        assert text.startswith("# Deployment: default/api")

    def test_dump_yaml(self, generator, configuration):
        """Optimized manifests dump to loadable YAML."""
        dumped = generator.dump_yaml(configuration.optimized_unit.manifest)
        assert "replicas: 3" in dumped
        assert "cpu: 780m" in dumped
        assert yaml.safe_load(dumped) == configuration.optimized_unit.manifest


class TestConvenienceFunction:
    """Tests for generate_diff_for_configuration."""

    def test_generate_diff_for_configuration(self, configuration):
        text = generate_diff_for_configuration(configuration)
        assert "# Deployment: shop/checkout" in text
        assert "+ resources.requests.memory: 2591Mi" in text
