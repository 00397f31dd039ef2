"""
Manifest diff generation for costwise.

Compares an original workload manifest with its optimized copy and renders
the changed requests, limits and replica count as a human-readable diff.
Also dumps optimized manifests back to YAML for the write-back collaborator.
"""

import logging
from dataclasses import dataclass, field
from io import StringIO
from typing import Any, Optional

from ruamel.yaml import YAML

from costwise.core.manifest import get_containers, get_mapping, get_path, get_str
from costwise.core.optimizer import OptimizedConfiguration

logger = logging.getLogger(__name__)

RESOURCE_PATHS = (
    ("requests", "cpu"),
    ("requests", "memory"),
    ("limits", "cpu"),
    ("limits", "memory"),
)


@dataclass
class ResourceChange:
    """Represents a single value change."""
    path: str
    old_value: Optional[str]
    new_value: Optional[str]


@dataclass
class ContainerDiff:
    """Diff for a single container's resource changes."""
    container_name: str
    changes: list[ResourceChange] = field(default_factory=list)


@dataclass
class WorkloadDiff:
    """Complete diff for a workload: container resources and replicas."""
    workload_name: str
    namespace: str
    kind: str
    container_diffs: list[ContainerDiff] = field(default_factory=list)
    replica_change: Optional[ResourceChange] = None
    reasoning: list[str] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return self.replica_change is not None or any(d.changes for d in self.container_diffs)


def _as_text(value: Any) -> Optional[str]:
    if value is None:
        return None
    return str(value)


class ManifestDiffGenerator:
    """
    Generates diff-style output for optimized workloads.

    Creates human-readable diffs showing old vs new values for resource
    requests, limits and replica counts.
    """

    def __init__(self):
        """Initialize the diff generator."""
        self._yaml = YAML()
        self._yaml.default_flow_style = False

    def generate(self, configuration: OptimizedConfiguration) -> WorkloadDiff:
        """
        Generate a structured diff for an optimized configuration.

        Args:
            configuration: Result of the optimization engine.

        Returns:
            WorkloadDiff between the original and optimized manifests.
        """
        diff = self.compare(configuration.original_unit.manifest, configuration.optimized_unit.manifest)
        diff.reasoning = [opt.reasoning for opt in configuration.optimizations]
        return diff

    def compare(self, original: dict, optimized: dict) -> WorkloadDiff:
        """
        Compare two versions of a workload manifest.

        Containers are matched by position, which the optimizer never changes.
        """
        diff = WorkloadDiff(
            workload_name=get_str(original, "metadata", "name"),
            namespace=get_str(original, "metadata", "namespace", default="default"),
            kind=get_str(original, "kind"),
        )

        old_replicas = get_path(original, "spec", "replicas")
        new_replicas = get_path(optimized, "spec", "replicas")
        if old_replicas != new_replicas:
            diff.replica_change = ResourceChange(
                path="spec.replicas",
                old_value=_as_text(old_replicas),
                new_value=_as_text(new_replicas),
            )

        old_containers = get_containers(original)
        new_containers = get_containers(optimized)
        for index, (old, new) in enumerate(zip(old_containers, new_containers)):
            name = new.get("name") if isinstance(new.get("name"), str) else f"container-{index}"
            diff.container_diffs.append(ContainerDiff(
                container_name=name,
                changes=self._container_changes(old, new),
            ))

        return diff

    def _container_changes(self, old: dict, new: dict) -> list[ResourceChange]:
        changes = []
        for section, resource in RESOURCE_PATHS:
            old_value = (get_mapping(old, "resources", section) or {}).get(resource)
            new_value = (get_mapping(new, "resources", section) or {}).get(resource)
            if old_value != new_value:
                changes.append(ResourceChange(
                    path=f"resources.{section}.{resource}",
                    old_value=_as_text(old_value),
                    new_value=_as_text(new_value),
                ))
        return changes

    def format_diff_text(self, workload_diff: WorkloadDiff) -> str:
        """
        Format a workload diff as human-readable text.

        Args:
            workload_diff: The structured diff to format.

        Returns:
            Formatted diff text with - and + markers.
        """
        lines = [f"# {workload_diff.kind}: {workload_diff.namespace}/{workload_diff.workload_name}", ""]

        if workload_diff.replica_change:
            lines.extend(self._change_lines(workload_diff.replica_change))

        for container_diff in workload_diff.container_diffs:
            if not container_diff.changes:
                continue
            lines.append(f"## Container: {container_diff.container_name}")
            lines.append("")
            for change in container_diff.changes:
                lines.extend(self._change_lines(change))

        for reason in workload_diff.reasoning:
            lines.append(f"Reasoning: {reason}")

        return "\n".join(lines)

    def _change_lines(self, change: ResourceChange) -> list[str]:
        lines = []
        if change.old_value:
            lines.append(f"- {change.path}: {change.old_value}")
        if change.new_value:
            lines.append(f"+ {change.path}: {change.new_value}")
        lines.append("")
        return lines

    def dump_yaml(self, data: dict) -> str:
        """
        Dump a manifest to a YAML string.

        Args:
            data: Manifest tree to serialize.

        Returns:
            YAML formatted string.
        """
        stream = StringIO()
        self._yaml.dump(data, stream)
        return stream.getvalue()


def generate_diff_for_configuration(configuration: OptimizedConfiguration) -> str:
    """
    Convenience function to generate diff text for an optimized configuration.

    Args:
        configuration: Result of the optimization engine.

    Returns:
        Formatted diff text.
    """
    generator = ManifestDiffGenerator()
    return generator.format_diff_text(generator.generate(configuration))
