"""
Resource extraction from workload manifests.

Walks a Deployment, StatefulSet or DaemonSet manifest and aggregates the
replica count, the CPU and memory declared by each container, and the
storage requested by StatefulSet volume claim templates.
"""

import logging
from dataclasses import dataclass, field
from typing import Any, Optional

from costwise.core.manifest import (
    ConfigUnit,
    get_containers,
    get_mapping,
    get_path,
    get_sequence,
    get_str,
)
from costwise.core.quantity import ResourceQuantity, sum_quantities
from costwise.core.schemas import WorkloadKind

logger = logging.getLogger(__name__)

SUPPORTED_WORKLOAD_KINDS = {kind.value for kind in WorkloadKind}


class ExtractionError(Exception):
    """Exception raised when resources cannot be extracted from a manifest."""
    pass


class NoResourceSpecsError(ExtractionError):
    """Raised when a manifest declares no requests, limits or storage at all."""

    def __init__(self, message: str = "no resource specifications found"):
        super().__init__(message)


class UnsupportedWorkloadKindError(ExtractionError):
    """Raised for manifests whose kind is not a supported workload kind."""

    def __init__(self, kind: str):
        self.kind = kind
        super().__init__(f"unsupported workload kind: {kind or '<missing>'}")


@dataclass(frozen=True)
class ContainerResourceInfo:
    """Declared resources of one container in the pod template."""
    name: str
    cpu_requests: ResourceQuantity = field(default_factory=ResourceQuantity)
    cpu_limits: ResourceQuantity = field(default_factory=ResourceQuantity)
    memory_requests: ResourceQuantity = field(default_factory=ResourceQuantity)
    memory_limits: ResourceQuantity = field(default_factory=ResourceQuantity)
    has_requests: bool = False
    has_limits: bool = False

    @property
    def cpu(self) -> ResourceQuantity:
        """CPU counted for cost: requests if declared, else limits."""
        if self.has_requests:
            return self.cpu_requests
        return self.cpu_limits if self.has_limits else ResourceQuantity.zero()

    @property
    def memory(self) -> ResourceQuantity:
        """Memory counted for cost: requests if declared, else limits."""
        if self.has_requests:
            return self.memory_requests
        return self.memory_limits if self.has_limits else ResourceQuantity.zero()


@dataclass(frozen=True)
class ResourceSpecs:
    """Aggregated per-replica resources of a workload."""
    cpu: ResourceQuantity = field(default_factory=ResourceQuantity)
    memory: ResourceQuantity = field(default_factory=ResourceQuantity)
    storage: ResourceQuantity = field(default_factory=ResourceQuantity)
    replicas: int = 1
    containers: tuple[ContainerResourceInfo, ...] = ()

    def to_dict(self) -> dict:
        return {
            "cpu": str(self.cpu),
            "memory": str(self.memory),
            "storage": str(self.storage),
            "replicas": self.replicas,
            "containers": [c.name for c in self.containers],
        }


class ResourceExtractor:
    """
    Extract resource specifications from workload manifests.

    DaemonSets have no replica field; their pod count is the number of
    nodes they land on, which is assumed here.
    """

    DEFAULT_REPLICAS = 1
    DEFAULT_DAEMONSET_NODES = 3

    def __init__(self, daemonset_nodes: int = DEFAULT_DAEMONSET_NODES):
        """
        Initialize the extractor.

        Args:
            daemonset_nodes: Assumed node count used as a DaemonSet's replicas.
        """
        self.daemonset_nodes = daemonset_nodes

    def extract_unit(self, unit: ConfigUnit) -> ResourceSpecs:
        """Extract resources from a config unit's manifest."""
        return self.extract(unit.manifest)

    def extract(self, manifest: dict) -> ResourceSpecs:
        """
        Extract aggregated resources from a workload manifest.

        Args:
            manifest: Parsed manifest tree.

        Returns:
            ResourceSpecs with per-replica CPU, memory, storage and replicas.

        Raises:
            UnsupportedWorkloadKindError: If the kind is not supported.
            NoResourceSpecsError: If no container declares requests or limits
                and no storage is requested.
        """
        kind = get_str(manifest, "kind")
        if kind not in SUPPORTED_WORKLOAD_KINDS:
            raise UnsupportedWorkloadKindError(kind)

        replicas = self._extract_replicas(manifest, kind)
        containers = self._extract_containers(manifest)
        storage = self._extract_storage(manifest) if kind == WorkloadKind.STATEFULSET.value else ResourceQuantity.zero()

        declared = any(c.has_requests or c.has_limits for c in containers)
        if not declared and storage.is_zero:
            raise NoResourceSpecsError()

        specs = ResourceSpecs(
            cpu=sum_quantities(c.cpu for c in containers),
            memory=sum_quantities(c.memory for c in containers),
            storage=storage,
            replicas=replicas,
            containers=tuple(containers),
        )
        logger.debug(
            f"Extracted {kind} resources: cpu={specs.cpu} memory={specs.memory} "
            f"storage={specs.storage} replicas={specs.replicas}"
        )
        return specs

    def _extract_replicas(self, manifest: dict, kind: str) -> int:
        """Read the replica count, falling back to the default."""
        if kind == WorkloadKind.DAEMONSET.value:
            return self.daemonset_nodes

        value = get_path(manifest, "spec", "replicas")
        if isinstance(value, bool):
            return self.DEFAULT_REPLICAS
        if isinstance(value, int):
            return value
        if isinstance(value, float) and value.is_integer():
            return int(value)
        return self.DEFAULT_REPLICAS

    def _extract_containers(self, manifest: dict) -> list[ContainerResourceInfo]:
        """Read per-container requests and limits from the pod template."""
        infos = []
        for index, container in enumerate(get_containers(manifest)):
            name = container.get("name")
            if not isinstance(name, str) or not name:
                name = f"container-{index}"

            requests = get_mapping(container, "resources", "requests")
            limits = get_mapping(container, "resources", "limits")

            infos.append(ContainerResourceInfo(
                name=name,
                cpu_requests=_quantity(requests, "cpu"),
                cpu_limits=_quantity(limits, "cpu"),
                memory_requests=_byte_quantity(requests, "memory"),
                memory_limits=_byte_quantity(limits, "memory"),
                has_requests=requests is not None,
                has_limits=limits is not None,
            ))
        return infos

    def _extract_storage(self, manifest: dict) -> ResourceQuantity:
        """Sum storage requested by volume claim templates."""
        templates = get_sequence(manifest, "spec", "volumeClaimTemplates") or []
        storage = ResourceQuantity.zero()
        for template in templates:
            requests = get_mapping(template, "spec", "resources", "requests")
            storage = storage.add(_byte_quantity(requests, "storage"))
        return storage


def _quantity(section: Optional[dict], key: str) -> ResourceQuantity:
    value: Any = section.get(key) if section else None
    return ResourceQuantity.parse(value) if value is not None else ResourceQuantity.zero()


def _byte_quantity(section: Optional[dict], key: str) -> ResourceQuantity:
    value: Any = section.get(key) if section else None
    return ResourceQuantity.parse_bytes(value) if value is not None else ResourceQuantity.zero()
