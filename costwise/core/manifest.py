"""
Manifest tree helpers and the config unit model.

Manifests are handled as the generic tree a YAML loader produces
(dicts, lists and scalars). The navigation helpers here return ``None``
on any shape mismatch instead of raising, so callers can skip missing or
malformed sections without defensive type checks at every level.
"""

import copy
import logging
import uuid
from dataclasses import dataclass, field
from typing import Any, Optional

logger = logging.getLogger(__name__)


def get_path(node: Any, *keys: Any) -> Optional[Any]:
    """
    Walk a manifest tree by mapping keys and sequence indexes.

    Args:
        node: Root of the tree.
        *keys: String keys for mappings, integer indexes for sequences.

    Returns:
        The value at the path, or None if any step is missing or has the
        wrong shape.
    """
    current = node
    for key in keys:
        if isinstance(key, int) and not isinstance(key, bool):
            if not isinstance(current, list) or not -len(current) <= key < len(current):
                return None
            current = current[key]
        else:
            if not isinstance(current, dict) or key not in current:
                return None
            current = current[key]
    return current


def get_mapping(node: Any, *keys: Any) -> Optional[dict]:
    """Return the mapping at ``keys`` or None."""
    value = get_path(node, *keys)
    return value if isinstance(value, dict) else None


def get_sequence(node: Any, *keys: Any) -> Optional[list]:
    """Return the sequence at ``keys`` or None."""
    value = get_path(node, *keys)
    return value if isinstance(value, list) else None


def get_str(node: Any, *keys: Any, default: str = "") -> str:
    """Return the string at ``keys``, or ``default``."""
    value = get_path(node, *keys)
    return value if isinstance(value, str) else default


def ensure_mapping(parent: dict, key: str) -> dict:
    """Return ``parent[key]`` as a mapping, creating or replacing it if needed."""
    value = parent.get(key)
    if not isinstance(value, dict):
        value = {}
        parent[key] = value
    return value


def clone_manifest(manifest: dict) -> dict:
    """Return a structural copy of a manifest tree that shares nothing with it."""
    return copy.deepcopy(manifest)


def get_containers(manifest: Any) -> list[dict]:
    """Return the pod template containers that are mappings."""
    containers = get_sequence(manifest, "spec", "template", "spec", "containers") or []
    return [container for container in containers if isinstance(container, dict)]


@dataclass
class ConfigUnit:
    """
    A single named configuration object wrapping one workload manifest.

    ``upstream_unit_id`` links a derived unit (for example an optimized
    copy) back to the unit it was created from.
    """
    slug: str
    manifest: dict
    unit_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    space_id: str = ""
    display_name: str = ""
    labels: dict[str, str] = field(default_factory=dict)
    annotations: dict[str, str] = field(default_factory=dict)
    upstream_unit_id: Optional[str] = None
    source_path: Optional[str] = None

    def __post_init__(self):
        if not self.display_name:
            self.display_name = self.slug

    @property
    def kind(self) -> str:
        return get_str(self.manifest, "kind")

    @property
    def name(self) -> str:
        return get_str(self.manifest, "metadata", "name", default=self.slug)

    @property
    def namespace(self) -> str:
        return get_str(self.manifest, "metadata", "namespace", default="default")

    @classmethod
    def from_manifest(
        cls,
        manifest: dict,
        space_id: str = "",
        source_path: Optional[str] = None,
    ) -> "ConfigUnit":
        """
        Build a unit from a parsed manifest.

        The unit id is derived from kind, namespace and name so rescanning
        the same manifest yields the same id.
        """
        name = get_str(manifest, "metadata", "name")
        namespace = get_str(manifest, "metadata", "namespace", default="default")
        kind = get_str(manifest, "kind")
        labels = get_mapping(manifest, "metadata", "labels") or {}
        unit_id = str(uuid.uuid5(uuid.NAMESPACE_URL, f"{space_id}/{namespace}/{kind}/{name}"))
        return cls(
            slug=name,
            manifest=manifest,
            unit_id=unit_id,
            space_id=space_id or namespace,
            labels={str(k): str(v) for k, v in labels.items()},
            source_path=source_path,
        )


@dataclass(frozen=True)
class WorkloadError:
    """A failure recorded for one workload during a batch run."""
    unit_id: str
    slug: str
    stage: str
    message: str

    @classmethod
    def from_exception(cls, unit: ConfigUnit, stage: str, error: Exception) -> "WorkloadError":
        return cls(unit_id=unit.unit_id, slug=unit.slug, stage=stage, message=str(error))

    def to_dict(self) -> dict:
        return {
            "unit_id": self.unit_id,
            "slug": self.slug,
            "stage": self.stage,
            "message": self.message,
        }
