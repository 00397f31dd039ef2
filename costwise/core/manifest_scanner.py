"""
Kubernetes manifest scanner for costwise.

Loads workload manifests from YAML files, directories, inline content or
base64-encoded unit data and wraps every Deployment, StatefulSet and
DaemonSet document in a ConfigUnit for cost, waste and optimization
analysis. Other kinds are ignored.
"""

import base64
import binascii
import logging
from pathlib import Path
from typing import Optional

import yaml

from costwise.core.manifest import ConfigUnit, get_str
from costwise.core.resource_extractor import SUPPORTED_WORKLOAD_KINDS

logger = logging.getLogger(__name__)


class ManifestScanError(Exception):
    """Exception raised when manifest scanning fails."""
    pass


class ManifestScanner:
    """
    Scan Kubernetes YAML manifests into config units.

    Files that fail to parse are logged and skipped so one broken file does
    not hide the workloads in the others.
    """

    def __init__(self, space_id: str = ""):
        """
        Initialize the scanner.

        Args:
            space_id: Space assigned to the scanned units. When empty, each
                unit's namespace is used.
        """
        self.space_id = space_id

    def scan_directory(self, manifest_path: str) -> list[ConfigUnit]:
        """
        Scan a directory (or a single file) for workload manifests.

        Args:
            manifest_path: Path to a directory of YAML files, or to one file.

        Returns:
            List of ConfigUnits for all supported workloads found.

        Raises:
            ManifestScanError: If the path is invalid.
        """
        path = Path(manifest_path)

        if not path.exists():
            raise ManifestScanError(f"Path does not exist: {manifest_path}")

        if path.is_file():
            if not self._is_yaml_file(path):
                raise ManifestScanError(f"Not a YAML file: {manifest_path}")
            yaml_files = [path]
        elif path.is_dir():
            yaml_files = self._find_yaml_files(path)
        else:
            raise ManifestScanError(f"Invalid path type: {manifest_path}")

        if not yaml_files:
            logger.warning(f"No YAML files found in: {manifest_path}")
            return []

        units: list[ConfigUnit] = []
        for yaml_file in yaml_files:
            try:
                documents = self._load_yaml_file(yaml_file)
            except (OSError, yaml.YAMLError) as e:
                logger.error(f"Failed to parse {yaml_file}: {e}")
                continue
            units.extend(self._to_units(documents, str(yaml_file)))

        logger.info(f"Scanned {len(yaml_files)} files, found {len(units)} workloads")
        return units

    def scan_manifest_content(self, content: str, source_path: str = "<inline>") -> list[ConfigUnit]:
        """
        Scan YAML content directly.

        Args:
            content: YAML content, possibly holding several documents.
            source_path: Source reference recorded on the units.

        Returns:
            List of ConfigUnits.

        Raises:
            ManifestScanError: If the content is not valid YAML.
        """
        try:
            documents = list(yaml.safe_load_all(content))
        except yaml.YAMLError as e:
            raise ManifestScanError(f"Failed to parse YAML content: {e}")

        return self._to_units(documents, source_path)

    def load_unit_data(self, data: str, slug: str = "", unit_id: Optional[str] = None) -> Optional[ConfigUnit]:
        """
        Build a unit from stored unit data.

        Configuration backends may hand out manifests base64-encoded; data
        that decodes cleanly is decoded first, anything else is read as
        plain YAML.

        Args:
            data: Plain or base64-encoded YAML of a single manifest.
            slug: Slug for the unit; defaults to the manifest name.
            unit_id: Identifier for the unit; derived when omitted.

        Returns:
            The unit, or None if the data is not a Kubernetes manifest.

        Raises:
            ManifestScanError: If the data is not valid YAML.
        """
        text = _maybe_decode_base64(data)
        try:
            document = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ManifestScanError(f"Failed to parse unit data: {e}")

        if not isinstance(document, dict) or "apiVersion" not in document:
            logger.debug(f"Unit data for '{slug}' is not a Kubernetes manifest")
            return None

        unit = ConfigUnit.from_manifest(document, space_id=self.space_id)
        if slug:
            unit.slug = slug
            unit.display_name = slug
        if unit_id:
            unit.unit_id = unit_id
        return unit

    def _to_units(self, documents: list, source_path: str) -> list[ConfigUnit]:
        units = []
        for document in documents:
            if not isinstance(document, dict):
                continue
            kind = get_str(document, "kind")
            if kind not in SUPPORTED_WORKLOAD_KINDS:
                continue
            if not get_str(document, "metadata", "name"):
                logger.warning(f"{kind} in {source_path} missing name in metadata")
                continue
            units.append(ConfigUnit.from_manifest(document, space_id=self.space_id, source_path=source_path))
        return units

    def _is_yaml_file(self, path: Path) -> bool:
        """Check if a path is a YAML file."""
        return path.suffix.lower() in {".yaml", ".yml"}

    def _find_yaml_files(self, directory: Path) -> list[Path]:
        """Find all YAML files in a directory (non-recursive)."""
        return sorted(
            item for item in directory.iterdir()
            if item.is_file() and self._is_yaml_file(item)
        )

    def _load_yaml_file(self, path: Path) -> list:
        """Load all YAML documents from a file."""
        with open(path, "r") as f:
            documents = list(yaml.safe_load_all(f))
        return [doc for doc in documents if doc is not None]


def _maybe_decode_base64(data: str) -> str:
    """Decode base64 text, returning the input unchanged if it is not base64."""
    stripped = "".join(data.split())
    if not stripped:
        return data
    try:
        return base64.b64decode(stripped, validate=True).decode("utf-8")
    except (binascii.Error, UnicodeDecodeError):
        return data


def scan_manifests(manifest_path: str, space_id: str = "") -> list[ConfigUnit]:
    """
    Convenience function to scan manifests.

    Args:
        manifest_path: Path to manifest directory or file.
        space_id: Space assigned to the units.

    Returns:
        List of ConfigUnits.
    """
    return ManifestScanner(space_id=space_id).scan_directory(manifest_path)
