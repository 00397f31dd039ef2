"""
Shared pytest fixtures for costwise tests.
"""

import copy
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

from costwise.config import TestConfig
from costwise.core.cost_engine import CostEstimator
from costwise.core.manifest import ConfigUnit
from costwise.core.optimizer import OptimizationEngine
from costwise.core.schemas import ActualUsageMetrics
from costwise.core.waste_detector import WasteDetector


FIXTURES_DIR = Path(__file__).parent / "fixtures" / "manifests"

NOW = datetime(2025, 1, 15, 12, 0, 0, tzinfo=timezone.utc)


def make_deployment(
    name="checkout",
    namespace="shop",
    replicas=5,
    containers=None,
    kind="Deployment",
):
    """Build a workload manifest tree."""
    if containers is None:
        containers = [
            {
                "name": "app",
                "image": "checkout:1.0",
                "resources": {
                    "requests": {"cpu": "2000m", "memory": "4Gi"},
                    "limits": {"cpu": "4000m", "memory": "8Gi"},
                },
            }
        ]
    manifest = {
        "apiVersion": "apps/v1",
        "kind": kind,
        "metadata": {"name": name, "namespace": namespace, "labels": {"app": name}},
        "spec": {
            "selector": {"matchLabels": {"app": name}},
            "template": {
                "metadata": {"labels": {"app": name}},
                "spec": {"containers": copy.deepcopy(containers)},
            },
        },
    }
    if replicas is not None:
        manifest["spec"]["replicas"] = replicas
    return manifest


@pytest.fixture
def test_config():
    """Configuration with built-in defaults."""
    return TestConfig()


@pytest.fixture
def estimator():
    """Cost estimator with default pricing."""
    return CostEstimator()


@pytest.fixture
def detector():
    """Waste detector with default thresholds."""
    return WasteDetector()


@pytest.fixture
def engine(estimator):
    """Optimization engine with default safety bounds."""
    return OptimizationEngine(estimator=estimator)


@pytest.fixture
def deployment_manifest():
    """Five replica Deployment requesting 2 cores and 4Gi per replica."""
    return make_deployment()


@pytest.fixture
def deployment_unit(deployment_manifest):
    """Config unit wrapping the Deployment manifest."""
    return ConfigUnit.from_manifest(deployment_manifest, space_id="shop")


@pytest.fixture
def fresh_usage():
    """A week of usage ending an hour before NOW."""
    return ActualUsageMetrics(
        unit_name="checkout",
        time_range_start=NOW - timedelta(days=7, hours=1),
        time_range_end=NOW - timedelta(hours=1),
        cpu_utilization_percent=20.0,
        memory_utilization_percent=35.0,
        cpu_cores_used=0.5,
        memory_bytes_used=2 * 1024**3,
        actual_monthly_cost=150.0,
        average_replicas=3.0,
        cpu_peak_percent=40.0,
        memory_peak_percent=60.0,
    )


@pytest.fixture
def now():
    """Fixed reference time for analyses."""
    return NOW


@pytest.fixture
def manifest_factory():
    """Factory building workload manifests."""
    return make_deployment


@pytest.fixture
def fixtures_dir():
    """Directory holding the sample manifests."""
    return FIXTURES_DIR
