"""
Shared enums and input schemas for costwise.

This module defines:
- Enumerations shared by the cost, waste and optimization stages
- Validated input models for usage metrics supplied by a metrics collaborator
"""

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field, ConfigDict


# ============================================================================
# Enums
# ============================================================================

class WorkloadKind(str, Enum):
    """Kubernetes workload types supported by the engine."""
    DEPLOYMENT = "Deployment"
    STATEFULSET = "StatefulSet"
    DAEMONSET = "DaemonSet"


class Severity(str, Enum):
    """Three-level scale used for waste severity, priority and risk."""
    LOW = "LOW"
    MEDIUM = "MEDIUM"
    HIGH = "HIGH"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 0, Severity.MEDIUM: 1, Severity.HIGH: 2}


def max_severity(*levels: Severity) -> Severity:
    """Return the highest of the given levels (LOW when none given)."""
    return max(levels, key=lambda level: level.rank, default=Severity.LOW)


class DataQuality(str, Enum):
    """Trustworthiness of a usage metrics window."""
    EXCELLENT = "EXCELLENT"
    GOOD = "GOOD"
    FAIR = "FAIR"
    POOR = "POOR"


class DeploymentPhase(str, Enum):
    """Environment an optimized configuration should be rolled out to first."""
    DEV = "dev"
    STAGING = "staging"
    PROD = "prod"


class WasteCategoryType(str, Enum):
    """Kinds of waste the detector can flag."""
    IDLE = "idle"
    CPU_OVER_PROVISIONED = "cpu-over-provisioned"
    MEMORY_OVER_PROVISIONED = "memory-over-provisioned"
    OVER_REPLICATED = "over-replicated"
    POTENTIALLY_OVER_PROVISIONED = "potentially-over-provisioned"


class RecommendationType(str, Enum):
    """Actions the waste detector can recommend."""
    RESIZE_CPU = "resize-cpu"
    RESIZE_MEMORY = "resize-memory"
    SCALE_DOWN_REPLICAS = "scale-down-replicas"
    TERMINATE_IF_IDLE = "terminate-if-idle"


class OptimizationType(str, Enum):
    """Dimensions the optimization engine can change."""
    CPU = "cpu"
    MEMORY = "memory"
    REPLICAS = "replicas"


# ============================================================================
# Usage Metrics Schemas
# ============================================================================

class ActualUsageMetrics(BaseModel):
    """
    Observed usage for one workload over a time window.

    Produced by a metrics collaborator and consumed read-only by the
    waste detector. Percentages are 0-100 of the allocated amount.
    """
    model_config = ConfigDict(frozen=True)

    unit_id: str = ""
    unit_name: str = ""
    space: str = ""
    time_range_start: datetime
    time_range_end: datetime

    cpu_utilization_percent: float = Field(default=0.0, ge=0)
    memory_utilization_percent: float = Field(default=0.0, ge=0)
    cpu_cores_used: float = Field(default=0.0, ge=0)
    memory_bytes_used: float = Field(default=0.0, ge=0)
    network_bytes_total: float = Field(default=0.0, ge=0)
    storage_bytes_used: float = Field(default=0.0, ge=0)

    actual_monthly_cost: float = Field(default=0.0, ge=0)
    average_replicas: float = Field(default=0.0, ge=0)
    uptime_percent: float = Field(default=100.0, ge=0, le=100)

    cpu_peak_percent: float = Field(default=0.0, ge=0)
    memory_peak_percent: float = Field(default=0.0, ge=0)
