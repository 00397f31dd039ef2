"""
Configuration module for costwise.

Implements a Config class pattern with environment-based settings.
All configuration is read from environment variables following twelve-factor app principles.
Config objects build the immutable pricing, safety and threshold values the
engine components take, so components never read the environment themselves.
"""

import os

from costwise.core.cost_engine import PricingModel
from costwise.core.optimizer import RiskThresholds, SafetyConfiguration
from costwise.core.waste_detector import WasteThresholds


class BaseConfig:
    """Base configuration with defaults for all environments."""

    DEBUG: bool = False
    TESTING: bool = False

    # Pricing (USD)
    CPU_HOURLY: float = float(os.environ.get("COSTWISE_CPU_HOURLY", "0.024"))
    MEMORY_HOURLY: float = float(os.environ.get("COSTWISE_MEMORY_HOURLY", "0.006"))
    STORAGE_MONTHLY: float = float(os.environ.get("COSTWISE_STORAGE_MONTHLY", "0.10"))

    # Resource extraction
    DAEMONSET_NODES: int = int(os.environ.get("COSTWISE_DAEMONSET_NODES", "3"))

    # Waste detection
    MIN_MONTHLY_COST: float = float(os.environ.get("COSTWISE_MIN_MONTHLY_COST", "1.0"))

    # Optimization safety
    CPU_SAFETY_MARGIN: float = float(os.environ.get("COSTWISE_CPU_SAFETY_MARGIN", "0.20"))
    MEMORY_SAFETY_MARGIN: float = float(os.environ.get("COSTWISE_MEMORY_SAFETY_MARGIN", "0.15"))
    MIN_CPU_CORES: float = float(os.environ.get("COSTWISE_MIN_CPU_CORES", "0.1"))
    MIN_MEMORY_GB: float = float(os.environ.get("COSTWISE_MIN_MEMORY_GB", "0.125"))
    MIN_REPLICAS: int = int(os.environ.get("COSTWISE_MIN_REPLICAS", "1"))
    MAX_REPLICA_REDUCTION: float = float(os.environ.get("COSTWISE_MAX_REPLICA_REDUCTION", "0.5"))

    # Logging
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "INFO")
    LOG_FORMAT: str = os.environ.get("LOG_FORMAT", "json")  # 'json' or 'text'

    def pricing_model(self) -> PricingModel:
        """Build the pricing model from this configuration."""
        return PricingModel(
            cpu_hourly=self.CPU_HOURLY,
            memory_hourly=self.MEMORY_HOURLY,
            storage_monthly=self.STORAGE_MONTHLY,
        )

    def safety_configuration(self) -> SafetyConfiguration:
        """Build the optimizer safety configuration from this configuration."""
        return SafetyConfiguration(
            cpu_safety_margin=self.CPU_SAFETY_MARGIN,
            memory_safety_margin=self.MEMORY_SAFETY_MARGIN,
            min_cpu_cores=self.MIN_CPU_CORES,
            min_memory_gb=self.MIN_MEMORY_GB,
            min_replicas=self.MIN_REPLICAS,
            max_replica_reduction=self.MAX_REPLICA_REDUCTION,
            risk_thresholds=RiskThresholds(),
        )

    def waste_thresholds(self) -> WasteThresholds:
        """Build the waste detection thresholds from this configuration."""
        return WasteThresholds(min_monthly_cost_for_analysis=self.MIN_MONTHLY_COST)


class DevConfig(BaseConfig):
    """Development configuration."""

    DEBUG: bool = True
    LOG_LEVEL: str = os.environ.get("LOG_LEVEL", "DEBUG")
    LOG_FORMAT: str = "text"


class TestConfig(BaseConfig):
    """Testing configuration with the built-in defaults, ignoring the environment."""

    TESTING: bool = True
    DEBUG: bool = True

    CPU_HOURLY: float = 0.024
    MEMORY_HOURLY: float = 0.006
    STORAGE_MONTHLY: float = 0.10
    DAEMONSET_NODES: int = 3
    MIN_MONTHLY_COST: float = 1.0
    CPU_SAFETY_MARGIN: float = 0.20
    MEMORY_SAFETY_MARGIN: float = 0.15
    MIN_CPU_CORES: float = 0.1
    MIN_MEMORY_GB: float = 0.125
    MIN_REPLICAS: int = 1
    MAX_REPLICA_REDUCTION: float = 0.5
    LOG_FORMAT: str = "text"


class ProdConfig(BaseConfig):
    """Production configuration."""

    DEBUG: bool = False

    @classmethod
    def validate(cls) -> None:
        """Validate production configuration."""
        for name in ("CPU_HOURLY", "MEMORY_HOURLY", "STORAGE_MONTHLY"):
            if getattr(cls, name) < 0:
                raise ValueError(f"{name} must not be negative in production")
        if cls.MIN_REPLICAS < 1:
            raise ValueError("MIN_REPLICAS must be at least 1 in production")
        if not 0 < cls.MAX_REPLICA_REDUCTION <= 1:
            raise ValueError("MAX_REPLICA_REDUCTION must be in (0, 1]")
        if cls.LOG_FORMAT not in ("json", "text"):
            raise ValueError("LOG_FORMAT must be 'json' or 'text'")


# Configuration mapping
config_by_name: dict[str, type[BaseConfig]] = {
    "development": DevConfig,
    "dev": DevConfig,
    "testing": TestConfig,
    "test": TestConfig,
    "production": ProdConfig,
    "prod": ProdConfig,
}


def get_config() -> BaseConfig:
    """Get configuration based on COSTWISE_ENV environment variable."""
    env = os.environ.get("COSTWISE_ENV", "development").lower()
    config_class = config_by_name.get(env, DevConfig)

    if config_class == ProdConfig:
        ProdConfig.validate()

    return config_class()
