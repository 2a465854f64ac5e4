"""
Configuration module for OpsGuard.

Provides dataclass-based configuration with:
- YAML file loading
- Environment variable interpolation and overrides
- Validation reported as usage errors
"""

from opsguard_core.config.base_config import (
    CONFIG_ENV_VAR,
    BaseConfig,
    CleanupConfig,
    DeadlineConfig,
    LockConfig,
    OpsGuardConfig,
    RetryConfig,
    get_config,
    load_config,
    reset_config,
)

__all__ = [
    "CONFIG_ENV_VAR",
    "BaseConfig",
    "CleanupConfig",
    "DeadlineConfig",
    "LockConfig",
    "OpsGuardConfig",
    "RetryConfig",
    "get_config",
    "load_config",
    "reset_config",
]
