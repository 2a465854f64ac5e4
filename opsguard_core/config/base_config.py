"""
Base configuration system for OpsGuard.

Features:
- Dataclass-based configuration with type hints
- YAML file loading with environment variable interpolation
- OPSGUARD_* environment variable overrides
- Validation that reports problems as usage errors
- Thread-safe cached singleton

Precedence (lowest to highest): dataclass defaults, YAML file,
environment variables, explicit CLI flags.
"""

from __future__ import annotations

import logging
import os
import re
import threading
import typing
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List, Optional, Type, TypeVar, Union

from opsguard_core.core.error_handling import UsageError
from opsguard_core.utils.process import resolve_signal

logger = logging.getLogger(__name__)

T = TypeVar("T", bound="BaseConfig")

CONFIG_ENV_VAR = "OPSGUARD_CONFIG"

_config_instance: Optional["OpsGuardConfig"] = None
_config_thread_lock = threading.Lock()


# ============================================================================
# VALUE HANDLING
# ============================================================================

def _interpolate_env_vars(value: Any) -> Any:
    """
    Recursively interpolate environment variables in config values.

    Supports formats:
    - ${VAR_NAME} - Required, raises if not set
    - ${VAR_NAME:-default} - Optional with default
    - ${VAR_NAME:?error message} - Required with custom error
    """
    if isinstance(value, str):
        pattern = r"\$\{([A-Z_][A-Z0-9_]*)(?:(:-)([^}]*))?(?:(:\?)([^}]*))?\}"

        def replace_var(match: re.Match) -> str:
            var_name = match.group(1)
            has_default = match.group(2) is not None
            default_value = match.group(3) or ""
            has_error = match.group(4) is not None
            error_msg = match.group(5) or f"Required environment variable {var_name} is not set"

            env_value = os.environ.get(var_name)

            if env_value is not None:
                return env_value
            elif has_default:
                return default_value
            elif has_error:
                raise UsageError(error_msg)
            elif match.group(0) == value:
                raise UsageError(f"Environment variable {var_name} is not set")
            return match.group(0)

        result = re.sub(pattern, replace_var, value)

        if result.startswith("~"):
            result = str(Path(result).expanduser())

        return result

    elif isinstance(value, dict):
        return {k: _interpolate_env_vars(v) for k, v in value.items()}

    elif isinstance(value, list):
        return [_interpolate_env_vars(item) for item in value]

    return value


def _coerce_type(value: Any, target_type: Any) -> Any:
    """Coerce a value to the target type."""
    if value is None:
        return None

    origin = typing.get_origin(target_type)

    # Optional[X]
    if origin is Union:
        non_none_types = [t for t in typing.get_args(target_type) if t is not type(None)]
        if len(non_none_types) == 1:
            return _coerce_type(value, non_none_types[0])
        return value

    if target_type is Path:
        return Path(value).expanduser() if value else None

    if origin is list:
        args = typing.get_args(target_type)
        item_type = args[0] if args else str
        if isinstance(value, str):
            value = [item.strip() for item in value.split(",") if item.strip()]
        elif not isinstance(value, (list, tuple)):
            value = [value]
        return [_coerce_type(item, item_type) for item in value]

    # bool("false") is True
    if target_type is bool:
        if isinstance(value, bool):
            return value
        if isinstance(value, str):
            return value.strip().lower() in ("true", "1", "yes", "on")
        return bool(value)

    if target_type is int:
        return int(float(value)) if value != "" else 0
    if target_type is float:
        return float(value) if value != "" else 0.0
    if target_type is str:
        return str(value)

    return value


# ============================================================================
# BASE CONFIG
# ============================================================================

@dataclass
class BaseConfig:
    """
    Base configuration class with YAML loading and env var interpolation.
    """

    ENV_PREFIX = "OPSGUARD_"

    @classmethod
    def from_dict(cls: Type[T], data: Dict[str, Any]) -> T:
        """Create config from dictionary with env var interpolation."""
        interpolated = _interpolate_env_vars(data or {})
        field_types = typing.get_type_hints(cls)

        filtered = {}
        for key, value in interpolated.items():
            key = key.replace("-", "_")
            if key not in cls.__dataclass_fields__:
                logger.debug(f"[Config] ignoring unknown key {key!r} for {cls.__name__}")
                continue
            try:
                filtered[key] = _coerce_type(value, field_types[key])
            except (TypeError, ValueError):
                raise UsageError(f"invalid value for {key}: {value!r}") from None

        return cls(**filtered)

    @classmethod
    def from_yaml(cls: Type[T], path: Union[str, Path]) -> T:
        """Load config from YAML file with env var interpolation."""
        return cls.from_dict(_read_yaml(path))

    @classmethod
    def from_env(cls: Type[T], prefix: Optional[str] = None) -> T:
        """Create config entirely from environment variables."""
        return cls.from_dict(cls.env_overrides(prefix))

    @classmethod
    def env_overrides(cls, prefix: Optional[str] = None) -> Dict[str, str]:
        prefix = cls.ENV_PREFIX if prefix is None else prefix
        data = {}
        for name in cls.__dataclass_fields__:
            env_value = os.environ.get(f"{prefix}{name}".upper())
            if env_value is not None:
                data[name] = env_value
        return data

    def to_dict(self) -> Dict[str, Any]:
        """Convert config to dictionary."""
        result = {}
        for key, value in asdict(self).items():
            result[key] = str(value) if isinstance(value, Path) else value
        return result

    def merge(self: T, other: Dict[str, Any]) -> T:
        """Create new config with overrides merged in; None values are skipped."""
        current = self.to_dict()
        current.update({k: v for k, v in (other or {}).items() if v is not None})
        return self.__class__.from_dict(current)

    def validate(self: T) -> T:
        return self


def _read_yaml(path: Union[str, Path]) -> Dict[str, Any]:
    import yaml

    path = Path(path)
    if not path.exists():
        raise UsageError(f"Config file not found: {path}")

    try:
        with open(path, "r") as f:
            data = yaml.safe_load(f) or {}
    except yaml.YAMLError as e:
        raise UsageError(f"Invalid config file {path}: {e}") from None

    if not isinstance(data, dict):
        raise UsageError(f"Config file {path} must contain a mapping")
    return data


def _require_non_negative(name: str, value: float) -> None:
    if value is None or value < 0:
        raise UsageError(f"--{name.replace('_', '-')} must be a non-negative number")


# ============================================================================
# COMPONENT CONFIGS
# ============================================================================

@dataclass
class LockConfig(BaseConfig):
    """Lock Manager settings."""

    ENV_PREFIX = "OPSGUARD_LOCK_"

    lock_file: Optional[Path] = None
    timeout: float = 0.0
    poll_interval: float = 0.2
    stale_after: float = 0.0
    quiet: bool = False

    def validate(self) -> "LockConfig":
        if not self.lock_file:
            raise UsageError("--lock-file is required")
        _require_non_negative("timeout", self.timeout)
        _require_non_negative("poll_interval", self.poll_interval)
        _require_non_negative("stale_after", self.stale_after)
        return self


@dataclass
class DeadlineConfig(BaseConfig):
    """Timeout Supervisor settings."""

    ENV_PREFIX = "OPSGUARD_DEADLINE_"

    timeout: Optional[float] = None
    signal: str = "TERM"
    grace: float = 5.0
    quiet: bool = False

    def validate(self) -> "DeadlineConfig":
        if self.timeout is None:
            raise UsageError("--timeout is required")
        if self.timeout <= 0:
            raise UsageError("--timeout must be > 0")
        _require_non_negative("grace", self.grace)
        resolve_signal(self.signal)
        return self


@dataclass
class CleanupConfig(BaseConfig):
    """Cleanup Coordinator settings."""

    ENV_PREFIX = "OPSGUARD_CLEANUP_"

    shell: str = "bash"
    verbose: bool = False

    def validate(self) -> "CleanupConfig":
        if not self.shell:
            raise UsageError("cleanup shell must not be empty")
        return self


@dataclass
class RetryConfig(BaseConfig):
    """Retry Runner settings."""

    ENV_PREFIX = "OPSGUARD_RETRY_"

    attempts: int = 3
    delay: float = 1.0
    backoff: float = 2.0
    max_delay: float = 0.0
    jitter: float = 0.0
    retry_on: List[int] = field(default_factory=list)
    quiet: bool = False

    def validate(self) -> "RetryConfig":
        if self.attempts < 1:
            raise UsageError("--attempts must be a positive integer")
        _require_non_negative("delay", self.delay)
        _require_non_negative("backoff", self.backoff)
        _require_non_negative("max_delay", self.max_delay)
        _require_non_negative("jitter", self.jitter)
        for code in self.retry_on:
            if not 1 <= code <= 255:
                raise UsageError(f"retry code must be in range 1..255: {code}")
        return self


@dataclass
class OpsGuardConfig:
    """Aggregate of every component section."""

    lock: LockConfig = field(default_factory=LockConfig)
    deadline: DeadlineConfig = field(default_factory=DeadlineConfig)
    cleanup: CleanupConfig = field(default_factory=CleanupConfig)
    retry: RetryConfig = field(default_factory=RetryConfig)
    source: Optional[Path] = None

    SECTIONS = {
        "lock": LockConfig,
        "deadline": DeadlineConfig,
        "cleanup": CleanupConfig,
        "retry": RetryConfig,
    }

    @classmethod
    def from_dict(cls, data: Dict[str, Any], apply_env: bool = True) -> "OpsGuardConfig":
        sections = {}
        for name, section_cls in cls.SECTIONS.items():
            section_data = dict(data.get(name) or {})
            if apply_env:
                section_data.update(section_cls.env_overrides())
            sections[name] = section_cls.from_dict(section_data)
        return cls(**sections)

    @classmethod
    def from_yaml(cls, path: Union[str, Path], apply_env: bool = True) -> "OpsGuardConfig":
        config = cls.from_dict(_read_yaml(path), apply_env=apply_env)
        config.source = Path(path)
        return config

    @classmethod
    def from_env(cls) -> "OpsGuardConfig":
        return cls.from_dict({})

    def to_dict(self) -> Dict[str, Any]:
        return {name: getattr(self, name).to_dict() for name in self.SECTIONS}


def load_config(
    path: Optional[Union[str, Path]] = None,
    reload: bool = False,
) -> OpsGuardConfig:
    """
    Load or get cached configuration.

    Args:
        path: YAML file. Falls back to $OPSGUARD_CONFIG, then to defaults.
        reload: Force reload even if cached.
    """
    global _config_instance

    if _config_instance is not None and not reload:
        return _config_instance

    with _config_thread_lock:
        if _config_instance is not None and not reload:
            return _config_instance

        path = path or os.environ.get(CONFIG_ENV_VAR)
        if path:
            _config_instance = OpsGuardConfig.from_yaml(path)
            logger.debug(f"[Config] loaded {path}")
        else:
            _config_instance = OpsGuardConfig.from_env()
            logger.debug("[Config] default configuration loaded")

    return _config_instance


def get_config() -> OpsGuardConfig:
    """Get cached config, loading defaults on first use."""
    return load_config()


def reset_config() -> None:
    global _config_instance
    with _config_thread_lock:
        _config_instance = None
