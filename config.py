import os
import logging
import sys
from dataclasses import dataclass, fields, replace
from typing import Optional, Dict, Any

import yaml


# =============================================================================
# Logging Configuration
# =============================================================================
LOG_LEVEL: str = os.getenv("LOG_LEVEL", "INFO").upper()
LOG_FORMAT: str = os.getenv(
    "LOG_FORMAT",
    "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
)


def setup_logging(debug: bool = False):
    """Configure application-wide logging"""
    level = logging.DEBUG if debug else getattr(logging, LOG_LEVEL, logging.INFO)
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        handlers=[logging.StreamHandler(sys.stdout)],
        force=True,
    )
    # Reduce noise from third-party libraries
    logging.getLogger("urllib3").setLevel(logging.WARNING)
    logging.getLogger("kubernetes").setLevel(logging.WARNING)
    logging.getLogger("werkzeug").setLevel(logging.WARNING)


_TRUE_STRINGS = ("1", "true", "yes", "on")
_FALSE_STRINGS = ("0", "false", "no", "off", "")


def _env_bool(name: str, default: bool) -> bool:
    v = os.getenv(name)
    if v is None:
        return default
    return v.lower() in _TRUE_STRINGS


def _env_int(name: str, default: Optional[int]) -> Optional[int]:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return int(v)
    except ValueError:
        raise ConfigValidationError(f"{name} must be an integer, got '{v}'")


def _env_float(name: str, default: Optional[float]) -> Optional[float]:
    v = os.getenv(name)
    if v is None or v == "":
        return default
    try:
        return float(v)
    except ValueError:
        raise ConfigValidationError(f"{name} must be a number, got '{v}'")


# =============================================================================
# Controller Settings
# =============================================================================
# Nodes younger than this are never evaluated (seconds)
NEW_NODE_GRACE_SECONDS: int = 5 * 60

# Integer environment variables -> settings field
_ENV_INT_KEYS: Dict[str, str] = {
    "UNNEEDED_TIME_SECONDS": "unused_age_seconds",
    "EVALUATION_PERIOD_SECONDS": "evaluation_period_seconds",
    "ERROR_BACKOFF_SECONDS": "error_backoff_seconds",
    "CORDON_BACKOFF_SECONDS": "cordon_backoff_seconds",
    "MIN_NODES": "min_nodes",
    "STATUS_PORT": "status_port",
    "KUBE_TIMEOUT_SECONDS": "request_timeout_seconds",
}


@dataclass(frozen=True)
class Settings:
    """Runtime settings for the quarantine controller"""
    label_selector: str = ""
    utilization_threshold: float = 0.5
    unused_age_seconds: int = 600
    evaluation_period_seconds: int = 30
    error_backoff_seconds: int = 300
    cordon_backoff_seconds: int = 120
    min_nodes: int = 5
    dry_run: bool = False
    kubeconfig: Optional[str] = None
    status_port: int = 8080
    request_timeout_seconds: int = 30

    def summary(self) -> Dict[str, Any]:
        return {f.name: getattr(self, f.name) for f in fields(self)}


def _coerce_bool(name: str, value: Any) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str) and value.lower() in _TRUE_STRINGS + _FALSE_STRINGS:
        return value.lower() in _TRUE_STRINGS
    raise ConfigValidationError(f"{name} must be a boolean, got '{value}'")


def load_config_file(config_path: str) -> Dict[str, Any]:
    """Load YAML settings file. Unknown keys are rejected."""
    with open(config_path, 'r') as f:
        try:
            data = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigValidationError(f"Invalid YAML configuration in {config_path}: {e}")
    if not isinstance(data, dict):
        raise ConfigValidationError(f"{config_path} must contain a mapping, got {type(data).__name__}")
    types = {f.name: f.type for f in fields(Settings)}
    unknown = sorted(set(data) - set(types))
    if unknown:
        raise ConfigValidationError(f"Unknown settings in {config_path}: {', '.join(unknown)}")
    loaded: Dict[str, Any] = {}
    for key, value in data.items():
        # YAML may hand back ints for float fields and strings for anything
        if value is None:
            pass
        elif types[key] in (bool, "bool"):
            value = _coerce_bool(key, value)
        elif types[key] in (str, "str", Optional[str], "Optional[str]"):
            if not isinstance(value, (str, int, float)) or isinstance(value, bool):
                raise ConfigValidationError(f"{key} must be a string, got '{value}'")
            value = str(value)
        elif types[key] in (int, "int"):
            try:
                value = int(value)
            except (TypeError, ValueError):
                raise ConfigValidationError(f"{key} must be an integer, got '{value}'")
        elif types[key] in (float, "float"):
            try:
                value = float(value)
            except (TypeError, ValueError):
                raise ConfigValidationError(f"{key} must be a number, got '{value}'")
        loaded[key] = value
    return loaded


def _load_env_overrides() -> Dict[str, Any]:
    overrides: Dict[str, Any] = {}
    if os.getenv("NODE_LABELS") is not None:
        overrides["label_selector"] = os.getenv("NODE_LABELS")
    threshold = _env_float("UTILIZATION_THRESHOLD", None)
    if threshold is not None:
        overrides["utilization_threshold"] = threshold
    for env_name, field_name in _ENV_INT_KEYS.items():
        value = _env_int(env_name, None)
        if value is not None:
            overrides[field_name] = value
    if os.getenv("DRY_RUN") is not None:
        overrides["dry_run"] = _env_bool("DRY_RUN", False)
    if os.getenv("KUBECONFIG"):
        overrides["kubeconfig"] = os.getenv("KUBECONFIG")
    return overrides


def build_settings(config_path: Optional[str] = None,
                   overrides: Optional[Dict[str, Any]] = None) -> Settings:
    """Build settings: defaults < YAML file < environment < explicit overrides (CLI)

    Overrides whose value is None are ignored so unset CLI flags fall through.
    """
    settings = Settings()
    config_path = config_path or os.getenv("QUARANTINE_CONFIG")
    if config_path:
        settings = replace(settings, **load_config_file(config_path))
    settings = replace(settings, **_load_env_overrides())
    if overrides:
        settings = replace(settings, **{k: v for k, v in overrides.items() if v is not None})
    return settings


__all__ = [
    "LOG_LEVEL",
    "LOG_FORMAT",
    "setup_logging",
    "NEW_NODE_GRACE_SECONDS",
    "Settings",
    "load_config_file",
    "build_settings",
    "validate_settings",
    "ConfigValidationError",
    "QuarantineError",
]


# =============================================================================
# Configuration Validation
# =============================================================================
class QuarantineError(Exception):
    """Base class for controller errors"""
    pass


class ConfigValidationError(QuarantineError):
    """Raised when configuration validation fails"""
    pass


def _validate_positive_int(name: str, value: int) -> None:
    if value <= 0:
        raise ConfigValidationError(f"{name} must be positive, got {value}")


def _validate_threshold(value: float) -> None:
    if not (0 < value <= 1):
        raise ConfigValidationError(
            f"utilization_threshold must be in (0, 1], got {value}"
        )


def _validate_port(value: int) -> None:
    if not (0 <= value <= 65535):
        raise ConfigValidationError(f"status_port must be between 0 and 65535, got {value}")


def validate_settings(settings: Settings) -> None:
    """Validate all settings values on startup

    Raises:
        ConfigValidationError: If any configuration value is invalid
    """
    errors = []

    try:
        _validate_threshold(settings.utilization_threshold)
    except ConfigValidationError as e:
        errors.append(str(e))

    for name in ("unused_age_seconds", "evaluation_period_seconds",
                 "error_backoff_seconds", "cordon_backoff_seconds",
                 "request_timeout_seconds"):
        try:
            _validate_positive_int(name, getattr(settings, name))
        except ConfigValidationError as e:
            errors.append(str(e))

    if settings.min_nodes < 0:
        errors.append(f"min_nodes must not be negative, got {settings.min_nodes}")

    try:
        _validate_port(settings.status_port)
    except ConfigValidationError as e:
        errors.append(str(e))

    # KUBECONFIG may list several files separated by os.pathsep
    if settings.kubeconfig:
        paths = [p for p in settings.kubeconfig.split(os.pathsep) if p]
        if not any(os.path.exists(p) for p in paths):
            errors.append(f"kubeconfig file not found: {settings.kubeconfig}")

    if errors:
        raise ConfigValidationError(
            "Configuration validation failed:\n  - " + "\n  - ".join(errors)
        )
