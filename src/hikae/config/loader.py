"""YAML configuration loading and backup parameter validation."""

from pathlib import Path
from typing import Any, Optional

import yaml

from hikae.core.models import (
    DEFAULT_HOST,
    DEFAULT_SCRATCH_DIR,
    BackupOptions,
    RetentionPolicy,
    SetupOptions,
)
from hikae.core.restic import (
    PROVIDER_AZURE,
    PROVIDER_B2,
    PROVIDER_GCS,
    PROVIDER_LOCAL,
    PROVIDER_REST,
    PROVIDER_S3,
    PROVIDER_SWIFT,
)
from hikae.errors import HikaeError

PROVIDERS = (
    PROVIDER_LOCAL,
    PROVIDER_S3,
    PROVIDER_GCS,
    PROVIDER_AZURE,
    PROVIDER_B2,
    PROVIDER_SWIFT,
    PROVIDER_REST,
)
REQUIRED_PARAMS = ("backup_paths", "provider", "secret_dir")
_SECTIONS = ("backup", "verify")
LIST_PARAMS = ("backup_paths", "exclude", "retention_keep_tags")
_INT_PARAMS = (
    "max_connections",
    "retention_keep_last",
    "retention_keep_hourly",
    "retention_keep_daily",
    "retention_keep_weekly",
    "retention_keep_monthly",
    "retention_keep_yearly",
)


class ConfigError(HikaeError):
    """Raised for invalid or missing configuration."""


def load_config(path: Path) -> Optional[dict[str, Any]]:
    """
    Load configuration from a YAML file.

    Args:
        path: Path to the YAML config file

    Returns:
        Parsed configuration dictionary, or None if file is empty

    Raises:
        FileNotFoundError: If config file doesn't exist
        yaml.YAMLError: If YAML is invalid
    """
    with open(path) as f:
        result: Optional[dict[str, Any]] = yaml.safe_load(f)
        return result


def normalize_section(section: dict[str, Any]) -> dict[str, Any]:
    """Map ``backup-paths`` style keys to the ``backup_paths`` parameter names."""
    return {str(k).replace("-", "_"): v for k, v in section.items()}


def validate_config(config: dict[str, Any]) -> list[str]:
    """
    Validate the structure of a loaded configuration file.

    Returns:
        List of validation error messages (empty list = valid)
    """
    if not isinstance(config, dict):
        return ["Config root must be a YAML mapping"]

    errors: list[str] = []
    for key in config:
        if key not in _SECTIONS:
            errors.append(f"unknown section '{key}' (expected one of: {', '.join(_SECTIONS)})")

    backup = config.get("backup")
    if backup is None:
        return errors
    if not isinstance(backup, dict):
        errors.append("'backup' must be a mapping")
        return errors

    backup = normalize_section(backup)
    for key in LIST_PARAMS:
        value = backup.get(key)
        if value is not None and not isinstance(value, (list, str)):
            errors.append(f"backup.{key}: must be a list or a comma-separated string")
    for key in _INT_PARAMS:
        value = backup.get(key)
        if value is not None and (not isinstance(value, int) or value < 0):
            errors.append(f"backup.{key}: must be a non-negative integer")
    provider = backup.get("provider")
    if provider and provider not in PROVIDERS:
        errors.append(f"backup.provider: unknown provider '{provider}'")
    return errors


def validate_backup_params(params: dict[str, Any]) -> list[str]:
    """
    Check the parameters a backup cannot start without.

    Returns:
        List of validation error messages (empty list = valid)
    """
    errors: list[str] = []
    for name in REQUIRED_PARAMS:
        if not params.get(name):
            errors.append(f"missing required parameter '--{name.replace('_', '-')}'")
    provider = params.get("provider")
    if provider and provider not in PROVIDERS:
        errors.append(
            f"unknown provider '{provider}' (expected one of: {', '.join(PROVIDERS)})"
        )
    return errors


def split_list(value: Any) -> list[str]:
    """Flatten repeated and comma-separated values into one list."""
    if not value:
        return []
    if isinstance(value, str):
        value = [value]
    items: list[str] = []
    for v in value:
        items.extend(part.strip() for part in str(v).split(",") if part.strip())
    return items


def setup_options_from_params(params: dict[str, Any]) -> SetupOptions:
    """
    Build SetupOptions from validated parameters.

    Raises:
        ConfigError: If required parameters are missing
    """
    errors = validate_backup_params(params)
    if errors:
        raise ConfigError("; ".join(errors))
    return SetupOptions(
        provider=params["provider"],
        secret_dir=params["secret_dir"],
        bucket=params.get("bucket") or "",
        endpoint=params.get("endpoint") or "",
        region=params.get("region") or "",
        path=params.get("path") or "",
        scratch_dir=params.get("scratch_dir") or DEFAULT_SCRATCH_DIR,
        enable_cache=bool(params.get("enable_cache", False)),
        max_connections=int(params.get("max_connections") or 0),
    )


def backup_options_from_params(params: dict[str, Any]) -> BackupOptions:
    """Build BackupOptions (including the retention policy) from parameters."""
    policy = RetentionPolicy(
        keep_last=int(params.get("retention_keep_last") or 0),
        keep_hourly=int(params.get("retention_keep_hourly") or 0),
        keep_daily=int(params.get("retention_keep_daily") or 0),
        keep_weekly=int(params.get("retention_keep_weekly") or 0),
        keep_monthly=int(params.get("retention_keep_monthly") or 0),
        keep_yearly=int(params.get("retention_keep_yearly") or 0),
        keep_tags=split_list(params.get("retention_keep_tags")),
        prune=bool(params.get("retention_prune", False)),
        dry_run=bool(params.get("retention_dry_run", False)),
    )
    return BackupOptions(
        host=params.get("hostname") or DEFAULT_HOST,
        backup_paths=split_list(params.get("backup_paths")),
        exclude=split_list(params.get("exclude")),
        retention_policy=policy,
    )
