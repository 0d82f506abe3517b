"""CPU and I/O scheduling hints read from the process environment."""

import os
from collections.abc import Mapping
from typing import Optional

from hikae.core.models import IONiceSettings, NiceSettings
from hikae.errors import HikaeError

NICE_ADJUSTMENT = "NICE_ADJUSTMENT"
IONICE_CLASS = "IONICE_CLASS"
IONICE_CLASS_DATA = "IONICE_CLASS_DATA"


class PriorityEnvError(HikaeError):
    """Raised for malformed nice/ionice environment values."""


def _int_from_env(
    env: Mapping[str, str], key: str, low: int, high: int
) -> Optional[int]:
    raw = env.get(key, "").strip()
    if not raw:
        return None
    try:
        value = int(raw)
    except ValueError:
        raise PriorityEnvError(f"{key}={raw!r} is not an integer") from None
    if not low <= value <= high:
        raise PriorityEnvError(f"{key}={value} out of range [{low}, {high}]")
    return value


def nice_settings_from_env(env: Optional[Mapping[str, str]] = None) -> Optional[NiceSettings]:
    """Return nice settings from ``NICE_ADJUSTMENT``, or None when unset."""
    env = os.environ if env is None else env
    adjustment = _int_from_env(env, NICE_ADJUSTMENT, -20, 19)
    if adjustment is None:
        return None
    return NiceSettings(adjustment=adjustment)


def ionice_settings_from_env(
    env: Optional[Mapping[str, str]] = None,
) -> Optional[IONiceSettings]:
    """Return ionice settings from ``IONICE_CLASS``/``IONICE_CLASS_DATA``, or None."""
    env = os.environ if env is None else env
    io_class = _int_from_env(env, IONICE_CLASS, 0, 3)
    class_data = _int_from_env(env, IONICE_CLASS_DATA, 0, 7)
    if io_class is None and class_data is None:
        return None
    return IONiceSettings(io_class=io_class, class_data=class_data)
