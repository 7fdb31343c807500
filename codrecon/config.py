"""
config.py — YAML configuration loading.

All tunables live in config.yaml. Each section is optional: the helpers
here fall back to the code defaults so a partial file (or no `alerts`
section at all) still produces a complete set of parameters.
"""

import logging
import math
from dataclasses import fields
from pathlib import Path
from typing import Any

import yaml

from codrecon.models import Thresholds, WindowKind

logger = logging.getLogger(__name__)

# Receipt statuses that count as money actually paid out, per source.
# PostEx reports numeric cash-payment-receipt status ids.
DEFAULT_ACCEPTED_STATUSES: dict[str, tuple[Any, ...]] = {
    "postex": (2, 3, 4),
    "tranzo": ("Approved", "Settled"),
}


def load_config(config_path: str = "config.yaml") -> dict[str, Any]:
    """Load YAML configuration file.

    Args:
        config_path: Path to config.yaml relative to project root.

    Returns:
        Parsed configuration dictionary (empty dict for an empty file).

    Raises:
        FileNotFoundError: If config file does not exist.
        yaml.YAMLError: If config file is malformed.
    """
    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(f"Configuration file not found: {config_path}")
    with open(config_path, "r") as fh:
        config = yaml.safe_load(fh) or {}
    logger.debug("Configuration loaded from %s", config_path)
    return config


def _coerce_threshold(name: str, value: Any, default: int | float) -> int | float:
    """Cast a configured threshold to the type of its default.

    Quoted numbers are accepted; integer settings refuse fractional values.

    Raises:
        ValueError: If the value is not a number of the right kind.
    """
    if isinstance(value, bool):
        raise ValueError(f"{name} must be a number, got {value!r}")
    number = float(str(value).strip())
    if not math.isfinite(number):
        raise ValueError(f"{name} must be finite, got {value!r}")
    if isinstance(default, int):
        if not number.is_integer():
            raise ValueError(f"{name} must be a whole number, got {value!r}")
        return int(number)
    return number


def thresholds_from_config(cfg: dict[str, Any] | None) -> Thresholds:
    """Build alert thresholds from the `alerts` section.

    Unknown keys are ignored, and a value that is not a number of the
    right kind keeps its default; both are logged as warnings.
    """
    section = (cfg or {}).get("alerts") or {}
    defaults = {f.name: f.default for f in fields(Thresholds)}
    unknown = set(section) - set(defaults)
    if unknown:
        logger.warning("Ignoring unknown alert settings: %s", sorted(unknown))

    values: dict[str, int | float] = {}
    for name, raw in section.items():
        if name not in defaults:
            continue
        try:
            values[name] = _coerce_threshold(name, raw, defaults[name])
        except (TypeError, ValueError):
            logger.warning(
                "Invalid alert setting %s=%r; keeping default %r", name, raw, defaults[name]
            )
    return Thresholds(**values)



def accepted_statuses_from_config(cfg: dict[str, Any] | None) -> dict[str, tuple[Any, ...]]:
    """Merge configured accepted receipt statuses over the defaults."""
    merged = dict(DEFAULT_ACCEPTED_STATUSES)
    section = ((cfg or {}).get("settlement") or {}).get("accepted_statuses") or {}
    for source, statuses in section.items():
        merged[source.lower()] = tuple(statuses or ())
    return merged


def window_from_config(cfg: dict[str, Any] | None) -> WindowKind:
    raw = ((cfg or {}).get("settlement") or {}).get("window", WindowKind.CURRENT.value)
    return WindowKind(str(raw).lower())
