"""
Settings for the QC engine.

Defaults reproduce the PNM / Gigapower rules.  A YAML file can override any
field; ``${VAR}`` references are substituted from the environment.
"""

import os
import re
from dataclasses import dataclass, field, fields, asdict
from pathlib import Path
from typing import Any, Dict, List, Optional

import yaml

from .exceptions import SettingsError

_ENV_PATTERN = re.compile(r"\$\{([^}]+)\}")


@dataclass
class QCSettings:
    """Tunables for span matching, KMZ reconciliation and QC rules."""
    angle_tolerance_deg: float = 5.0
    distance_tolerance_pct: float = 0.05
    float_tolerance: float = 0.01
    stress_change_pct: float = 20.0
    required_load_cases: List[str] = field(default_factory=lambda: ["NESC Medium B"])
    messenger_sizes: List[str] = field(default_factory=lambda: ["1/4", "3/8", "10M"])
    guy_sizes: List[str] = field(default_factory=lambda: ["3/8", "1/2"])
    enforce_guy_size: bool = False
    span_kmz_radius_m: float = 50.0
    kmz_close_threshold: float = 5000.0
    kmz_far_threshold: float = 10000.0
    kmz_min_match_ratio: float = 0.5
    pole_kmz_max_distance_sq: float = 0.0000005

    def to_dict(self) -> Dict[str, Any]:
        return asdict(self)


DEFAULT_SETTINGS = QCSettings()


def _substitute_env_vars(value: Any) -> Any:
    if isinstance(value, str):
        return _ENV_PATTERN.sub(lambda m: os.environ.get(m.group(1), m.group(0)), value)
    if isinstance(value, list):
        return [_substitute_env_vars(v) for v in value]
    if isinstance(value, dict):
        return {k: _substitute_env_vars(v) for k, v in value.items()}
    return value


def settings_from_dict(data: Optional[Dict[str, Any]]) -> QCSettings:
    """Build settings from a mapping, rejecting unknown keys."""
    if not data:
        return QCSettings()
    if not isinstance(data, dict):
        raise SettingsError("Settings must be a mapping of name: value")

    known = {f.name: f for f in fields(QCSettings)}
    unknown = sorted(set(data) - set(known))
    if unknown:
        raise SettingsError(f"Unknown setting(s): {', '.join(unknown)}")

    values: Dict[str, Any] = {}
    for name, raw in data.items():
        default = getattr(DEFAULT_SETTINGS, name)
        if isinstance(default, list):
            if isinstance(raw, str):
                raw = [raw]
            if not isinstance(raw, list):
                raise SettingsError(f"Setting '{name}' must be a list")
            values[name] = [str(v) for v in raw]
        elif isinstance(default, bool):
            if isinstance(raw, str):
                raw = raw.strip().lower() in ("1", "true", "yes", "on")
            values[name] = bool(raw)
        else:
            try:
                values[name] = float(raw)
            except (TypeError, ValueError):
                raise SettingsError(f"Setting '{name}' must be a number, got {raw!r}")
    return QCSettings(**values)


def load_settings(path: Optional[Path]) -> QCSettings:
    """Load settings from a YAML file; ``None`` gives the defaults."""
    if path is None:
        return QCSettings()

    path = Path(path)
    if not path.exists():
        raise SettingsError(f"Settings file not found: {path}")

    try:
        with open(path, "r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as e:
        raise SettingsError(f"Could not parse settings file {path}: {e}")

    return settings_from_dict(_substitute_env_vars(data))
