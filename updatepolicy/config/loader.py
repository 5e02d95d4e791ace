# Copyright 2025 Roger Cibrian
#
# Licensed under the Apache License, Version 2.0 (the "License");
# you may not use this file except in compliance with the License.
# You may obtain a copy of the License at
#
#     http://www.apache.org/licenses/LICENSE-2.0
#
# Unless required by applicable law or agreed to in writing, software
# distributed under the License is distributed on an "AS IS" BASIS,
# WITHOUT WARRANTIES OR CONDITIONS OF ANY KIND, either express or implied.
# See the License for the specific language governing permissions and
# limitations under the License.

"""Policy configuration loading for updatepolicy.

Configuration is resolved in layers with "last wins" semantics:

1. **Built-in defaults** (DEFAULT_CONFIG)
2. **Configuration file** (optional YAML mapping)
3. **Keyword overrides** (a dict passed by the embedding application)

Merge Behavior:

- Dicts: Recursively merged (keys from overlay override base)
- Lists: Completely replaced (NOT appended/extended)
- Scalars: Overwritten (strings, numbers, booleans)

The merged mapping is then validated into a frozen PolicyConfig. Unknown
keys and wrongly typed values are rejected rather than ignored, since a
silently dropped setting could disable backoff or enable insecure sources.

File format:

    policy: fleet              # registered policy name
    backoff:
      base_hours: 24           # first backoff interval
      max_days: 16             # ceiling for any interval
      fuzz_hours: 12           # width of the random jitter window
    download:
      allow_http: false        # permit http:// mirrors on official builds
      delta_errors_max: null   # per-URL error budget for delta payloads
    p2p:
      supported: true          # build ships peer-assisted transfer
      enabled_by_default: false

Example:
    Load a file with an override:

        from pathlib import Path
        from updatepolicy.config import load_policy_config

        config = load_policy_config(
            Path("policy.yaml"), overrides={"p2p": {"supported": False}}
        )
        print(config.backoff_max)  # 16 days, 0:00:00
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta
from pathlib import Path
from typing import Any

import yaml

from updatepolicy.exceptions import ConfigError

DEFAULT_CONFIG: dict[str, Any] = {
    "policy": "fleet",
    "backoff": {
        "base_hours": 24,
        "max_days": 16,
        "fuzz_hours": 12,
    },
    "download": {
        "allow_http": False,
        "delta_errors_max": None,
    },
    "p2p": {
        "supported": True,
        "enabled_by_default": False,
    },
}

# -------------------------------
# Data types
# -------------------------------


@dataclass(frozen=True)
class PolicyConfig:
    """Validated policy configuration.

    Attributes:
        policy: Registered name of the policy implementation to use.
        backoff_base: Backoff interval after the first failure.
        backoff_max: Ceiling for any backoff interval.
        backoff_fuzz: Width of the jitter window centred on the interval.
        allow_http: Whether http:// mirrors are usable on official builds.
        delta_errors_max: Per-URL error budget for delta payloads, or None
            to use the budget carried in the update state.
        p2p_supported: Whether this build can download from peers at all.
        p2p_enabled_by_default: P2P setting used when device policy is
            silent.
    """

    policy: str = "fleet"
    backoff_base: timedelta = timedelta(hours=24)
    backoff_max: timedelta = timedelta(days=16)
    backoff_fuzz: timedelta = timedelta(hours=12)
    allow_http: bool = False
    delta_errors_max: int | None = None
    p2p_supported: bool = True
    p2p_enabled_by_default: bool = False


# -------------------------------
# YAML helpers
# -------------------------------


def _load_yaml_file(p: Path) -> Any:
    """Loads a YAML file and returns the parsed Python object.

    Raises:
        ConfigError: When the file does not exist, does not parse, or is empty.
    """
    if not p.exists():
        raise ConfigError(f"file not found: {p}")
    try:
        with p.open("r", encoding="utf-8") as f:
            data = yaml.safe_load(f)
    except yaml.YAMLError as err:
        raise ConfigError(f"Error parsing YAML: {p}: {err}") from err
    if data is None:
        raise ConfigError(f"YAML file is empty: {p}")
    return data


# -------------------------------
# Merge logic
# -------------------------------


def _deep_merge_dicts(base: dict[str, Any], overlay: dict[str, Any]) -> dict[str, Any]:
    """Deep-merges two dicts with "overlay wins" semantics.

    This function does not mutate inputs; returns a new dict.
    """
    result: dict[str, Any] = dict(base)
    for k, v in overlay.items():
        if k in result and isinstance(result[k], dict) and isinstance(v, dict):
            result[k] = _deep_merge_dicts(result[k], v)
        else:
            # Replace lists and scalars entirely
            result[k] = v
    return result


# -------------------------------
# Validation
# -------------------------------


def _check_keys(section: str, data: dict[str, Any], allowed: dict[str, Any]) -> None:
    unknown = sorted(set(data) - set(allowed))
    if unknown:
        where = f"'{section}'" if section else "top level"
        raise ConfigError(f"Unknown configuration key(s) at {where}: {', '.join(unknown)}")


def _section(data: dict[str, Any], name: str) -> dict[str, Any]:
    if name not in data:
        raise ConfigError(f"Missing configuration section '{name}'")
    value = data[name]
    if not isinstance(value, dict):
        raise ConfigError(f"'{name}' must be a mapping, got {type(value).__name__}")
    _check_keys(name, value, DEFAULT_CONFIG[name])
    missing = sorted(set(DEFAULT_CONFIG[name]) - set(value))
    if missing:
        raise ConfigError(
            f"Missing configuration key(s) in '{name}': {', '.join(missing)}"
        )
    return value


def _number(section: str, key: str, value: Any) -> float:
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ConfigError(f"'{section}.{key}' must be a number, got {value!r}")
    if value < 0:
        raise ConfigError(f"'{section}.{key}' must not be negative, got {value!r}")
    return float(value)


def _flag(section: str, key: str, value: Any) -> bool:
    if not isinstance(value, bool):
        raise ConfigError(f"'{section}.{key}' must be true or false, got {value!r}")
    return value


def config_from_dict(data: dict[str, Any]) -> PolicyConfig:
    """Validate a fully merged configuration mapping.

    Args:
        data: Mapping with the same shape as DEFAULT_CONFIG.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: On unknown keys, wrong types or inconsistent values.
    """
    if not isinstance(data, dict):
        raise ConfigError("top-level configuration must be a mapping (dict)")
    _check_keys("", data, DEFAULT_CONFIG)

    policy = data.get("policy")
    if not isinstance(policy, str) or not policy.strip():
        raise ConfigError(f"'policy' must be a non-empty string, got {policy!r}")

    backoff = _section(data, "backoff")
    base = timedelta(hours=_number("backoff", "base_hours", backoff["base_hours"]))
    ceiling = timedelta(days=_number("backoff", "max_days", backoff["max_days"]))
    fuzz = timedelta(hours=_number("backoff", "fuzz_hours", backoff["fuzz_hours"]))
    if base > ceiling:
        raise ConfigError("'backoff.base_hours' exceeds 'backoff.max_days'")

    download = _section(data, "download")
    delta_errors_max = download["delta_errors_max"]
    if delta_errors_max is not None and (
        isinstance(delta_errors_max, bool)
        or not isinstance(delta_errors_max, int)
        or delta_errors_max < 0
    ):
        raise ConfigError(
            "'download.delta_errors_max' must be a non-negative integer or null, "
            f"got {delta_errors_max!r}"
        )

    p2p = _section(data, "p2p")

    return PolicyConfig(
        policy=policy.strip(),
        backoff_base=base,
        backoff_max=ceiling,
        backoff_fuzz=fuzz,
        allow_http=_flag("download", "allow_http", download["allow_http"]),
        delta_errors_max=delta_errors_max,
        p2p_supported=_flag("p2p", "supported", p2p["supported"]),
        p2p_enabled_by_default=_flag(
            "p2p", "enabled_by_default", p2p["enabled_by_default"]
        ),
    )


# -------------------------------
# Public API
# -------------------------------


def load_policy_config(
    path: Path | None = None,
    *,
    overrides: dict[str, Any] | None = None,
) -> PolicyConfig:
    """Load and merge the effective policy configuration.

    Steps
      1) Start from DEFAULT_CONFIG.
      2) Merge the YAML file at path, if given.
      3) Merge overrides, if given.
      4) Validate into a PolicyConfig.

    Args:
        path: Optional YAML configuration file.
        overrides: Optional mapping merged last.

    Returns:
        The validated configuration.

    Raises:
        ConfigError: On missing or unparsable files and invalid values.
    """
    merged: dict[str, Any] = _deep_merge_dicts({}, DEFAULT_CONFIG)

    if path is not None:
        file_data = _load_yaml_file(path)
        if not isinstance(file_data, dict):
            raise ConfigError(f"top-level YAML must be a mapping (dict): {path}")
        merged = _deep_merge_dicts(merged, file_data)

    if overrides:
        merged = _deep_merge_dicts(merged, overrides)

    return config_from_dict(merged)
