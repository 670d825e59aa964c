"""
Configuration Loader (``validation_config.loader``).

Responsibility
--------------
Loads the YAML fragment files of a configuration directory and parses
them into typed ``validation_config.schema`` dataclass instances.  This is
**build/test tooling only** -- services never call it.  The single public
entry point for runtime config is ``validation_config.get_active_config()``.

Invariants enforced
-------------------
* Parse errors raise ``ValueError`` or ``KeyError`` with descriptive
  messages; required fields have no silent defaults.
* Every parsed object is a frozen dataclass from ``schema.py``.
* ``compute_checksum`` produces a deterministic SHA-256 over the raw
  fragments for configuration identity and change detection.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Missing required keys  -> ``KeyError`` propagates.
"""

from __future__ import annotations

import hashlib
import json
from pathlib import Path
from typing import Any

import yaml

from validation_config.schema import (
    ConditionTemplateDef,
    EngineSettingsDef,
    RuleTemplateDef,
    ThresholdPolicyDef,
    ValidationConfigurationSet,
)

ENGINE_FILE = "engine.yaml"
THRESHOLDS_FILE = "thresholds.yaml"
TEMPLATES_FILE = "rule_templates.yaml"


def load_yaml_file(path: Path) -> dict[str, Any]:
    """
    Load a single YAML file and return its contents as a dict.

    Raises:
        FileNotFoundError: if the file does not exist.
        yaml.YAMLError: if the file contains invalid YAML.
        ValueError: if the top level is not a mapping.
    """
    with open(path) as f:
        data = yaml.safe_load(f) or {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: expected a mapping at the top level")
    return data


def _amount_text(value: Any) -> str:
    # YAML reads 50000 as int and 0.5 as float; keep the literal digits.
    if isinstance(value, bool) or not isinstance(value, (int, float, str)):
        raise ValueError(f"Cannot parse amount from {value!r}")
    return str(value)


def parse_engine_settings(data: dict[str, Any]) -> EngineSettingsDef:
    """Parse the ``engine`` mapping of engine.yaml."""
    defaults = EngineSettingsDef()
    return EngineSettingsDef(
        staleness_window_hours=int(
            data.get("staleness_window_hours", defaults.staleness_window_hours)
        ),
        default_priority=str(data.get("default_priority", defaults.default_priority)),
        default_workspace=str(data.get("default_workspace", defaults.default_workspace)),
    )


def parse_threshold_policy(data: dict[str, Any]) -> ThresholdPolicyDef:
    """Parse one entry of thresholds.yaml ``policies``."""
    return ThresholdPolicyDef(
        entity_type=data["entity_type"],
        level_thresholds=tuple(_amount_text(v) for v in data["level_thresholds"]),
        levels_without_amount=int(data.get("levels_without_amount", 1)),
        first_validator_level=int(data.get("first_validator_level", 1)),
        workspace_id=str(data.get("workspace_id", "*")),
        category=data.get("category"),
        auto_approve_below=_amount_text(data.get("auto_approve_below", 0)),
        unit=data.get("unit", "amount"),
        description=data.get("description"),
    )


def parse_condition_template(data: dict[str, Any]) -> ConditionTemplateDef:
    return ConditionTemplateDef(
        field=data["field"],
        label=data["label"],
        field_type=data["field_type"],
        operator=data["operator"],
        default_value=data.get("default_value"),
        placeholder=data.get("placeholder"),
    )


def parse_rule_template(data: dict[str, Any]) -> RuleTemplateDef:
    """Parse one entry of rule_templates.yaml ``templates``."""
    return RuleTemplateDef(
        template_id=data["template_id"],
        name=data["name"],
        description=data.get("description", ""),
        category=data["category"],
        conditions=tuple(parse_condition_template(c) for c in data["conditions"]),
        action=data["action"],
        action_reason=data.get("action_reason"),
        estimated_time_saving=data.get("estimated_time_saving"),
    )


def compute_checksum(data: dict[str, Any]) -> str:
    """
    Compute SHA-256 checksum of canonical JSON serialization.

    Identical ``data`` always produces identical checksums.
    """
    canonical = json.dumps(data, sort_keys=True, default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()


def load_configuration_set(config_dir: Path) -> ValidationConfigurationSet:
    """
    Load and parse all fragments of a configuration directory.

    Raises:
        FileNotFoundError: if the directory or a fragment is missing.
    """
    if not config_dir.is_dir():
        raise FileNotFoundError(f"Configuration directory not found: {config_dir}")

    engine_raw = load_yaml_file(config_dir / ENGINE_FILE)
    thresholds_raw = load_yaml_file(config_dir / THRESHOLDS_FILE)
    templates_raw = load_yaml_file(config_dir / TEMPLATES_FILE)

    return ValidationConfigurationSet(
        config_id=str(engine_raw["config_id"]),
        version=int(engine_raw.get("version", 1)),
        settings=parse_engine_settings(engine_raw.get("engine") or {}),
        thresholds=tuple(
            parse_threshold_policy(p) for p in thresholds_raw.get("policies") or ()
        ),
        templates=tuple(
            parse_rule_template(t) for t in templates_raw.get("templates") or ()
        ),
        checksum=compute_checksum({
            "engine": engine_raw,
            "thresholds": thresholds_raw,
            "templates": templates_raw,
        }),
    )
