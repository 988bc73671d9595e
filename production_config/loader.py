"""
Configuration Loader (``production_config.loader``).

Responsibility
--------------
Loads a YAML file and parses it into ``production_config.schema``
dataclasses.  Runtime code calls ``production_config.get_active_config()``
instead of this module.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section, key, role or operation  -> ``ValueError``.
"""

from __future__ import annotations

from dataclasses import fields
from pathlib import Path
from types import MappingProxyType
from typing import Any

import yaml

from production_config.schema import (
    DatabaseConfig,
    LoggingConfig,
    ProductionConfig,
    RequestNumberingConfig,
    ReservationConfig,
    TransactionConfig,
)
from production_kernel.domain.actor import Operation, Role

_SECTIONS = {
    "database": DatabaseConfig,
    "transactions": TransactionConfig,
    "reservations": ReservationConfig,
    "requests": RequestNumberingConfig,
    "logging": LoggingConfig,
}


def load_yaml_file(path: Path) -> dict[str, Any]:
    """Load a YAML file and return its top-level mapping."""
    with open(path) as f:
        data = yaml.safe_load(f)
    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ValueError(f"{path}: top level must be a mapping")
    return data


def _parse_section(name: str, cls: type, raw: Any) -> Any:
    if raw is None:
        return cls()
    if not isinstance(raw, dict):
        raise ValueError(f"Config section '{name}' must be a mapping")
    known = {f.name for f in fields(cls)}
    unknown = set(raw) - known
    if unknown:
        raise ValueError(f"Unknown keys in '{name}': {', '.join(sorted(unknown))}")
    return cls(**raw)


def parse_authorization(raw: Any) -> MappingProxyType:
    if raw is None:
        return MappingProxyType({})
    if not isinstance(raw, dict):
        raise ValueError("Config section 'authorization' must be a mapping")
    parsed: dict[str, tuple[str, ...]] = {}
    for op_name, roles in raw.items():
        try:
            Operation(op_name)
        except ValueError:
            raise ValueError(f"Unknown operation in 'authorization': {op_name}")
        if not isinstance(roles, list) or not roles:
            raise ValueError(f"authorization.{op_name} must be a non-empty list of roles")
        for role in roles:
            try:
                Role(role)
            except ValueError:
                raise ValueError(f"Unknown role '{role}' in authorization.{op_name}")
        parsed[op_name] = tuple(roles)
    return MappingProxyType(parsed)


def parse_config(data: dict[str, Any], source: str | None = None) -> ProductionConfig:
    """Parse a raw mapping into a ``ProductionConfig``."""
    unknown = set(data) - set(_SECTIONS) - {"authorization"}
    if unknown:
        raise ValueError(f"Unknown config sections: {', '.join(sorted(unknown))}")

    sections = {
        name: _parse_section(name, cls, data.get(name))
        for name, cls in _SECTIONS.items()
    }
    return ProductionConfig(
        authorization=parse_authorization(data.get("authorization")),
        source=source,
        **sections,
    )


def load_config_file(path: Path) -> ProductionConfig:
    return parse_config(load_yaml_file(path), source=str(path))
