"""
Configuration loader (``jobcost_config.loader``).

Parses a YAML document into the frozen dataclasses of
``jobcost_config.schema``.  Sections and keys are optional; anything left
out keeps its default.  Unknown keys are rejected so that a typo does not
silently fall back to a default.

Failure modes
-------------
* Missing YAML file  -> ``FileNotFoundError`` propagates.
* Malformed YAML  -> ``yaml.YAMLError`` propagates.
* Unknown section or key, or an invalid value  -> ``ValueError``.
"""

from __future__ import annotations

from dataclasses import fields
from decimal import Decimal
from pathlib import Path
from typing import Any

import yaml

from jobcost_config.schema import (
    DuplicateConfidences,
    DuplicateSettings,
    IntakeSettings,
    InvoiceRules,
    JobCostConfig,
    LedgerSettings,
    LockSettings,
    StampingSettings,
    UndoSettings,
)

_SECTIONS: dict[str, type] = {
    "ledger": LedgerSettings,
    "locks": LockSettings,
    "undo": UndoSettings,
    "duplicates": DuplicateSettings,
    "invoice_rules": InvoiceRules,
    "intake": IntakeSettings,
    "stamping": StampingSettings,
}

_DECIMAL_FIELDS = {"tolerance", "amount_match_percent", "max_abs_amount"}


def load_yaml_file(path: Path) -> dict[str, Any]:
    with open(path) as f:
        return yaml.safe_load(f) or {}


def _build(cls: type, data: dict[str, Any] | None, section: str) -> Any:
    data = dict(data or {})
    known = {f.name for f in fields(cls)}
    unknown = set(data) - known
    if unknown:
        raise ValueError(
            f"Unknown key(s) in config section {section!r}: {', '.join(sorted(unknown))}"
        )
    kwargs: dict[str, Any] = {}
    for key, value in data.items():
        if key in _DECIMAL_FIELDS:
            kwargs[key] = Decimal(str(value))
        elif key == "confidences":
            kwargs[key] = _build(DuplicateConfidences, value, f"{section}.confidences")
        elif isinstance(value, int) and not isinstance(value, bool) and cls is DuplicateConfidences:
            kwargs[key] = float(value)
        else:
            kwargs[key] = value
    return cls(**kwargs)


def parse_config(data: dict[str, Any]) -> JobCostConfig:
    """Build a ``JobCostConfig`` from an already-parsed mapping."""
    unknown = set(data) - set(_SECTIONS) - {"name"}
    if unknown:
        raise ValueError(f"Unknown config section(s): {', '.join(sorted(unknown))}")
    sections = {
        name: _build(cls, data.get(name), name) for name, cls in _SECTIONS.items()
    }
    return JobCostConfig(name=data.get("name", "default"), **sections)


def load_config(path: Path) -> JobCostConfig:
    return parse_config(load_yaml_file(path))
