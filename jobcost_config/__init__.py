"""
jobcost_config -- single public entrypoint for runtime configuration.

Responsibility:
    ``get_active_config()`` is the only way services obtain settings.  It
    reads the YAML file named by the ``path`` argument, else by the
    ``JOBCOST_CONFIG`` environment variable, else the packaged
    ``defaults.yaml``.

Architecture position:
    Sits above ``jobcost_kernel`` and below ``jobcost_modules`` /
    ``jobcost_services``.  The kernel never imports from this package;
    kernel services receive plain values (seconds, tolerances).
"""

from __future__ import annotations

import os
from pathlib import Path

from jobcost_config.loader import load_config, parse_config
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
from jobcost_kernel.logging_config import get_logger

logger = get_logger("config")

DEFAULT_CONFIG_PATH = Path(__file__).parent / "defaults.yaml"
CONFIG_ENV_VAR = "JOBCOST_CONFIG"


def get_active_config(path: Path | str | None = None) -> JobCostConfig:
    """Load and validate the active configuration.

    Raises:
        FileNotFoundError: the selected file does not exist.
        ValueError: unknown keys or invalid values.
    """
    selected = Path(path or os.environ.get(CONFIG_ENV_VAR) or DEFAULT_CONFIG_PATH)
    config = load_config(selected)
    logger.info(
        "jobcost_config_loaded",
        extra={"config_name": config.name, "path": str(selected)},
    )
    return config


__all__ = [
    "get_active_config",
    "load_config",
    "parse_config",
    "DuplicateConfidences",
    "DuplicateSettings",
    "IntakeSettings",
    "InvoiceRules",
    "JobCostConfig",
    "LedgerSettings",
    "LockSettings",
    "StampingSettings",
    "UndoSettings",
]
