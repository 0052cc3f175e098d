"""
Runtime configuration schema.

Every tunable of the engine (tolerance, lock duration, undo window,
duplicate-detection confidences and thresholds, invoice field rules,
extraction timeout, stamping retries) is a field of a frozen dataclass
here.  YAML files are parsed into these types by ``jobcost_config.loader``;
services receive a ``JobCostConfig`` and never read files themselves.

Defaults reproduce the production behaviour, so ``JobCostConfig()`` is a
valid configuration on its own.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal

from jobcost_kernel.logging_config import get_logger

logger = get_logger("config.schema")


@dataclass(frozen=True)
class LedgerSettings:
    """Money comparison tolerance, in currency units."""

    tolerance: Decimal = Decimal("0.01")

    def __post_init__(self):
        if self.tolerance < 0:
            raise ValueError("tolerance cannot be negative")


@dataclass(frozen=True)
class LockSettings:
    duration_seconds: int = 300
    # When true, every invoice mutation fails if another actor holds a live lock.
    enforce_on_mutation: bool = True

    def __post_init__(self):
        if self.duration_seconds <= 0:
            raise ValueError("lock duration_seconds must be positive")


@dataclass(frozen=True)
class UndoSettings:
    window_seconds: int = 30

    def __post_init__(self):
        if self.window_seconds <= 0:
            raise ValueError("undo window_seconds must be positive")


@dataclass(frozen=True)
class DuplicateConfidences:
    """Confidence assigned to each duplicate-match rule."""

    content_hash: float = 1.00
    exact_number: float = 0.99
    amount_and_date: float = 0.85
    fuzzy_number_and_amount: float = 0.80
    cross_vendor_number: float = 0.70
    amount_only: float = 0.50

    def __post_init__(self):
        for name, value in vars(self).items():
            if not 0.0 <= value <= 1.0:
                raise ValueError(f"confidence {name} must be within [0, 1], got {value}")


@dataclass(frozen=True)
class DuplicateSettings:
    """
    Duplicate detection policy.

    ``duplicate_threshold`` blocks creation (unless overridden);
    ``likely_threshold`` only warns.
    """

    duplicate_threshold: float = 0.95
    likely_threshold: float = 0.80
    amount_match_percent: Decimal = Decimal("0.01")
    max_matches: int = 5
    block_duplicates: bool = True
    confidences: DuplicateConfidences = field(default_factory=DuplicateConfidences)

    def __post_init__(self):
        if not 0.0 < self.likely_threshold <= self.duplicate_threshold <= 1.0:
            raise ValueError(
                "thresholds must satisfy 0 < likely_threshold <= duplicate_threshold <= 1"
            )
        if self.amount_match_percent < 0:
            raise ValueError("amount_match_percent cannot be negative")
        if self.max_matches < 1:
            raise ValueError("max_matches must be at least 1")


@dataclass(frozen=True)
class InvoiceRules:
    """Field-level validation limits applied at the API boundary."""

    max_abs_amount: Decimal = Decimal("10000000")
    max_invoice_number_length: int = 100
    invoice_number_pattern: str = r"^[A-Za-z0-9\-_#\s.]+$"
    max_invoice_age_days: int = 365
    max_notes_length: int = 4000

    def __post_init__(self):
        if self.max_abs_amount <= 0:
            raise ValueError("max_abs_amount must be positive")
        if self.max_invoice_number_length <= 0:
            raise ValueError("max_invoice_number_length must be positive")
        if self.max_invoice_age_days <= 0:
            raise ValueError("max_invoice_age_days must be positive")


@dataclass(frozen=True)
class IntakeSettings:
    extraction_timeout_seconds: float = 30.0
    # Extracted fields below this confidence are left unset.
    min_field_confidence: float = 0.5

    def __post_init__(self):
        if self.extraction_timeout_seconds <= 0:
            raise ValueError("extraction_timeout_seconds must be positive")
        if not 0.0 <= self.min_field_confidence <= 1.0:
            raise ValueError("min_field_confidence must be within [0, 1]")


@dataclass(frozen=True)
class StampingSettings:
    max_attempts: int = 3
    batch_size: int = 50

    def __post_init__(self):
        if self.max_attempts < 1:
            raise ValueError("stamping max_attempts must be at least 1")
        if self.batch_size < 1:
            raise ValueError("stamping batch_size must be at least 1")


@dataclass(frozen=True)
class JobCostConfig:
    ledger: LedgerSettings = field(default_factory=LedgerSettings)
    locks: LockSettings = field(default_factory=LockSettings)
    undo: UndoSettings = field(default_factory=UndoSettings)
    duplicates: DuplicateSettings = field(default_factory=DuplicateSettings)
    invoice_rules: InvoiceRules = field(default_factory=InvoiceRules)
    intake: IntakeSettings = field(default_factory=IntakeSettings)
    stamping: StampingSettings = field(default_factory=StampingSettings)
    name: str = "default"

    def __post_init__(self):
        logger.debug(
            "jobcost_config_initialized",
            extra={
                "config_name": self.name,
                "tolerance": str(self.ledger.tolerance),
                "lock_seconds": self.locks.duration_seconds,
                "undo_seconds": self.undo.window_seconds,
                "duplicate_threshold": self.duplicates.duplicate_threshold,
            },
        )
