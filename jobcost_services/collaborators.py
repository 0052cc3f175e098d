"""
Collaborator protocols (``jobcost_services.collaborators``).

Contract:
    The engine talks to document extraction, document storage, PDF
    stamping and notification delivery only through these protocols.
    Implementations live outside this package; tests use in-memory fakes.

Architecture: jobcost_services.  No DB or kernel imports.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any, Protocol, runtime_checkable


@dataclass(frozen=True)
class ExtractedField:
    value: Any
    confidence: float


@dataclass(frozen=True)
class ExtractionResult:
    """
    Output of an extractor run.

    ``fields`` is keyed by invoice field name (``invoice_number``,
    ``amount``, ``invoice_date``, ``due_date``, ``vendor_id``, ``job_id``,
    ``po_id``, ``notes``).
    """

    fields: dict[str, ExtractedField] = field(default_factory=dict)
    raw: dict[str, Any] = field(default_factory=dict)

    def value(self, name: str, min_confidence: float = 0.0) -> Any:
        extracted = self.fields.get(name)
        if extracted is None or extracted.value in (None, ""):
            return None
        if extracted.confidence < min_confidence:
            return None
        return extracted.value


@runtime_checkable
class Extractor(Protocol):
    """Reads invoice fields out of a document."""

    def extract(self, document: bytes) -> ExtractionResult:
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Stores documents and hands back a URL that identifies them."""

    def put(self, content: bytes, filename: str) -> str:
        ...

    def get(self, url: str) -> bytes:
        ...

    def delete(self, url: str) -> None:
        ...


@runtime_checkable
class Stamper(Protocol):
    """Renders status metadata onto a PDF."""

    def stamp(self, pdf: bytes, metadata: dict[str, Any]) -> bytes:
        ...


@runtime_checkable
class NotificationSink(Protocol):
    """Receives committed domain events (``invoice_status_changed``, ...)."""

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        ...
