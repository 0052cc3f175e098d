"""
Job-cost services: the edges of the engine.

Collaborator protocols (extraction, document storage, stamping,
notifications), the document intake flow, the stamping outbox worker and
the notification relay.
"""

from jobcost_services.collaborators import (
    DocumentStore,
    ExtractedField,
    ExtractionResult,
    Extractor,
    NotificationSink,
    Stamper,
)
from jobcost_services.intake import InvoiceIntakeService
from jobcost_services.notifications import NotificationRelay
from jobcost_services.stamping import StampRunResult, StampWorker

__all__ = [
    "DocumentStore",
    "ExtractedField",
    "ExtractionResult",
    "Extractor",
    "InvoiceIntakeService",
    "NotificationRelay",
    "NotificationSink",
    "StampRunResult",
    "StampWorker",
    "Stamper",
]
