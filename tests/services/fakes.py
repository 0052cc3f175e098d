"""In-memory collaborators for service tests."""

from __future__ import annotations

import threading
from typing import Any

from jobcost_services.collaborators import ExtractedField, ExtractionResult


class MemoryDocumentStore:
    def __init__(self):
        self.documents: dict[str, bytes] = {}
        self.deleted: list[str] = []
        self._counter = 0

    def put(self, content: bytes, filename: str) -> str:
        self._counter += 1
        url = f"mem://{self._counter}/{filename}"
        self.documents[url] = content
        return url

    def get(self, url: str) -> bytes:
        return self.documents[url]

    def delete(self, url: str) -> None:
        self.documents.pop(url, None)
        self.deleted.append(url)


class StaticExtractor:
    """Returns the same fields for every document."""

    def __init__(self, **fields: tuple[Any, float]):
        self.result = ExtractionResult(
            fields={name: ExtractedField(value, confidence) for name, (value, confidence) in fields.items()}
        )

    def extract(self, document: bytes) -> ExtractionResult:
        return self.result


class BlockingExtractor:
    """Blocks until ``release`` is set."""

    def __init__(self):
        self.release = threading.Event()

    def extract(self, document: bytes) -> ExtractionResult:
        self.release.wait(5)
        return ExtractionResult()


class BrokenExtractor:
    def extract(self, document: bytes) -> ExtractionResult:
        raise RuntimeError("OCR backend unavailable")


class RecordingStamper:
    def __init__(self, failures: int = 0):
        self.failures = failures
        self.calls: list[dict[str, Any]] = []

    def stamp(self, pdf: bytes, metadata: dict[str, Any]) -> bytes:
        self.calls.append(metadata)
        if self.failures:
            self.failures -= 1
            raise OSError("renderer crashed")
        return pdf + f"|{metadata['status']}".encode()


class RecordingSink:
    def __init__(self):
        self.events: list[tuple[str, dict[str, Any]]] = []

    def publish(self, event_name: str, payload: dict[str, Any]) -> None:
        self.events.append((event_name, payload))

    @property
    def names(self) -> list[str]:
        return [name for name, _ in self.events]
