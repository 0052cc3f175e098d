"""
NotificationRelay -- connects a ``NotificationSink`` to the post-commit
event buffer.

Events reach the sink only after the transaction that produced them
commits.  A sink failure is logged by the buffer and never reaches the
caller.
"""

from __future__ import annotations

from typing import Any

from jobcost_kernel.logging_config import get_logger
from jobcost_kernel.services.event_buffer import register_sink, unregister_sink
from jobcost_services.collaborators import NotificationSink

logger = get_logger("services.notifications")


class NotificationRelay:
    def __init__(self, sink: NotificationSink, event_names: set[str] | None = None):
        self.sink = sink
        # None relays every event.
        self.event_names = event_names
        self._installed = False

    def _deliver(self, event_name: str, payload: dict[str, Any]) -> None:
        if self.event_names is not None and event_name not in self.event_names:
            return
        self.sink.publish(event_name, payload)
        logger.debug("notification_published", extra={"event_name": event_name})

    def install(self) -> NotificationRelay:
        if not self._installed:
            register_sink(self._deliver)
            self._installed = True
        return self

    def uninstall(self) -> None:
        if self._installed:
            unregister_sink(self._deliver)
            self._installed = False

    def __enter__(self) -> NotificationRelay:
        return self.install()

    def __exit__(self, *exc: Any) -> None:
        self.uninstall()
