"""Resource status change notifications.

Coordinators move resources through their state machines with
``StatusEventBus.set_status`` / ``set_upload_status``. An event is
published only when the value actually changes, so observers see one
event per transition no matter how many attempts a transfer takes.
"""

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass

from assetsync.models.resource import Resource

logger = logging.getLogger(__name__)

DOWNLOAD_CHANNEL = "download"
UPLOAD_CHANNEL = "upload"


@dataclass(frozen=True)
class ResourceStatusChanged:
    """A single status transition of one resource."""

    resource: Resource
    channel: str
    previous: str | None
    status: str | None


StatusListener = Callable[[ResourceStatusChanged], None]


class StatusEventBus:
    """Fan-out of status transitions to zero or more subscribers.

    Thread-safe: the folder watcher publishes from timer threads while the
    coordinators publish from the event loop.
    """

    def __init__(self) -> None:
        self._listeners: list[StatusListener] = []
        self._lock = threading.Lock()

    def subscribe(self, listener: StatusListener) -> Callable[[], None]:
        """Register a listener and return a function that removes it."""
        with self._lock:
            self._listeners.append(listener)

        def unsubscribe() -> None:
            with self._lock:
                if listener in self._listeners:
                    self._listeners.remove(listener)

        return unsubscribe

    def publish(self, event: ResourceStatusChanged) -> None:
        """Deliver an event to every listener.

        Non-blocking: a failing listener is logged and does not stop delivery
        to the others or the transfer that produced the event.
        """
        with self._lock:
            listeners = list(self._listeners)

        for listener in listeners:
            try:
                listener(event)
            except Exception as e:
                logger.warning(f"Status listener failed for {event.resource!r}: {e}")

    def set_status(self, resource: Resource, status: str | None) -> bool:
        """Apply a download-side transition. Returns True if it changed."""
        previous = resource.status
        if previous == status:
            return False
        resource.status = status
        self.publish(ResourceStatusChanged(resource, DOWNLOAD_CHANNEL, previous, status))
        return True

    def set_upload_status(self, resource: Resource, status: str | None) -> bool:
        """Apply an upload-side transition. Returns True if it changed."""
        previous = resource.upload_status
        if previous == status:
            return False
        resource.upload_status = status
        self.publish(ResourceStatusChanged(resource, UPLOAD_CHANNEL, previous, status))
        return True
