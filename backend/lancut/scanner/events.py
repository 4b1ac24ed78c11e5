import logging
from typing import Awaitable, Callable

logger = logging.getLogger(__name__)

EventCallback = Callable[[str, dict], Awaitable[None]]

SCAN_STARTED = "scan_started"
SCAN_PROGRESS = "scan_progress"
SCAN_COMPLETED = "scan_completed"
SCAN_CANCELLED = "scan_cancelled"
SCAN_FAILED = "scan_failed"
DEVICE_ADDED = "device_added"
DEVICE_UPDATED = "device_updated"
DEVICE_BLOCKED = "device_blocked"
DEVICE_UNBLOCKED = "device_unblocked"


class EventBus:
    """Fan-out of engine events to any number of async subscribers."""

    def __init__(self):
        self._callbacks: list[EventCallback] = []

    def register_callback(self, callback: EventCallback):
        """Register a callback for engine events."""
        if callback not in self._callbacks:
            self._callbacks.append(callback)

    def unregister_callback(self, callback: EventCallback):
        """Unregister a callback."""
        if callback in self._callbacks:
            self._callbacks.remove(callback)

    async def publish(self, event_type: str, data: dict):
        """Notify all registered callbacks; a failing subscriber never stops the others."""
        for callback in list(self._callbacks):
            try:
                await callback(event_type, data)
            except Exception:
                logger.exception("Event callback failed for %s", event_type)
