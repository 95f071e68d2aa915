"""
Lightweight event bus between the session and the UI.

The session never touches the window directly; it publishes what
happened and the UI subscribes to what it wants to draw.

Usage:
    bus = EventBus()
    bus.subscribe(Events.EXAMPLE_ADDED, on_example)
    bus.emit(Events.EXAMPLE_ADDED, label=2, total=17)
"""

import time
import logging
import threading
from collections import defaultdict
from typing import Callable

logger = logging.getLogger(__name__)


class EventBus:
    """Thread-safe publish/subscribe event bus.

    One bus per session; listeners run synchronously on the emitting
    thread in priority order.
    """

    def __init__(self, max_history: int = 100):
        self._listeners = defaultdict(list)  # event_name -> [(priority, callback)]
        self._lock = threading.Lock()
        self._event_history = []
        self._max_history = max_history

    def subscribe(self, event_name: str, callback: Callable, priority: int = 0):
        """Register a listener for an event.

        Args:
            event_name: Event to listen for
            callback: Function to call. Receives **kwargs from emit().
            priority: Higher priority callbacks run first (default 0)
        """
        with self._lock:
            self._listeners[event_name].append((priority, callback))
            self._listeners[event_name].sort(key=lambda x: -x[0])
        logger.debug("Subscribed to '%s': %s (priority=%d)",
                     event_name, getattr(callback, "__name__", callback), priority)

    def unsubscribe(self, event_name: str, callback: Callable):
        """Remove a listener for an event."""
        with self._lock:
            self._listeners[event_name] = [
                (p, cb) for p, cb in self._listeners[event_name] if cb is not callback
            ]

    def emit(self, event_name: str, **kwargs):
        """Emit an event to all registered listeners.

        A failing listener is logged and skipped; it never breaks the
        collection or prediction loop that emitted the event.
        """
        with self._lock:
            listeners = list(self._listeners.get(event_name, []))
            self._event_history.append({
                "event": event_name,
                "time": time.time(),
                "data_keys": list(kwargs.keys()),
            })
            if len(self._event_history) > self._max_history:
                self._event_history = self._event_history[-self._max_history:]

        for priority, callback in listeners:
            try:
                callback(**kwargs)
            except Exception as e:
                logger.error("Event handler error [%s -> %s]: %s",
                             event_name, getattr(callback, "__name__", callback), e)

    def clear(self, event_name: str = None):
        """Remove all listeners, optionally for a specific event."""
        with self._lock:
            if event_name:
                self._listeners.pop(event_name, None)
            else:
                self._listeners.clear()

    @property
    def listener_count(self) -> int:
        """Total number of registered listeners."""
        with self._lock:
            return sum(len(cbs) for cbs in self._listeners.values())

    def get_history(self, last_n: int = 10) -> list:
        """Get recent event history."""
        with self._lock:
            return self._event_history[-last_n:]


# =============================================================================
# Standard Event Names (constants to avoid typos)
# =============================================================================

class Events:
    """Standard event names used throughout the system."""

    # Collection
    COLLECTION_STARTED = "collection_started"
    EXAMPLE_ADDED = "example_added"
    COLLECTION_STOPPED = "collection_stopped"

    # Training
    TRAINING_STARTED = "training_started"
    TRAIN_STATUS = "train_status"
    TRAINING_COMPLETE = "training_complete"

    # Prediction
    PREDICTION_STARTED = "prediction_started"
    CLASS_PREDICTED = "class_predicted"
    PREDICTION_STOPPED = "prediction_stopped"

    # Session
    DATASET_RESET = "dataset_reset"
    SESSION_ERROR = "session_error"
