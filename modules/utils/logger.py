"""
Structured logging plus a small history of collection/prediction events.
"""

import os
import logging
import logging.handlers
import time
from functools import wraps

from core.events import Events


def setup_logging(level="INFO", log_file=None, max_size_mb=10, backup_count=3):
    """Configure structured logging for the application."""
    # Compact console format
    console_format = "%(asctime)s  %(levelname)-5s  %(message)s"
    # Verbose format for log file
    file_format = "%(asctime)s [%(levelname)-7s] %(name)-25s | %(message)s"
    date_format = "%H:%M:%S"

    root_logger = logging.getLogger()
    root_logger.setLevel(getattr(logging, level.upper(), logging.INFO))

    root_logger.handlers.clear()

    console = logging.StreamHandler()
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(console_format, datefmt=date_format))
    root_logger.addHandler(console)

    if log_file:
        log_dir = os.path.dirname(log_file)
        if log_dir:
            os.makedirs(log_dir, exist_ok=True)
        file_handler = logging.handlers.RotatingFileHandler(
            log_file,
            maxBytes=max_size_mb * 1024 * 1024,
            backupCount=backup_count,
        )
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(file_format, datefmt=date_format))
        root_logger.addHandler(file_handler)

    return root_logger


class SessionLogger:
    """Logs collected examples, training progress and predictions.

    Subscribes to a session's event bus via :meth:`attach`.
    """

    def __init__(self, max_history=500):
        self.logger = logging.getLogger("session_events")
        self._history = []
        self._max_history = max_history

    def attach(self, bus):
        bus.subscribe(Events.EXAMPLE_ADDED, self.log_example)
        bus.subscribe(Events.TRAINING_COMPLETE, self.log_training)
        bus.subscribe(Events.CLASS_PREDICTED, self.log_prediction)
        return self

    def _record(self, entry):
        entry["timestamp"] = time.time()
        self._history.append(entry)
        if len(self._history) > self._max_history:
            self._history = self._history[-self._max_history:]

    def log_example(self, label, control, total, **_):
        self._record({"event": "example", "label": label, "total": total})
        self.logger.debug("Example: %-8s | total %d", control, total)

    def log_training(self, result, **_):
        self._record({"event": "training", "loss": result.final_loss,
                      "examples": result.num_examples})
        self.logger.info(
            "Training: %d examples | %d epochs | loss %.5f | %.1fs",
            result.num_examples, result.epochs, result.final_loss, result.elapsed_sec,
        )

    def log_prediction(self, prediction, **_):
        self._record({"event": "prediction", "class_id": prediction.class_id,
                      "confidence": prediction.confidence})
        self.logger.debug("Prediction: %-8s | Confidence: %.2f",
                          prediction.control, prediction.confidence)

    def get_history(self, last_n=None):
        """Get recent event history."""
        if last_n:
            return self._history[-last_n:]
        return self._history.copy()


def log_timing(func):
    """Decorator to log function execution time."""
    logger = logging.getLogger(func.__module__)

    @wraps(func)
    def wrapper(*args, **kwargs):
        start = time.perf_counter()
        result = func(*args, **kwargs)
        elapsed = (time.perf_counter() - start) * 1000
        logger.debug("%s took %.2fms", func.__name__, elapsed)
        return result

    return wrapper
