"""
Shared domain types for the webcam controller.

Centralizes the control vocabulary and result containers used by the
session, the UI and the tests.
"""

import time
from enum import Enum
from typing import List, Optional, Sequence

import numpy as np


# =============================================================================
# Controls
# =============================================================================

# Button names, in label order. Label i is CONTROLS[i].
DEFAULT_CONTROLS = ["one", "two", "three", "four"]

NUM_CLASSES = len(DEFAULT_CONTROLS)


class SessionMode(Enum):
    """What the session is doing right now."""
    IDLE = "idle"
    COLLECTING = "collecting"
    TRAINING = "training"
    PREDICTING = "predicting"


# =============================================================================
# Data Containers
# =============================================================================

class Prediction:
    """Container for one live inference result.

    Uses __slots__ since one is created per frame while predicting.
    """

    __slots__ = ("class_id", "control", "confidence", "probabilities", "timestamp")

    def __init__(self, class_id: int, control: str, probabilities: Optional[np.ndarray] = None):
        self.class_id = class_id
        self.control = control
        self.probabilities = probabilities
        self.confidence = float(probabilities[class_id]) if probabilities is not None else 0.0
        self.timestamp = time.time()

    def __repr__(self):
        return f"Prediction({self.control}, conf={self.confidence:.2f})"


class TrainingResult:
    """Summary of one training run."""

    __slots__ = ("num_examples", "epochs", "final_loss", "history", "elapsed_sec")

    def __init__(self, num_examples: int, epochs: int, history: dict, elapsed_sec: float):
        self.num_examples = num_examples
        self.epochs = epochs
        self.history = history
        losses: List[float] = history.get("loss", [])
        self.final_loss = losses[-1] if losses else float("nan")
        self.elapsed_sec = elapsed_sec

    def __repr__(self):
        return f"TrainingResult(examples={self.num_examples}, loss={self.final_loss:.5f})"


def control_name(controls: Sequence[str], class_id: int) -> str:
    """Control name for a class index, ``"class_<i>"`` if unnamed."""
    if 0 <= class_id < len(controls):
        return controls[class_id]
    return "class_%d" % class_id
