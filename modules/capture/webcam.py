"""
Webcam capture for example collection and live prediction.

Wraps ``cv2.VideoCapture`` with warmup, mirror flip and a ``capture()``
shortcut that returns a frame already converted to backbone input.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import cv2
import numpy as np
import torch

from modules.capture.preprocess import to_model_input

logger = logging.getLogger(__name__)


@dataclass
class WebcamConfig:
    """Webcam configuration settings."""
    device_id: int = 0
    width: int = 640
    height: int = 480
    fps: int = 30
    buffer_size: int = 1
    flip_horizontal: bool = True
    warmup_frames: int = 5
    image_size: int = 224

    @classmethod
    def from_dict(cls, config: dict) -> "WebcamConfig":
        """Create config from dictionary (YAML parsed)."""
        return cls(
            device_id=config.get("device_id", 0),
            width=config.get("width", 640),
            height=config.get("height", 480),
            fps=config.get("fps", 30),
            buffer_size=config.get("buffer_size", 1),
            flip_horizontal=config.get("flip_horizontal", True),
            warmup_frames=config.get("warmup_frames", 5),
            image_size=config.get("image_size", 224),
        )


class Webcam:
    """
    Synchronous webcam reader.

    Example:
        >>> with Webcam(WebcamConfig()) as cam:
        ...     image = cam.capture()   # (1, 3, 224, 224) tensor or None
    """

    def __init__(self, config: Optional[WebcamConfig] = None):
        self.config = config or WebcamConfig()
        self._cap: Optional[cv2.VideoCapture] = None
        self._frame_number = 0
        self._last_frame: Optional[np.ndarray] = None

    def start(self) -> bool:
        """
        Open the device.

        Returns:
            True if the camera opened
        """
        logger.info("Starting webcam (device=%d, %dx%d@%dfps)",
                    self.config.device_id, self.config.width,
                    self.config.height, self.config.fps)

        self._cap = cv2.VideoCapture(self.config.device_id)
        if not self._cap.isOpened():
            logger.error("Failed to open webcam %d", self.config.device_id)
            self._cap = None
            return False

        self._cap.set(cv2.CAP_PROP_FRAME_WIDTH, self.config.width)
        self._cap.set(cv2.CAP_PROP_FRAME_HEIGHT, self.config.height)
        self._cap.set(cv2.CAP_PROP_FPS, self.config.fps)
        self._cap.set(cv2.CAP_PROP_BUFFERSIZE, self.config.buffer_size)

        # Let auto-exposure settle
        for _ in range(self.config.warmup_frames):
            self._cap.read()

        actual_w = int(self._cap.get(cv2.CAP_PROP_FRAME_WIDTH))
        actual_h = int(self._cap.get(cv2.CAP_PROP_FRAME_HEIGHT))
        logger.info("Webcam opened: %dx%d", actual_w, actual_h)
        return True

    def stop(self) -> None:
        """Release the device."""
        if self._cap is not None:
            self._cap.release()
            self._cap = None
            logger.info("Webcam stopped")

    def read(self) -> Optional[np.ndarray]:
        """Read one BGR frame, or None if capture failed."""
        if self._cap is None:
            return None

        ret, image = self._cap.read()
        if not ret or image is None:
            logger.warning("Failed to capture frame")
            return None

        if self.config.flip_horizontal:
            image = cv2.flip(image, 1)

        self._frame_number += 1
        self._last_frame = image
        return image

    def capture(self) -> Optional[torch.Tensor]:
        """Read a frame and convert it to a (1, 3, S, S) backbone input."""
        image = self.read()
        if image is None:
            return None
        return to_model_input(image, self.config.image_size)

    @property
    def last_frame(self) -> Optional[np.ndarray]:
        """Most recent raw BGR frame (for on-screen preview)."""
        return self._last_frame

    @property
    def frame_number(self) -> int:
        return self._frame_number

    @property
    def is_open(self) -> bool:
        return self._cap is not None and self._cap.isOpened()

    def __enter__(self):
        self.start()
        return self

    def __exit__(self, exc_type, exc_val, exc_tb):
        self.stop()
        return False
