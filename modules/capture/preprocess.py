"""
Frame preprocessing: BGR webcam frame → normalized backbone input.

Steps:
    1. Crop the centre square so the image has no letterboxing
    2. Resize to the backbone resolution
    3. BGR -> RGB
    4. Scale 0..255 to -1..1 (divide by 127, subtract 1)
    5. HWC -> CHW and add a batch axis of 1
"""

import cv2
import numpy as np
import torch


def crop_center_square(image: np.ndarray) -> np.ndarray:
    """Centered square crop of an (H, W, C) image."""
    if image.ndim < 2:
        raise ValueError("Expected an (H, W[, C]) image, got shape %s" % str(image.shape))
    height, width = image.shape[:2]
    size = min(height, width)
    top = (height - size) // 2
    left = (width - size) // 2
    return image[top:top + size, left:left + size]


def to_model_input(image_bgr: np.ndarray, size: int = 224) -> torch.Tensor:
    """Convert a BGR uint8 frame to a (1, 3, size, size) float32 tensor in [-1, 1]."""
    square = crop_center_square(image_bgr)
    resized = cv2.resize(square, (size, size), interpolation=cv2.INTER_AREA)
    rgb = cv2.cvtColor(resized, cv2.COLOR_BGR2RGB)
    normalized = rgb.astype(np.float32) / 127.0 - 1.0
    chw = np.ascontiguousarray(normalized.transpose(2, 0, 1))
    return torch.from_numpy(chw).unsqueeze(0)
