"""
Frozen MobileNet backbone: webcam image → internal activation.

The classifier head never sees raw pixels. Each frame goes through the
convolutional trunk of an ImageNet-pretrained MobileNet and the final
feature map is used as the example tensor::

    input   [1, 3, 224, 224]  float32 in [-1, 1]
    output  [1, C, 7, 7]      C = 1280 (v2) or 576 (v3 small)

The backbone is put in eval mode with gradients disabled, so training
only ever updates the head.
"""

import logging
from typing import Optional, Tuple

import torch
from torchvision.models import (
    MobileNet_V2_Weights,
    MobileNet_V3_Small_Weights,
    mobilenet_v2,
    mobilenet_v3_small,
)

from modules.utils.logger import log_timing

logger = logging.getLogger(__name__)

# arch name -> (constructor, pretrained weights)
BACKBONES = {
    "mobilenet_v2": (mobilenet_v2, MobileNet_V2_Weights.DEFAULT),
    "mobilenet_v3_small": (mobilenet_v3_small, MobileNet_V3_Small_Weights.DEFAULT),
}

DEFAULT_IMAGE_SIZE = 224


class MobileNetFeatureExtractor:
    """Truncated, frozen MobileNet used as a fixed feature function."""

    def __init__(self, arch="mobilenet_v2", pretrained=True, device=None,
                 image_size=DEFAULT_IMAGE_SIZE):
        """
        Args:
            arch: Key of :data:`BACKBONES`
            pretrained: Load ImageNet weights (downloads on first use)
            device: torch device string; defaults to CUDA when available
            image_size: Square input resolution expected by :meth:`predict`
        """
        if arch not in BACKBONES:
            raise ValueError("Unknown backbone %r (choose from %s)"
                             % (arch, ", ".join(sorted(BACKBONES))))

        self._arch = arch
        self._image_size = image_size
        self._device = torch.device(
            device or ("cuda" if torch.cuda.is_available() else "cpu")
        )

        constructor, weights = BACKBONES[arch]
        backbone = constructor(weights=weights if pretrained else None)

        # Keep only the convolutional trunk (drop pooling + classifier)
        self._trunk = backbone.features
        self._trunk.eval()
        for param in self._trunk.parameters():
            param.requires_grad = False
        self._trunk.to(self._device)

        self._output_shape: Optional[Tuple[int, ...]] = None

        logger.info("Feature extractor: %s (pretrained=%s) on %s",
                    arch, pretrained, self._device)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    @log_timing
    def predict(self, image: torch.Tensor) -> torch.Tensor:
        """Run the frozen trunk.

        Args:
            image: Tensor of shape (batch, 3, H, W), normalized to [-1, 1]

        Returns:
            Activation tensor of shape (batch, C, h, w) on the extractor's device
        """
        if image.dim() != 4 or image.shape[1] != 3:
            raise ValueError("Expected (batch, 3, H, W) image, got %s"
                             % str(tuple(image.shape)))
        with torch.no_grad():
            return self._trunk(image.to(self._device))

    __call__ = predict

    def warmup(self) -> Tuple[int, ...]:
        """Run one blank frame through the trunk and cache the output shape.

        The first call is slow (weight upload, kernel selection), so doing
        it up front keeps the first collected example responsive.
        """
        dummy = torch.zeros(1, 3, self._image_size, self._image_size)
        out = self.predict(dummy)
        self._output_shape = tuple(out.shape[1:])
        logger.info("Feature extractor warmed up, activation shape %s",
                    self._output_shape)
        return self._output_shape

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def output_shape(self) -> Tuple[int, ...]:
        """Per-example activation shape, e.g. ``(1280, 7, 7)``."""
        if self._output_shape is None:
            return self.warmup()
        return self._output_shape

    @property
    def device(self) -> torch.device:
        return self._device

    @property
    def arch(self) -> str:
        return self._arch

    @property
    def image_size(self) -> int:
        return self._image_size
