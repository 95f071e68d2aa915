"""
ControllerHead — small trainable classifier on top of the frozen backbone.

Architecture:
    Input  : backbone activation, e.g. (1280, 7, 7)
    Flatten
    FC1    : ``units`` (default 100), bias, ReLU
    Output : num_classes, no bias (softmax applied externally or via loss fn)

A fresh head is built for every training run, so the backbone weights
stay untouched and retraining starts from scratch.
"""

import logging
import math

import torch
import torch.nn as nn

logger = logging.getLogger(__name__)


class ControllerHead(nn.Module):
    """Two-layer fully connected classifier for backbone activations."""

    def __init__(self, input_shape, num_classes, units=100):
        super(ControllerHead, self).__init__()

        self._input_shape = tuple(input_shape)
        self._num_classes = num_classes
        in_features = int(math.prod(self._input_shape))

        self.features = nn.Sequential(
            nn.Flatten(),
            nn.Linear(in_features, units, bias=True),
            nn.ReLU(inplace=True),
        )
        self.classifier = nn.Linear(units, num_classes, bias=False)

        self._init_weights()

    def _init_weights(self):
        # Variance-scaling init on every dense layer
        for m in self.modules():
            if isinstance(m, nn.Linear):
                nn.init.kaiming_normal_(m.weight, nonlinearity="relu")
                if m.bias is not None:
                    nn.init.zeros_(m.bias)

    def forward(self, x):
        """Forward pass.

        Args:
            x: Tensor of shape (batch, *input_shape)

        Returns:
            Tensor of shape (batch, num_classes), raw logits
        """
        x = self.features(x)
        return self.classifier(x)

    def predict_proba(self, x):
        """Softmax probabilities for inference."""
        self.eval()
        with torch.no_grad():
            return torch.softmax(self.forward(x), dim=1)

    def predict_class(self, x):
        """Index of the most probable class for each row of ``x``."""
        return self.predict_proba(x).argmax(dim=1)

    @property
    def input_shape(self):
        return self._input_shape

    @property
    def num_classes(self):
        return self._num_classes

    def save_checkpoint(self, path, **extra):
        """Save weights plus the shape info needed by :meth:`load_checkpoint`."""
        checkpoint = {
            "model_state_dict": self.state_dict(),
            "input_shape": list(self._input_shape),
            "num_classes": self._num_classes,
            "units": self.classifier.in_features,
        }
        checkpoint.update(extra)
        torch.save(checkpoint, path)
        logger.info("Controller head saved to %s", path)

    @classmethod
    def load_checkpoint(cls, path, device="cpu"):
        """Load a head saved by :meth:`save_checkpoint`, in eval mode."""
        checkpoint = torch.load(path, map_location=device)
        model = cls(
            input_shape=checkpoint["input_shape"],
            num_classes=checkpoint["num_classes"],
            units=checkpoint.get("units", 100),
        )
        model.load_state_dict(checkpoint["model_state_dict"])
        model.to(device)
        model.eval()
        logger.info("Loaded ControllerHead (%d classes) from %s",
                    model.num_classes, path)
        return model
