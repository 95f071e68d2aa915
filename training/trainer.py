"""
Training driver for the controller head.

Fits a fresh :class:`ControllerHead` on the tensors held by a
:class:`ControllerDataset`. The batch size is a fraction of the number
of collected examples, since how many examples a user records varies a
lot between sessions::

    batch_size = floor(N * batch_size_fraction)

Loss is categorical cross-entropy against the one-hot label rows; rows
are reshuffled every epoch.
"""

import math
import time
import logging

import torch
import torch.nn as nn
import torch.optim as optim

from core.errors import EmptyDatasetError, InvalidBatchSizeError
from models.controller_head import ControllerHead

logger = logging.getLogger(__name__)


def batch_size_for(num_examples, fraction):
    """Fraction-derived batch size.

    Raises:
        InvalidBatchSizeError: when the result is 0 (or the fraction is NaN)
    """
    if fraction is None or math.isnan(fraction):
        raise InvalidBatchSizeError("Batch size fraction is NaN")
    batch_size = int(math.floor(num_examples * fraction))
    if batch_size <= 0:
        raise InvalidBatchSizeError(
            "Batch size is 0 for %d examples at fraction %.3f. "
            "Collect more examples or choose a larger fraction."
            % (num_examples, fraction)
        )
    return batch_size


class ControllerTrainer:
    """Builds and fits a controller head on collected examples."""

    def __init__(self, learning_rate=1e-4, epochs=20, batch_size_fraction=0.4,
                 units=100, device=None, seed=None):
        self.learning_rate = learning_rate
        self.epochs = epochs
        self.batch_size_fraction = batch_size_fraction
        self.units = units
        self.seed = seed
        self._device = torch.device(
            device or ("cuda" if torch.cuda.is_available() else "cpu")
        )

    @classmethod
    def from_dict(cls, config: dict) -> "ControllerTrainer":
        """Create trainer from the ``training`` config section."""
        return cls(
            learning_rate=config.get("learning_rate", 1e-4),
            epochs=config.get("epochs", 20),
            batch_size_fraction=config.get("batch_size_fraction", 0.4),
            units=config.get("units", 100),
            device=config.get("device"),
            seed=config.get("seed"),
        )

    def fit(self, features, labels, batch_size_fraction=None, epochs=None,
            on_batch_end=None):
        """Train a new head.

        Args:
            features: Tensor (N, ...) from ``ControllerDataset.features``
            labels: One-hot tensor (N, num_classes) from ``ControllerDataset.labels``
            batch_size_fraction: Overrides the configured fraction
            epochs: Overrides the configured epoch count
            on_batch_end: Optional callable(batch_index, loss) invoked after
                          every optimizer step

        Returns:
            (model, history) where history = {"loss": [per-epoch mean loss]}

        Raises:
            EmptyDatasetError: no examples collected yet
            InvalidBatchSizeError: fraction-derived batch size is 0
        """
        if features is None or labels is None or features.shape[0] == 0:
            raise EmptyDatasetError("Add some examples before training!")

        fraction = self.batch_size_fraction if batch_size_fraction is None else batch_size_fraction
        epochs = self.epochs if epochs is None else epochs
        num_examples = int(features.shape[0])
        batch_size = batch_size_for(num_examples, fraction)

        if self.seed is not None:
            torch.manual_seed(self.seed)

        features = features.to(self._device)
        labels = labels.to(self._device)

        model = ControllerHead(
            input_shape=features.shape[1:],
            num_classes=labels.shape[1],
            units=self.units,
        ).to(self._device)

        # Soft-target cross-entropy: labels are one-hot probability rows
        criterion = nn.CrossEntropyLoss()
        optimizer = optim.Adam(model.parameters(), lr=self.learning_rate)

        logger.info("Training head: %d examples, batch_size=%d, epochs=%d, lr=%.5f",
                    num_examples, batch_size, epochs, self.learning_rate)

        history = {"loss": []}
        start_time = time.time()
        batch_index = 0

        for epoch in range(1, epochs + 1):
            model.train()
            running_loss = 0.0
            order = torch.randperm(num_examples, device=self._device)

            for start in range(0, num_examples, batch_size):
                idx = order[start:start + batch_size]
                batch_x = features[idx]
                batch_y = labels[idx]

                optimizer.zero_grad()
                outputs = model(batch_x)
                loss = criterion(outputs, batch_y)
                loss.backward()
                optimizer.step()

                running_loss += loss.item() * batch_x.size(0)
                if on_batch_end is not None:
                    on_batch_end(batch_index, loss.item())
                batch_index += 1

            epoch_loss = running_loss / num_examples
            history["loss"].append(epoch_loss)
            logger.debug("Epoch %3d/%d | loss=%.5f", epoch, epochs, epoch_loss)

        model.eval()
        logger.info("Training complete in %.1f seconds, final loss %.5f",
                    time.time() - start_time, history["loss"][-1] if history["loss"] else float("nan"))
        return model, history
