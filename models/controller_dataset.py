"""
ControllerDataset — incremental store of labeled feature tensors.

Each call to :meth:`ControllerDataset.add_example` appends exactly one
feature row (a ``[1, C, H, W]`` activation from the frozen backbone)
and its one-hot label. The dataset always owns exactly two tensors::

    features : [N, ...feature_dims]
    labels   : [N, num_classes]   float32, one-hot rows

Ownership rules:
    - The first example is adopted as-is (detached, no copy).
    - Every later append builds new tensors with ``torch.cat`` and swaps
      them in only after both concatenations succeeded. The superseded
      tensors are dropped before the call returns.
    - Tensors handed out earlier through ``features`` / ``labels`` are
      never written to, so callers holding them keep stable values.
"""

import logging
import numbers
from typing import Dict, Optional, Tuple

import numpy as np
import torch
import torch.nn.functional as F

from core.errors import LabelOutOfRangeError, ShapeMismatchError

logger = logging.getLogger(__name__)


class ControllerDataset:
    """Growing, aligned (features, one-hot labels) pair for one session.

    Example:
        >>> dataset = ControllerDataset(num_classes=4)
        >>> dataset.add_example(torch.zeros(1, 8), 2)
        >>> dataset.labels
        tensor([[0., 0., 1., 0.]])
    """

    def __init__(self, num_classes: int):
        if isinstance(num_classes, bool) or not isinstance(num_classes, numbers.Integral):
            raise ValueError("num_classes must be an int, got %r" % (num_classes,))
        if num_classes <= 0:
            raise ValueError("num_classes must be positive, got %d" % num_classes)

        self._num_classes = int(num_classes)
        self._features: Optional[torch.Tensor] = None
        self._labels: Optional[torch.Tensor] = None
        self._class_counts = np.zeros(self._num_classes, dtype=np.int64)

    # ------------------------------------------------------------------
    # Public API
    # ------------------------------------------------------------------

    def add_example(self, example, label: int) -> None:
        """Append one example and its label.

        Args:
            example: Feature tensor (or array) of shape ``(1, ...)``, one
                     backbone activation.
            label: Class index in ``[0, num_classes)``.

        Raises:
            LabelOutOfRangeError: label is not an int in range.
            ShapeMismatchError: example is not a single row, or cannot be
                                concatenated onto the accumulated features.
        """
        label = self.check_label(label)

        example = torch.as_tensor(example).detach()
        if example.dim() < 2 or example.shape[0] != 1:
            raise ShapeMismatchError(
                "Example must be a single row of shape (1, ...), got %s"
                % str(tuple(example.shape))
            )

        y = self._one_hot(label, example.device)

        if self._features is None:
            self._features = example
            self._labels = y
        else:
            try:
                new_features = torch.cat((self._features, example), dim=0)
                new_labels = torch.cat((self._labels, y), dim=0)
            except RuntimeError as e:
                raise ShapeMismatchError(
                    "Cannot append example of shape %s to features of shape %s: %s"
                    % (tuple(example.shape), tuple(self._features.shape), e)
                ) from e

            # Rebinding drops the dataset's references to the old pair.
            self._features = new_features
            self._labels = new_labels

        self._class_counts[label] += 1
        logger.debug("Added example for class %d (total %d)", label, self.num_examples)

    def reset(self) -> None:
        """Drop both tensors and return to the empty state."""
        self._features = None
        self._labels = None
        self._class_counts[:] = 0
        logger.info("Controller dataset cleared")

    def class_counts(self) -> Dict[int, int]:
        """Number of rows collected per class index."""
        return {i: int(c) for i, c in enumerate(self._class_counts)}

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def num_classes(self) -> int:
        return self._num_classes

    @property
    def features(self) -> Optional[torch.Tensor]:
        return self._features

    @property
    def labels(self) -> Optional[torch.Tensor]:
        return self._labels

    @property
    def num_examples(self) -> int:
        if self._features is None:
            return 0
        return int(self._features.shape[0])

    @property
    def is_empty(self) -> bool:
        return self._features is None

    @property
    def feature_shape(self) -> Optional[Tuple[int, ...]]:
        """Per-example feature shape (without the batch axis)."""
        if self._features is None:
            return None
        return tuple(self._features.shape[1:])

    def __len__(self):
        return self.num_examples

    def __repr__(self):
        return "ControllerDataset(num_classes=%d, examples=%d)" % (
            self._num_classes, self.num_examples)

    def check_label(self, label) -> int:
        """Validated ``int`` label, or :class:`LabelOutOfRangeError`."""
        if isinstance(label, bool) or not isinstance(label, numbers.Integral):
            raise LabelOutOfRangeError("Label must be an int, got %r" % (label,))
        label = int(label)
        if not 0 <= label < self._num_classes:
            raise LabelOutOfRangeError(
                "Label %d outside [0, %d)" % (label, self._num_classes)
            )
        return label

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    def _one_hot(self, label: int, device) -> torch.Tensor:
        indices = torch.tensor([label], dtype=torch.long, device=device)
        return F.one_hot(indices, self._num_classes).to(torch.float32)
