"""
Exception hierarchy for the controller.

Errors raised by the dataset, the trainer and the session all derive from
:class:`ControllerError` so the UI layer can catch one type, log it and
keep running.
"""


class ControllerError(Exception):
    """Base exception for controller errors."""
    pass


class ShapeMismatchError(ControllerError, ValueError):
    """Raised when an example cannot be concatenated onto the dataset."""
    pass


class LabelOutOfRangeError(ControllerError, ValueError):
    """Raised when a label is outside ``[0, num_classes)``."""
    pass


class EmptyDatasetError(ControllerError):
    """Raised when training is requested before any example was added."""
    pass


class InvalidBatchSizeError(ControllerError, ValueError):
    """Raised when the fraction-derived batch size rounds down to zero."""
    pass


class ModelNotTrainedError(ControllerError):
    """Raised when prediction is requested before a head was trained."""
    pass
