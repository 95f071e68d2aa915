"""
ControllerSession — everything one collect/train/predict session owns.

Holds the frozen feature extractor, the webcam, the example dataset, the
trained head and the background workers (hold-to-collect, training and
live prediction). UI handlers get a session object instead of reaching
for module-level state.

Dataset mutation, training and inference are serialized by one lock,
so a collection step never interleaves with a training run.
"""

import time
import logging
import threading
from typing import Callable, Optional, Sequence

from core.errors import ModelNotTrainedError
from core.events import EventBus, Events
from core.loop import RepeatingTask
from core.types import DEFAULT_CONTROLS, Prediction, SessionMode, TrainingResult, control_name
from models.controller_dataset import ControllerDataset
from training.trainer import ControllerTrainer

logger = logging.getLogger(__name__)


class ControllerSession:
    """Collect → train → predict workflow around a :class:`ControllerDataset`.

    Usage::

        session = ControllerSession(extractor, webcam)
        session.start_collecting(0)      # hold "one"
        ...
        session.stop_collecting()
        session.train()
        session.start_predicting()
    """

    def __init__(self, extractor, camera, num_classes: Optional[int] = None,
                 controls: Optional[Sequence[str]] = None,
                 trainer: Optional[ControllerTrainer] = None,
                 event_bus: Optional[EventBus] = None):
        """
        Args:
            extractor: Object with ``predict(image) -> activation``
            camera: Object with ``capture() -> image tensor or None``
            num_classes: Number of controls; defaults to ``len(controls)``
            controls: Control names in label order
            trainer: Training driver; a default one is created if omitted
            event_bus: Bus for UI notifications; a private one if omitted
        """
        self._controls = list(controls or DEFAULT_CONTROLS)
        self._num_classes = len(self._controls) if num_classes is None else num_classes

        self._extractor = extractor
        self._camera = camera
        self._trainer = trainer or ControllerTrainer()
        self._bus = event_bus or EventBus()

        self._dataset = ControllerDataset(self._num_classes)
        self._model = None
        self._last_prediction: Optional[Prediction] = None
        self._mode = SessionMode.IDLE

        self._lock = threading.RLock()
        # Guards the task slots below; never held while a step runs
        self._task_lock = threading.Lock()
        self._collect_task: Optional[RepeatingTask] = None
        self._train_task: Optional[RepeatingTask] = None
        self._predict_task: Optional[RepeatingTask] = None

        logger.info("Session created: %d controls (%s)",
                    self._num_classes, ", ".join(self._controls[:self._num_classes]))

    # ------------------------------------------------------------------
    # Collection
    # ------------------------------------------------------------------

    def add_example_from_camera(self, label: int) -> bool:
        """Capture one frame, embed it and append it under ``label``.

        Returns:
            False when the camera produced no frame
        """
        with self._lock:
            image = self._camera.capture()
            if image is None:
                return False
            activation = self._extractor.predict(image)
            self._dataset.add_example(activation, label)
            total = self._dataset.class_counts()[label]

        self._bus.emit(Events.EXAMPLE_ADDED, label=label,
                       control=control_name(self._controls, label), total=total)
        return True

    def start_collecting(self, label: int, yield_fn: Optional[Callable[[], None]] = None,
                         blocking: bool = False, max_examples: Optional[int] = None):
        """Keep adding examples for ``label`` until :meth:`stop_collecting`.

        Args:
            label: Control being held
            yield_fn: Suspension point between examples (default: one frame)
            blocking: Run on the calling thread instead of a worker thread
            max_examples: Stop on its own after this many examples

        Raises:
            LabelOutOfRangeError: label is not an int in ``[0, num_classes)``
        """
        label = self._dataset.check_label(label)

        self.stop_collecting()
        self._mode = SessionMode.COLLECTING
        self._bus.emit(Events.COLLECTION_STARTED, label=label,
                       control=control_name(self._controls, label))

        task = RepeatingTask(
            step=lambda: self.add_example_from_camera(label),
            yield_fn=yield_fn,
            name="collect-%s" % control_name(self._controls, label),
            max_iterations=max_examples,
            on_error=self._on_loop_error,
            on_finish=lambda: self._finish_collecting(task, label),
        )
        with self._task_lock:
            self._collect_task = task
        if blocking:
            task.run()
        else:
            task.start_async()

    def stop_collecting(self):
        """Release the held control."""
        task = self._collect_task
        if task is None:
            return
        task.stop(timeout=2.0)
        self._finish_collecting(task, None)

    def _finish_collecting(self, task, label):
        with self._task_lock:
            if self._collect_task is not task:
                return
            self._collect_task = None
            if self._mode is SessionMode.COLLECTING:
                self._mode = SessionMode.IDLE
        self._bus.emit(Events.COLLECTION_STOPPED, label=label, iterations=task.iterations)
        logger.info("Collection stopped (%d examples in dataset)", self._dataset.num_examples)

    # ------------------------------------------------------------------
    # Training
    # ------------------------------------------------------------------

    def train(self, on_batch_end: Optional[Callable[[int, float], None]] = None) -> TrainingResult:
        """Fit a fresh head on everything collected so far.

        Raises:
            EmptyDatasetError: nothing collected yet
            InvalidBatchSizeError: too few examples for the batch fraction
        """
        def _on_batch_end(batch, loss):
            self._bus.emit(Events.TRAIN_STATUS, batch=batch, loss=loss)
            if on_batch_end is not None:
                on_batch_end(batch, loss)

        with self._lock:
            previous_mode = self._mode
            self._mode = SessionMode.TRAINING
            self._bus.emit(Events.TRAINING_STARTED, num_examples=self._dataset.num_examples)
            start = time.time()
            try:
                model, history = self._trainer.fit(
                    self._dataset.features, self._dataset.labels,
                    on_batch_end=_on_batch_end,
                )
            finally:
                self._mode = previous_mode

            self._model = model
            result = TrainingResult(
                num_examples=self._dataset.num_examples,
                epochs=len(history["loss"]),
                history=history,
                elapsed_sec=time.time() - start,
            )

        self._bus.emit(Events.TRAINING_COMPLETE, result=result)
        logger.info("Trained on %d examples, loss %.5f",
                    result.num_examples, result.final_loss)
        return result

    def start_training(self, on_batch_end: Optional[Callable[[int, float], None]] = None):
        """Run :meth:`train` once on a worker thread.

        Progress arrives as ``TRAIN_STATUS`` events, the result as
        ``TRAINING_COMPLETE`` and a failure as ``SESSION_ERROR``.
        """
        if self.is_training:
            logger.warning("Training already in progress")
            return

        task = RepeatingTask(
            step=lambda: self.train(on_batch_end),
            yield_fn=lambda: None,
            name="train",
            max_iterations=1,
            on_error=self._on_loop_error,
            on_finish=lambda: self._finish_training(task),
        )
        with self._task_lock:
            self._train_task = task
        task.start_async()

    def _finish_training(self, task):
        with self._task_lock:
            if self._train_task is task:
                self._train_task = None

    def save_model(self, path):
        """Write the trained head to ``path``."""
        if self._model is None:
            raise ModelNotTrainedError("Train the model before saving it")
        self._model.save_checkpoint(path, controls=self._controls)

    # ------------------------------------------------------------------
    # Prediction
    # ------------------------------------------------------------------

    def predict_once(self) -> Optional[Prediction]:
        """Classify the current camera frame.

        Returns:
            Prediction, or None when the camera produced no frame

        Raises:
            ModelNotTrainedError: :meth:`train` has not succeeded yet
        """
        with self._lock:
            if self._model is None:
                raise ModelNotTrainedError("Train the model before predicting")
            image = self._camera.capture()
            if image is None:
                return None
            activation = self._extractor.predict(image)
            device = next(self._model.parameters()).device
            probs = self._model.predict_proba(activation.to(device))[0].cpu().numpy()

        class_id = int(probs.argmax())
        prediction = Prediction(class_id, control_name(self._controls, class_id), probs)
        self._last_prediction = prediction
        self._bus.emit(Events.CLASS_PREDICTED, prediction=prediction)
        return prediction

    def start_predicting(self, yield_fn: Optional[Callable[[], None]] = None,
                         blocking: bool = False, max_frames: Optional[int] = None):
        """Run :meth:`predict_once` every frame until :meth:`stop_predicting`."""
        if self._model is None:
            raise ModelNotTrainedError("Train the model before predicting")

        self.stop_predicting()
        self._mode = SessionMode.PREDICTING
        self._bus.emit(Events.PREDICTION_STARTED)

        task = RepeatingTask(
            step=self.predict_once,
            yield_fn=yield_fn,
            name="predict",
            max_iterations=max_frames,
            on_error=self._on_loop_error,
            on_finish=lambda: self._finish_predicting(task),
        )
        with self._task_lock:
            self._predict_task = task
        if blocking:
            task.run()
        else:
            task.start_async()

    def stop_predicting(self):
        task = self._predict_task
        if task is None:
            return
        task.stop(timeout=2.0)
        self._finish_predicting(task)

    def _finish_predicting(self, task):
        with self._task_lock:
            if self._predict_task is not task:
                return
            self._predict_task = None
            if self._mode is SessionMode.PREDICTING:
                self._mode = SessionMode.IDLE
        self._bus.emit(Events.PREDICTION_STOPPED)

    def _on_loop_error(self, error):
        self._bus.emit(Events.SESSION_ERROR, error=error)

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    def reset(self):
        """Stop any loop and drop all collected examples."""
        self.stop_collecting()
        self.stop_predicting()
        with self._lock:
            self._dataset.reset()
        self._bus.emit(Events.DATASET_RESET)

    def close(self):
        """Stop background workers."""
        self.stop_collecting()
        self.stop_predicting()
        task = self._train_task
        if task is not None:
            task.stop(timeout=10.0)
        logger.info("Session closed")

    # ------------------------------------------------------------------
    # Properties
    # ------------------------------------------------------------------

    @property
    def dataset(self) -> ControllerDataset:
        return self._dataset

    @property
    def model(self):
        return self._model

    @property
    def is_trained(self) -> bool:
        return self._model is not None

    @property
    def mode(self) -> SessionMode:
        return self._mode

    @property
    def is_collecting(self) -> bool:
        task = self._collect_task
        return task is not None and task.is_running

    @property
    def is_training(self) -> bool:
        return self._train_task is not None

    @property
    def is_predicting(self) -> bool:
        task = self._predict_task
        return task is not None and task.is_running

    @property
    def last_prediction(self) -> Optional[Prediction]:
        return self._last_prediction

    @property
    def totals(self) -> dict:
        """Examples collected per control name."""
        counts = self._dataset.class_counts()
        return {control_name(self._controls, i): n for i, n in counts.items()}

    @property
    def controls(self) -> list:
        return list(self._controls)

    @property
    def events(self) -> EventBus:
        return self._bus

    @property
    def lock(self):
        """Lock serializing camera access, dataset mutation and inference."""
        return self._lock
