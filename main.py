#!/usr/bin/env python3
"""
Webcam Controller — transfer learning on top of a frozen MobileNet.
Main application entry point.

Workflow:
    1. Press 1-4 to start recording examples for that control, press it
       again (or SPACE) to stop
    2. Press T to train the classifier head on the collected examples
    3. Press P to toggle live prediction; the predicted control is
       highlighted on screen

Usage:
    python main.py                    # Default config
    python main.py --camera 1         # Other webcam
    python main.py --no-pretrained    # Random backbone (offline smoke test)

Keys:
    1-4    toggle recording for a control
    SPACE  stop recording
    t      train
    p      toggle prediction
    r      reset collected examples
    s      save trained head
    q/ESC  quit
"""

import os
import sys
import signal
import argparse
import logging

import cv2
import numpy as np

# Add project root to path
PROJECT_ROOT = os.path.dirname(os.path.abspath(__file__))
sys.path.insert(0, PROJECT_ROOT)

from modules.utils.config import Config
from modules.utils.logger import setup_logging, SessionLogger
from modules.capture.webcam import Webcam, WebcamConfig
from models.feature_extractor import MobileNetFeatureExtractor
from training.trainer import ControllerTrainer
from core.errors import ControllerError
from core.events import Events
from core.session import ControllerSession
from core.loop import next_frame

logger = logging.getLogger(__name__)

# Overlay colors (BGR)
_WHITE = (255, 255, 255)
_GREEN = (0, 200, 0)
_RED = (0, 0, 230)
_YELLOW = (0, 220, 220)


class WebcamControllerApp:
    """Keyboard-driven OpenCV front end around a :class:`ControllerSession`."""

    def __init__(self, config: Config, pretrained: bool = True):
        self._config = config
        self._running = False
        self._status = "Press 1-4 to record examples"
        self._status_color = _WHITE
        self._recording_label = None

        cam_config = WebcamConfig.from_dict(config.camera)
        self._camera = Webcam(cam_config)

        model_cfg = config.model
        self._extractor = MobileNetFeatureExtractor(
            arch=model_cfg.get("arch", "mobilenet_v2"),
            pretrained=pretrained and model_cfg.get("pretrained", True),
            device=model_cfg.get("device"),
            image_size=cam_config.image_size,
        )

        self._session = ControllerSession(
            extractor=self._extractor,
            camera=self._camera,
            controls=config.controls,
            trainer=ControllerTrainer.from_dict(config.training),
        )
        self._session_logger = SessionLogger().attach(self._session.events)

        bus = self._session.events
        bus.subscribe(Events.TRAIN_STATUS, self._on_train_status)
        bus.subscribe(Events.TRAINING_COMPLETE, self._on_training_complete)
        bus.subscribe(Events.SESSION_ERROR, self._on_session_error)
        bus.subscribe(Events.COLLECTION_STOPPED, self._on_collection_stopped)

        self._yield = next_frame(cam_config.fps)
        ui_cfg = config.ui
        self._window_name = ui_cfg.get("window_name", "Webcam Controller")
        self._frame_delay_ms = ui_cfg.get("frame_delay_ms", 1)

    # ------------------------------------------------------------------
    # Event callbacks
    # ------------------------------------------------------------------

    def _on_train_status(self, batch, loss, **_):
        self._status = "Loss: %.5f" % loss

    def _on_training_complete(self, result, **_):
        self._set_status("Trained on %d examples (loss %.5f). Press P."
                         % (result.num_examples, result.final_loss), _GREEN)

    def _on_collection_stopped(self, **_):
        self._recording_label = None

    def _on_session_error(self, error, **_):
        self._recording_label = None
        self._set_status("Error: %s" % error, _RED)

    def _set_status(self, text, color=_WHITE):
        self._status = text
        self._status_color = color

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def start(self) -> bool:
        if not self._camera.start():
            logger.error("Failed to open webcam. Check connection and permissions.")
            return False

        self._extractor.warmup()
        self._running = True
        logger.info("Starting main loop")

        try:
            while self._running:
                frame = self._preview_frame()
                if frame is not None:
                    cv2.imshow(self._window_name, self._render(frame))

                key = cv2.waitKey(self._frame_delay_ms) & 0xFF
                if key != 0xFF:
                    self._handle_key(key)
        finally:
            self._shutdown()
        return True

    def _preview_frame(self):
        # A worker owns the camera (or is training); reuse the last frame
        lock = self._session.lock
        if not lock.acquire(blocking=False):
            return self._camera.last_frame
        try:
            return self._camera.read()
        finally:
            lock.release()

    def _handle_key(self, key):
        num_controls = len(self._session.controls)
        try:
            if key in (ord("q"), 27):
                self._running = False
            elif self._session.is_training:
                self._set_status("Training in progress...", _YELLOW)
            elif ord("1") <= key < ord("1") + num_controls:
                self._toggle_recording(key - ord("1"))
            elif key == ord(" "):
                self._stop_recording()
            elif key == ord("t"):
                self._train()
            elif key == ord("p"):
                self._toggle_predicting()
            elif key == ord("r"):
                self._session.reset()
                self._set_status("Examples cleared")
            elif key == ord("s"):
                self._save()
        except ControllerError as e:
            logger.error("%s", e)
            self._set_status(str(e), _RED)

    def _toggle_recording(self, label):
        if self._recording_label == label:
            self._stop_recording()
            return
        self._session.stop_predicting()
        self._session.start_collecting(label, yield_fn=self._yield)
        self._recording_label = label
        self._set_status("Recording '%s'..." % self._session.controls[label], _YELLOW)

    def _stop_recording(self):
        self._session.stop_collecting()
        self._recording_label = None
        self._set_status("%d examples collected" % self._session.dataset.num_examples)

    def _train(self):
        self._stop_recording()
        self._session.stop_predicting()
        self._set_status("Training...", _YELLOW)
        self._session.start_training()

    def _toggle_predicting(self):
        if self._session.is_predicting:
            self._session.stop_predicting()
            self._set_status("Prediction stopped")
        else:
            self._stop_recording()
            self._session.start_predicting(yield_fn=self._yield)
            self._set_status("Predicting", _GREEN)

    def _save(self):
        output_dir = self._config.get("training.output_dir", "models/weights")
        os.makedirs(output_dir, exist_ok=True)
        path = os.path.join(output_dir, "controller_head.pth")
        self._session.save_model(path)
        self._set_status("Saved head to %s" % path, _GREEN)

    # ------------------------------------------------------------------
    # Rendering
    # ------------------------------------------------------------------

    def _render(self, frame: np.ndarray) -> np.ndarray:
        canvas = frame.copy()
        prediction = self._session.last_prediction if self._session.is_predicting else None
        totals = self._session.totals

        y = 30
        for i, control in enumerate(self._session.controls):
            color = _WHITE
            if prediction is not None and prediction.class_id == i:
                color = _GREEN
            elif self._recording_label == i:
                color = _YELLOW
            text = "%d %-6s %4d" % (i + 1, control, totals.get(control, 0))
            cv2.putText(canvas, text, (10, y), cv2.FONT_HERSHEY_SIMPLEX, 0.6, color, 2)
            y += 26

        if prediction is not None:
            cv2.putText(canvas, "%s (%.0f%%)" % (prediction.control, prediction.confidence * 100),
                        (10, y + 10), cv2.FONT_HERSHEY_SIMPLEX, 0.9, _GREEN, 2)

        h = canvas.shape[0]
        cv2.putText(canvas, self._status, (10, h - 15),
                    cv2.FONT_HERSHEY_SIMPLEX, 0.55, self._status_color, 1)
        return canvas

    def _shutdown(self):
        """Clean shutdown of all modules."""
        logger.info("Shutting down...")
        self._running = False
        self._session.close()
        self._camera.stop()
        cv2.destroyAllWindows()
        logger.info("Shutdown complete.")

    def handle_signal(self, signum, frame):
        """Handle SIGINT/SIGTERM for graceful shutdown."""
        logger.info("Signal %d received, shutting down...", signum)
        self._running = False


def parse_args():
    parser = argparse.ArgumentParser(
        description="Webcam Controller - transfer learning on a frozen MobileNet"
    )
    parser.add_argument(
        "--config", type=str, default=None,
        help="Path to config.yaml"
    )
    parser.add_argument(
        "--camera", type=int, default=None,
        help="Camera device ID"
    )
    parser.add_argument(
        "--no-pretrained", action="store_true",
        help="Use a randomly initialised backbone (no weight download)"
    )
    return parser.parse_args()


def main():
    args = parse_args()

    config = Config()
    config.load(config_path=args.config)

    if args.camera is not None:
        config.set("camera.device_id", args.camera)

    log_cfg = config.logging
    setup_logging(
        level=log_cfg.get("level", "INFO"),
        log_file=log_cfg.get("file"),
        max_size_mb=log_cfg.get("max_size_mb", 10),
        backup_count=log_cfg.get("backup_count", 3),
    )

    logger.info("=" * 60)
    logger.info("  WEBCAM CONTROLLER")
    logger.info("  Version: %s", config.get("system.version", "1.0.0"))
    logger.info("  Controls: %s", ", ".join(config.controls))
    logger.info("=" * 60)

    app = WebcamControllerApp(config, pretrained=not args.no_pretrained)

    signal.signal(signal.SIGINT, app.handle_signal)
    signal.signal(signal.SIGTERM, app.handle_signal)

    if not app.start():
        sys.exit(1)


if __name__ == "__main__":
    main()
