"""
Tests for the Capture Pipeline
===============================
"""

import sys
from pathlib import Path
from unittest.mock import MagicMock, patch

import numpy as np
import pytest
import torch

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from modules.capture.preprocess import crop_center_square, to_model_input
from modules.capture.webcam import Webcam, WebcamConfig


class TestCropCenterSquare:
    """Test suite for crop_center_square."""

    def test_landscape(self):
        image = np.zeros((480, 640, 3), dtype=np.uint8)
        image[:, 80:560] = 255  # exactly the centre square

        square = crop_center_square(image)

        assert square.shape == (480, 480, 3)
        assert square.min() == 255

    def test_portrait(self):
        image = np.zeros((300, 200, 3), dtype=np.uint8)
        image[50:250, :] = 7

        square = crop_center_square(image)

        assert square.shape == (200, 200, 3)
        assert np.all(square == 7)

    def test_already_square(self):
        image = np.arange(16, dtype=np.uint8).reshape(4, 4)
        assert np.array_equal(crop_center_square(image), image)

    def test_rejects_1d(self):
        with pytest.raises(ValueError):
            crop_center_square(np.zeros(5))


class TestToModelInput:
    """Test suite for frame normalization."""

    def test_shape_and_dtype(self):
        frame = np.random.randint(0, 256, (480, 640, 3), dtype=np.uint8)
        tensor = to_model_input(frame, size=224)

        assert tensor.shape == (1, 3, 224, 224)
        assert tensor.dtype == torch.float32

    def test_value_range(self):
        black = to_model_input(np.zeros((64, 64, 3), dtype=np.uint8), size=32)
        white = to_model_input(np.full((64, 64, 3), 255, dtype=np.uint8), size=32)

        assert torch.allclose(black, torch.full_like(black, -1.0))
        assert torch.allclose(white, torch.full_like(white, 255.0 / 127.0 - 1.0))

    def test_bgr_to_rgb(self):
        frame = np.zeros((32, 32, 3), dtype=np.uint8)
        frame[:, :, 0] = 255  # blue in BGR

        tensor = to_model_input(frame, size=16)

        assert torch.allclose(tensor[0, 2], torch.full((16, 16), 255.0 / 127.0 - 1.0))
        assert torch.allclose(tensor[0, 0], torch.full((16, 16), -1.0))


class TestWebcamConfig:
    """Test suite for WebcamConfig."""

    def test_default_values(self):
        config = WebcamConfig()

        assert config.device_id == 0
        assert config.width == 640
        assert config.height == 480
        assert config.image_size == 224
        assert config.flip_horizontal is True

    def test_from_dict_partial(self):
        config = WebcamConfig.from_dict({"device_id": 2, "image_size": 160})

        assert config.device_id == 2
        assert config.image_size == 160
        assert config.fps == 30  # Default


class TestWebcam:
    """Test suite for Webcam with a mocked cv2.VideoCapture."""

    @pytest.fixture
    def mock_capture(self):
        frame = np.zeros((480, 640, 3), dtype=np.uint8)
        frame[:, :320] = 200  # left half bright
        cap = MagicMock()
        cap.isOpened.return_value = True
        cap.read.return_value = (True, frame)
        cap.get.return_value = 640
        with patch("modules.capture.webcam.cv2.VideoCapture", return_value=cap):
            yield cap

    def test_start_and_capture(self, mock_capture):
        with Webcam(WebcamConfig(warmup_frames=2, image_size=64)) as cam:
            assert cam.is_open
            tensor = cam.capture()

        assert tensor.shape == (1, 3, 64, 64)
        assert cam.frame_number == 1
        mock_capture.release.assert_called_once()

    def test_horizontal_flip(self, mock_capture):
        cam = Webcam(WebcamConfig(warmup_frames=0, flip_horizontal=True))
        cam.start()
        frame = cam.read()
        cam.stop()

        # Bright half moved to the right
        assert frame[0, -1, 0] == 200
        assert frame[0, 0, 0] == 0

    def test_failed_open(self):
        cap = MagicMock()
        cap.isOpened.return_value = False
        with patch("modules.capture.webcam.cv2.VideoCapture", return_value=cap):
            cam = Webcam(WebcamConfig())
            assert cam.start() is False
            assert cam.capture() is None

    def test_failed_read(self, mock_capture):
        mock_capture.read.return_value = (False, None)
        cam = Webcam(WebcamConfig(warmup_frames=0))
        cam.start()

        assert cam.capture() is None
        cam.stop()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
