"""
Tests for ControllerDataset
============================
"""

import gc
import sys
import weakref
from pathlib import Path

import numpy as np
import pytest
import torch
import torch.nn.functional as F

# Add project root to path
sys.path.insert(0, str(Path(__file__).parent.parent))

from core.errors import LabelOutOfRangeError, ShapeMismatchError
from models.controller_dataset import ControllerDataset


def make_example(value=0.0, shape=(1, 4)):
    return torch.full(shape, float(value))


class TestConstruction:
    """Test suite for dataset construction."""

    def test_starts_empty(self):
        dataset = ControllerDataset(4)

        assert dataset.features is None
        assert dataset.labels is None
        assert dataset.is_empty
        assert len(dataset) == 0
        assert dataset.feature_shape is None

    @pytest.mark.parametrize("bad", [0, -3, 2.5, "4", True])
    def test_rejects_invalid_num_classes(self, bad):
        with pytest.raises(ValueError):
            ControllerDataset(bad)


class TestAddExample:
    """Test suite for ControllerDataset.add_example."""

    @pytest.fixture
    def dataset(self):
        return ControllerDataset(num_classes=4)

    def test_first_example(self, dataset):
        """Scenario: first append with label 2."""
        dataset.add_example(make_example(1.0), 2)

        assert dataset.features.shape[0] == 1
        assert dataset.labels.tolist() == [[0, 0, 1, 0]]
        assert dataset.labels.dtype == torch.float32

    def test_second_example(self, dataset):
        """Scenario: second append with label 0."""
        dataset.add_example(make_example(1.0), 2)
        dataset.add_example(make_example(2.0), 0)

        assert dataset.features.shape[0] == 2
        assert dataset.labels.tolist() == [[0, 0, 1, 0], [1, 0, 0, 0]]

    def test_first_example_is_not_copied(self, dataset):
        example = make_example(3.0)
        dataset.add_example(example, 1)

        assert dataset.features.data_ptr() == example.data_ptr()

    def test_alignment_after_every_call(self, dataset):
        labels = [0, 3, 1, 1, 2, 0, 3]
        for i, label in enumerate(labels):
            dataset.add_example(make_example(i), label)
            assert dataset.features.shape[0] == i + 1
            assert dataset.labels.shape == (i + 1, 4)
            assert len(dataset) == i + 1

    def test_one_hot_rows(self, dataset):
        labels = [3, 0, 2, 2, 1]
        for label in labels:
            dataset.add_example(make_example(), label)

        rows = dataset.labels
        assert torch.all(rows.sum(dim=1) == 1)
        assert rows.argmax(dim=1).tolist() == labels
        assert set(rows.unique().tolist()) == {0.0, 1.0}

    def test_matches_batched_construction(self, dataset):
        examples = [torch.randn(1, 2, 3) for _ in range(3)]
        labels = [1, 3, 0]
        for example, label in zip(examples, labels):
            dataset.add_example(example, label)

        expected_x = torch.cat(examples, dim=0)
        expected_y = F.one_hot(torch.tensor(labels), 4).float()
        assert torch.equal(dataset.features, expected_x)
        assert torch.equal(dataset.labels, expected_y)

    def test_one_call_adds_one_row(self, dataset):
        dataset.add_example(torch.randn(1, 8), 2)
        dataset.add_example(torch.randn(1, 8), 2)

        assert dataset.features.shape == (2, 8)
        assert dataset.labels.shape == (2, 4)
        assert dataset.class_counts()[2] == 2

    @pytest.mark.parametrize("shape", [(3, 4), (8,), (0, 4)])
    def test_rejects_non_single_row_example(self, dataset, shape):
        with pytest.raises(ShapeMismatchError):
            dataset.add_example(torch.zeros(shape), 1)

        assert dataset.is_empty
        assert dataset.class_counts()[1] == 0

    def test_batch_rejected_after_first_example(self, dataset):
        dataset.add_example(make_example(1.0), 0)

        with pytest.raises(ShapeMismatchError):
            dataset.add_example(make_example(shape=(2, 4)), 1)

        assert len(dataset) == 1
        assert dataset.labels.tolist() == [[1, 0, 0, 0]]

    def test_accepts_numpy_arrays_and_integers(self, dataset):
        dataset.add_example(np.zeros((1, 4), dtype=np.float32), np.int64(3))

        assert isinstance(dataset.features, torch.Tensor)
        assert dataset.labels.tolist() == [[0, 0, 0, 1]]

    def test_example_detached_from_graph(self, dataset):
        weights = torch.ones(1, 4, requires_grad=True)
        dataset.add_example(weights * 2, 0)

        assert not dataset.features.requires_grad

    def test_class_counts(self, dataset):
        for label in [0, 0, 3]:
            dataset.add_example(make_example(), label)

        assert dataset.class_counts() == {0: 2, 1: 0, 2: 0, 3: 1}
        assert dataset.feature_shape == (4,)


class TestOwnership:
    """Buffers are replaced, never mutated, and superseded ones are dropped."""

    @pytest.fixture
    def dataset(self):
        return ControllerDataset(num_classes=3)

    def test_previous_buffers_unchanged(self, dataset):
        dataset.add_example(make_example(1.0), 0)
        old_features = dataset.features
        old_labels = dataset.labels

        dataset.add_example(make_example(2.0), 1)

        assert dataset.features is not old_features
        assert dataset.labels is not old_labels
        assert old_features.shape == (1, 4)
        assert old_features.tolist() == [[1.0, 1.0, 1.0, 1.0]]
        assert old_labels.tolist() == [[1.0, 0.0, 0.0]]

    def test_superseded_buffers_released(self, dataset):
        dataset.add_example(make_example(1.0), 0)
        dataset.add_example(make_example(2.0), 1)
        features_ref = weakref.ref(dataset.features)
        labels_ref = weakref.ref(dataset.labels)

        dataset.add_example(make_example(3.0), 2)
        gc.collect()

        assert features_ref() is None
        assert labels_ref() is None

    def test_reset_releases_buffers(self, dataset):
        dataset.add_example(make_example(1.0), 0)
        dataset.add_example(make_example(2.0), 1)
        features_ref = weakref.ref(dataset.features)

        dataset.reset()
        gc.collect()

        assert features_ref() is None
        assert dataset.features is None
        assert dataset.labels is None
        assert dataset.class_counts() == {0: 0, 1: 0, 2: 0}

    def test_can_collect_again_after_reset(self, dataset):
        dataset.add_example(make_example(shape=(1, 4)), 0)
        dataset.reset()

        dataset.add_example(make_example(shape=(1, 6)), 2)

        assert dataset.feature_shape == (6,)
        assert dataset.labels.tolist() == [[0, 0, 1]]


class TestFailures:
    """A failed append leaves the dataset exactly as it was."""

    @pytest.fixture
    def dataset(self):
        ds = ControllerDataset(num_classes=4)
        ds.add_example(make_example(1.0), 2)
        ds.add_example(make_example(2.0), 0)
        return ds

    def test_shape_mismatch(self, dataset):
        """Scenario: non-batch shape differs from prior examples."""
        features_before = dataset.features
        labels_before = dataset.labels.clone()

        with pytest.raises(ShapeMismatchError):
            dataset.add_example(make_example(shape=(1, 5)), 1)

        assert dataset.features.shape[0] == 2
        assert dataset.features is features_before
        assert torch.equal(dataset.labels, labels_before)
        assert dataset.class_counts()[1] == 0

    def test_rank_mismatch(self, dataset):
        with pytest.raises(ShapeMismatchError):
            dataset.add_example(torch.zeros(1, 4, 1), 1)
        assert len(dataset) == 2

    def test_shape_mismatch_is_value_error(self, dataset):
        with pytest.raises(ValueError):
            dataset.add_example(make_example(shape=(1, 3)), 1)

    def test_scalar_example_rejected(self):
        dataset = ControllerDataset(4)
        with pytest.raises(ShapeMismatchError):
            dataset.add_example(torch.tensor(1.0), 0)
        assert dataset.is_empty

    @pytest.mark.parametrize("label", [4, 5, -1, 100])
    def test_label_out_of_range(self, dataset, label):
        """Scenario: out-of-range labels fail fast."""
        with pytest.raises(LabelOutOfRangeError):
            dataset.add_example(make_example(), label)
        assert len(dataset) == 2
        assert dataset.labels.tolist() == [[0, 0, 1, 0], [1, 0, 0, 0]]

    @pytest.mark.parametrize("label", [1.0, "1", None, True])
    def test_non_integer_label(self, dataset, label):
        with pytest.raises(LabelOutOfRangeError):
            dataset.add_example(make_example(), label)
        assert len(dataset) == 2

    def test_out_of_range_on_empty_dataset(self):
        dataset = ControllerDataset(4)
        with pytest.raises(LabelOutOfRangeError):
            dataset.add_example(make_example(), 5)
        assert dataset.features is None
        assert dataset.labels is None


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
