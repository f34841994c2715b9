"""Tests for the tf.data pipelines."""

import unittest

import numpy as np
import tensorflow as tf

from vgg_transfer.training.config import Cifar10Config
from vgg_transfer.training.model_types import DatasetSplits, ProcessedBatch
from vgg_transfer.training.tensor_preparation import (
    TensorPreparator,
    build_augmentation,
)


def make_batch(n: int, size: int = 32, num_classes: int = 10) -> ProcessedBatch:
    rng = np.random.RandomState(n)
    return ProcessedBatch(
        images=rng.randint(0, 256, size=(n, size, size, 3)).astype(np.uint8),
        labels=(np.arange(n) % num_classes).astype(np.int64),
    )


class TestTensorPreparator(unittest.TestCase):
    """Tests for TensorPreparator."""

    def setUp(self) -> None:
        self.config = Cifar10Config.override(img_size=48, batch_size=4)
        self.preparator = TensorPreparator(self.config)

    def test_prepare_batch(self) -> None:
        images, labels = self.preparator.prepare_batch(make_batch(3))

        self.assertEqual(tuple(images.shape), (3, 48, 48, 3))
        self.assertEqual(images.dtype, tf.float32)
        self.assertEqual(labels.dtype, tf.int64)

    def test_prepare_batch_applies_vgg_preprocessing(self) -> None:
        batch = ProcessedBatch(
            images=np.zeros((1, 48, 48, 3), dtype=np.uint8),
            labels=np.zeros((1,), dtype=np.int64),
        )

        images, _ = self.preparator.prepare_batch(batch)

        # Black pixels become the negated ImageNet BGR means
        np.testing.assert_allclose(
            images.numpy()[0, 0, 0], [-103.939, -116.779, -123.68], atol=1e-3
        )

    def test_prepare_invalid_batch(self) -> None:
        batch = ProcessedBatch(
            images=np.zeros((2, 8, 8), dtype=np.uint8),
            labels=np.zeros((2,), dtype=np.int64),
        )

        with self.assertRaises(ValueError):
            self.preparator.prepare_batch(batch)

    def test_create_dataset_batches(self) -> None:
        dataset = self.preparator.create_dataset(make_batch(10), training=False)

        shapes = [tuple(x.shape) for x, _ in dataset]
        self.assertEqual(shapes, [(4, 48, 48, 3), (4, 48, 48, 3), (2, 48, 48, 3)])

    def test_evaluation_pipeline_is_ordered_and_deterministic(self) -> None:
        batch = make_batch(10)
        dataset = self.preparator.create_dataset(batch, training=False)

        labels = np.concatenate([y.numpy() for _, y in dataset])
        np.testing.assert_array_equal(labels, batch.labels)

        first = np.concatenate([x.numpy() for x, _ in dataset])
        second = np.concatenate([x.numpy() for x, _ in dataset])
        np.testing.assert_array_equal(first, second)

    def test_training_pipeline_keeps_all_samples(self) -> None:
        batch = make_batch(10)
        dataset = self.preparator.create_dataset(batch, training=True)

        labels = np.concatenate([y.numpy() for _, y in dataset])
        self.assertEqual(sorted(labels.tolist()), sorted(batch.labels.tolist()))
        for x, _ in dataset.take(1):
            self.assertEqual(tuple(x.shape[1:]), (48, 48, 3))

    def test_no_augmentation(self) -> None:
        preparator = TensorPreparator(self.config.override(augment=False))

        self.assertIsNone(preparator.augmentation)

    def test_create_datasets(self) -> None:
        splits = DatasetSplits(
            train=make_batch(8), validation=make_batch(4), test=make_batch(4)
        )

        datasets = self.preparator.create_datasets(splits)

        self.assertEqual(set(datasets), {"train", "validation", "test"})


class TestAugmentation(unittest.TestCase):
    """Tests for the augmentation block."""

    def test_shape_preserved(self) -> None:
        augmentation = build_augmentation(seed=1)
        images = tf.random.uniform((2, 32, 32, 3), maxval=255.0)

        output = augmentation(images, training=True)

        self.assertEqual(tuple(output.shape), (2, 32, 32, 3))

    def test_identity_at_inference(self) -> None:
        augmentation = build_augmentation(seed=1)
        images = tf.random.uniform((2, 32, 32, 3), maxval=255.0)

        output = augmentation(images, training=False)

        np.testing.assert_allclose(output.numpy(), images.numpy(), atol=1e-5)


if __name__ == "__main__":
    unittest.main()
