"""Utilities for converting processed batches into TensorFlow datasets."""

from typing import Dict, Tuple
import tensorflow as tf
from .config import Config
from .model_types import DatasetSplits, ProcessedBatch


def build_augmentation(seed: int = 42) -> tf.keras.Sequential:
    """Random flips, rotations and zooms applied to training images only"""
    return tf.keras.Sequential(
        [
            tf.keras.layers.RandomFlip("horizontal", seed=seed),
            tf.keras.layers.RandomRotation(0.1, seed=seed),
            tf.keras.layers.RandomZoom(0.1, seed=seed),
        ],
        name="augmentation",
    )


class TensorPreparator:
    """Handles conversion of processed image batches into VGG16-ready tensors."""

    def __init__(self, config=Config):
        self.config = config
        self.img_size = config.IMG_SIZE
        self.augmentation = build_augmentation(config.SEED) if config.AUGMENT else None

    def _resize(self, images: tf.Tensor) -> tf.Tensor:
        images = tf.cast(images, tf.float32)
        if images.shape[1:3] != (self.img_size, self.img_size):
            images = tf.image.resize(images, (self.img_size, self.img_size))
        return images

    def _preprocess(self, images: tf.Tensor) -> tf.Tensor:
        # VGG16 expects BGR, mean-centred pixels in the 0-255 range
        return tf.keras.applications.vgg16.preprocess_input(images)

    def prepare_batch(self, batch: ProcessedBatch) -> Tuple[tf.Tensor, tf.Tensor]:
        """Convert processed batch to TensorFlow tensors"""
        if not batch.validate():
            raise ValueError("Invalid batch data")

        try:
            images = self._preprocess(self._resize(tf.convert_to_tensor(batch.images)))
            labels = tf.convert_to_tensor(batch.labels, dtype=tf.int64)
            return images, labels

        except Exception as e:
            raise ValueError(f"Error preparing batch: {str(e)}") from e

    def create_dataset(
        self, batch: ProcessedBatch, training: bool = False
    ) -> tf.data.Dataset:
        """Create a batched tf.data pipeline from one split"""
        if not batch.validate():
            raise ValueError("Invalid batch data")

        dataset = tf.data.Dataset.from_tensor_slices((batch.images, batch.labels))

        if training:
            dataset = dataset.shuffle(
                buffer_size=min(self.config.SHUFFLE_BUFFER, max(len(batch), 1)),
                seed=self.config.SEED,
                reshuffle_each_iteration=True,
            )

        dataset = dataset.batch(self.config.BATCH_SIZE)
        dataset = dataset.map(
            lambda x, y: (self._resize(x), y), num_parallel_calls=tf.data.AUTOTUNE
        )

        if training and self.augmentation is not None:
            dataset = dataset.map(
                lambda x, y: (self.augmentation(x, training=True), y),
                num_parallel_calls=tf.data.AUTOTUNE,
            )

        dataset = dataset.map(
            lambda x, y: (self._preprocess(x), y), num_parallel_calls=tf.data.AUTOTUNE
        )
        return dataset.prefetch(tf.data.AUTOTUNE)

    def create_datasets(self, splits: DatasetSplits) -> Dict[str, tf.data.Dataset]:
        """Create train, validation and test pipelines"""
        return {
            split: self.create_dataset(batch, training=(split == "train"))
            for split, batch in splits.items()
        }
