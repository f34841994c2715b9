"""Tests for the VGG16 transfer learning recipe."""

import unittest

import numpy as np
import tensorflow as tf

from vgg_transfer.training.config import Cifar10Config, InvasiveSpeciesConfig
from vgg_transfer.training.model_types import ProcessedBatch
from vgg_transfer.training.tensor_preparation import TensorPreparator
from vgg_transfer.utils.transfer_learning import (
    TransferLearningStrategy,
    build_transfer_model,
    compile_model,
    freeze_base_layers,
    load_base_model,
    replace_head,
)

# Random weights keep the tests offline
BINARY_CONFIG = InvasiveSpeciesConfig.override(img_size=32, weights=None, dense_units=8)
MULTICLASS_CONFIG = Cifar10Config.override(img_size=32, weights=None, dense_units=8)

VGG16_BASE_LAYERS = 19  # input + 13 convolutions + 5 poolings


class TestBaseModel(unittest.TestCase):
    """Tests for loading and freezing the base."""

    @classmethod
    def setUpClass(cls) -> None:
        cls.base_model = load_base_model(MULTICLASS_CONFIG)

    def test_load_base_model(self) -> None:
        self.assertEqual(len(self.base_model.layers), VGG16_BASE_LAYERS)
        self.assertEqual(tuple(self.base_model.output.shape[1:]), (1, 1, 512))

    def test_freeze_all(self) -> None:
        frozen = freeze_base_layers(self.base_model)

        self.assertEqual(frozen, VGG16_BASE_LAYERS)
        self.assertFalse(any(layer.trainable for layer in self.base_model.layers))
        self.assertEqual(len(self.base_model.trainable_weights), 0)

    def test_freeze_all_but_last_block(self) -> None:
        frozen = freeze_base_layers(self.base_model, trainable_layers=4)

        self.assertEqual(frozen, VGG16_BASE_LAYERS - 4)
        trainable = [layer.name for layer in self.base_model.layers if layer.trainable]
        self.assertEqual(
            trainable, ["block5_conv1", "block5_conv2", "block5_conv3", "block5_pool"]
        )
        # Three convolutions with kernel and bias each
        self.assertEqual(len(self.base_model.trainable_weights), 6)

    def test_freeze_more_than_available(self) -> None:
        frozen = freeze_base_layers(self.base_model, trainable_layers=100)

        self.assertEqual(frozen, 0)
        self.assertTrue(all(layer.trainable for layer in self.base_model.layers))

    def test_freeze_negative(self) -> None:
        with self.assertRaises(ValueError):
            freeze_base_layers(self.base_model, trainable_layers=-1)


class TestReplaceHead(unittest.TestCase):
    """Tests for the new classification head."""

    def test_binary_head(self) -> None:
        base_model = load_base_model(BINARY_CONFIG)
        model = replace_head(base_model, BINARY_CONFIG)

        output = model(np.zeros((2, 32, 32, 3), dtype=np.float32))

        self.assertEqual(tuple(output.shape), (2, 1))
        self.assertEqual(model.get_layer("predictions").activation.__name__, "sigmoid")

    def test_multiclass_head(self) -> None:
        base_model = load_base_model(MULTICLASS_CONFIG)
        model = replace_head(base_model, MULTICLASS_CONFIG)

        output = model(np.zeros((2, 32, 32, 3), dtype=np.float32)).numpy()

        self.assertEqual(output.shape, (2, 10))
        np.testing.assert_allclose(output.sum(axis=1), [1.0, 1.0], atol=1e-5)
        self.assertEqual(model.name, MULTICLASS_CONFIG.MODEL_NAME)


class TestBuildTransferModel(unittest.TestCase):
    """Tests for the full recipe."""

    def test_only_head_trainable(self) -> None:
        model, base_model = build_transfer_model(MULTICLASS_CONFIG)

        self.assertFalse(any(layer.trainable for layer in base_model.layers))
        # fc and predictions, kernel and bias each
        self.assertEqual(len(model.trainable_weights), 4)
        self.assertEqual(model.loss, "sparse_categorical_crossentropy")

    def test_binary_loss(self) -> None:
        model, _ = build_transfer_model(BINARY_CONFIG)

        self.assertEqual(model.loss, "binary_crossentropy")

    def test_fit_one_step(self) -> None:
        model, base_model = build_transfer_model(MULTICLASS_CONFIG)
        frozen_before = [w.numpy().copy() for w in base_model.weights]
        x = np.random.RandomState(0).uniform(0, 255, (4, 32, 32, 3)).astype(np.float32)
        y = np.array([0, 1, 2, 3], dtype=np.int64)

        history = model.fit(x, y, epochs=1, batch_size=4, verbose=0)

        self.assertIn("loss", history.history)
        for before, after in zip(frozen_before, base_model.weights):
            np.testing.assert_array_equal(before, after.numpy())

    def test_mixed_precision_outputs_float32(self) -> None:
        tf.keras.mixed_precision.set_global_policy("mixed_float16")
        try:
            config = BINARY_CONFIG.override(batch_size=4, augment=False)
            model, base_model = build_transfer_model(config)
            batch = ProcessedBatch(
                images=np.random.RandomState(0)
                .randint(0, 256, (4, 32, 32, 3))
                .astype(np.uint8),
                labels=np.array([0, 1, 0, 1], dtype=np.int64),
            )
            dataset = TensorPreparator(config).create_dataset(batch, training=True)

            history = model.fit(dataset, epochs=1, verbose=0)
            predictions = model.predict(dataset, verbose=0)
        finally:
            tf.keras.mixed_precision.set_global_policy("float32")

        self.assertEqual(base_model.layers[1].compute_dtype, "float16")
        self.assertEqual(tf.as_dtype(model.output.dtype), tf.float32)
        self.assertEqual(predictions.dtype, np.float32)
        self.assertTrue(np.isfinite(history.history["loss"][0]))

    def test_recompile_after_unfreezing(self) -> None:
        model, base_model = build_transfer_model(MULTICLASS_CONFIG)

        freeze_base_layers(base_model, trainable_layers=4)
        compile_model(model, MULTICLASS_CONFIG, learning_rate=1e-5)

        self.assertEqual(len(model.trainable_weights), 4 + 6)
        self.assertAlmostEqual(float(model.optimizer.learning_rate.numpy()), 1e-5)


class TestTransferLearningStrategy(unittest.TestCase):
    """Tests for the strategy description."""

    def test_explain(self) -> None:
        strategy = TransferLearningStrategy.explain_transfer_learning(BINARY_CONFIG)

        phase_one = strategy["Phase 1: Feature Extraction"]
        self.assertEqual(phase_one["Base Model"], "VGG16")
        self.assertEqual(phase_one["Added Layers"][-1], "Dense(1, sigmoid)")
        self.assertIn("Phase 2: Fine-Tuning", strategy)

    def test_explain_multiclass(self) -> None:
        strategy = TransferLearningStrategy.explain_transfer_learning(Cifar10Config)

        phase_one = strategy["Phase 1: Feature Extraction"]
        self.assertEqual(phase_one["Pre-trained on"], "ImageNet")
        self.assertEqual(phase_one["Added Layers"][-1], "Dense(10, softmax)")


if __name__ == "__main__":
    unittest.main()
