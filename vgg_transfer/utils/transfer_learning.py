"""VGG16 transfer learning recipe: load the base, freeze it, replace the head."""

import logging
import tensorflow as tf

from vgg_transfer.training.config import Config

logger = logging.getLogger(__name__)


def load_base_model(config=Config) -> tf.keras.Model:
    """Load VGG16 without its ImageNet classifier"""
    logger.info(f"Loading VGG16 base (weights={config.WEIGHTS})...")
    return tf.keras.applications.VGG16(
        include_top=False,
        weights=config.WEIGHTS,
        input_shape=(config.IMG_SIZE, config.IMG_SIZE, 3),
    )


def freeze_base_layers(base_model: tf.keras.Model, trainable_layers: int = 0) -> int:
    """Freeze every base layer except the last `trainable_layers`.

    Returns the number of frozen layers. The model has to be recompiled for
    the change to take effect.
    """
    if trainable_layers < 0:
        raise ValueError(f"trainable_layers must be >= 0, got {trainable_layers}")

    base_model.trainable = True
    split_at = max(len(base_model.layers) - trainable_layers, 0)
    for layer in base_model.layers[:split_at]:
        layer.trainable = False
    for layer in base_model.layers[split_at:]:
        layer.trainable = True

    logger.info(
        f"Frozen {split_at} of {len(base_model.layers)} base layers "
        f"({len(base_model.layers) - split_at} trainable)"
    )
    return split_at


def replace_head(base_model: tf.keras.Model, config=Config) -> tf.keras.Model:
    """Put a new classifier on top of the convolutional base"""
    inputs = tf.keras.Input(shape=(config.IMG_SIZE, config.IMG_SIZE, 3))
    x = base_model(inputs)
    x = tf.keras.layers.Flatten(name="flatten")(x)
    x = tf.keras.layers.Dense(config.DENSE_UNITS, activation="relu", name="fc")(x)
    x = tf.keras.layers.Dropout(config.DROPOUT, name="dropout")(x)

    if config.is_binary():
        outputs = tf.keras.layers.Dense(
            1, activation="sigmoid", dtype="float32", name="predictions"
        )(x)
    else:
        outputs = tf.keras.layers.Dense(
            config.NUM_CLASSES,
            activation="softmax",
            dtype="float32",  # Keep the output float32 under mixed precision
            name="predictions",
        )(x)

    return tf.keras.Model(inputs, outputs, name=config.MODEL_NAME)


def compile_model(model: tf.keras.Model, config=Config, learning_rate=None) -> None:
    if config.is_binary():
        loss = "binary_crossentropy"
        metrics = ["accuracy", tf.keras.metrics.AUC(name="auc")]
    else:
        loss = "sparse_categorical_crossentropy"
        metrics = ["accuracy"]

    model.compile(
        optimizer=tf.keras.optimizers.Adam(learning_rate or config.LEARNING_RATE),
        loss=loss,
        metrics=metrics,
    )


def build_transfer_model(config=Config):
    """Load, freeze and re-head VGG16, then compile it.

    Returns the compiled model and the base model so callers can unfreeze it
    later for fine-tuning.
    """
    base_model = load_base_model(config)
    freeze_base_layers(base_model, trainable_layers=0)
    model = replace_head(base_model, config)
    compile_model(model, config)
    return model, base_model


class TransferLearningStrategy:
    """
    Describes the transfer learning strategy for VGG16.
    Logged at the start of each run to narrate the process.
    """

    @staticmethod
    def explain_transfer_learning(config=Config):
        """Explains our transfer learning approach"""
        output = (
            "Dense(1, sigmoid)"
            if config.is_binary()
            else f"Dense({config.NUM_CLASSES}, softmax)"
        )
        strategy = {
            "Phase 1: Feature Extraction": {
                "Base Model": "VGG16",
                "Pre-trained on": "ImageNet" if config.WEIGHTS == "imagenet" else str(config.WEIGHTS),
                "Input Size": f"{config.IMG_SIZE}x{config.IMG_SIZE}",
                "Frozen Layers": "All base model layers",
                "Added Layers": [
                    "Flatten",
                    f"Dense({config.DENSE_UNITS}, relu)",
                    f"Dropout({config.DROPOUT})",
                    output,
                ],
                "Learning Rate": config.LEARNING_RATE,
                "Epochs": config.EPOCHS,
                "Training": "Only new layers",
            },
            "Phase 2: Fine-Tuning": {
                "Unfrozen Layers": f"Last {config.FINE_TUNE_LAYERS} base layers",
                "Learning Rate": config.FINE_TUNE_LEARNING_RATE,
                "Epochs": config.FINE_TUNE_EPOCHS,
                "Training Strategy": "Recompile after unfreezing",
            },
        }
        return strategy
