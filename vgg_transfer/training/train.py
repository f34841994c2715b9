import argparse
import json
import logging
from pathlib import Path
from typing import Dict, List, Optional

import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import numpy as np
import seaborn as sns
import tensorflow as tf

from vgg_transfer.training.config import CONFIGS, Config, get_config
from vgg_transfer.training.data_loading import get_loader
from vgg_transfer.training.model_types import DatasetSplits
from vgg_transfer.training.tensor_preparation import TensorPreparator
from vgg_transfer.training.validation import DataValidator
from vgg_transfer.utils.transfer_learning import (
    TransferLearningStrategy,
    build_transfer_model,
    compile_model,
    freeze_base_layers,
)

logger = logging.getLogger(__name__)


def configure_logging(log_file: Optional[str] = "training.log") -> None:
    handlers = [logging.StreamHandler()]
    if log_file:
        handlers.append(logging.FileHandler(log_file))
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s - %(levelname)s - %(message)s",
        handlers=handlers,
    )


def configure_gpu(config=Config) -> bool:
    """Enable memory growth on visible GPUs and optionally mixed precision"""
    try:
        physical_devices = tf.config.list_physical_devices("GPU")
        if not physical_devices:
            logger.warning("No GPU found, training on CPU")
            return False

        for device in physical_devices:
            tf.config.experimental.set_memory_growth(device, True)
        logger.info(f"GPU enabled: {physical_devices}")

        if config.MIXED_PRECISION:
            tf.keras.mixed_precision.set_global_policy("mixed_float16")
            logger.info("Mixed precision enabled")
        return True

    except RuntimeError as e:
        # Memory growth must be set before the GPUs are initialized
        logger.error(f"Error configuring GPU: {e}")
        return False


class ModelTrainer:
    def __init__(self, config=Config):
        self.config = config
        self.output_dir = Path(config.OUTPUT_DIR) / config.DATASET
        self.checkpoint_dir = Path(config.CHECKPOINT_PATH) / config.DATASET
        self.output_dir.mkdir(exist_ok=True, parents=True)
        self.checkpoint_dir.mkdir(exist_ok=True, parents=True)

        self.model = None
        self.base_model = None
        self.splits: Optional[DatasetSplits] = None
        self.train_ds = None
        self.val_ds = None
        self.test_ds = None
        self.class_weights = None
        self.history: Dict[str, List[float]] = {}
        self.results: Dict[str, object] = {}

    def load_datasets(self, splits: Optional[DatasetSplits] = None) -> bool:
        """Load, validate and prepare the train/validation/test pipelines"""
        logger.info(f"Loading {self.config.DATASET} dataset...")
        try:
            self.splits = splits or get_loader(self.config).load()

            validator = DataValidator(self.config, debug_dir=self.output_dir / "debug")
            if not validator.validate_all(self.splits):
                raise ValueError("Dataset validation failed")
            self.class_weights = validator.class_weights(self.splits.train)
            logger.info(f"Class weights: {self.class_weights}")

            datasets = TensorPreparator(self.config).create_datasets(self.splits)
            self.train_ds = datasets["train"]
            self.val_ds = datasets["validation"]
            self.test_ds = datasets["test"]

            self.verify_data_pipeline()
            return True

        except Exception as e:
            logger.error(f"Failed to load datasets: {str(e)}")
            return False

    def verify_data_pipeline(self) -> Path:
        """Log batch statistics and save a grid of raw training samples"""
        logger.info("Verifying data pipeline...")

        for images, labels in self.train_ds.take(1):
            logger.info(f"Batch shape: {images.shape}")
            logger.info(
                f"Label range: {tf.reduce_min(labels)} to {tf.reduce_max(labels)}"
            )
            logger.info(
                f"Image value range: {tf.reduce_min(images)} to {tf.reduce_max(images)}"
            )

        class_names = self.splits.class_names
        count = min(9, len(self.splits.train))
        plt.figure(figsize=(10, 10))
        for i in range(count):
            label = int(self.splits.train.labels[i])
            plt.subplot(3, 3, i + 1)
            plt.imshow(self.splits.train.images[i])
            plt.title(class_names[label] if label < len(class_names) else str(label))
            plt.axis("off")
        path = self.output_dir / "sample_images.png"
        plt.savefig(path)
        plt.close()
        return path

    def setup_model(self) -> bool:
        """Initialize the VGG16 transfer model with a frozen base"""
        logger.info("Setting up VGG16 transfer model...")

        try:
            strategy = TransferLearningStrategy.explain_transfer_learning(self.config)
            for phase, details in strategy.items():
                logger.info(f"{phase}: {details}")

            self.model, self.base_model = build_transfer_model(self.config)
            self.model.summary(print_fn=lambda line, *args, **kwargs: logger.info(line))
            return True

        except Exception as e:
            logger.error(f"Failed to setup model: {str(e)}")
            return False

    def _callbacks(self, phase: str) -> list:
        return [
            # Save best model
            tf.keras.callbacks.ModelCheckpoint(
                filepath=str(self.checkpoint_dir / f"best_{phase}.keras"),
                save_best_only=True,
                monitor="val_accuracy",
            ),
            # Stop if not improving
            tf.keras.callbacks.EarlyStopping(
                monitor="val_accuracy", patience=3, restore_best_weights=True
            ),
            # Reduce learning rate when stuck
            tf.keras.callbacks.ReduceLROnPlateau(
                monitor="val_loss", factor=0.2, patience=2, min_lr=1e-7
            ),
            # Save training history
            tf.keras.callbacks.CSVLogger(
                str(self.output_dir / f"history_{phase}.csv"), separator=",", append=False
            ),
        ]

    def _fit(self, epochs: int, phase: str) -> None:
        history = self.model.fit(
            self.train_ds,
            validation_data=self.val_ds,
            epochs=epochs,
            class_weight=self.class_weights,
            callbacks=self._callbacks(phase),
            verbose=1,
        )
        for key, values in history.history.items():
            self.history.setdefault(key, []).extend(float(v) for v in values)

    def train(self) -> bool:
        """Fit the new head on top of the frozen base"""
        try:
            logger.info(f"Training the head for {self.config.EPOCHS} epochs...")
            self._fit(self.config.EPOCHS, phase="head")
            return True

        except Exception as e:
            logger.error(f"Training failed: {str(e)}")
            return False

    def fine_tune(self) -> bool:
        """Unfreeze the top of the base and continue with a lower learning rate"""
        if self.config.FINE_TUNE_EPOCHS <= 0 or self.config.FINE_TUNE_LAYERS <= 0:
            logger.info("Fine-tuning disabled, skipping")
            return True

        try:
            freeze_base_layers(self.base_model, self.config.FINE_TUNE_LAYERS)
            compile_model(
                self.model, self.config, self.config.FINE_TUNE_LEARNING_RATE
            )
            logger.info(
                f"Fine-tuning the last {self.config.FINE_TUNE_LAYERS} base layers "
                f"for {self.config.FINE_TUNE_EPOCHS} epochs..."
            )
            self._fit(self.config.FINE_TUNE_EPOCHS, phase="fine_tune")
            return True

        except Exception as e:
            logger.error(f"Fine-tuning failed: {str(e)}")
            return False

    def predict_classes(self, dataset: tf.data.Dataset) -> np.ndarray:
        probabilities = self.model.predict(dataset, verbose=0)
        if self.config.is_binary():
            return (probabilities.reshape(-1) > 0.5).astype(np.int64)
        return np.argmax(probabilities, axis=-1).astype(np.int64)

    def confusion_matrix(self, y_true: np.ndarray, y_pred: np.ndarray) -> np.ndarray:
        matrix = tf.math.confusion_matrix(
            y_true, y_pred, num_classes=self.config.NUM_CLASSES, dtype=tf.int64
        )
        return matrix.numpy()

    def evaluate(self) -> bool:
        """Evaluate on the held-out test split"""
        try:
            logger.info("Test dataset evaluation")
            metrics = self.model.evaluate(self.test_ds, return_dict=True, verbose=0)
            y_pred = self.predict_classes(self.test_ds)
            matrix = self.confusion_matrix(self.splits.test.labels, y_pred)

            self.results = {
                "dataset": self.config.DATASET,
                "metrics": {key: float(value) for key, value in metrics.items()},
                "confusion_matrix": matrix.tolist(),
                "class_names": list(self.splits.class_names),
            }
            for key, value in self.results["metrics"].items():
                logger.info(f"Test {key}: {value:.4f}")

            with open(self.output_dir / "evaluation.json", "w") as f:
                json.dump(self.results, f, indent=2)
            return True

        except Exception as e:
            logger.error(f"Evaluation failed: {str(e)}")
            return False

    def save(self) -> bool:
        """Save the model, its history and the plots"""
        try:
            model_path = self.output_dir / f"{self.config.MODEL_NAME}.keras"
            self.model.save(str(model_path))
            logger.info(f"Model saved to {model_path}")

            with open(self.output_dir / "history.json", "w") as f:
                json.dump(self.history, f, indent=2)

            self._plot_training_history()
            if self.results:
                self._plot_confusion_matrix()
            return True

        except Exception as e:
            logger.error(f"Failed to save outputs: {str(e)}")
            return False

    def _plot_training_history(self):
        """Plot training metrics"""
        plt.figure(figsize=(12, 4))

        # Plot accuracy
        plt.subplot(1, 2, 1)
        plt.plot(self.history.get("accuracy", []))
        plt.plot(self.history.get("val_accuracy", []))
        plt.title("Model Accuracy")
        plt.ylabel("Accuracy")
        plt.xlabel("Epoch")
        plt.legend(["Train", "Validation"])

        # Plot loss
        plt.subplot(1, 2, 2)
        plt.plot(self.history.get("loss", []))
        plt.plot(self.history.get("val_loss", []))
        plt.title("Model Loss")
        plt.ylabel("Loss")
        plt.xlabel("Epoch")
        plt.legend(["Train", "Validation"])

        plt.tight_layout()
        plt.savefig(self.output_dir / "training_history.png")
        plt.close()

    def _plot_confusion_matrix(self):
        class_names = self.results["class_names"] or None
        plt.figure(figsize=(8, 6))
        sns.heatmap(
            np.asarray(self.results["confusion_matrix"]),
            annot=True,
            fmt="d",
            cmap="Blues",
            xticklabels=class_names or "auto",
            yticklabels=class_names or "auto",
        )
        plt.title(f"Confusion Matrix ({self.config.DATASET})")
        plt.ylabel("True")
        plt.xlabel("Predicted")
        plt.tight_layout()
        plt.savefig(self.output_dir / "confusion_matrix.png")
        plt.close()


def run_experiment(config=Config, splits: Optional[DatasetSplits] = None):
    """Run one experiment end to end and return the evaluation results"""
    logger.info(f"Starting {config.DATASET} experiment...")
    configure_gpu(config)
    trainer = ModelTrainer(config)

    stages = [
        ("load datasets", lambda: trainer.load_datasets(splits)),
        ("setup model", trainer.setup_model),
        ("train", trainer.train),
        ("fine-tune", trainer.fine_tune),
        ("evaluate", trainer.evaluate),
        ("save", trainer.save),
    ]
    for name, stage in stages:
        if not stage():
            raise RuntimeError(f"{config.DATASET} experiment failed at stage: {name}")

    logger.info(f"{config.DATASET} pipeline completed successfully!")
    return trainer.results


def parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Transfer learning with a pre-trained VGG16"
    )
    parser.add_argument(
        "--dataset",
        choices=sorted(CONFIGS) + ["all"],
        default="all",
        help="Dataset to train on",
    )
    parser.add_argument("--epochs", type=int, help="Head training epochs")
    parser.add_argument("--fine-tune-epochs", type=int, help="Fine-tuning epochs")
    parser.add_argument("--batch-size", type=int, help="Batch size")
    parser.add_argument("--img-size", type=int, help="Input image size")
    parser.add_argument("--data-dir", type=str, help="Dataset root directory")
    parser.add_argument("--output-dir", type=str, help="Output directory")
    parser.add_argument(
        "--weights",
        type=str,
        help="Base model weights: 'imagenet', a weights file, or 'none'",
    )
    parser.add_argument(
        "--no-augment", action="store_true", help="Disable data augmentation"
    )
    parser.add_argument("--log-file", type=str, default="training.log")
    return parser.parse_args(argv)


def config_from_args(name: str, args: argparse.Namespace):
    overrides = {
        "EPOCHS": args.epochs,
        "FINE_TUNE_EPOCHS": args.fine_tune_epochs,
        "BATCH_SIZE": args.batch_size,
        "IMG_SIZE": args.img_size,
        "DATA_DIR": args.data_dir,
        "OUTPUT_DIR": args.output_dir,
    }
    overrides = {key: value for key, value in overrides.items() if value is not None}
    if args.weights is not None:
        overrides["WEIGHTS"] = None if args.weights.lower() == "none" else args.weights
    if args.no_augment:
        overrides["AUGMENT"] = False
    return get_config(name).override(**overrides)


def main(argv=None):
    """Main training execution"""
    args = parse_args(argv)
    configure_logging(args.log_file)

    names = sorted(CONFIGS) if args.dataset == "all" else [args.dataset]
    results = {}
    try:
        for name in names:
            results[name] = run_experiment(config_from_args(name, args))
    except Exception as e:
        logger.error(f"Unexpected error: {str(e)}")
        raise

    for name, result in results.items():
        logger.info(f"{name}: {result['metrics']}")
    return results


if __name__ == "__main__":
    main()
