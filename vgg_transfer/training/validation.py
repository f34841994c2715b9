"""Data validation module for pre-training checks."""

import numpy as np
from pathlib import Path
import logging
from typing import Dict, Optional
from dataclasses import dataclass
from collections import Counter
import matplotlib

matplotlib.use("Agg")
import matplotlib.pyplot as plt
import seaborn as sns

from .config import Config
from .model_types import DatasetSplits, ProcessedBatch

logger = logging.getLogger(__name__)


@dataclass
class DatasetStats:
    """Statistics for a dataset split."""

    num_samples: int
    image_shape: tuple
    label_range: tuple
    dtype_images: str
    dtype_labels: str
    memory_usage_mb: float
    label_distribution: Dict[int, int]
    num_classes: int
    class_balance: float


class DataValidator:
    """Validates loaded dataset splits before training."""

    def __init__(self, config=Config, debug_dir: Optional[Path] = None):
        self.config = config
        self.debug_dir = Path(debug_dir or Path(config.OUTPUT_DIR) / "debug")
        self.expected_num_classes = config.NUM_CLASSES
        self.class_names = tuple(config.CLASS_NAMES)
        self.stats: Dict[str, DatasetStats] = {}

    def _check_batch_structure(self, batch: ProcessedBatch, split: str) -> None:
        """Verify the batch has the expected structure."""
        if not batch.validate():
            raise ValueError(
                f"{split} split should contain uint8 (N, H, W, 3) images and "
                f"(N,) labels, got {batch.images.shape} {batch.images.dtype} "
                f"and {batch.labels.shape}"
            )
        if len(batch) == 0:
            raise ValueError(f"{split} split is empty")

    def _analyze_label_distribution(self, labels: np.ndarray) -> Dict[str, object]:
        """Analyze the distribution of labels in a split."""
        label_counts = Counter(int(label) for label in labels)

        out_of_range = sorted(
            label
            for label in label_counts
            if not 0 <= label < self.expected_num_classes
        )
        if out_of_range:
            raise ValueError(
                f"Labels outside [0, {self.expected_num_classes}): {out_of_range}"
            )

        missing_classes = set(range(self.expected_num_classes)) - set(label_counts)
        if missing_classes:
            logger.warning(f"Missing classes: {sorted(missing_classes)}")

        return {
            "num_classes": len(label_counts),
            "label_distribution": dict(sorted(label_counts.items())),
            "class_balance": float(
                np.std([count / len(labels) for count in label_counts.values()])
            ),
            "empty_classes": sorted(missing_classes),
        }

    def validate_split(self, batch: ProcessedBatch, split: str) -> DatasetStats:
        """Validate a single dataset split."""
        logger.info(f"Validating {split} split...")

        self._check_batch_structure(batch, split)
        dist_stats = self._analyze_label_distribution(batch.labels)
        distribution = dist_stats["label_distribution"]

        stats = DatasetStats(
            num_samples=len(batch),
            image_shape=tuple(batch.images.shape[1:]),
            label_range=(min(distribution), max(distribution)),
            dtype_images=str(batch.images.dtype),
            dtype_labels=str(batch.labels.dtype),
            memory_usage_mb=(batch.images.nbytes + batch.labels.nbytes)
            / (1024 * 1024),
            label_distribution=distribution,
            num_classes=dist_stats["num_classes"],
            class_balance=dist_stats["class_balance"],
        )
        self.stats[split] = stats
        return stats

    def class_weights(self, batch: ProcessedBatch) -> Dict[int, float]:
        """Balanced class weights for the training split.

        Classes absent from the split keep a neutral weight of 1.0.
        """
        counts = Counter(int(label) for label in batch.labels)
        total_samples = sum(counts.values())
        return {
            cls: (
                total_samples / (self.expected_num_classes * counts[cls])
                if counts[cls]
                else 1.0
            )
            for cls in range(self.expected_num_classes)
        }

    def plot_label_distribution(self) -> Path:
        """Plot the per-split label distribution"""
        self.debug_dir.mkdir(parents=True, exist_ok=True)

        num_splits = len(self.stats)
        fig, axes = plt.subplots(1, num_splits, figsize=(5 * num_splits, 4))
        axes = np.atleast_1d(axes)

        for ax, (split, stats) in zip(axes, self.stats.items()):
            classes = list(range(self.expected_num_classes))
            counts = [stats.label_distribution.get(i, 0) for i in classes]
            names = [
                self.class_names[i] if i < len(self.class_names) else str(i)
                for i in classes
            ]
            sns.barplot(x=names, y=counts, ax=ax, color="steelblue")
            ax.set_title(f"{split} ({stats.num_samples} samples)")
            ax.set_xlabel("Class")
            ax.set_ylabel("Count")
            ax.tick_params(axis="x", rotation=45)

        fig.tight_layout()
        path = self.debug_dir / f"{self.config.DATASET}_label_distribution.png"
        fig.savefig(path)
        plt.close(fig)
        return path

    def _print_validation_report(self):
        """Print formatted validation report."""
        logger.info("=" * 50)
        logger.info(f"📋 Dataset Validation Report: {self.config.DATASET}")
        logger.info("=" * 50)

        for split, stats in self.stats.items():
            logger.info(f"📦 {split.upper()} Split:")
            logger.info(f"   • Samples: {stats.num_samples:,}")
            logger.info(f"   • Image Shape: {stats.image_shape}")
            logger.info(f"   • Label Range: {stats.label_range}")
            logger.info(f"   • Classes Found: {stats.num_classes}")
            logger.info(f"   • Class Balance: {stats.class_balance:.2f}")
            logger.info(f"   • Image dtype: {stats.dtype_images}")
            logger.info(f"   • Label dtype: {stats.dtype_labels}")
            logger.info(f"   • Memory Usage: {stats.memory_usage_mb:.2f} MB")

            if stats.num_classes < self.expected_num_classes:
                logger.warning(
                    f"⚠️  Missing {self.expected_num_classes - stats.num_classes} classes!"
                )

        logger.info("✅ All validation checks passed!")
        logger.info("=" * 50)

    def validate_all(self, splits: DatasetSplits) -> bool:
        """Run all validation checks and return success status."""
        try:
            logger.info("📊 Starting dataset validation...")

            for split, batch in splits.items():
                self.validate_split(batch, split)

            plot_path = self.plot_label_distribution()
            logger.info(f"Label distribution saved to {plot_path}")

            self._print_validation_report()
            return True

        except Exception as e:
            logger.error(f"❌ Validation failed: {str(e)}")
            return False
