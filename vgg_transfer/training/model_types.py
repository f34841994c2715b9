"""Type definitions and data structures for training pipeline components."""

from typing import Dict, Iterator, Tuple, Union, Protocol, runtime_checkable
from dataclasses import dataclass
from PIL import Image
import numpy as np
import numpy.typing as npt

# Type definitions
ImageArray = npt.NDArray[np.uint8]  # Specifically for uint8 image arrays

SPLIT_NAMES = ("train", "validation", "test")


@dataclass
class ProcessedBatch:
    """Batch of processed images and labels"""

    images: npt.NDArray[np.uint8]  # Shape: (batch_size, height, width, 3)
    labels: npt.NDArray[np.int64]

    def __len__(self) -> int:
        return int(self.labels.shape[0])

    def validate(self) -> bool:
        """Validate the batch"""
        return (
            self.images.dtype == np.uint8
            and len(self.images.shape) == 4
            and self.images.shape[-1] == 3
            and len(self.labels.shape) == 1
            and self.images.shape[0] == self.labels.shape[0]
        )

    def subset(self, indices: npt.NDArray[np.int64]) -> "ProcessedBatch":
        return ProcessedBatch(images=self.images[indices], labels=self.labels[indices])


@dataclass
class DatasetSplits:
    """Train, validation and test batches of one dataset"""

    train: ProcessedBatch
    validation: ProcessedBatch
    test: ProcessedBatch
    class_names: Tuple[str, ...] = ()

    def items(self) -> Iterator[Tuple[str, ProcessedBatch]]:
        for split in SPLIT_NAMES:
            yield split, getattr(self, split)


@runtime_checkable
class DatasetProtocol(Protocol):
    """Protocol for dataset-like objects"""

    def __len__(self) -> int: ...
    def __getitem__(self, idx: int) -> Dict[str, Union[Image.Image, int]]: ...
