from typing import Dict, List, Optional, Tuple, Union
from pathlib import Path
import logging
import shutil
import numpy as np
import py7zr
import pyarrow.csv as pv
import tensorflow as tf
import kagglehub
from tqdm import tqdm
from PIL import Image
from vgg_transfer.training.config import Config
from vgg_transfer.training.image_conversion import ImageConverter
from vgg_transfer.training.model_types import (
    DatasetProtocol,
    DatasetSplits,
    ProcessedBatch,
)

logger = logging.getLogger(__name__)

IMAGE_EXTENSIONS = (".jpg", ".jpeg", ".png")


def split_indices(
    n: int, validation_split: float, test_split: float, seed: int = 42
) -> Tuple[np.ndarray, np.ndarray, np.ndarray]:
    """Shuffle range(n) with a fixed seed and cut it into train/validation/test"""
    for name, fraction in (("validation", validation_split), ("test", test_split)):
        if not 0.0 <= fraction < 1.0:
            raise ValueError(f"Invalid {name} split: {fraction}")
    if validation_split + test_split >= 1.0:
        raise ValueError(
            f"Validation and test splits leave no training data: "
            f"{validation_split} + {test_split}"
        )

    idx = np.random.RandomState(seed).permutation(n)
    n_test = int(round(n * test_split))
    n_val = int(round(n * validation_split))

    test_idx = idx[:n_test]
    val_idx = idx[n_test : n_test + n_val]
    train_idx = idx[n_test + n_val :]
    return train_idx, val_idx, test_idx


def extract_archives(source: Path, destination: Path) -> List[Path]:
    """Unpack every .zip and .7z archive under source into destination"""
    destination.mkdir(parents=True, exist_ok=True)
    extracted = []
    for archive in sorted(source.rglob("*")):
        if not archive.is_file():
            continue
        suffix = archive.suffix.lower()
        if suffix == ".zip":
            logger.info(f"Extracting {archive.name}...")
            shutil.unpack_archive(str(archive), str(destination), "zip")
        elif suffix == ".7z":
            logger.info(f"Extracting {archive.name}...")
            with py7zr.SevenZipFile(archive, mode="r") as seven_zip:
                seven_zip.extractall(path=destination)
        else:
            continue
        extracted.append(archive)
    return extracted


def convert_dataset(
    dataset: DatasetProtocol,
    converter: ImageConverter,
    batch_size: int,
    desc: str = "Converting",
) -> ProcessedBatch:
    """Convert an indexable image/label dataset into one ProcessedBatch"""
    processed_images = []
    processed_labels = []
    total_samples = len(dataset)

    with tqdm(total=total_samples, desc=desc) as pbar:
        for i in range(0, total_samples, batch_size):
            batch_data = [dataset[j] for j in range(i, min(i + batch_size, total_samples))]

            batch_images = [item["image"] for item in batch_data]
            batch_labels = [item["label"] for item in batch_data]

            # Process images in parallel
            processed_images.extend(converter.process_batch(batch_images))
            processed_labels.extend(batch_labels)

            pbar.update(len(batch_data))

    return ProcessedBatch(
        images=np.stack(processed_images).astype(np.uint8),
        labels=np.asarray(processed_labels, dtype=np.int64),
    )


class InvasiveSpeciesLoader:
    """Loads the invasive species images listed in train_labels.csv"""

    def __init__(self, config=Config, data_dir: Optional[Path] = None):
        self.config = config
        self.data_dir = Path(data_dir or Path(config.DATA_DIR) / config.DATASET)
        self.converter = ImageConverter(img_size=config.IMG_SIZE)
        self._records: Optional[List[Tuple[Path, int]]] = None

    def __len__(self) -> int:
        """Implement protocol requirement"""
        if self._records is None:
            raise RuntimeError("Labels not loaded, call read_records() first")
        return len(self._records)

    def __getitem__(self, idx: int) -> Dict[str, Union[Image.Image, int]]:
        """Implement protocol requirement"""
        if self._records is None:
            raise RuntimeError("Labels not loaded, call read_records() first")
        path, label = self._records[idx]
        with Image.open(path) as image:
            return {"image": image.convert("RGB"), "label": label}

    def _find_labels_file(self, root: Path) -> Optional[Path]:
        direct = root / self.config.LABELS_FILE
        if direct.exists():
            return direct
        return next(iter(sorted(root.rglob(self.config.LABELS_FILE))), None)

    def _find_image_dir(self, root: Path) -> Optional[Path]:
        candidates = [root / "train"] + sorted(
            p for p in root.rglob("train") if p.is_dir()
        )
        for candidate in candidates:
            if candidate.is_dir() and any(
                f.suffix.lower() in IMAGE_EXTENSIONS for f in candidate.iterdir()
            ):
                return candidate
        return None

    def _search(self, roots: List[Path]) -> Tuple[Optional[Path], Optional[Path]]:
        labels_file = image_dir = None
        for root in roots:
            if not root.exists():
                continue
            labels_file = labels_file or self._find_labels_file(root)
            image_dir = image_dir or self._find_image_dir(root)
        return labels_file, image_dir

    def locate_data(self) -> Tuple[Path, Path]:
        """Find the labels CSV and the image directory, downloading if needed"""
        roots = [self.data_dir]
        labels_file, image_dir = self._search(roots)

        if labels_file is None and self.data_dir.exists():
            if extract_archives(self.data_dir, self.data_dir):
                labels_file, image_dir = self._search(roots)

        if labels_file is None:
            logger.info(
                f"No {self.config.LABELS_FILE} under {self.data_dir}, "
                f"downloading {self.config.KAGGLE_COMPETITION}"
            )
            download_dir = Path(
                kagglehub.competition_download(self.config.KAGGLE_COMPETITION)
            )
            logger.info(f"Dataset downloaded to: {download_dir}")

            # The competition ships train_labels.csv.zip and train.7z
            extract_archives(download_dir, self.data_dir)
            roots.append(download_dir)
            labels_file, image_dir = self._search(roots)
            if labels_file is None:
                raise FileNotFoundError(
                    f"Labels file {self.config.LABELS_FILE} not found in "
                    f"{download_dir} or its archives"
                )

        if image_dir is None:
            raise FileNotFoundError(
                f"No training image directory found under {roots}. "
                "Expected train/<name>.jpg, e.g. extracted from train.7z."
            )

        logger.info(f"Labels file: {labels_file}")
        logger.info(f"Image directory: {image_dir}")
        return labels_file, image_dir

    def read_labels(self, csv_path: Path) -> Dict[str, int]:
        """Read the name -> label mapping from the labels CSV"""
        table = pv.read_csv(str(csv_path))

        required_columns = {"name", "invasive"}
        if not required_columns.issubset(table.column_names):
            raise ValueError(
                f"Labels file missing required columns: {required_columns}, "
                f"found {table.column_names}"
            )

        names = [str(name) for name in table.column("name").to_pylist()]
        labels = [int(label) for label in table.column("invasive").to_pylist()]

        invalid = sorted(set(labels) - {0, 1})
        if invalid:
            raise ValueError(f"Invalid labels in {csv_path}: {invalid}")

        return dict(zip(names, labels))

    def _resolve_image(self, image_dir: Path, name: str) -> Optional[Path]:
        for extension in IMAGE_EXTENSIONS:
            path = image_dir / f"{name}{extension}"
            if path.exists():
                return path
        return None

    def read_records(self) -> List[Tuple[Path, int]]:
        """Pair each labelled name with its image file"""
        labels_file, image_dir = self.locate_data()
        labels = self.read_labels(labels_file)

        records = []
        missing = 0
        for name, label in labels.items():
            path = self._resolve_image(image_dir, name)
            if path is None:
                missing += 1
                continue
            records.append((path, label))

        if missing:
            logger.warning(f"Skipped {missing} labelled rows without an image file")
        if not records:
            raise ValueError(f"No labelled images found in {image_dir}")

        self._records = records
        return records

    def load(self) -> DatasetSplits:
        """Load every labelled image and split into train/validation/test"""
        self.read_records()
        data = convert_dataset(
            self,
            self.converter,
            batch_size=self.config.BATCH_SIZE,
            desc="Loading invasive species",
        )

        train_idx, val_idx, test_idx = split_indices(
            len(data),
            self.config.VALIDATION_SPLIT,
            self.config.TEST_SPLIT,
            seed=self.config.SEED,
        )
        logger.info(
            f"Invasive species splits - train: {len(train_idx)}, "
            f"validation: {len(val_idx)}, test: {len(test_idx)}"
        )

        return DatasetSplits(
            train=data.subset(train_idx),
            validation=data.subset(val_idx),
            test=data.subset(test_idx),
            class_names=tuple(self.config.CLASS_NAMES),
        )


class Cifar10Loader:
    """Loads CIFAR-10 from the Keras dataset cache"""

    def __init__(self, config=Config):
        self.config = config

    def load(self) -> DatasetSplits:
        """Load CIFAR-10 and carve a validation split out of the training set"""
        logger.info("Loading CIFAR-10...")
        (x_train, y_train), (x_test, y_test) = tf.keras.datasets.cifar10.load_data()

        train = ProcessedBatch(
            images=np.asarray(x_train, dtype=np.uint8),
            labels=np.asarray(y_train, dtype=np.int64).reshape(-1),
        )
        test = ProcessedBatch(
            images=np.asarray(x_test, dtype=np.uint8),
            labels=np.asarray(y_test, dtype=np.int64).reshape(-1),
        )

        # The official test set stays untouched
        train_idx, val_idx, _ = split_indices(
            len(train), self.config.VALIDATION_SPLIT, 0.0, seed=self.config.SEED
        )
        logger.info(
            f"CIFAR-10 splits - train: {len(train_idx)}, "
            f"validation: {len(val_idx)}, test: {len(test)}"
        )

        return DatasetSplits(
            train=train.subset(train_idx),
            validation=train.subset(val_idx),
            test=test,
            class_names=tuple(self.config.CLASS_NAMES),
        )


def get_loader(config):
    """Return the loader matching config.DATASET"""
    if config.DATASET == "invasive_species":
        return InvasiveSpeciesLoader(config)
    if config.DATASET == "cifar10":
        return Cifar10Loader(config)
    raise ValueError(f"No loader for dataset: {config.DATASET}")
