"""Utilities for converting and processing images into numpy arrays."""

from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import List, Sequence, Union
import numpy as np
from vgg_transfer.training.model_types import ImageArray
from PIL import Image
import logging

logger = logging.getLogger(__name__)

ImageSource = Union[Image.Image, ImageArray, str, Path]


class ImageConverter:
    """Handles parallel conversion of images to numpy arrays for batch processing."""

    def __init__(self, img_size: int = 224, num_workers: int = 6):
        self.img_size = img_size
        self.num_workers = num_workers

    def convert_single_image(self, image: ImageSource) -> ImageArray:
        """Convert a single image to numpy array with validation"""
        try:
            if isinstance(image, (str, Path)):
                with Image.open(image) as opened:
                    image = opened.convert("RGB")
            elif isinstance(image, np.ndarray):
                if image.dtype != np.uint8:
                    raise ValueError(f"Expected a uint8 image array, got {image.dtype}")
                image = Image.fromarray(image)
            elif not isinstance(image, Image.Image):
                raise ValueError(f"Unsupported image type: {type(image).__name__}")

            # Resize and convert to RGB
            image = image.convert("RGB")
            if image.size != (self.img_size, self.img_size):
                image = image.resize(
                    (self.img_size, self.img_size), Image.Resampling.LANCZOS
                )

            image_array = np.asarray(image, dtype=np.uint8)

            expected_shape = (self.img_size, self.img_size, 3)
            if image_array.shape != expected_shape:
                raise ValueError(f"Invalid image shape: {image_array.shape}")

            return image_array

        except Exception as e:
            logger.error(f"Error converting image: {str(e)}")
            raise

    def process_batch(self, images: Sequence[ImageSource]) -> List[ImageArray]:
        """Process a batch of images in parallel"""
        try:
            with ThreadPoolExecutor(max_workers=self.num_workers) as executor:
                processed_images = list(executor.map(self.convert_single_image, images))
            return processed_images

        except Exception as e:
            logger.error(f"Batch processing error: {str(e)}")
            raise ValueError(f"Error processing batch: {str(e)}") from e
