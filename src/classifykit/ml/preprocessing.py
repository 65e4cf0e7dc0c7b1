"""Image preprocessing pipeline.

Decodes uploaded bytes into RGB arrays and prepares them for the
classification model: center crop to a square, nearest-neighbor resize,
quarter-turn rotation, then linear normalization, always in that order.
"""

from __future__ import annotations

import io
import struct
from typing import TYPE_CHECKING

import numpy as np
from PIL import Image, ImageOps, UnidentifiedImageError

if TYPE_CHECKING:
    from numpy.typing import NDArray


class ImagePreprocessor:
    """Turns images into model input tensors for one input geometry."""

    def __init__(
        self,
        image_size_x: int,
        image_size_y: int,
        mean: float = 0.0,
        std: float = 1.0,
    ) -> None:
        if std == 0:
            raise ValueError("Normalization std must be non-zero")
        self.image_size_x = image_size_x
        self.image_size_y = image_size_y
        self.mean = mean
        self.std = std

    def process(
        self,
        image: NDArray[np.uint8],
        rotation: int = 0,
        out: NDArray[np.generic] | None = None,
    ) -> NDArray[np.generic]:
        """Prepare an image for the classification model.

        Args:
            image: HxWx3 RGB uint8 array.
            rotation: Sensor rotation in degrees, a multiple of 90.
            out: Optional (1, H, W, 3) buffer to write into. Its dtype decides
                the tensor type; values are cast after normalization.

        Returns:
            The (1, image_size_y, image_size_x, 3) input tensor.
        """
        if image.ndim != 3 or image.shape[2] != 3:
            raise ValueError(f"Expected an HxWx3 image, got shape {image.shape}")

        result = center_crop(image)
        result = resize_nearest(result, self.image_size_x, self.image_size_y)
        result = rotate(result, rotation)
        normalized = normalize(result, self.mean, self.std)

        if out is None:
            return normalized[np.newaxis, ...]
        if out.shape[1:3] != normalized.shape[:2]:
            raise ValueError(f"Input buffer shape {out.shape} does not fit image {normalized.shape}")
        np.copyto(out[0], normalized, casting="unsafe")
        return out


def decode_image(image_bytes: bytes, max_file_size: int, max_image_pixels: int) -> NDArray[np.uint8]:
    """Decode raw image bytes into an RGB uint8 numpy array.

    EXIF orientation is applied so the returned pixels are upright.

    Raises:
        ValueError: If the image cannot be decoded or exceeds size limits.
    """
    if not image_bytes:
        raise ValueError("Empty image")
    if len(image_bytes) > max_file_size:
        raise ValueError(f"Image file exceeds {max_file_size} bytes")

    try:
        with Image.open(io.BytesIO(image_bytes)) as img:
            if img.width * img.height > max_image_pixels:
                raise ValueError(f"Image exceeds {max_image_pixels} pixels")
            img.load()
            upright = ImageOps.exif_transpose(img)
            rgb = upright.convert("RGB")
    except (
        UnidentifiedImageError,
        OSError,
        EOFError,
        SyntaxError,
        struct.error,
        Image.DecompressionBombError,
    ) as exc:
        raise ValueError(f"Cannot decode image: {exc}") from exc

    return np.asarray(rgb, dtype=np.uint8)


def center_crop(image: NDArray[np.generic]) -> NDArray[np.generic]:
    """Crop the largest centered square; square inputs come back whole."""
    height, width = image.shape[:2]
    size = min(height, width)
    top = (height - size) // 2
    left = (width - size) // 2
    return image[top : top + size, left : left + size]


def resize_nearest(image: NDArray[np.generic], width: int, height: int) -> NDArray[np.generic]:
    """Resize with nearest-neighbor sampling; same-size inputs are unchanged."""
    src_height, src_width = image.shape[:2]
    if (src_width, src_height) == (width, height):
        return image
    rows = np.minimum((np.arange(height) * src_height / height).astype(np.int64), src_height - 1)
    cols = np.minimum((np.arange(width) * src_width / width).astype(np.int64), src_width - 1)
    return image[rows[:, np.newaxis], cols[np.newaxis, :]]


def rotate(image: NDArray[np.generic], rotation: int) -> NDArray[np.generic]:
    """Rotate counter-clockwise by ``rotation`` degrees (multiple of 90)."""
    if rotation % 90 != 0:
        raise ValueError(f"Rotation must be a multiple of 90, got {rotation}")
    return np.rot90(image, k=(rotation // 90) % 4, axes=(0, 1))


def normalize(image: NDArray[np.generic], mean: float, std: float) -> NDArray[np.float32]:
    return (image.astype(np.float32) - np.float32(mean)) / np.float32(std)
