"""JPEG compression of locally produced images before upload."""

import io
import logging

from PIL import Image

logger = logging.getLogger(__name__)

PRODUCT_MAX_DIMENSION = 600
BANNER_MAX_DIMENSION = 1200
TARGET_BYTES = 500 * 1024
MAX_ITERATIONS = 6
TOLERANCE = 0.1


def _encode(image: Image.Image, quality: float) -> bytes:
    buffer = io.BytesIO()
    # Pillow quality is 1-95; map the 0..1 range onto it
    image.save(buffer, format="JPEG", quality=max(1, min(95, int(round(quality * 95)))))
    return buffer.getvalue()


def resize_to_fit(image: Image.Image, max_dimension: int) -> Image.Image:
    """Scale down so the longer edge is at most max_dimension."""
    width, height = image.size
    longest = max(width, height)
    if longest <= max_dimension:
        return image
    scale = max_dimension / longest
    new_size = (max(1, round(width * scale)), max(1, round(height * scale)))
    return image.resize(new_size, Image.LANCZOS)


def compress_image(
    data: bytes,
    max_dimension: int = PRODUCT_MAX_DIMENSION,
    target_bytes: int = TARGET_BYTES,
    max_iterations: int = MAX_ITERATIONS,
) -> bytes:
    """
    Resize and JPEG-encode an image so it lands near target_bytes.

    Quality is binary-searched from 0.5 for at most max_iterations steps and
    the search stops once the output is within 10% of the target. The result
    is an approximation, not an exact fit.

    Raises:
        ValueError: If data is not a decodable image
    """
    try:
        with Image.open(io.BytesIO(data)) as source:
            source.load()
            image = source.convert("RGB")
    except (OSError, Image.DecompressionBombError) as e:
        raise ValueError(f"Not a decodable image: {e}") from e

    image = resize_to_fit(image, max_dimension)

    quality = 0.5
    low, high = 0.0, 1.0
    encoded = _encode(image, quality)

    for _ in range(max_iterations):
        if len(encoded) <= target_bytes:
            low = quality
            quality = (high + quality) / 2
        else:
            high = quality
            quality = (low + quality) / 2

        encoded = _encode(image, quality)

        if abs(len(encoded) - target_bytes) < target_bytes * TOLERANCE:
            break

    logger.info(
        f"Compressed image to {len(encoded) // 1024} KB at quality {quality:.2f} "
        f"({image.size[0]}x{image.size[1]})"
    )
    return encoded


def is_image(data: bytes) -> bool:
    """True when Pillow recognizes data as an image."""
    if not data:
        return False
    try:
        with Image.open(io.BytesIO(data)) as image:
            image.verify()
    except (OSError, SyntaxError, ValueError, Image.DecompressionBombError):
        return False
    return True


def placeholder_jpeg(size: int = 50) -> bytes:
    """Tiny gray JPEG sent when a multipart create has no image."""
    buffer = io.BytesIO()
    Image.new("RGB", (size, size), color=(128, 128, 128)).save(buffer, format="JPEG", quality=1)
    return buffer.getvalue()
