"""Image compressor for keeping upload payloads under the proxy limit."""

import io
import logging
from dataclasses import dataclass
from typing import Optional, Tuple

from PIL import Image

from ..schemas.common import ImageRef

logger = logging.getLogger(__name__)


@dataclass
class CompressConfig:
    """Configuration for image compression.

    Base64 adds about a third to the payload, so the target stays near 3 MB.
    """

    max_width: int = 2048
    max_height: int = 2048
    target_size: int = 3 * 1024 * 1024
    min_quality: float = 0.3
    start_quality: float = 0.9


@dataclass
class CompressResult:
    """Outcome of compress_image()."""

    image: ImageRef
    was_compressed: bool
    original_size: int
    new_size: int
    quality: Optional[int] = None
    dimensions: Optional[Tuple[int, int]] = None


def _has_transparency(img: Image.Image) -> bool:
    if img.mode in ("RGBA", "LA"):
        alpha = img.getchannel("A")
        return alpha.getextrema()[0] < 255
    if img.mode == "P":
        return "transparency" in img.info
    return False


def _encode_jpeg(img: Image.Image, quality: float) -> bytes:
    buf = io.BytesIO()
    img.save(buf, format="JPEG", quality=max(1, int(round(quality * 100))), optimize=True)
    return buf.getvalue()


def _fit(size: Tuple[int, int], max_width: int, max_height: int) -> Tuple[int, int]:
    width, height = size
    if width > max_width or height > max_height:
        ratio = min(max_width / width, max_height / height)
        width, height = round(width * ratio), round(height * ratio)
    return width, height


def _reduce_quality(img: Image.Image, quality: float, config: CompressConfig) -> Tuple[bytes, float]:
    data = _encode_jpeg(img, quality)
    while len(data) > config.target_size and quality - 0.1 >= config.min_quality:
        quality -= 0.1
        data = _encode_jpeg(img, quality)
    return data, quality


def compress_image(image: ImageRef, config: Optional[CompressConfig] = None) -> CompressResult:
    """Downscale and re-encode an image that exceeds the target size.

    Images at or under target_size are returned unchanged. PNGs with
    transparency are resized only and stay PNG. Everything else becomes
    JPEG with decreasing quality (down to min_quality); if that is still
    too large and the image is over 1024 px, it is shrunk to 70% and
    tried again from quality 0.8.

    Args:
        image: Image to compress
        config: Compression settings (defaults if not provided)

    Returns:
        CompressResult; the result may still exceed target_size
    """
    config = config or CompressConfig()
    original_size = image.size

    if original_size <= config.target_size:
        return CompressResult(image, False, original_size, original_size)

    with Image.open(io.BytesIO(image.data)) as src:
        src.load()
        width, height = _fit(src.size, config.max_width, config.max_height)
        resized = src.resize((width, height), Image.LANCZOS) if (width, height) != src.size else src.copy()

    if image.mime_type == "image/png" and _has_transparency(resized):
        buf = io.BytesIO()
        resized.save(buf, format="PNG", optimize=True)
        data = buf.getvalue()
        logger.info(
            f"Resized {image.name} (PNG with transparency): {original_size} -> {len(data)} bytes"
        )
        return CompressResult(
            ImageRef(name=image.name, data=data, mime_type="image/png"),
            True, original_size, len(data), dimensions=(width, height),
        )

    rgb = resized.convert("RGB")
    data, quality = _reduce_quality(rgb, config.start_quality, config)

    if len(data) > config.target_size and (width > 1024 or height > 1024):
        width, height = round(width * 0.7), round(height * 0.7)
        rgb = rgb.resize((width, height), Image.LANCZOS)
        data, quality = _reduce_quality(rgb, 0.8, config)

    logger.info(
        f"Compressed {image.name}: {original_size} -> {len(data)} bytes "
        f"({width}x{height}, quality {round(quality * 100)})"
    )
    return CompressResult(
        ImageRef(name=image.name, data=data, mime_type="image/jpeg"),
        True, original_size, len(data),
        quality=round(quality * 100),
        dimensions=(width, height),
    )
