"""Image loader - builds ImageRefs from files with format and size gating."""

import io
import logging
from pathlib import Path
from typing import Iterable, List, Optional, Tuple, Union

from PIL import Image, UnidentifiedImageError

from ..core.errors import ImageRejectedError
from ..schemas.common import ImageRef
from .compressor import CompressConfig, compress_image

logger = logging.getLogger(__name__)

MAX_IMAGE_BYTES = 5 * 1024 * 1024
MAX_FILENAME_LENGTH = 255

# Pillow format name -> MIME type accepted upstream
ALLOWED_FORMATS = {
    "JPEG": "image/jpeg",
    "PNG": "image/png",
    "WEBP": "image/webp",
    "GIF": "image/gif",
}

IMAGE_SUFFIXES = {".jpg", ".jpeg", ".png", ".webp", ".gif"}


def validate_filename(name: str) -> None:
    """Reject empty, overlong or path-like filenames.

    Raises:
        ImageRejectedError: If the name is not acceptable
    """
    if not name:
        raise ImageRejectedError("Filename is empty")
    if len(name) > MAX_FILENAME_LENGTH:
        raise ImageRejectedError(f"Filename longer than {MAX_FILENAME_LENGTH} characters: {name[:40]}...")
    if any(ch in name for ch in ("/", "\\", "\0")):
        raise ImageRejectedError(f"Filename contains path separators: {name!r}")


def detect_mime_type(data: bytes) -> str:
    """Detect MIME type from image content.

    Raises:
        ImageRejectedError: If the data is not a JPEG, PNG, WebP or GIF image
    """
    try:
        with Image.open(io.BytesIO(data)) as img:
            fmt = img.format
    except (UnidentifiedImageError, OSError) as e:
        raise ImageRejectedError(f"Not a recognizable image: {e}") from e

    mime_type = ALLOWED_FORMATS.get(fmt or "")
    if mime_type is None:
        raise ImageRejectedError(
            f"Unsupported image format {fmt}; allowed: {', '.join(ALLOWED_FORMATS.values())}"
        )
    return mime_type


def make_image_ref(
    name: str,
    data: bytes,
    compress: bool = True,
    compress_config: Optional[CompressConfig] = None,
) -> ImageRef:
    """Build a gated ImageRef from raw bytes.

    Args:
        name: Filename reported to the model and used in CSV export
        data: Encoded image bytes
        compress: Try compressing images over the size limit before rejecting
        compress_config: Compression settings

    Returns:
        ImageRef no larger than MAX_IMAGE_BYTES

    Raises:
        ImageRejectedError: If name, format or size is not acceptable
    """
    validate_filename(name)
    image = ImageRef(name=name, data=data, mime_type=detect_mime_type(data))

    if image.size > MAX_IMAGE_BYTES and compress:
        image = compress_image(image, compress_config).image

    if image.size > MAX_IMAGE_BYTES:
        raise ImageRejectedError(
            f"{name} is {image.size / (1024 * 1024):.1f} MB, limit is "
            f"{MAX_IMAGE_BYTES // (1024 * 1024)} MB"
        )
    return image


def load_image(path: Path, compress: bool = True) -> ImageRef:
    """Load one image file.

    Raises:
        ImageRejectedError: If the file is missing or fails gating
    """
    path = Path(path)
    if not path.is_file():
        raise ImageRejectedError(f"Image file not found: {path}")
    return make_image_ref(path.name, path.read_bytes(), compress=compress)


def load_images(
    sources: Iterable[Union[str, Path]],
    compress: bool = True,
) -> Tuple[List[ImageRef], List[Tuple[Path, str]]]:
    """Load images from files and directories.

    Directories are scanned (non-recursively) for image suffixes in name
    order. Rejected files are reported rather than raised.

    Returns:
        Tuple of (accepted images, [(path, reason), ...] for rejected files)
    """
    paths: List[Path] = []
    for source in sources:
        source = Path(source)
        if source.is_dir():
            paths.extend(
                sorted(p for p in source.iterdir() if p.is_file() and p.suffix.lower() in IMAGE_SUFFIXES)
            )
        else:
            paths.append(source)

    images: List[ImageRef] = []
    rejected: List[Tuple[Path, str]] = []
    for path in paths:
        try:
            images.append(load_image(path, compress=compress))
        except ImageRejectedError as e:
            logger.warning(f"Skipping {path}: {e}")
            rejected.append((path, str(e)))

    logger.info(f"Loaded {len(images)} images ({len(rejected)} rejected)")
    return images, rejected
