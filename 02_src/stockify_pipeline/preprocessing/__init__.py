"""Preprocessing module for loading and compressing images before upload."""

from .compressor import CompressConfig, CompressResult, compress_image
from .image_loader import (
    MAX_IMAGE_BYTES,
    detect_mime_type,
    load_image,
    load_images,
    make_image_ref,
)

__all__ = [
    "CompressConfig",
    "CompressResult",
    "compress_image",
    "MAX_IMAGE_BYTES",
    "detect_mime_type",
    "load_image",
    "load_images",
    "make_image_ref",
]
