"""Common data schemas."""

from dataclasses import dataclass, field
from typing import Dict, List


@dataclass(frozen=True)
class ImageRef:
    """Handle to an uploaded image that already passed format/size gating.

    Attributes:
        name: Original filename (used in prompts and CSV rows)
        data: Encoded image bytes
        mime_type: MIME type of the encoded bytes
    """
    name: str
    data: bytes = field(repr=False)
    mime_type: str = "image/jpeg"

    @property
    def size(self) -> int:
        return len(self.data)


@dataclass(frozen=True)
class Metadata:
    """Stock metadata generated for one image.

    The pipeline never inspects these fields; they are passed through
    to the caller and the CSV exporter as-is.

    Attributes:
        filename: Image filename the metadata belongs to
        description: Description (Shutterstock) or title (Adobe Stock)
        keywords: Keywords ordered by relevance
        categories: Category names or ids
        extra: Platform-specific fields (editorial, mature content, ...)
    """
    filename: str
    description: str = ""
    keywords: List[str] = field(default_factory=list)
    categories: List[str] = field(default_factory=list)
    extra: Dict[str, str] = field(default_factory=dict)
