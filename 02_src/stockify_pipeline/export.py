"""CSV export of generated metadata in stock platform upload formats."""

import csv
import io
import logging
from pathlib import Path
from typing import Dict, Iterable, List, Optional

from .schemas.common import Metadata
from .schemas.job import BatchResult

logger = logging.getLogger(__name__)

CSV_HEADERS: Dict[str, List[str]] = {
    "shutterstock": [
        "Filename", "Description", "Keywords", "Categories",
        "Editorial", "Mature content", "Illustration",
    ],
    "adobe_stock": ["Filename", "Title", "Keywords", "Category", "Releases"],
}


def metadata_row(metadata: Metadata, platform: str) -> List[str]:
    """Build one CSV row for a platform."""
    keywords = ", ".join(metadata.keywords)
    categories = ", ".join(metadata.categories)
    extra = metadata.extra

    if platform == "adobe_stock":
        return [
            metadata.filename,
            metadata.description,
            keywords,
            categories,
            extra.get("releases", ""),
        ]

    return [
        metadata.filename,
        metadata.description,
        keywords,
        categories,
        extra.get("editorial", "no"),
        extra.get("mature_content", "no"),
        extra.get("illustration", "no"),
    ]


def generate_csv(items: Iterable[Metadata], platform: str = "shutterstock") -> str:
    """Render metadata as CSV text with every field quoted.

    Raises:
        ValueError: If platform is unknown
    """
    if platform not in CSV_HEADERS:
        raise ValueError(f"Unknown platform: {platform}")

    buf = io.StringIO()
    writer = csv.writer(buf, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADERS[platform])
    for metadata in items:
        writer.writerow(metadata_row(metadata, platform))
    return buf.getvalue()


def export_batch(
    result: BatchResult,
    path: Path,
    platform: str = "shutterstock",
) -> Optional[Path]:
    """Write the succeeded tasks of a batch to a CSV file.

    Args:
        result: Batch result (failed and unfinished tasks are skipped)
        path: Output CSV path
        platform: "shutterstock" or "adobe_stock"

    Returns:
        Path written, or None if no task succeeded
    """
    items = [r.metadata for r in result.successes() if r.metadata is not None]
    if not items:
        logger.warning(f"Job {result.job_id}: nothing to export")
        return None

    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text(generate_csv(items, platform), encoding="utf-8")

    logger.info(f"Exported {len(items)} rows to {path} ({platform})")
    return path
