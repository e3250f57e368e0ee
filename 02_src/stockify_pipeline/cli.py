"""CLI interface for batch metadata generation.

This module provides a command-line interface that loads images, runs
them through BatchOrchestrator and writes a platform CSV.
"""

import argparse
import logging
import os
import sys
from pathlib import Path
from typing import List, Optional

from dotenv import load_dotenv

from .core.inference_client import (
    BaseInferenceClient,
    GeminiInferenceClient,
    ProxyInferenceClient,
)
from .core.errors import PipelineError
from .core.orchestrator import BatchOrchestrator
from .core.telemetry import HttpTelemetrySink, LoggingTelemetrySink
from .export import export_batch
from .preprocessing.image_loader import load_images
from .schemas.config import DEFAULT_MODEL, InferenceConfig, ModelCatalog, PipelineConfig
from .schemas.job import BatchResult

LOG_FORMAT = "%(asctime)s | %(name)s | %(message)s"
LOG_DATEFMT = "%H:%M:%S"


def setup_logging(log_level: str, log_file: Optional[Path] = None) -> None:
    """Setup logging: console + optional file handler.

    Args:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_file: Path to log file (UTF-8). If None, console only.
    """
    level = getattr(logging, log_level.upper(), logging.INFO)

    # Console handler
    logging.basicConfig(
        level=level,
        format=LOG_FORMAT,
        datefmt=LOG_DATEFMT,
        stream=sys.stdout,
    )

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        fh = logging.FileHandler(log_file, encoding="utf-8")
        fh.setLevel(level)
        fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=LOG_DATEFMT))
        logging.getLogger().addHandler(fh)


def validate_arguments(sources: List[Path], api_key: Optional[str], proxy_url: Optional[str]) -> None:
    """Validate CLI arguments.

    Raises:
        SystemExit: If validation fails
    """
    missing = [p for p in sources if not p.exists()]
    if missing:
        print(f"Error: path not found: {missing[0]}", file=sys.stderr)
        sys.exit(1)

    if not api_key and not proxy_url:
        print(
            "Error: GEMINI_API_KEY not found in environment. "
            "Please set it in .env file, as environment variable, or use --proxy-url.",
            file=sys.stderr,
        )
        sys.exit(1)


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="Generate stock photo metadata for a batch of images",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  stockify-pipeline ./photos
  stockify-pipeline a.jpg b.png --platform adobe_stock -o adobe.csv
  stockify-pipeline ./photos --model gemini-2.5-flash --fallback-model gemini-2.5-flash-lite
  stockify-pipeline ./photos --proxy-url https://stockify.example.com/api/generate-metadata
        """,
    )

    parser.add_argument(
        "sources",
        type=Path,
        nargs="+",
        help="Image files or directories of images",
    )
    parser.add_argument(
        "--model", "-m",
        default=DEFAULT_MODEL,
        help=f"Model identifier (default: {DEFAULT_MODEL})",
    )
    parser.add_argument(
        "--fallback-model",
        action="append",
        default=[],
        help="Model to use when --model is out of quota (repeatable)",
    )
    parser.add_argument(
        "--platform", "-p",
        choices=["shutterstock", "adobe_stock"],
        default="shutterstock",
        help="Target stock platform (default: shutterstock)",
    )
    parser.add_argument(
        "--output", "-o",
        type=Path,
        default=None,
        help="CSV output path (default: <platform>_metadata.csv)",
    )
    parser.add_argument(
        "--fan-out",
        type=int,
        default=4,
        help="Max concurrent inference calls (default: 4)",
    )
    parser.add_argument(
        "--max-attempts",
        type=int,
        default=5,
        help="Max inference calls per image (default: 5)",
    )
    parser.add_argument(
        "--state-dir",
        type=Path,
        default=None,
        help="Directory for the persistent quota ledger (default: in-memory)",
    )
    parser.add_argument(
        "--catalog",
        type=Path,
        default=None,
        help="YAML model catalog (default: built-in Gemini models)",
    )
    parser.add_argument(
        "--proxy-url",
        default=None,
        help="Metadata proxy URL instead of calling Gemini directly",
    )
    parser.add_argument(
        "--telemetry-url",
        default=None,
        help="Log-error endpoint for failure telemetry (default: log only)",
    )
    parser.add_argument(
        "--log-level",
        type=str,
        default="INFO",
        choices=["DEBUG", "INFO", "WARNING", "ERROR"],
        help="Logging level (default: INFO)",
    )
    parser.add_argument(
        "--log-file",
        type=Path,
        default=None,
        help="Also write the log to this file (UTF-8)",
    )
    return parser


def print_summary(result: BatchResult, rejected: int, csv_path: Optional[Path]) -> None:
    print()
    print("=" * 60)
    print(f"Job:        {result.job_id}")
    print(f"Model:      {result.model}")
    print(f"Images:     {result.total} submitted, {rejected} rejected before upload")
    print(f"Succeeded:  {result.succeeded}")
    print(f"Failed:     {result.failed}")
    for r in result.failures():
        reason = f"{r.error.kind.value}: {r.error.message}" if r.error else "unknown"
        print(f"  - {r.filename} (attempts {r.attempts}): {reason}")
    if csv_path is not None:
        print(f"CSV:        {csv_path}")
    print("=" * 60)


def main(argv: Optional[List[str]] = None) -> int:
    """Main CLI entry point.

    Returns:
        0 if any image succeeded (or there was nothing to do), 1 otherwise
    """
    args = build_parser().parse_args(argv)

    try:
        load_dotenv()
        api_key = os.getenv("GEMINI_API_KEY")
        proxy_url = args.proxy_url or os.getenv("STOCKIFY_PROXY_URL")

        validate_arguments(args.sources, api_key, proxy_url)

        setup_logging(args.log_level, args.log_file)
        logger = logging.getLogger(__name__)

        catalog = ModelCatalog.from_yaml(args.catalog) if args.catalog else ModelCatalog.default()
        inference_config = InferenceConfig(
            api_key=api_key,
            platform=args.platform,
            proxy_url=proxy_url,
        )
        client: BaseInferenceClient
        if proxy_url:
            client = ProxyInferenceClient(inference_config)
            logger.info(f"Using metadata proxy: {proxy_url}")
        else:
            client = GeminiInferenceClient(inference_config, catalog)

        config = PipelineConfig(
            fan_out=args.fan_out,
            max_attempts=args.max_attempts,
            fallback_models=tuple(args.fallback_model),
            state_dir=args.state_dir,
            log_level=args.log_level,
        )
        telemetry = (
            HttpTelemetrySink(args.telemetry_url) if args.telemetry_url else LoggingTelemetrySink()
        )

        images, rejected = load_images(args.sources)
        if not images:
            print("No images to process.")
            return 0 if not rejected else 1

        with BatchOrchestrator(client, catalog=catalog, config=config, telemetry=telemetry) as orchestrator:
            job = orchestrator.submit(images, model=args.model)
            result = orchestrator.wait(job.job_id)

        if isinstance(telemetry, HttpTelemetrySink):
            telemetry.flush()

        output = args.output or Path(f"{args.platform}_metadata.csv")
        csv_path = export_batch(result, output, platform=args.platform)

        print_summary(result, len(rejected), csv_path)
        return 0 if result.succeeded > 0 else 1

    except (PipelineError, ValueError) as e:
        print(f"Error: {e}", file=sys.stderr)
        return 1

    except KeyboardInterrupt:
        print("\nProcessing interrupted by user", file=sys.stderr)
        return 1

    except Exception as e:
        logging.getLogger(__name__).exception(f"Error during processing: {e}")
        return 1


if __name__ == "__main__":
    sys.exit(main())
