#!/usr/bin/env python3
"""
CLI entry point for the media intake pipeline.

Scans a folder for images, queues them with the given classification and
drains the queue into the catalog store.

Usage:
    python run_intake.py /path/to/photos
    python run_intake.py /path/to/photos --category Ring --supplier "Shah & Co"
    python run_intake.py /path/to/photos --ai -v
    python run_intake.py /path/to/photos --clean-watermarks --ai
"""

import argparse
import asyncio
import logging
import sys
from pathlib import Path

import openai

from catalog.client import CatalogClient
from intake.cleanup import CleanupTrigger, TransformMode
from intake.config import IntakeConfig, load_config
from intake.enrichment import EnrichmentClient
from intake.models import ClassificationHints, ItemStatus, QueueItem
from intake.queue_manager import QueueManager
from intake.scanner import AssetScanner


def setup_logging(verbose: bool = False, log_file: str | None = None) -> None:
    """Configure logging for the intake run."""
    level = logging.DEBUG if verbose else logging.INFO

    handlers: list[logging.Handler] = [logging.StreamHandler()]

    if log_file:
        handlers.append(logging.FileHandler(log_file))

    logging.basicConfig(
        level=level,
        format="%(asctime)s - %(levelname)s - %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        handlers=handlers
    )

    # Keep HTTP client chatter out of the progress output
    for name in ("urllib3", "httpx", "openai"):
        logging.getLogger(name).setLevel(logging.WARNING)


class ProgressPrinter:
    """Queue listener printing every status change."""

    def __init__(self):
        self._seen: dict[str, ItemStatus] = {}

    def __call__(self, items: tuple[QueueItem, ...]) -> None:
        total = len(items)
        for position, item in enumerate(items, 1):
            if self._seen.get(item.id) is item.status:
                continue
            self._seen[item.id] = item.status
            line = f"[{position:4d}/{total:4d}] {item.status.value:<9} {item.filename}"
            if item.error:
                line += f" ({item.error})"
            print(line)


async def run_intake(args: argparse.Namespace, config: IntakeConfig) -> int:
    """Run the intake pipeline."""
    input_path = Path(args.path)
    if not input_path.is_dir():
        print(f"ERROR: Path is not a directory: {input_path}")
        return 1

    scan = AssetScanner(recursive=args.recursive).load(input_path)
    for name, reason in scan.skipped:
        print(f"WARNING: Skipped {name}: {reason}")
    assets = scan.assets
    if not assets:
        print("No images found to process")
        return 1 if scan.skipped else 0

    use_ai = config.use_ai if args.ai is None else args.ai
    transforms = []
    if args.clean_watermarks:
        transforms.append(TransformMode.CLEANUP)
    if args.enhance:
        transforms.append(TransformMode.ENHANCE)

    enricher = None
    if use_ai or transforms:
        try:
            enricher = EnrichmentClient.from_config(config)
        except openai.OpenAIError as e:
            print(f"ERROR: Could not set up the AI client: {e}")
            print("Set OPENAI_API_KEY in your .env file or run without AI options.")
            return 1

    hints = ClassificationHints(
        supplier=args.supplier,
        category=args.category,
        subcategory=args.subcategory,
        device=args.device,
        manufacturer=args.manufacturer,
    )

    # Print configuration
    print("Intake Configuration:")
    print(f"  Input path: {input_path}")
    print(f"  Images found: {len(assets)}")
    if scan.empty_files:
        print(f"  Empty files (will fail): {len(scan.empty_files)}")
    print(f"  Catalog store: {config.catalog_url}")
    print(f"  AI metadata: {use_ai}")
    if transforms:
        print(f"  Transforms: {', '.join(mode.value for mode in transforms)}")
    if hints.overrides():
        print(f"  Overrides: {', '.join(hints.overrides())}")
    print()

    with CatalogClient.from_config(config) as store:
        print("Checking catalog store...")
        if not await asyncio.to_thread(store.is_healthy):
            print("ERROR: Catalog store is not reachable or unhealthy.")
            print("Please check CATALOG_API_URL in your .env configuration.")
            return 1
        print("Catalog store OK\n")

        queue = QueueManager(store, config=config, enricher=enricher, use_ai=use_ai)
        if args.verbose:
            queue.subscribe(ProgressPrinter())

        item_ids = queue.enqueue(assets, hints)

        # Operator-requested transforms run before the queue starts draining
        if transforms:
            trigger = CleanupTrigger(queue, enricher)
            for item_id in item_ids:
                for mode in transforms:
                    if not await trigger.apply(item_id, mode):
                        break

        print("Starting intake...\n")
        async with queue:
            await queue.join()

    print("\n" + queue.summary())

    failed = sum(1 for item in queue.items if item.status is ItemStatus.ERROR)
    return 1 if failed else 0


def main() -> int:
    """Main entry point."""
    parser = argparse.ArgumentParser(
        description="Queue jewelry images, enrich them and create catalog records.",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Classification hints apply to every image of the run and always take
precedence over AI suggestions. Without AI, titles are derived from the
filenames and the category defaults to INTAKE_DEFAULT_CATEGORY ("Other").

Examples:
  python run_intake.py ./incoming                              # Fast upload
  python run_intake.py ./incoming --category Necklace --ai -v  # AI metadata
  python run_intake.py ./incoming --clean-watermarks           # Remove watermarks first
        """
    )

    parser.add_argument(
        "path",
        help="Path to directory containing images"
    )

    # Classification hints
    parser.add_argument("--supplier", help="Supplier of the pieces")
    parser.add_argument("--category", help="Catalog category (e.g. Ring, Necklace)")
    parser.add_argument("--subcategory", help="Catalog subcategory")
    parser.add_argument("--device", help="Capture device label")
    parser.add_argument("--manufacturer", help="Capture device manufacturer")

    # Processing options
    parser.add_argument(
        "--no-recursive",
        action="store_false",
        dest="recursive",
        help="Don't process subdirectories"
    )
    ai_group = parser.add_mutually_exclusive_group()
    ai_group.add_argument(
        "--ai",
        action="store_true",
        default=None,
        help="Extract titles, categories and tags with AI (default: INTAKE_USE_AI)"
    )
    ai_group.add_argument(
        "--no-ai",
        action="store_false",
        dest="ai",
        default=None,
        help="Disable AI metadata extraction"
    )
    parser.add_argument(
        "--clean-watermarks",
        action="store_true",
        help="Remove watermarks and text from every image before upload"
    )
    parser.add_argument(
        "--enhance",
        action="store_true",
        help="Apply studio enhancement to every image before upload"
    )

    # Output options
    parser.add_argument(
        "-v", "--verbose",
        action="store_true",
        help="Show detailed progress output"
    )
    parser.add_argument(
        "--log-file",
        help="Write logs to file"
    )
    parser.add_argument(
        "--env-file",
        help="Load settings from this .env file"
    )

    args = parser.parse_args()

    setup_logging(args.verbose, args.log_file)

    try:
        config = load_config(args.env_file)
    except ValueError as e:
        print(f"ERROR: Invalid configuration: {e}")
        return 1

    try:
        return asyncio.run(run_intake(args, config))
    except KeyboardInterrupt:
        print("\n\nIntake interrupted by user.")
        return 130
    except Exception as e:
        print(f"\nERROR: {e}")
        if args.verbose:
            import traceback
            traceback.print_exc()
        return 1


if __name__ == "__main__":
    sys.exit(main())
