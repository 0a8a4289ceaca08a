"""
split-compose: upload a large file to Azure Blob Storage as N parallel parts,
then compose the parts server-side into one blob named after the file.

Usage:
    python -m split_compose <path> [container_name] [--num-of-parts N] [--dry-run]

Part blobs are named "<file name>-<index>.<extension>" and are kept after the
compose. A failed run leaves whatever parts were written unless
--cleanup-on-failure (or CLEANUP_ON_FAILURE=true) is given; re-running uploads
every part again.
"""

import argparse
import logging
import signal
import sys
from pathlib import Path
from typing import Optional

from azure.core.exceptions import AzureError

from .cancellation import Cancellation
from .config import Config
from .errors import UploadCancelled, UploadError
from .planner import plan_partitions
from .source import SourceFile
from .store import AzureBucket, part_object_name
from .uploader import LOGGER_NAME, upload_and_compose

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

LOG_FORMAT = "%(asctime)s [%(levelname)s] %(message)s"
DATE_FORMAT = "%Y-%m-%dT%H:%M:%S"


def _build_logger(log_dir: Path) -> logging.Logger:
    log_dir.mkdir(parents=True, exist_ok=True)
    log_file = log_dir / "split_compose.log"

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.handlers.clear()

    console = logging.StreamHandler(sys.stdout)
    console.setLevel(logging.INFO)
    console.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    fh = logging.FileHandler(log_file, encoding="utf-8")
    fh.setLevel(logging.DEBUG)
    fh.setFormatter(logging.Formatter(LOG_FORMAT, datefmt=DATE_FORMAT))

    logger.addHandler(console)
    logger.addHandler(fh)
    return logger


# ---------------------------------------------------------------------------
# Arguments
# ---------------------------------------------------------------------------

def _parse_args(argv=None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="split-compose",
        description=(
            "Upload a file to Azure Blob Storage as parallel part blobs and "
            "compose them into a single blob."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  # Upload in the default number of parts (NUM_OF_PARTS, 5)\n"
            "  python -m split_compose dump.tar.gz my-container\n\n"
            "  # 16 parts, remove leftover parts if anything fails\n"
            "  python -m split_compose dump.tar.gz --num-of-parts 16 --cleanup-on-failure\n\n"
            "  # Show the partition plan without uploading\n"
            "  python -m split_compose dump.tar.gz --dry-run\n"
        ),
    )
    parser.add_argument("path", help="Path to the file to upload.")
    parser.add_argument(
        "container_name",
        nargs="?",
        default=None,
        help="Target Azure container name. Overrides CONTAINER_NAME in .env.",
    )
    parser.add_argument(
        "--num-of-parts",
        type=int,
        default=None,
        metavar="N",
        help="Number of parts to split the file into (at most MAX_PARTS, 32 by default).",
    )
    parser.add_argument(
        "--max-concurrency",
        type=int,
        default=None,
        metavar="N",
        help="Upload at most N parts at once (default: all parts at once).",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=None,
        metavar="SECONDS",
        help="Cancel the part uploads if they are not finished after SECONDS.",
    )
    parser.add_argument(
        "--cleanup-on-failure",
        action="store_true",
        default=None,
        help="Delete part blobs left behind by a failed run (best effort).",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Validate config and print the partition plan, without uploading.",
    )
    return parser.parse_args(argv)


def _install_signal_handlers(cancellation: Cancellation, logger: logging.Logger) -> None:
    def _handle_interrupt(signum, frame):
        logger.warning("Interrupt received. Cancelling part uploads...")
        cancellation.cancel("interrupted")

    signal.signal(signal.SIGINT, _handle_interrupt)
    signal.signal(signal.SIGTERM, _handle_interrupt)


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

def main(argv: Optional[list] = None) -> None:
    args = _parse_args(argv)

    # Config: validate everything (including connection string) before touching Azure
    try:
        cfg = Config()
    except KeyError:
        print(
            "ERROR: AZURE_CONN_STR not set. Copy .env.template to .env and fill in your credentials.",
            file=sys.stderr,
        )
        sys.exit(1)
    except ValueError as exc:
        print(f"ERROR: {exc}", file=sys.stderr)
        sys.exit(1)

    base_dir = Path.cwd()
    logger = _build_logger(Path(cfg.log_path) if cfg.log_path else base_dir / "logs")

    logger.info("=" * 60)
    logger.info("  split-compose: parallel part upload + compose")
    logger.info("=" * 60)

    container_name = args.container_name or cfg.container_name
    if not container_name:
        logger.error(
            "No container name provided. Pass as argument or set CONTAINER_NAME in .env."
        )
        sys.exit(1)

    file_path = Path(args.path).expanduser().resolve()
    if not file_path.is_file():
        logger.error(f"File not found: {file_path}")
        sys.exit(1)

    part_count = args.num_of_parts if args.num_of_parts is not None else cfg.num_of_parts
    max_concurrency = (
        args.max_concurrency if args.max_concurrency is not None else cfg.max_concurrency
    )
    if max_concurrency < 0:
        logger.error(
            f"--max-concurrency must be 0 (one thread per part) or more (got {max_concurrency})."
        )
        sys.exit(1)
    cleanup = cfg.cleanup_on_failure if args.cleanup_on_failure is None else True
    source = SourceFile.from_path(file_path)

    if args.dry_run:
        try:
            partitions = plan_partitions(source.size, part_count, cfg.max_parts)
        except UploadError as exc:
            logger.error(str(exc))
            sys.exit(1)
        logger.info(f"[DRY RUN] {source.name} ({source.size:,} bytes) → {container_name}")
        width = len(str(part_count))
        for p in partitions:
            logger.info(
                f"  [{p.index:>{width}}] offset={p.offset:>14,}  length={p.length:>14,}  "
                f"→  {part_object_name(source.name, p.index, source.extension)}"
            )
        logger.info(f"  composed into  →  {source.name}")
        logger.info("[DRY RUN] Nothing was uploaded.")
        sys.exit(0)

    cancellation = Cancellation(args.timeout)
    _install_signal_handlers(cancellation, logger)

    try:
        bucket = AzureBucket.from_config(cfg, container_name)
        result = upload_and_compose(
            source,
            bucket,
            part_count,
            max_concurrency=max_concurrency or None,
            cancellation=cancellation,
            cleanup_on_failure=cleanup,
            logger=logger,
        )
    except UploadCancelled as exc:
        logger.error(f"Upload cancelled: {exc}")
        sys.exit(130 if cancellation.reason == "interrupted" else 2)
    except UploadError as exc:
        logger.error(f"Upload failed: {exc}")
        if exc.phase != "plan" and not cleanup:
            logger.warning(
                "Part blobs from this run were left in the container. "
                "Re-running uploads every part again."
            )
        sys.exit(1 if exc.phase == "plan" else 2)
    except AzureError as exc:
        logger.error(f"Cannot connect to Azure: {exc}")
        sys.exit(2)

    logger.info("=" * 60)
    logger.info(f"  Upload complete: {result.bucket}/{result.key}  ({result.size:,} bytes)")
    logger.info("=" * 60)
    sys.exit(0)


if __name__ == "__main__":
    main()
