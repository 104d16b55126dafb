"""Command-line entry point for picpick."""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys
import time
from pathlib import Path
from typing import Iterable, Sequence

from .archive import ArchiveBuildError, NothingSelectedError
from .config import DEFAULT_SCAN_INTERVAL, HarvestConfig, default_output_root
from .crawler import archive_url, scan_urls
from .images import CONVERSION_TARGETS

logger = logging.getLogger("picpick.cli")


def _ensure_command_prefix(argv: Sequence[str], commands: Iterable[str]) -> Sequence[str]:
    if not argv:
        return argv
    first = argv[0]
    if first in commands or first.startswith("-"):
        return argv
    return ("scan", *argv)


def _add_common_arguments(parser: argparse.ArgumentParser) -> None:
    parser.add_argument(
        "--wait",
        type=float,
        default=1.0,
        help="Seconds to wait after network idle before scanning",
    )
    parser.add_argument(
        "--timeout",
        type=float,
        default=30.0,
        help="Navigation timeout in seconds",
    )
    parser.add_argument(
        "--fetch-timeout",
        type=float,
        default=15.0,
        help="Timeout in seconds for each resource download",
    )
    parser.add_argument(
        "--verbose",
        action="store_true",
        help="Enable verbose logging",
    )


def parse_args(argv: Sequence[str] | None = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        description="Collect the images rendered on web pages and bundle them into a zip archive.",
    )
    subparsers = parser.add_subparsers(dest="command", required=True)

    scan_parser = subparsers.add_parser(
        "scan", help="List every image-like resource rendered on the given pages"
    )
    scan_parser.add_argument("urls", nargs="+", help="One or more URLs to scan")
    _add_common_arguments(scan_parser)

    archive_parser = subparsers.add_parser(
        "archive", help="Download the resources of one page into a zip archive"
    )
    archive_parser.add_argument("url", help="URL of the page to harvest")
    archive_parser.add_argument(
        "--out",
        required=True,
        type=Path,
        help="Where to write the generated archive",
    )
    archive_parser.add_argument(
        "--convert",
        choices=sorted(CONVERSION_TARGETS),
        default=None,
        help="Re-encode every image into this format",
    )
    archive_parser.add_argument(
        "--password",
        default="",
        help="Encrypt the archive with this password (AES-256)",
    )
    archive_parser.add_argument(
        "--match",
        default=None,
        help="Only include resources whose URI or filename contains this text",
    )
    archive_parser.add_argument(
        "--work-dir",
        type=Path,
        default=None,
        help="Directory for intermediate archive files",
    )
    _add_common_arguments(archive_parser)

    argv = list(sys.argv[1:] if argv is None else argv)
    argv = list(_ensure_command_prefix(argv, subparsers.choices.keys()))
    return parser.parse_args(argv)


def _configure_logging(verbose: bool) -> None:
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="%(asctime)s [%(levelname)s] %(message)s",
        datefmt="%Y-%m-%d %H:%M:%S",
        force=True,
    )


def _build_config(args: argparse.Namespace) -> HarvestConfig:
    work_dir = getattr(args, "work_dir", None)
    return HarvestConfig(
        output_root=(work_dir or default_output_root()).resolve(),
        wait_after_load=args.wait,
        navigation_timeout=args.timeout,
        fetch_timeout=args.fetch_timeout,
        scan_interval=DEFAULT_SCAN_INTERVAL,
    )


def _run_scan(args: argparse.Namespace) -> int:
    config = _build_config(args)
    overall_start = time.perf_counter()
    results = asyncio.run(scan_urls(args.urls, config))
    total_elapsed = time.perf_counter() - overall_start

    for result in results:
        for record in result.records:
            sys.stdout.write(f"{record.uri}\t{record.filename}\t{record.treeinfo}\n")
        for uri in result.bad_uris:
            logger.debug("Unreachable resource on %s: %s", result.url, uri)
    sys.stdout.flush()

    logger.info(
        "Finished in %.2fs (%d/%d pages scanned)",
        total_elapsed,
        len(results),
        len(args.urls),
    )
    return 0 if results else 1


def _run_archive(args: argparse.Namespace) -> int:
    config = _build_config(args)
    try:
        destination = asyncio.run(
            archive_url(
                args.url,
                config,
                args.out.resolve(),
                target=args.convert,
                password=args.password,
                match=args.match,
            )
        )
    except NothingSelectedError:
        logger.error("Nothing selected: no resource on %s could be archived", args.url)
        return 2
    except ArchiveBuildError as exc:
        logger.error("Archive generation failed: %s", exc)
        return 1
    if destination is None:
        logger.error("Archive request was superseded before completion")
        return 1
    return 0


def main(argv: Sequence[str] | None = None) -> None:
    args = parse_args(argv)
    _configure_logging(args.verbose)
    if args.command == "scan":
        code = _run_scan(args)
    else:
        code = _run_archive(args)
    sys.exit(code)


if __name__ == "__main__":
    main()
