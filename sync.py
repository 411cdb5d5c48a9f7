#!/usr/bin/env python3
"""
HashSync - Bring an install directory in line with a manifest.

Fetches the manifest, downloads whatever is missing or stale, extracts
archives and applies renames/deletions. Safe to run repeatedly: a second
run against the same manifest downloads nothing.
"""

import argparse
import logging
import sys
from pathlib import Path

from hashsync import __version__
from hashsync.config import SyncConfig
from hashsync.core.formatting import format_size
from hashsync.core.progress import SyncProgress
from hashsync.errors import SyncError
from hashsync.manifest import CdnResolver, fetch_manifest
from hashsync.manifest.fetch import is_url
from hashsync.sync import SyncOrchestrator
from hashsync.ui import ConsolePrinter

CONFIG_NAME = "config.json"


def get_app_dir() -> Path:
    """Get the directory where the app is located (for user-writable files)."""
    if getattr(sys, "frozen", False):
        return Path(sys.executable).parent
    return Path(__file__).parent


def default_cdn_url(manifest_source: str) -> str:
    """Files are served beside a remote manifest unless a CDN is given."""
    if is_url(manifest_source):
        return manifest_source.rsplit("/", 1)[0]
    return ""


def build_config(args) -> SyncConfig:
    install_dir = Path(args.path).resolve() if args.path else get_app_dir()
    config_path = Path(args.config) if args.config else install_dir / "launcher" / CONFIG_NAME
    config = SyncConfig.load(config_path, install_dir=install_dir)

    if args.cdn_url:
        config.cdn_url = args.cdn_url
    elif not config.cdn_url:
        config.cdn_url = default_cdn_url(args.manifest)
    if args.force:
        config.force_recheck = True
    if args.verify:
        config.verify_cached_hashes = True
    return config


def run(args) -> int:
    config = build_config(args)
    if not config.cdn_url:
        print("Error: no CDN URL configured (use --cdn-url or set cdn_url in config.json)")
        return 1

    print(f"HashSync v{__version__}")
    print(f"  Install folder: {config.install_dir}")
    print()

    manifest = fetch_manifest(args.manifest, timeout=config.connect_timeout, user_agent=config.user_agent)
    print(f"  Manifest: {len(manifest.files)} files, {len(manifest.archives)} archives "
          f"({format_size(manifest.total_size)})")

    progress = SyncProgress()
    printer = ConsolePrinter(progress)
    orchestrator = SyncOrchestrator(config, CdnResolver(config.cdn_url), progress=progress)
    try:
        report = orchestrator.sync(manifest)
    finally:
        progress.close()

    if report.up_to_date:
        print("  Everything is up to date.")
    else:
        printer.finish()
        print(f"  Downloaded {len(report.downloaded_files)} files and "
              f"{len(report.downloaded_archives)} archives ({format_size(report.bytes_downloaded)})")
    if report.extracted:
        print(f"  Extracted {len(report.extracted)} files")
    if report.renamed:
        print(f"  Renamed {len(report.renamed)} files")
    if report.deleted:
        print(f"  Removed {len(report.deleted)} files")
    return 0


def main():
    """Entry point."""
    parser = argparse.ArgumentParser(
        description="HashSync - Sync an install folder against a BLAKE3 manifest"
    )
    parser.add_argument("--manifest", "-m", required=True,
                        help="Manifest URL or local path (update.json)")
    parser.add_argument("--path", "-p",
                        help="Install folder (default: folder containing this app)")
    parser.add_argument("--config", "-c",
                        help="Config file (default: <install>/launcher/config.json)")
    parser.add_argument("--cdn-url",
                        help="Base URL files are downloaded from")
    parser.add_argument("--force", "-f", action="store_true",
                        help="Ignore the hash cache and rehash every file")
    parser.add_argument("--verify", action="store_true",
                        help="Rehash files even when the hash cache has them")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log engine details to stderr")
    args = parser.parse_args()

    if args.verbose:
        logging.basicConfig(
            level=logging.DEBUG,
            format="%(asctime)s %(levelname)s %(name)s: %(message)s",
        )

    try:
        return run(args)
    except SyncError as e:
        print(f"\nError: {e}")
        return 1


if __name__ == "__main__":
    try:
        sys.exit(main())
    except KeyboardInterrupt:
        print("\n\nCancelled by user.")
        sys.exit(0)
