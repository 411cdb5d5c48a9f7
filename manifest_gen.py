#!/usr/bin/env python3
"""
HashSync - Manifest Generator (Publisher Only)

Hashes every file in a release folder and writes the update.json manifest
clients sync against. Zip files become archives whose members are hashed
from inside the archive.
"""

import argparse
import json
import logging
import sys
import time
from pathlib import Path

from hashsync.core.formatting import format_duration, format_size
from hashsync.errors import SyncError
from hashsync.manifest import MANIFEST_NAME, ReconciliationSpec, build_manifest


def load_reconciliation(path: Path) -> ReconciliationSpec:
    """Read renames/deletions from a JSON file shaped like the manifest keys."""
    with open(path, encoding="utf-8") as f:
        return ReconciliationSpec.from_dict(json.load(f))


def generate(root: Path, output: Path, reconciliation_path: Path = None):
    start_time = time.time()
    reconciliation = load_reconciliation(reconciliation_path) if reconciliation_path else None

    print(f"Generating manifest for {root}")
    manifest = build_manifest(root, reconciliation=reconciliation, skip_names=(output.name, MANIFEST_NAME))
    manifest.save(output)

    member_count = sum(len(a.members) for a in manifest.archives)
    print()
    print(f"  Files: {len(manifest.files)}")
    print(f"  Archives: {len(manifest.archives)} ({member_count} files inside)")
    print(f"  Total size: {format_size(manifest.total_size)}")
    if reconciliation and not reconciliation.is_empty:
        print(f"  Renames: {len(reconciliation.renames)}, deletions: {len(reconciliation.deletions)}")
    print(f"  Time: {format_duration(time.time() - start_time)}")
    print(f"  Saved to {output}")


# ============================================================================
# CLI
# ============================================================================


def main():
    parser = argparse.ArgumentParser(
        description="Generate manifest for HashSync",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python manifest_gen.py release/                     # Writes release/update.json
  python manifest_gen.py release/ -o out/update.json
  python manifest_gen.py release/ --reconciliation moves.json

moves.json holds {"renames": [["old", "new"]], "deletions": ["path"]}.
"""
    )
    parser.add_argument("directory", help="Release folder to describe")
    parser.add_argument("--output", "-o",
                        help=f"Manifest path (default: <directory>/{MANIFEST_NAME})")
    parser.add_argument("--reconciliation", "-r",
                        help="JSON file with renames and deletions to publish")
    parser.add_argument("--verbose", "-v", action="store_true",
                        help="Log every file as it is hashed")
    args = parser.parse_args()

    logging.basicConfig(
        level=logging.INFO if args.verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
    )

    root = Path(args.directory)
    output = Path(args.output) if args.output else root / MANIFEST_NAME
    try:
        generate(root, output, Path(args.reconciliation) if args.reconciliation else None)
    except (SyncError, OSError, ValueError) as e:
        print(f"Error: {e}")
        sys.exit(1)


if __name__ == "__main__":
    main()
