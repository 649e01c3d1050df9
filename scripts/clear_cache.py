#!/usr/bin/env python3
"""
Safely remove cached image variants.

Every original can occupy one cache file per format and modifier combination
(retina, blurred, watermarked). This script deletes those files for the given
originals, either for all configured formats or for a single one. Originals
are never touched; the next request regenerates the variant.

By default, the script only runs when --confirm is provided.
Use --dry-run to see what would be deleted without changing anything.

Examples:
    Preview what would be removed for one original:
        python scripts/clear_cache.py --dry-run 2024/05/photo.jpg

    Remove every cached variant of two originals:
        python scripts/clear_cache.py --confirm 2024/05/photo.jpg 2024/05/other.png

    Only drop the "thumb" variants (e.g. after changing its size):
        python scripts/clear_cache.py --confirm --format thumb 2024/05/photo.jpg
"""
from __future__ import annotations

import argparse
import os
import sys

from dotenv import load_dotenv

# Ensure repository root is on sys.path so `import media_delivery` works when running directly
_THIS_DIR = os.path.dirname(os.path.abspath(__file__))
_REPO_ROOT = os.path.abspath(os.path.join(_THIS_DIR, os.pardir))
if _REPO_ROOT not in sys.path:
    sys.path.insert(0, _REPO_ROOT)


def _load_app():
    # Load environment variables from .env, if present
    load_dotenv()
    try:
        from media_delivery import create_app
    except ImportError as e:
        print(f"[error] Failed to import app factory: {e}")
        sys.exit(2)

    try:
        app = create_app()
    except Exception as e:
        print(f"[error] Failed to create app: {e}")
        sys.exit(2)

    return app


def main(argv: list[str] | None = None) -> int:
    parser = argparse.ArgumentParser(description="Clear cached image variants")
    parser.add_argument(
        "files",
        nargs="+",
        help="Original file paths, relative to the originals folder.",
    )
    parser.add_argument(
        "--confirm",
        action="store_true",
        help="Actually perform deletion. Without this, the script exits unless --dry-run is specified.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Show what would be deleted without changing anything.",
    )
    parser.add_argument(
        "--format",
        default=None,
        help="Only clear variants of this base format.",
    )

    args = parser.parse_args(argv)

    # Allow dry-run without confirm; require confirm for actual deletion
    if not args.dry_run and not args.confirm:
        print("[safe] Refusing to delete without --confirm. Use --dry-run to preview.")
        return 1

    app = _load_app()

    with app.app_context():
        from media_delivery.extension import current_delivery

        delivery = current_delivery()
        if args.format is not None and args.format not in delivery.config.formats:
            print(f"[error] Unknown format: {args.format}")
            return 2

        total = 0
        for file in args.files:
            removed = delivery.paths.purge_cached_variants(
                file, format=args.format, dry_run=args.dry_run
            )
            if not removed:
                print(f"[skip] No cached variants for {file}")
            for path in removed:
                verb = "would remove" if args.dry_run else "removed"
                print(f"  [file] {verb} {path}")
            total += len(removed)

    print(
        "[summary] {} {} cached file(s)".format(
            "Would remove" if args.dry_run else "Removed", total
        )
    )
    return 0


if __name__ == "__main__":
    sys.exit(main())
