#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Organize a folder by file type

Moves every file at the top level of a folder (Downloads, Desktop...) into a
sub-folder named after its category in categories.json.  Unknown extensions
go to "Other".  Existing names are never overwritten: "report (1).pdf" etc.
"""

import argparse
import json
import logging
import shutil
import sys
from pathlib import Path

from admin_shell import SCRIPT_DIR, setup_logging

logger = logging.getLogger(__name__)

OTHER = "Other"


def load_categories(path: Path | None = None) -> dict[str, str]:
    """Load categories.json and return {extension: category}."""
    cat_file = path or SCRIPT_DIR / "categories.json"
    raw: dict[str, list[str]] = json.loads(cat_file.read_text(encoding="utf-8"))
    return {ext.lower(): cat for cat, exts in raw.items() for ext in exts}


def _free_name(dest: Path, taken: set[Path]) -> Path:
    if not dest.exists() and dest not in taken:
        return dest
    n = 1
    while True:
        candidate = dest.with_name(f"{dest.stem} ({n}){dest.suffix}")
        if not candidate.exists() and candidate not in taken:
            return candidate
        n += 1


def plan_moves(folder: Path, ext_to_cat: dict[str, str]) -> list[tuple[Path, Path]]:
    """Return (source, destination) pairs for the files directly in *folder*."""
    plan: list[tuple[Path, Path]] = []
    taken: set[Path] = set()
    for entry in sorted(folder.iterdir(), key=lambda p: p.name.lower()):
        if not entry.is_file() or entry.is_symlink():
            continue
        cat = ext_to_cat.get(entry.suffix.lower(), OTHER)
        dest = _free_name(folder / cat / entry.name, taken)
        taken.add(dest)
        plan.append((entry, dest))
    return plan


def apply_moves(plan: list[tuple[Path, Path]], dry_run: bool = False) -> int:
    moved = 0
    for src, dest in plan:
        if dry_run:
            print(f"  (dry-run) {src.name} -> {dest.parent.name}\\{dest.name}")
            moved += 1
            continue
        try:
            dest.parent.mkdir(exist_ok=True)
            shutil.move(str(src), str(dest))
            moved += 1
        except OSError as exc:
            logger.warning("Could not move %s: %s", src.name, exc)
    return moved


# ============================================================
# Main
# ============================================================
def parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Sort a folder's files into sub-folders by type.")
    p.add_argument("folder", type=Path)
    p.add_argument("--categories", type=Path, help="alternative categories.json")
    p.add_argument("--dry-run", action="store_true", help="show the moves only")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if not args.folder.is_dir():
        logger.error("Not a folder: %s", args.folder)
        return 1

    ext_to_cat = load_categories(args.categories)
    plan = plan_moves(args.folder, ext_to_cat)
    if not plan:
        print("Nothing to organize.")
        return 0

    moved = apply_moves(plan, args.dry_run)
    per_cat: dict[str, int] = {}
    for _src, dest in plan:
        per_cat[dest.parent.name] = per_cat.get(dest.parent.name, 0) + 1

    print()
    print(f"Done. {moved:,} of {len(plan):,} files {'would be ' if args.dry_run else ''}moved:")
    for cat, count in sorted(per_cat.items(), key=lambda x: x[1], reverse=True):
        print(f"  {cat:12s}: {count:,}")
    return 0 if moved == len(plan) else 2


if __name__ == "__main__":
    sys.exit(main())
