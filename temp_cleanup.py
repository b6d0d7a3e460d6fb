#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Temp file and Recycle Bin cleanup

Empties the usual temp folders (user %TEMP%, %SystemRoot%\\Temp, crash dumps)
and the Recycle Bin.  Folders themselves are kept; files in use are counted
and left alone.
"""

import argparse
import datetime
import logging
import os
import sys
from dataclasses import dataclass
from pathlib import Path

try:
    import psutil
except ImportError:
    print("[ERROR] psutil not installed. Run: pip install psutil")
    sys.exit(1)

from admin_shell import format_bytes, is_admin, run_ps, setup_logging

logger = logging.getLogger(__name__)


@dataclass
class CleanupStats:
    files_deleted: int = 0
    dirs_deleted: int = 0
    bytes_deleted: int = 0
    failed: int = 0
    skipped_recent: int = 0

    def add(self, other: "CleanupStats") -> None:
        self.files_deleted += other.files_deleted
        self.dirs_deleted += other.dirs_deleted
        self.bytes_deleted += other.bytes_deleted
        self.failed += other.failed
        self.skipped_recent += other.skipped_recent


def default_targets() -> list[Path]:
    """Temp locations that exist on this machine, without duplicates."""
    candidates = [
        os.environ.get("TEMP"),
        os.environ.get("TMP"),
        os.path.join(os.environ.get("SystemRoot", r"C:\Windows"), "Temp"),
    ]
    local = os.environ.get("LOCALAPPDATA")
    if local:
        candidates.append(os.path.join(local, "CrashDumps"))

    targets: list[Path] = []
    seen: set[str] = set()
    for c in candidates:
        if not c:
            continue
        p = Path(c)
        key = os.path.normcase(str(p.resolve()))
        if key in seen or not p.is_dir():
            continue
        seen.add(key)
        targets.append(p)
    return targets


def _clean_tree(folder: Path, cutoff: float | None, dry_run: bool, stats: CleanupStats) -> bool:
    """Delete what is old enough under *folder*. True when nothing was left behind."""
    try:
        entries = list(folder.iterdir())
    except OSError as exc:
        logger.warning("Cannot list %s: %s", folder, exc)
        stats.failed += 1
        return False

    emptied = True
    for entry in entries:
        try:
            if entry.is_dir() and not entry.is_symlink() and not entry.is_junction():
                # Age is checked per file; a folder's mtime ignores edits inside it
                if not _clean_tree(entry, cutoff, dry_run, stats):
                    emptied = False
                    continue
                if not dry_run:
                    entry.rmdir()
                stats.dirs_deleted += 1
                continue
            st = entry.lstat()
            if cutoff is not None and st.st_mtime > cutoff:
                stats.skipped_recent += 1
                emptied = False
                continue
            if not dry_run:
                entry.unlink()
            stats.files_deleted += 1
            stats.bytes_deleted += st.st_size
        except OSError as exc:
            # Typically a file still open by a running program
            logger.debug("Could not delete %s: %s", entry, exc)
            stats.failed += 1
            emptied = False
    return emptied


def clean_directory(
    path: Path, older_than_days: int | None = None, dry_run: bool = False
) -> CleanupStats:
    """Delete the contents of *path*, never *path* itself.

    With *older_than_days*, only files not modified for that long go, and a
    folder goes only once nothing newer is left in it.
    """
    stats = CleanupStats()
    cutoff = None
    if older_than_days is not None:
        cutoff = datetime.datetime.now().timestamp() - older_than_days * 86400
    _clean_tree(path, cutoff, dry_run, stats)
    return stats


def empty_recycle_bin(dry_run: bool = False) -> bool:
    if dry_run:
        print("  (dry-run) Would empty the Recycle Bin")
        return True
    # Clear-RecycleBin prints nothing on success; the echo confirms it ran
    out = run_ps("Clear-RecycleBin -Force -ErrorAction SilentlyContinue; 'done'")
    if out.endswith("done"):
        return True
    logger.warning("Could not empty the Recycle Bin")
    return False


def _system_drive() -> str:
    if os.name == "nt":
        return os.environ.get("SystemDrive", "C:") + "\\"
    return "/"


# ============================================================
# Main
# ============================================================
def parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Clean temp folders and the Recycle Bin.")
    p.add_argument("--path", action="append", type=Path, default=[],
                   help="extra folder whose contents should be removed (repeatable)")
    p.add_argument("--older-than", type=int, metavar="DAYS",
                   help="only delete files not modified for this many days")
    p.add_argument("--keep-recycle-bin", action="store_true", help="do not empty the Recycle Bin")
    p.add_argument("--dry-run", action="store_true", help="report what would be removed")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if not is_admin():
        logger.warning("Not running as administrator; system temp folders will be partly skipped.")

    drive = _system_drive()
    free_before = psutil.disk_usage(drive).free

    total = CleanupStats()
    for target in default_targets() + args.path:
        print(f"Cleaning {target} ...")
        stats = clean_directory(target, args.older_than, args.dry_run)
        print(
            f"  [OK] {stats.files_deleted:,} files, {stats.dirs_deleted:,} folders, "
            f"{format_bytes(stats.bytes_deleted)} ({stats.failed:,} in use)"
        )
        total.add(stats)

    if not args.keep_recycle_bin:
        print("Emptying Recycle Bin ...")
        if empty_recycle_bin(args.dry_run):
            print("  [OK] Recycle Bin")

    free_after = psutil.disk_usage(drive).free
    print()
    print("Done.")
    verb = "Would remove" if args.dry_run else "Removed"
    print(f"  {verb}: {total.files_deleted:,} files, {total.dirs_deleted:,} folders "
          f"({format_bytes(total.bytes_deleted)})")
    print(f"  In use / failed: {total.failed:,}")
    if total.skipped_recent:
        print(f"  Kept (newer than {args.older_than} days): {total.skipped_recent:,}")
    print(f"  Free space on {drive}: {format_bytes(free_before)} -> {format_bytes(free_after)}")
    return 0


if __name__ == "__main__":
    sys.exit(main())
