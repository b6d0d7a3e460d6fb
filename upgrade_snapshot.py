#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Pre/post upgrade snapshot

Before an in-place upgrade, run without arguments: every probe below is
captured to UpgradeBaseline-<host>-<timestamp>/<probe>.txt and the folder is
zipped.

After the upgrade, run with --baseline <folder or zip>: the same probes are
captured again into UpgradeValidation-<host>-<timestamp>/ and each one is
compared line by line with the baseline.  Lines that appear on only one side
are written to <probe>.diff.txt ("<=" baseline only, "=>" current only).

Probes:
  os_build          - OS caption / version / build
  roles_features    - installed server roles or enabled optional features
  disk_volumes      - mounted volumes, file system and size
  services          - running services
  ip_configuration  - IP addresses per interface
  network_adapters  - adapters, MAC and link state
  local_users       - local accounts
  local_groups      - local groups and their members
"""

import argparse
import enum
import logging
import shutil
import socket
import sys
import zipfile
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable

try:
    import psutil
except ImportError:
    print("[ERROR] psutil not installed. Run: pip install psutil")
    sys.exit(1)

from admin_shell import (
    HOSTNAME,
    SCRIPT_DIR,
    format_bytes,
    format_table,
    is_admin,
    run_ps,
    setup_logging,
    timestamp,
)

logger = logging.getLogger(__name__)

BASELINE_PREFIX = "UpgradeBaseline"
VALIDATION_PREFIX = "UpgradeValidation"


class BaselineError(Exception):
    """The baseline folder (or archive) is missing, unreadable or holds no probe files."""


@dataclass(frozen=True)
class Probe:
    name: str
    description: str
    collect: Callable[[], str]


@dataclass
class ProbeResult:
    probe_name: str
    captured_lines: list[str] = field(default_factory=list)


class Verdict(enum.Enum):
    MATCH = "MATCH"
    MISMATCH = "MISMATCH"


@dataclass
class ProbeComparison:
    probe_name: str
    only_in_baseline: list[str]
    only_in_current: list[str]
    diff_path: Path | None = None

    @property
    def verdict(self) -> Verdict:
        if self.only_in_baseline or self.only_in_current:
            return Verdict.MISMATCH
        return Verdict.MATCH

    @property
    def differences(self) -> int:
        return len(self.only_in_baseline) + len(self.only_in_current)


# ---------------------------------------------------------------------------
# Probes
# ---------------------------------------------------------------------------
# One item per line, no column padding: a single new row must not shift
# every other line of a Format-Table layout.
def _ps_probe(command: str) -> Callable[[], str]:
    return lambda: run_ps(command, timeout=None)


def _disk_volumes() -> str:
    rows = []
    for part in psutil.disk_partitions(all=False):
        try:
            total = format_bytes(psutil.disk_usage(part.mountpoint).total)
        except OSError:
            total = "N/A"
        rows.append(f"{part.mountpoint} | {part.fstype} | {part.opts} | {total}")
    return "\n".join(sorted(rows))


def _network_adapters() -> str:
    addrs = psutil.net_if_addrs()
    rows = []
    for name, st in sorted(psutil.net_if_stats().items()):
        mac = "N/A"
        for addr in addrs.get(name, []):
            if addr.family == psutil.AF_LINK:
                mac = addr.address
                break
        status = "Up" if st.isup else "Down"
        # Link speed is left out: Wi-Fi renegotiates it between runs
        rows.append(f"{name} | {mac} | {status} | MTU {st.mtu}")
    return "\n".join(rows)


def _ip_configuration() -> str:
    rows = []
    for name, iface_addrs in sorted(psutil.net_if_addrs().items()):
        for addr in iface_addrs:
            if addr.family == socket.AF_INET:
                family = "IPv4"
            elif addr.family == socket.AF_INET6:
                if addr.address.lower().startswith("fe80"):
                    continue
                family = "IPv6"
            else:
                continue
            rows.append(f"{name} | {family} | {addr.address} | {addr.netmask or '-'}")
    return "\n".join(sorted(rows))


PROBES: list[Probe] = [
    Probe(
        "os_build",
        "OS build info",
        _ps_probe(
            "Get-CimInstance Win32_OperatingSystem | "
            "ForEach-Object { 'Caption: ' + $_.Caption; 'Version: ' + $_.Version; "
            "'Build: ' + $_.BuildNumber; 'Architecture: ' + $_.OSArchitecture }"
        ),
    ),
    Probe(
        "roles_features",
        "installed roles and features",
        _ps_probe(
            "if (Get-Command Get-WindowsFeature -ErrorAction SilentlyContinue) { "
            "Get-WindowsFeature | Where-Object { $_.Installed } | "
            "Sort-Object Name | ForEach-Object { $_.Name } } else { "
            "Get-WindowsOptionalFeature -Online -ErrorAction SilentlyContinue | "
            "Where-Object { $_.State -eq 'Enabled' } | "
            "Sort-Object FeatureName | ForEach-Object { $_.FeatureName } }"
        ),
    ),
    Probe("disk_volumes", "disk volumes", _disk_volumes),
    Probe(
        "services",
        "running services",
        _ps_probe(
            "Get-Service | Where-Object { $_.Status -eq 'Running' } | Sort-Object Name | "
            "ForEach-Object { '{0} | {1} | {2}' -f $_.Name, $_.DisplayName, $_.StartType }"
        ),
    ),
    Probe("ip_configuration", "IP configuration", _ip_configuration),
    Probe("network_adapters", "network adapters", _network_adapters),
    Probe(
        "local_users",
        "local users",
        _ps_probe(
            "Get-LocalUser | Sort-Object Name | "
            "ForEach-Object { '{0} | Enabled={1}' -f $_.Name, $_.Enabled }"
        ),
    ),
    Probe(
        "local_groups",
        "local groups",
        _ps_probe(
            "Get-LocalGroup | Sort-Object Name | ForEach-Object { $g = $_.Name; "
            "$m = (Get-LocalGroupMember -Group $g -ErrorAction SilentlyContinue | "
            "Sort-Object Name | ForEach-Object { $_.Name }) -join ', '; "
            "'{0} | {1}' -f $g, $m }"
        ),
    ),
]


def collect(probe: Probe) -> ProbeResult:
    print(f"  Probing {probe.description}...")
    try:
        text = probe.collect()
    except OSError as exc:
        logger.warning("Probe %s failed: %s", probe.name, exc)
        text = ""
    return ProbeResult(probe.name, [ln.rstrip() for ln in text.splitlines()])


def write_result(result: ProbeResult, directory: Path) -> Path:
    path = directory / f"{result.probe_name}.txt"
    text = "\n".join(result.captured_lines)
    path.write_text(text + "\n" if result.captured_lines else "", encoding="utf-8")
    return path


# ---------------------------------------------------------------------------
# Capture
# ---------------------------------------------------------------------------
def capture(out_root: Path, probes: list[Probe] = PROBES, archive: bool = True) -> Path:
    """Write one file per probe into a new timestamped baseline folder."""
    snap_dir = out_root / f"{BASELINE_PREFIX}-{HOSTNAME}-{timestamp('%Y%m%d-%H%M%S')}"
    snap_dir.mkdir(parents=True)

    for probe in probes:
        path = write_result(collect(probe), snap_dir)
        print(f"  [OK] {path}")

    if archive:
        zip_path = shutil.make_archive(str(snap_dir), "zip", root_dir=snap_dir)
        print(f"  [OK] {zip_path}")
    return snap_dir


# ---------------------------------------------------------------------------
# Validate
# ---------------------------------------------------------------------------
def _probe_folder(names: list[str], probes: list[Probe]) -> str | None:
    """Relative folder ("" or "<dir>/") holding the probe files, None if there is none.

    Explorer's "Send to > Compressed folder" puts everything under one
    top-level folder, so one level of nesting is accepted.
    """
    wanted = {f"{p.name}.txt" for p in probes}
    folders = set()
    for name in names:
        parent, _, base = name.rstrip("/").rpartition("/")
        if base in wanted and parent.count("/") == 0:
            folders.add(parent + "/" if parent else "")
    if "" in folders:
        return ""
    if len(folders) == 1:
        return folders.pop()
    return None


def check_baseline(path: Path, probes: list[Probe] = PROBES) -> str:
    """Raise BaselineError unless *path* is a folder or zip holding probe files.

    Returns the folder inside *path* where the probe files are.
    """
    try:
        if path.is_dir():
            names = [p.relative_to(path).as_posix() for p in path.glob("*")]
            names += [p.relative_to(path).as_posix() for p in path.glob("*/*")]
        elif path.is_file() and zipfile.is_zipfile(path):
            with zipfile.ZipFile(path) as zf:
                names = zf.namelist()
        else:
            raise BaselineError(f"Baseline not found: {path}")
    except (OSError, zipfile.BadZipFile) as exc:
        raise BaselineError(f"Cannot read baseline {path}: {exc}") from exc

    folder = _probe_folder(names, probes)
    if folder is None:
        raise BaselineError(f"No probe files (*.txt) found in baseline {path}")
    return folder


def open_baseline(path: Path, work_dir: Path, probes: list[Probe] = PROBES) -> Path:
    """Return the folder holding the baseline files, extracting a zip if needed."""
    folder = check_baseline(path, probes)
    if path.is_dir():
        return path / folder
    target = work_dir / "baseline"
    try:
        with zipfile.ZipFile(path) as zf:
            zf.extractall(target)
    except (OSError, zipfile.BadZipFile) as exc:
        raise BaselineError(f"Cannot extract baseline archive {path}: {exc}") from exc
    return target / folder


def diff_lines(baseline: list[str], current: list[str]) -> tuple[list[str], list[str]]:
    """Lines only in *baseline* and lines only in *current*, order ignored."""
    base_set, cur_set = set(baseline), set(current)
    return sorted(base_set - cur_set), sorted(cur_set - base_set)


def compare_probe(
    result: ProbeResult, baseline_dir: Path, out_dir: Path
) -> ProbeComparison | None:
    """Compare one probe with its baseline file; None when there is no baseline."""
    base_file = baseline_dir / f"{result.probe_name}.txt"
    if not base_file.is_file():
        logger.warning("No baseline for %s (%s missing), skipped", result.probe_name, base_file.name)
        return None
    try:
        baseline_lines = base_file.read_text(encoding="utf-8").splitlines()
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read baseline for %s: %s, skipped", result.probe_name, exc)
        return None

    only_base, only_cur = diff_lines(baseline_lines, result.captured_lines)
    diff_path = out_dir / f"{result.probe_name}.diff.txt"
    diff = [f"<= {ln}" for ln in only_base] + [f"=> {ln}" for ln in only_cur]
    diff_path.write_text("\n".join(diff) + "\n" if diff else "", encoding="utf-8")
    return ProbeComparison(result.probe_name, only_base, only_cur, diff_path)


def validate(
    baseline: Path, out_root: Path | None = None, probes: list[Probe] = PROBES
) -> list[ProbeComparison]:
    """Re-run every probe and compare it with the baseline capture."""
    check_baseline(baseline, probes)
    out_root = out_root or baseline.parent
    val_dir = out_root / f"{VALIDATION_PREFIX}-{HOSTNAME}-{timestamp('%Y%m%d-%H%M%S')}"
    val_dir.mkdir(parents=True)
    baseline_dir = open_baseline(baseline, val_dir, probes)

    comparisons: list[ProbeComparison] = []
    for probe in probes:
        result = collect(probe)
        write_result(result, val_dir)
        comparison = compare_probe(result, baseline_dir, val_dir)
        if comparison is None:
            continue
        comparisons.append(comparison)
        if comparison.verdict is Verdict.MISMATCH:
            logger.warning("%s differs from baseline (%d lines)", probe.name, comparison.differences)
    print(f"  [OK] {val_dir}")
    return comparisons


def render_summary(comparisons: list[ProbeComparison]) -> str:
    if not comparisons:
        return "No probes were compared."
    rows = [[c.probe_name, c.verdict.value, str(c.differences)] for c in comparisons]
    mismatches = sum(1 for c in comparisons if c.verdict is Verdict.MISMATCH)
    lines = format_table(["Probe", "Result", "Differences"], rows)
    lines.append("")
    lines.append(f"{len(comparisons) - mismatches} match, {mismatches} mismatch")
    return "\n".join(lines)


# ============================================================
# Main
# ============================================================
def parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Capture or validate a pre-upgrade system snapshot.")
    p.add_argument("--baseline", type=Path,
                   help="baseline folder or zip from an earlier run; enables validation")
    p.add_argument("--output", type=Path,
                   help="where to create the snapshot folder (default: next to this script, "
                        "or next to the baseline when validating)")
    p.add_argument("--no-archive", action="store_true", help="do not zip the baseline folder")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if not is_admin():
        logger.warning("Not running as administrator; some probes may return partial data.")

    if args.baseline is None:
        print("Capturing pre-upgrade baseline...")
        snap_dir = capture(args.output or SCRIPT_DIR, PROBES, archive=not args.no_archive)
        print()
        print(f"Done. Baseline saved in {snap_dir}")
        print(f"After the upgrade run: {Path(sys.argv[0]).name} --baseline \"{snap_dir}\"")
        return 0

    print(f"Validating against baseline {args.baseline}...")
    try:
        comparisons = validate(args.baseline, args.output, PROBES)
    except BaselineError as exc:
        logger.error("%s", exc)
        return 1
    print()
    print(render_summary(comparisons))
    return 0


if __name__ == "__main__":
    sys.exit(main())
