#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Installed software inventory

Reads the Uninstall registry keys (machine 64-bit, machine 32-bit and
current user) and writes:
  SoftwareInventory-<host>.md   - OS summary + installed programs table
  SoftwareInventory-<host>.csv  - the same programs, one row each
"""

import argparse
import csv
import datetime
import logging
import platform
import re
import sys
from dataclasses import asdict, dataclass
from pathlib import Path

from admin_shell import (
    HOSTNAME,
    SCRIPT_DIR,
    md_cell,
    ps_json,
    setup_logging,
    timestamp,
    write_report,
)

logger = logging.getLogger(__name__)

UNINSTALL_KEYS = {
    "Machine": r"HKLM:\Software\Microsoft\Windows\CurrentVersion\Uninstall\*",
    "Machine (32-bit)": r"HKLM:\Software\WOW6432Node\Microsoft\Windows\CurrentVersion\Uninstall\*",
    "User": r"HKCU:\Software\Microsoft\Windows\CurrentVersion\Uninstall\*",
}


@dataclass(frozen=True)
class InstalledProgram:
    name: str
    version: str
    publisher: str
    install_date: str
    scope: str


def _install_date(raw) -> str:
    # Registry InstallDate is usually yyyymmdd but installers write anything
    s = str(raw or "").strip()
    if re.fullmatch(r"\d{8}", s):
        try:
            return datetime.datetime.strptime(s, "%Y%m%d").strftime("%Y-%m-%d")
        except ValueError:
            return ""
    return ""


def normalize_programs(entries: list[dict], scope: str) -> list[InstalledProgram]:
    """Turn raw Uninstall key values into programs, dropping hidden entries."""
    programs = []
    for e in entries:
        name = (e.get("DisplayName") or "").strip()
        # Skip registry placeholder entries and OS components
        if not name or name.startswith("${{"):
            continue
        if e.get("SystemComponent") == 1 or e.get("ParentKeyName"):
            continue
        programs.append(
            InstalledProgram(
                name=name,
                version=str(e.get("DisplayVersion") or "").strip(),
                publisher=(e.get("Publisher") or "").strip(),
                install_date=_install_date(e.get("InstallDate")),
                scope=scope,
            )
        )
    return programs


def dedupe(programs: list[InstalledProgram]) -> list[InstalledProgram]:
    """One entry per (name, version), first scope wins; sorted by name."""
    seen: dict[tuple[str, str], InstalledProgram] = {}
    for p in programs:
        seen.setdefault((p.name.casefold(), p.version), p)
    return sorted(seen.values(), key=lambda p: (p.name.casefold(), p.version))


def collect_programs() -> list[InstalledProgram]:
    programs: list[InstalledProgram] = []
    for scope, key in UNINSTALL_KEYS.items():
        entries = ps_json(
            f"Get-ItemProperty '{key}' -ErrorAction SilentlyContinue | "
            "Where-Object { $_.DisplayName -ne $null } | "
            "Select-Object DisplayName, DisplayVersion, Publisher, InstallDate, "
            "SystemComponent, ParentKeyName"
        )
        logger.debug("%s: %d uninstall entries", scope, len(entries))
        programs += normalize_programs(entries, scope)
    return dedupe(programs)


def render_markdown(programs: list[InstalledProgram], os_info: dict, generated: str) -> list[str]:
    lines: list[str] = []
    w = lines.append

    w(f"# Software Inventory - {HOSTNAME}")
    w("")
    w(f"> Generated: {generated}")
    w("")

    w("## Operating System")
    w("")
    w("| Property | Value |")
    w("|----------|-------|")
    if os_info:
        w(f"| OS | {md_cell(os_info.get('Caption', 'N/A'))} |")
        w(f"| Version | {md_cell(os_info.get('Version', 'N/A'))} |")
        w(f"| Build | {md_cell(os_info.get('BuildNumber', 'N/A'))} |")
        w(f"| Architecture | {md_cell(os_info.get('OSArchitecture', 'N/A'))} |")
    else:
        w(f"| OS | {platform.platform()} |")
        w(f"| Architecture | {platform.machine()} |")
    w("")

    w(f"## Installed Programs ({len(programs)})")
    w("")
    if not programs:
        w("(no programs found)")
        w("")
        return lines
    w("| Name | Version | Publisher | Installed | Scope |")
    w("|------|---------|-----------|-----------|-------|")
    for p in programs:
        w(
            f"| {md_cell(p.name)} | {md_cell(p.version)} | {md_cell(p.publisher)} | "
            f"{p.install_date} | {p.scope} |"
        )
    w("")
    return lines


def write_csv(path: Path, programs: list[InstalledProgram]) -> None:
    with path.open("w", newline="", encoding="utf-8-sig") as fh:
        writer = csv.DictWriter(
            fh, fieldnames=["name", "version", "publisher", "install_date", "scope"]
        )
        writer.writeheader()
        for p in programs:
            writer.writerow(asdict(p))
    print(f"  [OK] {path}")


# ============================================================
# Main
# ============================================================
def parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Write an installed-software report.")
    p.add_argument("--output", type=Path, default=SCRIPT_DIR, help="folder for the report files")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    print("Collecting installed software...")
    os_rows = ps_json(
        "Get-CimInstance Win32_OperatingSystem | "
        "Select-Object Caption, Version, BuildNumber, OSArchitecture"
    )
    programs = collect_programs()
    if not programs:
        logger.warning("No programs found; is this a Windows host with PowerShell?")

    md_file = args.output / f"SoftwareInventory-{HOSTNAME}.md"
    csv_file = args.output / f"SoftwareInventory-{HOSTNAME}.csv"
    write_report(md_file, render_markdown(programs, os_rows[0] if os_rows else {}, timestamp()))
    write_csv(csv_file, programs)

    print()
    print(f"Done. {len(programs):,} programs listed.")
    return 0


if __name__ == "__main__":
    sys.exit(main())
