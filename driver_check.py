#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Driver and Windows Update check

Writes DriverCheck-<host>.md with:
  1. devices reporting a problem (Error / Degraded / Unknown)
  2. drivers older than --max-age years
  3. Windows Updates that are available but not installed
"""

import argparse
import datetime
import json
import logging
import re
import sys
from dataclasses import dataclass
from pathlib import Path

from admin_shell import (
    HOSTNAME,
    SCRIPT_DIR,
    is_admin,
    md_cell,
    ps_json,
    run_ps,
    setup_logging,
    timestamp,
    which,
    write_report,
)

logger = logging.getLogger(__name__)

DEFAULT_MAX_AGE_YEARS = 3

# Windows Update Agent COM API; throws when the service is disabled
PENDING_UPDATES_PS = (
    "$s = New-Object -ComObject Microsoft.Update.Session; "
    "$r = $s.CreateUpdateSearcher().Search('IsInstalled=0 and IsHidden=0'); "
    "$r.Updates | ForEach-Object { [pscustomobject]@{ "
    "Title = $_.Title; "
    "KB = ($_.KBArticleIDs -join ','); "
    "Severity = $_.MsrcSeverity; "
    "Mandatory = $_.IsMandatory; "
    "RebootRequired = $_.RebootRequired } }"
)


@dataclass(frozen=True)
class DriverInfo:
    device: str
    provider: str
    version: str
    date: datetime.date | None


def parse_cim_date(raw) -> datetime.date | None:
    """Parse the date formats CIM values show up in through PowerShell."""
    if not raw:
        return None
    s = str(raw)
    # ConvertTo-Json renders DateTime as "/Date(1577836800000)/"
    m = re.search(r"/Date\((-?\d+)", s)
    if m:
        ms = int(m.group(1))
        return (datetime.datetime(1970, 1, 1) + datetime.timedelta(milliseconds=ms)).date()
    # DMTF string: 20200101000000.******+000
    m = re.match(r"(\d{4})(\d{2})(\d{2})", s)
    if m:
        try:
            return datetime.date(int(m.group(1)), int(m.group(2)), int(m.group(3)))
        except ValueError:
            return None
    return None


def to_drivers(rows: list[dict]) -> list[DriverInfo]:
    drivers = []
    for r in rows:
        name = r.get("DeviceName")
        if not name:
            continue
        drivers.append(
            DriverInfo(
                device=name,
                provider=r.get("DriverProviderName") or "",
                version=r.get("DriverVersion") or "",
                date=parse_cim_date(r.get("DriverDate")),
            )
        )
    return drivers


def stale_drivers(
    drivers: list[DriverInfo], now: datetime.date, max_age_years: int = DEFAULT_MAX_AGE_YEARS
) -> list[DriverInfo]:
    """Drivers dated before now minus *max_age_years*, oldest first."""
    try:
        cutoff = now.replace(year=now.year - max_age_years)
    except ValueError:  # 29 February
        cutoff = now.replace(year=now.year - max_age_years, day=28)
    old = [d for d in drivers if d.date is not None and d.date < cutoff]
    return sorted(old, key=lambda d: (d.date, d.device))


def render_report(
    problems: list[dict],
    stale: list[DriverInfo],
    driver_count: int,
    updates: list[dict] | None,
    max_age_years: int,
    generated: str,
) -> list[str]:
    lines: list[str] = []
    w = lines.append

    w(f"# Driver & Update Check - {HOSTNAME}")
    w("")
    w(f"> Generated: {generated}")
    w("")

    w(f"## Problem Devices ({len(problems)})")
    w("")
    if problems:
        w("| Device | Class | Status | Problem |")
        w("|--------|-------|--------|---------|")
        for d in problems:
            w(
                f"| {md_cell(d.get('FriendlyName') or d.get('InstanceId'))} | "
                f"{md_cell(d.get('Class'))} | {md_cell(d.get('Status'))} | "
                f"{md_cell(d.get('Problem'))} |"
            )
    else:
        w("(none)")
    w("")

    w(f"## Drivers older than {max_age_years} years ({len(stale)} of {driver_count})")
    w("")
    if stale:
        w("| Device | Provider | Version | Date |")
        w("|--------|----------|---------|------|")
        for d in stale:
            w(f"| {md_cell(d.device)} | {md_cell(d.provider)} | {md_cell(d.version)} | {d.date} |")
    else:
        w("(none)")
    w("")

    w("## Pending Windows Updates")
    w("")
    if updates is None:
        w("(not available - Windows Update service unreachable or not Windows)")
    elif not updates:
        w("(none - system is up to date)")
    else:
        w("| Title | KB | Severity | Reboot |")
        w("|-------|----|----------|--------|")
        for u in updates:
            kb = f"KB{u['KB']}" if u.get("KB") else ""
            reboot = "Yes" if u.get("RebootRequired") else "No"
            w(f"| {md_cell(u.get('Title'))} | {kb} | {md_cell(u.get('Severity'))} | {reboot} |")
    w("")
    return lines


def query_pending_updates() -> list[dict] | None:
    """Pending updates, or None when the agent could not be queried."""
    if not which("powershell"):
        return None
    # First line is 'OK' once the search completed; empty output means it never ran
    raw = run_ps(
        f"try {{ $u = @(& {{ {PENDING_UPDATES_PS} }}); 'OK'; "
        f"if ($u.Count) {{ ConvertTo-Json -InputObject $u -Compress }} }} "
        f"catch {{ 'ERROR' }}",
        timeout=900,
    )
    status, _, body = raw.partition("\n")
    if status.strip() != "OK":
        logger.debug("Windows Update query failed: %.200s", raw)
        return None
    if not body.strip():
        return []
    try:
        data = json.loads(body)
    except json.JSONDecodeError:
        logger.debug("Unexpected Windows Update output: %.200s", body)
        return None
    return [data] if isinstance(data, dict) else data


# ============================================================
# Main
# ============================================================
def parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Report problem devices, old drivers and pending updates.")
    p.add_argument("--max-age", type=int, default=DEFAULT_MAX_AGE_YEARS, metavar="YEARS",
                   help=f"flag drivers older than this (default {DEFAULT_MAX_AGE_YEARS})")
    p.add_argument("--skip-updates", action="store_true", help="do not search Windows Update")
    p.add_argument("--output", type=Path, default=SCRIPT_DIR, help="folder for the report")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if not is_admin():
        logger.warning("Not running as administrator; the update search may be incomplete.")

    print("Checking devices...")
    problems = ps_json(
        "Get-PnpDevice -PresentOnly -ErrorAction SilentlyContinue | "
        "Where-Object { $_.Status -in 'Error','Degraded','Unknown' } | "
        "Select-Object FriendlyName, InstanceId, Class, Status, Problem"
    )
    print("Checking drivers...")
    drivers = to_drivers(ps_json(
        "Get-CimInstance Win32_PnPSignedDriver | "
        "Select-Object DeviceName, DriverProviderName, DriverVersion, DriverDate"
    ))
    stale = stale_drivers(drivers, datetime.date.today(), args.max_age)

    updates: list[dict] | None = None
    if not args.skip_updates:
        print("Searching Windows Update (this can take a few minutes)...")
        updates = query_pending_updates()
        if updates is None:
            logger.warning("Windows Update search failed")

    report = args.output / f"DriverCheck-{HOSTNAME}.md"
    write_report(report, render_report(problems, stale, len(drivers), updates, args.max_age, timestamp()))

    print()
    print(f"Done. {len(problems)} problem device(s), {len(stale)} old driver(s), "
          f"{len(updates) if updates is not None else '?'} pending update(s).")
    return 0


if __name__ == "__main__":
    sys.exit(main())
