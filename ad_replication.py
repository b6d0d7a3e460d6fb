#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Active Directory replication diagnostics

Runs `repadmin /showrepl * /csv` against every DC, lists the links that are
failing, and appends `repadmin /replsummary` to ADReplication-<host>.md.
Must run on a DC or a machine with the AD DS tools (RSAT) installed.
"""

import argparse
import csv
import io
import logging
import sys
from dataclasses import dataclass
from pathlib import Path

from admin_shell import (
    HOSTNAME,
    SCRIPT_DIR,
    md_cell,
    run_capture,
    setup_logging,
    timestamp,
    which,
    write_report,
)

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ReplicationLink:
    destination_dc: str
    naming_context: str
    source_dc: str
    failures: int
    last_failure: str
    last_success: str
    last_error: str

    @property
    def failing(self) -> bool:
        return self.failures > 0


def _as_int(value: str | None) -> int:
    try:
        return int((value or "0").strip())
    except ValueError:
        return 0


def parse_showrepl_csv(text: str) -> tuple[list[ReplicationLink], list[str]]:
    """Parse `repadmin /showrepl /csv` output.

    Returns the replication links and the raw rows repadmin flagged as
    errors (typically a DC it could not contact).
    """
    links: list[ReplicationLink] = []
    errors: list[str] = []
    # repadmin may print banner lines before the CSV header
    lines = (text or "").splitlines()
    start = next((i for i, ln in enumerate(lines) if ln.startswith("showrepl_COLUMNS")), None)
    if start is None:
        return links, errors

    reader = csv.DictReader(io.StringIO("\n".join(lines[start:])))
    kind_col = reader.fieldnames[0] if reader.fieldnames else "showrepl_COLUMNS"
    for row in reader:
        kind = (row.get(kind_col) or "").strip()
        if kind != "showrepl_INFO":
            if kind:
                errors.append(",".join(v for v in row.values() if isinstance(v, str) and v))
            continue
        links.append(
            ReplicationLink(
                destination_dc=(row.get("Destination DSA") or "").strip(),
                naming_context=(row.get("Naming Context") or "").strip(),
                source_dc=(row.get("Source DSA") or "").strip(),
                failures=_as_int(row.get("Number of Failures")),
                last_failure=(row.get("Last Failure Time") or "").strip(),
                last_success=(row.get("Last Success Time") or "").strip(),
                last_error=(row.get("Last Failure Status") or "").strip(),
            )
        )
    return links, errors


def render_report(
    links: list[ReplicationLink], errors: list[str], summary: str, generated: str
) -> list[str]:
    lines: list[str] = []
    w = lines.append
    failing = [ln for ln in links if ln.failing]

    w(f"# AD Replication - {HOSTNAME}")
    w("")
    w(f"> Generated: {generated}")
    w("")
    w("| Property | Value |")
    w("|----------|-------|")
    w(f"| Links checked | {len(links)} |")
    w(f"| Failing links | {len(failing)} |")
    w(f"| Unreachable / errors | {len(errors)} |")
    w("")

    w("## Failing Links")
    w("")
    if failing:
        w("| Destination | Source | Naming Context | Failures | Last Failure | Last Success | Status |")
        w("|-------------|--------|----------------|----------|--------------|--------------|--------|")
        for ln in sorted(failing, key=lambda x: (-x.failures, x.destination_dc)):
            w(
                f"| {md_cell(ln.destination_dc)} | {md_cell(ln.source_dc)} | "
                f"{md_cell(ln.naming_context)} | {ln.failures} | {md_cell(ln.last_failure)} | "
                f"{md_cell(ln.last_success)} | {md_cell(ln.last_error)} |"
            )
    else:
        w("(none)")
    w("")

    if errors:
        w("## repadmin Errors")
        w("")
        w("```")
        lines.extend(errors)
        w("```")
        w("")

    w("## Replication Summary")
    w("")
    w("```")
    w(summary or "(repadmin /replsummary returned no output)")
    w("```")
    w("")
    return lines


# ============================================================
# Main
# ============================================================
def parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Report Active Directory replication health.")
    p.add_argument("--dc", default="*", help="DC to query (default: all DCs)")
    p.add_argument("--output", type=Path, default=SCRIPT_DIR, help="folder for the report")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if not which("repadmin"):
        logger.error("repadmin not found. Run on a domain controller or install RSAT AD DS tools.")
        return 1

    print("Querying replication partners...")
    rc, out = run_capture(["repadmin", "/showrepl", args.dc, "/csv"], timeout=600)
    if rc != 0 and not out:
        logger.error("repadmin /showrepl failed (exit code %s)", rc)
        return 1
    links, errors = parse_showrepl_csv(out)
    for e in errors:
        logger.warning("repadmin: %s", e)

    print("Collecting replication summary...")
    _rc, summary = run_capture(["repadmin", "/replsummary"], timeout=600)

    report = args.output / f"ADReplication-{HOSTNAME}.md"
    write_report(report, render_report(links, errors, summary.strip(), timestamp()))

    failing = sum(1 for ln in links if ln.failing)
    print()
    print(f"Done. {len(links)} link(s), {failing} failing.")
    return 2 if failing or errors else 0


if __name__ == "__main__":
    sys.exit(main())
