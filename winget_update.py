#!/usr/bin/env python3
# -*- coding: utf-8 -*-
"""
Interactive winget updater

Lists upgradable packages with `winget upgrade`, asks per package what to do
and upgrades the accepted ones one at a time:

  Y - update this package
  N - skip this package
  A - update this package and every remaining one without asking
  S - skip this package and every remaining one
  Q - quit: skip this package and everything after it

Ends with two tables: packages updated, and packages skipped or failed.
"""

import argparse
import enum
import logging
import re
import sys
from dataclasses import dataclass, field, replace
from typing import Callable, Iterable

from admin_shell import (
    format_table,
    is_admin,
    run_capture,
    run_interactive,
    setup_logging,
    which,
)

logger = logging.getLogger(__name__)

# The first line with 5+ dashes splits the header from the rows.
SEPARATOR_RE = re.compile(r"-{5,}")

# Name is free text, so the first run of 2+ spaces is where Id starts.
# A name that itself contains 2+ spaces is split in the wrong place.
ROW_RE = re.compile(
    r"^(?P<name>.+?)\s{2,}(?P<id>\S+)\s+(?P<version>\S+)\s+(?P<available>\S+)"
    r"(?:\s+(?P<source>\S+))?\s*$"
)

# "3 upgrades available.", "1 package(s) have version numbers that cannot be
# determined..." and the pinned-package notice all close the table.
TABLE_END_RE = re.compile(r"^\d+\s+(upgrades?|packages?)\b|explicit targeting", re.IGNORECASE)

PROMPT = (
    "Update {name} ({id}) {current} -> {available}? "
    "[Y]es/[N]o/[A]ll/[S]kip all/[Q]uit: "
)


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------
@dataclass(frozen=True)
class UpdateCandidate:
    """One row of `winget upgrade` output."""

    name: str
    id: str
    current_version: str
    available_version: str
    source: str = ""

    @property
    def actionable(self) -> bool:
        return bool(self.id and self.available_version)


class Status(enum.Enum):
    UPDATED = "Updated"
    SKIPPED_BY_USER = "Skipped by user"
    SKIPPED_ALL_REMAINING = "Skipped (skip all)"
    SKIPPED_USER_QUIT = "Skipped (user quit)"
    UPDATE_FAILED = "Update failed"


@dataclass(frozen=True)
class DecisionOutcome:
    candidate: UpdateCandidate
    status: Status
    exit_code: int | None = None
    to_version: str = ""

    @property
    def label(self) -> str:
        if self.status is Status.UPDATE_FAILED and self.exit_code is not None:
            return f"{self.status.value} (exit code {format_exit_code(self.exit_code)})"
        return self.status.value


@dataclass(frozen=True)
class SessionState:
    """Sticky answers carried from one package to the next."""

    apply_all_remaining: bool = False
    skip_all_remaining: bool = False
    user_quit: bool = False


@dataclass
class ParseResult:
    candidates: list[UpdateCandidate] = field(default_factory=list)
    rejected: list[str] = field(default_factory=list)


def format_exit_code(code: int) -> str:
    # winget reports HRESULTs such as 0x8A150011 as large exit codes
    if code < 0 or code > 0xFFFF:
        return f"0x{code & 0xFFFFFFFF:08X}"
    return str(code)


# ---------------------------------------------------------------------------
# Parsing
# ---------------------------------------------------------------------------
def _clean_line(line: str) -> str:
    # winget draws its progress spinner with carriage returns
    return line.rsplit("\r", 1)[-1].rstrip()


def parse_upgrade_table(text: str) -> ParseResult:
    """Parse `winget upgrade` table output into update candidates.

    No separator line means winget printed no table, i.e. nothing to update.
    Rows that do not fit the Name/Id/Version/Available[/Source] layout are
    logged and dropped.
    """
    result = ParseResult()
    lines = [_clean_line(ln) for ln in (text or "").split("\n")]

    start = None
    for idx, line in enumerate(lines):
        if SEPARATOR_RE.search(line):
            start = idx + 1
            break
    if start is None:
        return result

    for line in lines[start:]:
        if not line.strip():
            continue
        if TABLE_END_RE.search(line.strip()):
            logger.debug("End of table: %s", line.strip())
            break
        m = ROW_RE.match(line)
        if not m:
            logger.warning("Could not parse winget line: %r", line)
            result.rejected.append(line)
            continue
        result.candidates.append(
            UpdateCandidate(
                name=m.group("name").strip(),
                id=m.group("id"),
                current_version=m.group("version"),
                available_version=m.group("available"),
                source=m.group("source") or "",
            )
        )
    return result


# ---------------------------------------------------------------------------
# Decisions
# ---------------------------------------------------------------------------
class Choice(enum.Enum):
    YES = "Y"
    NO = "N"
    ALL = "A"
    SKIP_ALL = "S"
    QUIT = "Q"


def parse_choice(answer: str) -> Choice | None:
    try:
        return Choice(answer.strip().upper())
    except ValueError:
        return None


def apply_choice(state: SessionState, choice: Choice) -> tuple[SessionState, Status | None]:
    """Return the next state and the skip status (None when the package is accepted)."""
    if choice is Choice.YES:
        return state, None
    if choice is Choice.ALL:
        return replace(state, apply_all_remaining=True, skip_all_remaining=False), None
    if choice is Choice.NO:
        return state, Status.SKIPPED_BY_USER
    if choice is Choice.SKIP_ALL:
        return replace(state, skip_all_remaining=True, apply_all_remaining=False), Status.SKIPPED_BY_USER
    return (
        replace(state, skip_all_remaining=True, apply_all_remaining=False, user_quit=True),
        Status.SKIPPED_USER_QUIT,
    )


def ask_choice(candidate: UpdateCandidate, reader: Callable[[str], str]) -> Choice:
    """Prompt until the answer is one of Y/N/A/S/Q. End of input counts as Q."""
    prompt = PROMPT.format(
        name=candidate.name,
        id=candidate.id,
        current=candidate.current_version,
        available=candidate.available_version,
    )
    while True:
        try:
            answer = reader(prompt)
        except EOFError:
            logger.warning("No more input, quitting")
            return Choice.QUIT
        choice = parse_choice(answer)
        if choice is not None:
            return choice
        logger.warning("Invalid choice %r - enter Y, N, A, S or Q", answer)


class OutcomeRecorder:
    """Updated packages in processing order, and everything else."""

    def __init__(self) -> None:
        self.updated: list[DecisionOutcome] = []
        self.skipped_or_failed: list[DecisionOutcome] = []

    def record(self, outcome: DecisionOutcome) -> None:
        if outcome.status is Status.UPDATED:
            self.updated.append(outcome)
        else:
            self.skipped_or_failed.append(outcome)

    @property
    def total(self) -> int:
        return len(self.updated) + len(self.skipped_or_failed)

    @property
    def failed(self) -> list[DecisionOutcome]:
        return [o for o in self.skipped_or_failed if o.status is Status.UPDATE_FAILED]


Upgrader = Callable[[str, str], int]


class UpdateSession:
    """Walks the candidates in order, one prompt and at most one upgrade each."""

    def __init__(
        self,
        upgrade: Upgrader,
        reader: Callable[[str], str] | None = None,
        state: SessionState | None = None,
    ) -> None:
        self.upgrade = upgrade
        self.reader = reader or input
        self.state = state or SessionState()
        self.recorder = OutcomeRecorder()

    def process(self, candidate: UpdateCandidate) -> DecisionOutcome:
        if self.state.user_quit:
            return DecisionOutcome(candidate, Status.SKIPPED_USER_QUIT)
        if self.state.skip_all_remaining:
            return DecisionOutcome(candidate, Status.SKIPPED_ALL_REMAINING)
        if not self.state.apply_all_remaining:
            choice = ask_choice(candidate, self.reader)
            self.state, skipped = apply_choice(self.state, choice)
            if skipped is not None:
                return DecisionOutcome(candidate, skipped)
        return self._execute(candidate)

    def _execute(self, candidate: UpdateCandidate) -> DecisionOutcome:
        print(
            f"Updating {candidate.name} ({candidate.id}) "
            f"{candidate.current_version} -> {candidate.available_version} ..."
        )
        code = self.upgrade(candidate.id, candidate.available_version)
        if code == 0:
            print(f"  [OK] {candidate.name} {candidate.available_version}")
            return DecisionOutcome(
                candidate, Status.UPDATED, exit_code=0, to_version=candidate.available_version
            )
        logger.warning(
            "Update of %s failed (exit code %s)", candidate.id, format_exit_code(code)
        )
        return DecisionOutcome(candidate, Status.UPDATE_FAILED, exit_code=code)

    def run(self, candidates: Iterable[UpdateCandidate]) -> OutcomeRecorder:
        for candidate in candidates:
            self.recorder.record(self.process(candidate))
        return self.recorder


# ---------------------------------------------------------------------------
# Summary
# ---------------------------------------------------------------------------
def render_summary(
    updated: list[DecisionOutcome], skipped_or_failed: list[DecisionOutcome]
) -> str:
    if not updated and not skipped_or_failed:
        return "Nothing to update."

    lines: list[str] = []
    if updated:
        lines.append(f"Updated ({len(updated)}):")
        lines += format_table(
            ["Name", "From", "To", "Id"],
            [
                [o.candidate.name, o.candidate.current_version, o.to_version, o.candidate.id]
                for o in updated
            ],
        )
        lines.append("")
    if skipped_or_failed:
        lines.append(f"Skipped or failed ({len(skipped_or_failed)}):")
        lines += format_table(
            ["Name", "Current", "Available", "Status", "Id"],
            [
                [
                    o.candidate.name,
                    o.candidate.current_version,
                    o.candidate.available_version,
                    o.label,
                    o.candidate.id,
                ]
                for o in sorted(skipped_or_failed, key=lambda o: o.candidate.name.casefold())
            ],
        )
        lines.append("")
    return "\n".join(lines).rstrip()


# ---------------------------------------------------------------------------
# winget
# ---------------------------------------------------------------------------
def list_command(include_unknown: bool = False, source: str | None = None) -> list[str]:
    args = ["winget", "upgrade", "--accept-source-agreements", "--disable-interactivity"]
    if include_unknown:
        args.append("--include-unknown")
    if source:
        args += ["--source", source]
    return args


def upgrade_command(package_id: str, version: str, source: str | None = None) -> list[str]:
    args = [
        "winget", "upgrade",
        "--id", package_id,
        "--version", version,
        "--exact", "--silent",
        "--accept-source-agreements", "--accept-package-agreements",
    ]
    if source:
        args += ["--source", source]
    return args


def make_upgrader(source: str | None = None, dry_run: bool = False) -> Upgrader:
    def upgrade(package_id: str, version: str) -> int:
        args = upgrade_command(package_id, version, source)
        if dry_run:
            print(f"  (dry-run) {' '.join(args)}")
            return 0
        return run_interactive(args)

    return upgrade


# ============================================================
# Main
# ============================================================
def parse_args(argv: list[str] | None) -> argparse.Namespace:
    p = argparse.ArgumentParser(description="Interactively update packages with winget.")
    p.add_argument("--include-unknown", action="store_true",
                   help="also list packages whose installed version is unknown")
    p.add_argument("--source", help="only use this winget source (e.g. winget, msstore)")
    p.add_argument("--yes", action="store_true", help="update everything without asking")
    p.add_argument("--dry-run", action="store_true", help="show the upgrade commands only")
    p.add_argument("-v", "--verbose", action="store_true")
    return p.parse_args(argv)


def main(argv: list[str] | None = None) -> int:
    args = parse_args(argv)
    setup_logging(args.verbose)

    if not which("winget"):
        logger.error("winget not found. Install 'App Installer' from the Microsoft Store.")
        return 1
    if not is_admin():
        logger.warning("Not running as administrator; machine-wide packages may fail to update.")

    print("Checking for package updates...")
    rc, out = run_capture(list_command(args.include_unknown, args.source))
    if rc == -1:
        logger.error("Could not run winget.")
        return 1

    parsed = parse_upgrade_table(out)
    if parsed.rejected:
        logger.warning("%d line(s) of winget output were not understood", len(parsed.rejected))
    candidates = [c for c in parsed.candidates if c.actionable]
    if not candidates:
        print("Nothing to update.")
        return 0

    print(f"{len(candidates)} update(s) available.")
    print()
    session = UpdateSession(
        make_upgrader(args.source, args.dry_run),
        state=SessionState(apply_all_remaining=args.yes),
    )
    recorder = session.run(candidates)

    print()
    print(render_summary(recorder.updated, recorder.skipped_or_failed))
    return 2 if recorder.failed else 0


if __name__ == "__main__":
    sys.exit(main())
