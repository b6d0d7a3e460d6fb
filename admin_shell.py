# -*- coding: utf-8 -*-
"""
Shared helpers for the Windows admin scripts.

Every script in this collection shells out to PowerShell or a
vendor CLI (winget, repadmin) and formats what comes back.  The helpers
here never raise on a failed command: callers get empty output and decide
whether that is fatal.
"""

import ctypes
import datetime
import json
import logging
import os
import shutil
import socket
import subprocess
from pathlib import Path

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------
SCRIPT_DIR = Path(__file__).resolve().parent
HOSTNAME = socket.gethostname()

# Only defined on Windows; 0 is a no-op elsewhere.
_NO_WINDOW = getattr(subprocess, "CREATE_NO_WINDOW", 0)


def setup_logging(verbose: bool = False) -> None:
    """Console logging with the same [LEVEL] prefix the reports print."""
    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.INFO,
        format="[%(levelname)s] %(message)s",
    )


def timestamp(fmt: str = "%Y-%m-%d %H:%M:%S") -> str:
    return datetime.datetime.now().strftime(fmt)


# ---------------------------------------------------------------------------
# Command execution
# ---------------------------------------------------------------------------
def _decode(raw: bytes) -> str:
    # Try UTF-8 first, fallback to the console code page, strip null bytes
    try:
        out = raw.decode("utf-8")
    except UnicodeDecodeError:
        out = raw.decode("cp1252", errors="replace")
    return out.replace("\x00", "")


def run_ps(command: str, *, timeout: int | None = 60) -> str:
    """Run a PowerShell command and return stdout."""
    try:
        r = subprocess.run(
            ["powershell", "-NoProfile", "-NonInteractive", "-Command", command],
            capture_output=True,
            timeout=timeout,
            creationflags=_NO_WINDOW,
        )
        return _decode(r.stdout).strip()
    except (OSError, subprocess.SubprocessError):
        return ""


def run_capture(args: list[str], *, timeout: int | None = None) -> tuple[int, str]:
    """Run a program without a shell and return (returncode, stdout).

    Returns -1 when the program could not be started at all.
    """
    try:
        r = subprocess.run(
            args,
            capture_output=True,
            timeout=timeout,
            creationflags=_NO_WINDOW,
        )
    except (OSError, subprocess.SubprocessError) as exc:
        logger.debug("%s failed to start: %s", args[0], exc)
        return -1, ""
    return r.returncode, _decode(r.stdout)


def run_interactive(args: list[str]) -> int:
    """Run a program attached to the console and return its exit code."""
    try:
        return subprocess.run(args).returncode
    except OSError as exc:
        logger.error("Cannot start %s: %s", args[0], exc)
        return -1


def ps_json(command: str) -> list[dict]:
    """Run a PowerShell command that outputs JSON, return parsed list."""
    raw = run_ps(f"{command} | ConvertTo-Json -Compress -Depth 3")
    if not raw:
        return []
    try:
        data = json.loads(raw)
        if isinstance(data, dict):
            return [data]
        return data if isinstance(data, list) else []
    except (json.JSONDecodeError, TypeError):
        return []


def which(name: str) -> bool:
    """Check if a command is available on PATH."""
    return shutil.which(name) is not None


def is_admin() -> bool:
    """True when the current process runs elevated (always False off Windows)."""
    if os.name != "nt":
        return False
    try:
        return bool(ctypes.windll.shell32.IsUserAnAdmin())
    except (AttributeError, OSError):
        return False


# ---------------------------------------------------------------------------
# Formatting
# ---------------------------------------------------------------------------
def format_bytes(n: int | float) -> str:
    """Format bytes to human-readable string."""
    for unit in ("B", "KB", "MB", "GB", "TB"):
        if abs(n) < 1024:
            return f"{n:.1f} {unit}"
        n /= 1024
    return f"{n:.1f} PB"


def format_table(headers: list[str], rows: list[list[str]]) -> list[str]:
    """Fixed-width console table, column widths taken from the content."""
    widths = [max([len(h)] + [len(r[i]) for r in rows]) for i, h in enumerate(headers)]

    def fmt(cells: list[str]) -> str:
        return "  ".join(c.ljust(w) for c, w in zip(cells, widths)).rstrip()

    return [fmt(headers), fmt(["-" * w for w in widths])] + [fmt(r) for r in rows]


def md_cell(value) -> str:
    """Make a value safe for a Markdown table cell."""
    return str(value if value is not None else "").replace("|", "/").strip()


def write_report(path: Path, lines: list[str]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    path.write_text("\n".join(lines) + "\n", encoding="utf-8")
    print(f"  [OK] {path}")
