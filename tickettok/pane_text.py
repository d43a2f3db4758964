"""Helpers for working with captured tmux pane text."""

import logging
import os
import re
import subprocess
from typing import Optional

logger = logging.getLogger(__name__)

# CSI sequences (colors, cursor movement, private modes)
_ansi_re = re.compile(r'\x1b\[[0-9;?]*[a-zA-Z]')

SEPARATOR_CHARS = frozenset("─-")


def strip_ansi(text: str) -> str:
    """Remove ANSI escape sequences from text."""
    return _ansi_re.sub("", text)


def clean_line(line: str) -> str:
    """ANSI-strip and trim a single line."""
    return strip_ansi(line).strip()


def recent_lines(content: str, limit: int) -> list[str]:
    """
    Collect the last non-blank lines of pane content, bottom-up.

    Args:
        content: Raw pane text (ANSI allowed)
        limit: Maximum number of lines to return

    Returns:
        Cleaned lines, index 0 being the bottommost non-blank line
    """
    recent: list[str] = []
    if not content:
        return recent
    for raw in reversed(content.split("\n")):
        line = clean_line(raw)
        if line:
            recent.append(line)
            if len(recent) >= limit:
                break
    return recent


def has_dingbat(text: str) -> bool:
    """True if text contains a Unicode Dingbat (U+2700-U+27BF), used by spinners."""
    return any("✀" <= ch <= "➿" for ch in text)


def has_ellipsis(text: str) -> bool:
    return "…" in text or "..." in text


def is_separator_line(text: str) -> bool:
    """True if text is a horizontal rule of at least 10 box-drawing or dash chars."""
    if len(text) < 10:
        return False
    return all(ch in SEPARATOR_CHARS for ch in text)


def preview_from_lines(lines: list[str], n: int) -> list[str]:
    """
    Take the last n meaningful lines, top-down.

    Lines are ANSI-stripped and trimmed; blank lines and lines of two
    characters or fewer are discarded.
    """
    result: list[str] = []
    if n <= 0:
        return result
    for raw in reversed(lines):
        line = clean_line(raw)
        if len(line) > 2:
            result.append(line)
            if len(result) >= n:
                break
    result.reverse()
    return result


def derive_name_from_dir(directory: str, timeout: float = 2.0) -> str:
    """
    Derive a short agent name from the git repo root or directory basename.

    Args:
        directory: Working directory of the agent
        timeout: Seconds to wait for git

    Returns:
        Repo name, directory basename, or "agent"
    """
    toplevel: Optional[str] = None
    try:
        result = subprocess.run(
            ["git", "-C", directory, "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            timeout=timeout,
        )
        if result.returncode == 0:
            toplevel = result.stdout.strip()
    except (OSError, subprocess.TimeoutExpired) as e:
        logger.debug(f"git lookup failed for {directory}: {e}")

    for candidate in (toplevel, directory):
        if not candidate:
            continue
        name = os.path.basename(candidate.rstrip("/"))
        if name and name not in (".", "/"):
            return name
    return "agent"
