"""Render paired or orphaned cue text into one combined cue body.

Everything here is pure: same input and policy, same output string.
"""

from __future__ import annotations

import enum
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .srt import Cue

TAG_RE = re.compile(r"<[^>]*>")
ASS_OVERRIDE_RE = re.compile(r"\{\\[^}]*\}")
WHITESPACE_RE = re.compile(r"\s+")
COLOR_RE = re.compile(r"^#[0-9a-fA-F]{6}$")

DEFAULT_LINE_WIDTH = 45
DEFAULT_COLUMN_WIDTH = 40


class Layout(str, enum.Enum):
    STACKED = "stacked"
    SIDE_BY_SIDE = "side_by_side"
    TRANSLATED = "translated"

    @classmethod
    def parse(cls, value: object, default: Optional["Layout"] = None) -> "Layout":
        raw = str(value or "").strip().lower().replace("-", "_")
        for member in cls:
            if member.value == raw:
                return member
        return default or cls.STACKED


@dataclass(frozen=True)
class FormatPolicy:
    """Presentation choices for merged cues.

    ``SIDE_BY_SIDE`` pads the first column with spaces, which only lines up on
    monospaced renderers. Proportional fonts (most players) will show ragged
    columns; that is a known limitation, not something this module corrects.
    """

    layout: Layout = Layout.STACKED
    max_line_width: int = DEFAULT_LINE_WIDTH
    column_width: int = DEFAULT_COLUMN_WIDTH
    column_separator: str = " | "
    italic_secondary: bool = True
    secondary_color: Optional[str] = None
    secondary_on_top: bool = False


def clean_text(text: str) -> str:
    """Strip inline markup, collapse whitespace per line, drop empty lines."""
    if not text:
        return ""
    text = ASS_OVERRIDE_RE.sub("", text)
    text = TAG_RE.sub("", text)
    lines = []
    for line in text.split("\n"):
        line = WHITESPACE_RE.sub(" ", line).strip()
        if line:
            lines.append(line)
    return "\n".join(lines)


def wrap_text(text: str, width: int = DEFAULT_LINE_WIDTH) -> List[str]:
    """Greedy wrap on whitespace; words are never split.

    A word longer than ``width`` is emitted whole on its own line.
    """
    width = max(1, int(width))
    wrapped: List[str] = []
    for paragraph in text.split("\n"):
        words = paragraph.split()
        if not words:
            continue
        current = words[0]
        for word in words[1:]:
            if len(current) + 1 + len(word) <= width:
                current = f"{current} {word}"
            else:
                wrapped.append(current)
                current = word
        wrapped.append(current)
    return wrapped


def _style(lines: List[str], italic: bool, color: Optional[str]) -> List[str]:
    if not lines:
        return lines
    styled = list(lines)
    if italic:
        styled = [f"<i>{line}</i>" for line in styled]
    if color and COLOR_RE.match(color):
        styled[0] = f'<font color="{color.lower()}">{styled[0]}'
        styled[-1] = f"{styled[-1]}</font>"
    return styled


def _style_secondary(lines: List[str], policy: FormatPolicy) -> List[str]:
    if policy.layout is Layout.TRANSLATED:
        # machine translated tracks are always marked as the derived one
        return _style(lines, True, policy.secondary_color)
    return _style(lines, policy.italic_secondary, policy.secondary_color)


def _side_by_side(primary: List[str], secondary: List[str], policy: FormatPolicy) -> List[str]:
    rows = max(len(primary), len(secondary))
    width = max(1, policy.column_width)
    separator = policy.column_separator
    out: List[str] = []
    for row in range(rows):
        left = primary[row] if row < len(primary) else ""
        right = secondary[row] if row < len(secondary) else ""
        if right:
            out.append(f"{left.ljust(width)}{separator}{right}")
        else:
            out.append(left)
    return out


def format_cue(primary: str, secondary: str, policy: FormatPolicy = FormatPolicy()) -> str:
    """Combine the two tracks' text for a single cue according to ``policy``."""
    primary_clean = clean_text(primary)
    secondary_clean = clean_text(secondary)
    if not primary_clean and not secondary_clean:
        return ""

    if policy.layout is Layout.SIDE_BY_SIDE and primary_clean and secondary_clean:
        left = wrap_text(primary_clean, policy.column_width)
        right = wrap_text(secondary_clean, policy.column_width)
        return "\n".join(_side_by_side(left, right, policy))

    primary_lines = wrap_text(primary_clean, policy.max_line_width)
    secondary_lines = _style_secondary(wrap_text(secondary_clean, policy.max_line_width), policy)
    if policy.secondary_on_top:
        lines = secondary_lines + primary_lines
    else:
        lines = primary_lines + secondary_lines
    return "\n".join(lines)


def render(merged: Iterable, policy: FormatPolicy = FormatPolicy()) -> List[Cue]:
    """Turn aligned cues into output cues, skipping those that format empty."""
    cues: List[Cue] = []
    for item in merged:
        body = format_cue(item.primary, item.secondary, policy)
        if not body:
            continue
        cues.append(Cue(index=len(cues) + 1, start=item.start, end=item.end, lines=body.split("\n")))
    return cues


__all__ = ["FormatPolicy", "Layout", "clean_text", "format_cue", "render", "wrap_text"]
