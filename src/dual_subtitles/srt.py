"""SRT cue model, parser and serializer.

Timestamps are kept as integer milliseconds end to end; no floating point is
involved in parsing, shifting or formatting.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass, field, replace
from typing import Iterable, List, Optional

from charset_normalizer import from_bytes

log = logging.getLogger("dual_subtitles.srt")

CONTROL_CHAR_RE = re.compile(r"[\x00-\x08\x0b\x0c\x0e-\x1f]")
BLOCK_SPLIT_RE = re.compile(r"\n\s*\n")
TIMESTAMP_LINE_RE = re.compile(
    r"^\s*(?P<sh>\d{1,3}):(?P<sm>\d{2}):(?P<ss>\d{2})[,.](?P<sms>\d{3})"
    r"\s*-->\s*"
    r"(?P<eh>\d{1,3}):(?P<em>\d{2}):(?P<es>\d{2})[,.](?P<ems>\d{3})"
)


@dataclass
class Cue:
    """One subtitle entry on a millisecond timeline."""

    index: int
    start: int
    end: int
    lines: List[str] = field(default_factory=list)

    @property
    def text(self) -> str:
        return "\n".join(self.lines)

    @property
    def duration(self) -> int:
        return self.end - self.start


def timestamp_to_ms(hours: int, minutes: int, seconds: int, millis: int) -> int:
    return hours * 3_600_000 + minutes * 60_000 + seconds * 1000 + millis


def ms_to_timestamp(ms: int) -> str:
    ms = max(0, int(ms))
    hours, rest = divmod(ms, 3_600_000)
    minutes, rest = divmod(rest, 60_000)
    seconds, millis = divmod(rest, 1000)
    return f"{hours:02d}:{minutes:02d}:{seconds:02d},{millis:03d}"


def normalize_text(text: str) -> str:
    text = text.replace("\ufeff", "")
    text = text.replace("\r\n", "\n").replace("\r", "\n")
    return CONTROL_CHAR_RE.sub("", text)


def _parse_block(block: str) -> Optional[Cue]:
    lines = [line.rstrip() for line in block.strip("\n").split("\n")]
    if len(lines) < 3:
        return None
    ordinal = lines[0].strip()
    if not ordinal.isdigit():
        return None
    match = TIMESTAMP_LINE_RE.match(lines[1])
    if not match:
        return None
    start = timestamp_to_ms(
        int(match.group("sh")), int(match.group("sm")), int(match.group("ss")), int(match.group("sms"))
    )
    end = timestamp_to_ms(
        int(match.group("eh")), int(match.group("em")), int(match.group("es")), int(match.group("ems"))
    )
    text_lines = list(lines[2:])
    if not any(line.strip() for line in text_lines):
        return None
    if end <= start:
        log.debug("Dropping cue %s with non-positive duration (%d -> %d)", ordinal, start, end)
        return None
    return Cue(index=int(ordinal), start=start, end=end, lines=text_lines)


def parse_srt(text: str) -> List[Cue]:
    """Parse SRT text into cues, skipping malformed blocks.

    Empty or unparseable input yields an empty list; callers decide whether
    zero cues is a failure.
    """
    if not text:
        return []
    normalized = normalize_text(text).strip()
    if not normalized:
        return []

    cues: List[Cue] = []
    skipped = 0
    for block in BLOCK_SPLIT_RE.split(normalized):
        cue = _parse_block(block)
        if cue is None:
            skipped += 1
            continue
        cues.append(cue)

    if skipped:
        log.debug("Skipped %d malformed SRT blocks (kept %d)", skipped, len(cues))
    cues.sort(key=lambda cue: (cue.start, cue.end))
    return cues


def serialize_srt(cues: Iterable[Cue]) -> str:
    """Serialize cues to SRT, renumbering ordinals from 1."""
    blocks: List[str] = []
    for idx, cue in enumerate(cues, start=1):
        body = "\n".join(cue.lines)
        blocks.append(f"{idx}\n{ms_to_timestamp(cue.start)} --> {ms_to_timestamp(cue.end)}\n{body}\n")
    return "\n".join(blocks)


def shift_cues(cues: Iterable[Cue], offset_ms: int) -> List[Cue]:
    """Shift both boundaries of every cue by the same signed offset.

    Cues pushed entirely before zero are dropped; starts are clamped at zero.
    """
    if not offset_ms:
        return [replace(cue, lines=list(cue.lines)) for cue in cues]
    shifted: List[Cue] = []
    for cue in cues:
        start = cue.start + offset_ms
        end = cue.end + offset_ms
        if end <= 0:
            continue
        shifted.append(replace(cue, start=max(0, start), end=end, lines=list(cue.lines)))
    return shifted


def decode_subtitle_bytes(data: bytes) -> str:
    """Decode downloaded subtitle bytes, detecting legacy code pages."""
    if not data:
        return ""
    try:
        return data.decode("utf-8")
    except UnicodeDecodeError:
        pass
    match = from_bytes(data).best()
    if match is not None:
        log.debug("Detected subtitle encoding %s", match.encoding)
        return str(match)
    return data.decode("utf-8", errors="replace")


__all__ = [
    "Cue",
    "decode_subtitle_bytes",
    "ms_to_timestamp",
    "normalize_text",
    "parse_srt",
    "serialize_srt",
    "shift_cues",
    "timestamp_to_ms",
]
