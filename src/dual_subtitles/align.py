"""Pair cues of two independently timed tracks.

The default mode anchors on the master track: each master cue collects the
secondary cues overlapping it (outside a small guard band), every secondary
cue is used at most once, and whatever is left over is kept as an orphan row
with its own timing. ``align_union`` is the alternative segmentation mode; a
merge uses one mode or the other, never both.
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from typing import Callable, List, Sequence, Set

from .formatter import clean_text
from .srt import Cue, shift_cues

log = logging.getLogger("dual_subtitles.align")

# Edge-adjacent cues (one ends where the next starts) must not pair up.
GUARD_MS = 50


class AlignMode(str, enum.Enum):
    MASTER = "master"
    UNION = "union"

    @classmethod
    def parse(cls, value: object) -> "AlignMode":
        raw = str(value or "").strip().lower()
        return cls.UNION if raw == cls.UNION.value else cls.MASTER


@dataclass
class MergedCue:
    index: int
    start: int
    end: int
    primary: str = ""
    secondary: str = ""
    orphan: bool = False


def overlaps(master: Cue, secondary: Cue, guard_ms: int = GUARD_MS) -> bool:
    return master.start < secondary.end - guard_ms and master.end > secondary.start + guard_ms


def _renumber(items: List[MergedCue]) -> List[MergedCue]:
    for idx, item in enumerate(items, start=1):
        item.index = idx
    return items


def align(
    master: Sequence[Cue],
    secondary: Sequence[Cue],
    offset_ms: int = 0,
    guard_ms: int = GUARD_MS,
    clean: Callable[[str], str] = clean_text,
) -> List[MergedCue]:
    """Align ``secondary`` onto the timing of ``master``.

    Returns an empty list when either side is empty, including when the offset
    drops every secondary cue; serving a single track is the caller's business.
    """
    if not master or not secondary:
        return []

    masters = sorted(master, key=lambda cue: (cue.start, cue.end))
    seconds = sorted(shift_cues(secondary, offset_ms), key=lambda cue: (cue.start, cue.end))
    if not seconds:
        log.info("Offset %dms moved every secondary cue before zero", offset_ms)
        return []

    consumed: Set[int] = set()
    anchored: List[MergedCue] = []
    low = 0
    for m in masters:
        primary = clean(m.text)
        if not primary:
            continue

        # Secondary cues before ``low`` are consumed or ended before this
        # master started; master starts only grow, so they stay dead.
        while low < len(seconds) and (low in consumed or seconds[low].end - guard_ms <= m.start):
            low += 1

        matched: List[int] = []
        for pos in range(low, len(seconds)):
            s = seconds[pos]
            if s.start + guard_ms >= m.end:
                break
            if pos in consumed:
                continue
            if overlaps(m, s, guard_ms):
                matched.append(pos)

        texts = []
        for pos in matched:
            consumed.add(pos)
            text = seconds[pos].text
            if text.strip():
                texts.append(text)
        anchored.append(MergedCue(index=0, start=m.start, end=m.end, primary=m.text, secondary="\n".join(texts)))

    orphans: List[MergedCue] = []
    for pos, s in enumerate(seconds):
        if pos in consumed or not clean(s.text):
            continue
        orphans.append(MergedCue(index=0, start=s.start, end=s.end, secondary=s.text, orphan=True))

    # sorted() is stable: anchored rows keep precedence on equal starts
    merged = sorted(anchored + orphans, key=lambda item: (item.start, item.orphan))
    log.debug(
        "Aligned master=%d secondary=%d -> anchored=%d orphans=%d",
        len(masters),
        len(seconds),
        len(anchored),
        len(orphans),
    )
    return _renumber(merged)


def _active_text(cues: Sequence[Cue], midpoint: float) -> List[str]:
    return [cue.text for cue in cues if cue.start <= midpoint < cue.end]


def align_union(
    master: Sequence[Cue],
    secondary: Sequence[Cue],
    offset_ms: int = 0,
    clean: Callable[[str], str] = clean_text,
) -> List[MergedCue]:
    """Split the timeline at every boundary of both tracks.

    Each sub-interval takes the text of whichever cues are active at its
    midpoint. Neighbouring segments with identical text are coalesced.
    """
    if not master or not secondary:
        return []

    firsts = sorted(master, key=lambda cue: (cue.start, cue.end))
    seconds = sorted(shift_cues(secondary, offset_ms), key=lambda cue: (cue.start, cue.end))
    if not seconds:
        log.info("Offset %dms moved every secondary cue before zero", offset_ms)
        return []

    boundaries = sorted({t for cue in list(firsts) + seconds for t in (cue.start, cue.end)})

    segments: List[MergedCue] = []
    for start, end in zip(boundaries, boundaries[1:]):
        midpoint = (start + end) / 2
        primary = "\n".join(_active_text(firsts, midpoint))
        second = "\n".join(_active_text(seconds, midpoint))
        if not clean(primary) and not clean(second):
            continue
        last = segments[-1] if segments else None
        if last and last.end == start and last.primary == primary and last.secondary == second:
            last.end = end
            continue
        segments.append(
            MergedCue(index=0, start=start, end=end, primary=primary, secondary=second, orphan=not clean(primary))
        )

    log.debug("Union alignment produced %d segments from %d boundaries", len(segments), len(boundaries))
    return _renumber(segments)


def run_alignment(
    mode: AlignMode,
    master: Sequence[Cue],
    secondary: Sequence[Cue],
    offset_ms: int = 0,
    guard_ms: int = GUARD_MS,
) -> List[MergedCue]:
    if mode is AlignMode.UNION:
        return align_union(master, secondary, offset_ms=offset_ms)
    return align(master, secondary, offset_ms=offset_ms, guard_ms=guard_ms)


__all__ = ["AlignMode", "GUARD_MS", "MergedCue", "align", "align_union", "overlaps", "run_alignment"]
