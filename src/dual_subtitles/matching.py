"""Candidate ranking and release pairing for dual subtitle merges.

Two files only align well when they were timed against the same cut, so the
pair scorer leans on release names (source type, resolution, group tokens)
while the per-file score prefers trusted, recent, well rated uploads.
"""

from __future__ import annotations

import logging
import os
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from functools import lru_cache
from typing import Dict, Iterable, List, Optional, Sequence, Set, Tuple

from guessit import guessit
from guessit.api import GuessitException

log = logging.getLogger("dual_subtitles.matching")


# -----------------------------------------
# Ranking weights (env-tunable)
# -----------------------------------------
def _wf(key: str, default: float) -> float:
    v = os.getenv(key)
    if v is None or v.strip() == "":
        return default
    try:
        return float(v)
    except ValueError:
        return default


# Per-file quality
W_TRUSTED_UPLOADER = _wf("DUAL_SUBS_W_TRUSTED_UPLOADER", 50.0)
W_RANKED_UPLOADER = _wf("DUAL_SUBS_W_RANKED_UPLOADER", 20.0)
W_RECENT_MAX = _wf("DUAL_SUBS_W_RECENT_MAX", 30.0)
W_RECENT_FLAT = _wf("DUAL_SUBS_W_RECENT_FLAT", 15.0)
W_RATING = _wf("DUAL_SUBS_W_RATING", 20.0)
W_POPULARITY = _wf("DUAL_SUBS_W_POPULARITY", 10.0)
W_DISC_RIP = _wf("DUAL_SUBS_W_DISC_RIP", 30.0)
W_WEBDL = _wf("DUAL_SUBS_W_WEBDL", 8.0)
W_WEBRIP = _wf("DUAL_SUBS_W_WEBRIP", 7.0)
W_DVDRIP = _wf("DUAL_SUBS_W_DVDRIP", 4.0)
P_HDTV = _wf("DUAL_SUBS_P_HDTV", -10.0)
W_FPS_HINT = _wf("DUAL_SUBS_W_FPS_HINT", 5.0)
W_RESOLUTION_HINT = _wf("DUAL_SUBS_W_RESOLUTION_HINT", 3.0)
W_CODEC_HINT = _wf("DUAL_SUBS_W_CODEC_HINT", 2.0)

# Pair compatibility
W_SOURCE_MATCH = _wf("DUAL_SUBS_W_SOURCE_MATCH", 0.3)
W_RESOLUTION_MATCH = _wf("DUAL_SUBS_W_RESOLUTION_MATCH", 0.15)
P_SOURCE_CONFLICT = _wf("DUAL_SUBS_P_SOURCE_CONFLICT", 1.0)

RECENT_WINDOW_DAYS = 30
RECENT_FLAT_DAYS = 90
MAX_RATING = 10.0
DEFAULT_TOP_N = 10

TRUSTED_RANKS = {"trusted", "sub translator", "sub_translator", "administrator", "app developers"}
RANKED_MARKERS = ("gold", "platinum", "silver", "bronze", "vip", "star")

TOKEN_SPLIT_RE = re.compile(r"[^a-z0-9]+")
EPISODE_RE = re.compile(r"[sS](\d{1,2})[ ._-]?[eE](\d{1,3})")

RESOLUTIONS = {"2160p", "1080p", "720p", "576p", "480p"}
CODECS = {"x264", "x265", "h264", "h265", "hevc", "av1", "xvid"}
_FPS_RE = re.compile(r"(23[.,]976?|24[.,]000?|25[.,]000?|29[.,]97|30[.,]000?)")

# Captures from broadcast and from disc are cut and timed differently
# (recaps, ad breaks, PAL speed-up), so they never share a timeline.
_CONFLICTING_SOURCES = {
    frozenset({"hdtv", "bluray"}),
    frozenset({"hdtv", "dvdrip"}),
    frozenset({"hdtv", "webdl"}),
    frozenset({"dvdrip", "bluray"}),
}


@dataclass
class CandidateFile:
    """Metadata for one downloadable subtitle file."""

    file_id: str
    file_name: str
    language: str
    downloads: int = 0
    rating: float = 0.0
    uploader_rank: str = ""
    uploaded_at: Optional[datetime] = None
    season: Optional[int] = None
    episode: Optional[int] = None
    release: str = ""
    fps: Optional[float] = None
    hearing_impaired: bool = False

    @property
    def label(self) -> str:
        return self.release or self.file_name


@dataclass(frozen=True)
class ReleaseTags:
    source: Optional[str] = None
    resolution: Optional[str] = None
    codec: Optional[str] = None
    fps: Optional[str] = None


@dataclass
class RankedCandidate:
    candidate: CandidateFile
    score: float
    rank: int
    release_score: float = 0.0


@dataclass
class PairSelection:
    first: CandidateFile
    second: CandidateFile
    score: float
    first_rank: int = 0
    second_rank: int = 0
    runners_up: List[Tuple[float, CandidateFile, CandidateFile]] = field(default_factory=list)


def tokenize(name: str) -> Set[str]:
    text = TOKEN_SPLIT_RE.sub(" ", (name or "").casefold())
    return {token for token in text.split() if len(token) >= 3}


def filename_similarity(a: str, b: str) -> float:
    """Jaccard coefficient over normalized filename tokens."""
    first = tokenize(a)
    second = tokenize(b)
    if not first or not second:
        return 0.0
    return len(first & second) / len(first | second)


def _source_family(data: Dict) -> Optional[str]:
    src = str(data.get("source") or "").lower().replace(" ", "").replace("-", "")
    if not src:
        return None
    other = data.get("other") or []
    if isinstance(other, str):
        other = [other]
    other = {str(value).lower() for value in other}
    if "bluray" in src or "remux" in other:
        return "bluray"
    if "web" in src:
        return "webrip" if "rip" in other else "webdl"
    if "tv" in src or "satellite" in src:
        return "hdtv"
    if "dvd" in src:
        return "dvdrip"
    return None


@lru_cache(maxsize=1024)
def release_tags(name: str) -> ReleaseTags:
    """Source family, resolution and codec from guessit; fps from the name."""
    text = name or ""
    if not text:
        return ReleaseTags()
    try:
        data = guessit(text)
    except GuessitException:
        log.debug("guessit could not parse %r", text)
        data = {}
    res = str(data.get("screen_size") or "").lower()
    if res == "1080i":
        res = "1080p"
    vcodec = str(data.get("video_codec") or "").lower().replace(".", "")
    fps = _FPS_RE.search(text)
    return ReleaseTags(
        source=_source_family(data),
        resolution=res if res in RESOLUTIONS else None,
        codec=vcodec if vcodec in CODECS else None,
        fps=fps.group(1).replace(",", ".") if fps else None,
    )


def sources_conflict(a: Optional[str], b: Optional[str]) -> bool:
    if not a or not b or a == b:
        return False
    return frozenset({a, b}) in _CONFLICTING_SOURCES


def score_pair(a: CandidateFile, b: CandidateFile) -> float:
    """Symmetric compatibility of two files (likelihood of shared timing)."""
    name_a = a.label
    name_b = b.label
    score = filename_similarity(name_a, name_b)
    tags_a = release_tags(name_a)
    tags_b = release_tags(name_b)
    if tags_a.source and tags_a.source == tags_b.source:
        score += W_SOURCE_MATCH
    if tags_a.resolution and tags_a.resolution == tags_b.resolution:
        score += W_RESOLUTION_MATCH
    if sources_conflict(tags_a.source, tags_b.source):
        score -= P_SOURCE_CONFLICT
    return score


def release_score(name: str) -> float:
    tags = release_tags(name)
    score = 0.0
    if tags.source == "bluray":
        score += W_DISC_RIP
    elif tags.source == "webdl":
        score += W_WEBDL
    elif tags.source == "webrip":
        score += W_WEBRIP
    elif tags.source == "dvdrip":
        score += W_DVDRIP
    elif tags.source == "hdtv":
        score += P_HDTV
    if tags.fps:
        score += W_FPS_HINT
    if tags.resolution:
        score += W_RESOLUTION_HINT
    if tags.codec:
        score += W_CODEC_HINT
    return score


class CandidateRanking:
    """Score candidate files individually, before any pairing."""

    def __init__(self, candidates: Iterable[CandidateFile], now: Optional[datetime] = None):
        self.candidates = list(candidates)
        self.now = now or datetime.now(timezone.utc)
        self.max_downloads = max((c.downloads or 0 for c in self.candidates), default=0)

    def score_file(self, candidate: CandidateFile) -> float:
        return quality_score(candidate, self.max_downloads, self.now)

    def ranked(self) -> List[RankedCandidate]:
        scored = [
            (self.score_file(candidate), position, candidate)
            for position, candidate in enumerate(self.candidates)
        ]
        scored.sort(key=lambda item: (-item[0], item[1]))
        return [
            RankedCandidate(candidate=candidate, score=score, rank=rank, release_score=release_score(candidate.label))
            for rank, (score, _, candidate) in enumerate(scored)
        ]

    def best(self, top_k: int = 3) -> List[RankedCandidate]:
        return self.ranked()[:top_k]


def _uploader_score(rank: str) -> float:
    value = (rank or "").strip().lower()
    if not value:
        return 0.0
    if value in TRUSTED_RANKS:
        return W_TRUSTED_UPLOADER
    if any(marker in value for marker in RANKED_MARKERS):
        return W_RANKED_UPLOADER
    return 0.0


def _recency_score(uploaded_at: Optional[datetime], now: datetime) -> float:
    if uploaded_at is None:
        return 0.0
    if uploaded_at.tzinfo is None:
        uploaded_at = uploaded_at.replace(tzinfo=timezone.utc)
    days = max(0.0, (now - uploaded_at).total_seconds() / 86400.0)
    if days < RECENT_WINDOW_DAYS:
        return W_RECENT_MAX * (1.0 - days / RECENT_WINDOW_DAYS)
    if days < RECENT_FLAT_DAYS:
        return W_RECENT_FLAT
    return 0.0


def _rating_score(rating: float) -> float:
    try:
        value = float(rating or 0.0)
    except (TypeError, ValueError):
        return 0.0
    if value <= 0:
        return 0.0
    return min(value, MAX_RATING) / MAX_RATING * W_RATING


def quality_score(candidate: CandidateFile, max_downloads: int, now: Optional[datetime] = None) -> float:
    """Standalone quality of one file; ``max_downloads`` is the best count in its list."""
    score = _uploader_score(candidate.uploader_rank)
    score += _recency_score(candidate.uploaded_at, now or datetime.now(timezone.utc))
    score += _rating_score(candidate.rating)
    score += release_score(candidate.label)
    if max_downloads > 0:
        score += (max(0, candidate.downloads or 0) / max_downloads) * W_POPULARITY
    return score


def rank_candidates(candidates: Iterable[CandidateFile], now: Optional[datetime] = None) -> List[RankedCandidate]:
    return CandidateRanking(candidates, now=now).ranked()


def best_candidate(candidates: Sequence[CandidateFile], now: Optional[datetime] = None) -> Optional[CandidateFile]:
    ranked = rank_candidates(candidates, now=now)
    if not ranked:
        return None
    best = ranked[0]
    log.info("Selected subtitle with score %.1f: %s", best.score, best.candidate.label)
    log.debug(
        "  uploader=%s downloads=%s rating=%s release_score=%.1f",
        best.candidate.uploader_rank or "none",
        best.candidate.downloads,
        best.candidate.rating,
        best.release_score,
    )
    for alt in ranked[1:3]:
        log.debug("  alternative #%d %s (score %.1f)", alt.rank + 1, alt.candidate.label, alt.score)
    return best.candidate


def select_best_pair(
    first: Sequence[CandidateFile],
    second: Sequence[CandidateFile],
    top_n: int = DEFAULT_TOP_N,
    now: Optional[datetime] = None,
) -> Optional[PairSelection]:
    """Pick the most compatible (first, second) pair from the top-N of each list.

    Ties go to the pair whose members rank higher on their own.
    """
    if not first or not second:
        return None
    top_n = max(1, int(top_n))
    ranked_first = rank_candidates(first, now=now)[:top_n]
    ranked_second = rank_candidates(second, now=now)[:top_n]

    scored: List[Tuple[float, int, int, RankedCandidate, RankedCandidate]] = []
    for a in ranked_first:
        for b in ranked_second:
            scored.append((score_pair(a.candidate, b.candidate), a.rank, b.rank, a, b))
    scored.sort(key=lambda item: (-item[0], item[1] + item[2], item[1]))

    score, _, _, a, b = scored[0]
    selection = PairSelection(
        first=a.candidate,
        second=b.candidate,
        score=score,
        first_rank=a.rank,
        second_rank=b.rank,
        runners_up=[(s, x.candidate, y.candidate) for s, _, _, x, y in scored[1:4]],
    )
    log.info("Smart matching selected pair with score %.2f", score)
    log.info("  L1: %s", a.candidate.label)
    log.info("  L2: %s", b.candidate.label)
    for alt_score, alt_a, alt_b in selection.runners_up:
        log.debug("  runner-up %.2f: %s + %s", alt_score, alt_a.label, alt_b.label)
    return selection


def detect_episode(name: str) -> Tuple[Optional[int], Optional[int]]:
    match = EPISODE_RE.search(name or "")
    if not match:
        return None, None
    return int(match.group(1)), int(match.group(2))


def filter_episode(
    candidates: Iterable[CandidateFile],
    season: Optional[int],
    episode: Optional[int],
) -> List[CandidateFile]:
    """Keep only files that belong to the requested episode.

    Movies (no season/episode requested) pass through untouched. For series,
    a file with no detectable season and episode is rejected.
    """
    items = list(candidates)
    if not season or not episode:
        return items

    kept: List[CandidateFile] = []
    for candidate in items:
        detected_season, detected_episode = candidate.season, candidate.episode
        if detected_season is None or detected_episode is None:
            guessed_season, guessed_episode = detect_episode(candidate.file_name or candidate.release)
            if detected_season is None:
                detected_season = guessed_season
            if detected_episode is None:
                detected_episode = guessed_episode
        if detected_season is None and detected_episode is None:
            continue
        if detected_season is not None and int(detected_season) != int(season):
            continue
        if detected_episode is not None and int(detected_episode) != int(episode):
            continue
        kept.append(candidate)
    return kept


__all__ = [
    "CandidateFile",
    "CandidateRanking",
    "PairSelection",
    "RankedCandidate",
    "ReleaseTags",
    "best_candidate",
    "filename_similarity",
    "filter_episode",
    "quality_score",
    "rank_candidates",
    "release_tags",
    "score_pair",
    "select_best_pair",
    "tokenize",
]
