from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from typing import List, Optional, Tuple

from .align import GUARD_MS, AlignMode, run_alignment
from .cache import TTLCache, get_or_set, subtitle_cache_key
from .formatter import FormatPolicy, Layout, clean_text, render
from .matching import CandidateFile, best_candidate, select_best_pair
from .settings import Settings, settings as default_settings
from .sources.opensubtitles import OpenSubtitlesClient, ProviderError
from .srt import Cue, parse_srt, serialize_srt
from .translation import TranslationClient

log = logging.getLogger("dual_subtitles.service")


def merge_subtitle_texts(
    primary_text: str,
    secondary_text: str,
    offset_ms: int = 0,
    policy: FormatPolicy = FormatPolicy(),
    mode: AlignMode = AlignMode.MASTER,
    guard_ms: int = GUARD_MS,
) -> Optional[str]:
    """Merge two SRT documents into one dual-language SRT document.

    Returns ``None`` when either document has no usable cues.
    """
    primary = parse_srt(primary_text)
    secondary = parse_srt(secondary_text)
    log.info("Parsed subtitles: primary=%d cues secondary=%d cues", len(primary), len(secondary))
    if not primary or not secondary:
        log.warning("Cannot merge: %s track has no cues", "primary" if not primary else "secondary")
        return None

    merged = run_alignment(mode, primary, secondary, offset_ms=offset_ms, guard_ms=guard_ms)
    if not merged:
        log.warning("Cannot merge: nothing left to pair at offset %dms", offset_ms)
        return None
    cues = render(merged, policy)
    log.info(
        "Merged %d cues (mode=%s layout=%s offset=%dms orphans=%d)",
        len(cues),
        mode.value,
        policy.layout.value,
        offset_ms,
        sum(1 for item in merged if item.orphan),
    )
    return serialize_srt(cues)


@dataclass
class DualRequest:
    imdb_id: str
    lang1: str
    lang2: str
    season: Optional[int] = None
    episode: Optional[int] = None
    offset_ms: int = 0
    layout: Optional[Layout] = None
    translate: bool = False

    @property
    def cache_key(self) -> str:
        layout = self.layout.value if self.layout else "default"
        mode = "translated" if self.translate else "paired"
        return (
            f"dual:{self.imdb_id}:{self.lang1}:{self.lang2}:"
            f"{self.season or 0}:{self.episode or 0}:{self.offset_ms}:{layout}:{mode}"
        )


class DualSubtitleService:
    """Fetch, pair, translate and merge subtitles for a title.

    Provider calls are blocking and run in worker threads. Provider failures
    are logged and treated as missing data.
    """

    def __init__(
        self,
        provider: OpenSubtitlesClient,
        translator: Optional[TranslationClient] = None,
        cache: Optional[TTLCache] = None,
        config: Settings = default_settings,
    ) -> None:
        self.provider = provider
        self.translator = translator
        self.settings = config
        self.cache = cache if cache is not None else TTLCache(
            default_ttl=config.cache_ttl, max_size=config.cache_max_size
        )

    @property
    def can_translate(self) -> bool:
        return self.translator is not None and self.translator.is_configured()

    def policy_for(self, layout: Optional[Layout] = None) -> FormatPolicy:
        return FormatPolicy(
            layout=layout or Layout.parse(self.settings.default_layout),
            max_line_width=self.settings.max_line_width,
            column_width=self.settings.column_width,
            italic_secondary=self.settings.italic_secondary,
            secondary_color=self.settings.secondary_color,
        )

    async def _search(
        self, imdb_id: str, language: str, season: Optional[int], episode: Optional[int]
    ) -> List[CandidateFile]:
        try:
            return await asyncio.to_thread(self.provider.search, imdb_id, language, season, episode)
        except ProviderError as exc:
            log.warning("Subtitle search failed for %s (%s): %s", imdb_id, language, exc)
            return []

    async def _download(self, candidate: CandidateFile) -> str:
        try:
            return await asyncio.to_thread(self.provider.download, candidate.file_id)
        except ProviderError as exc:
            log.warning("Subtitle download failed for %s: %s", candidate.label, exc)
            return ""

    async def _search_both(self, request: DualRequest) -> Tuple[List[CandidateFile], List[CandidateFile]]:
        first, second = await asyncio.gather(
            self._search(request.imdb_id, request.lang1, request.season, request.episode),
            self._search(request.imdb_id, request.lang2, request.season, request.episode),
        )
        log.info("Found %d %s and %d %s candidates", len(first), request.lang1, len(second), request.lang2)
        return first, second

    async def _download_pair(
        self, first: List[CandidateFile], second: List[CandidateFile]
    ) -> Optional[Tuple[str, str]]:
        selection = select_best_pair(first, second, top_n=self.settings.candidate_top_n)
        if selection is None:
            return None
        text1, text2 = await asyncio.gather(self._download(selection.first), self._download(selection.second))
        if not text1 or not text2:
            log.warning("Download returned no data for the selected pair")
            return None
        return text1, text2

    async def fetch_pair(self, request: DualRequest) -> Optional[Tuple[str, str]]:
        """Return the raw SRT text of the best matching pair, or ``None``."""
        first, second = await self._search_both(request)
        if not first or not second:
            return None
        return await self._download_pair(first, second)

    async def fetch_single(
        self,
        imdb_id: str,
        language: str,
        season: Optional[int] = None,
        episode: Optional[int] = None,
    ) -> Optional[str]:
        """Best single subtitle for one language, cached per title and episode."""

        async def produce() -> Optional[str]:
            candidates = await self._search(imdb_id, language, season, episode)
            chosen = best_candidate(candidates)
            if chosen is None:
                return None
            return await self._download(chosen) or None

        key = subtitle_cache_key(imdb_id, language, season, episode)
        return await get_or_set(self.cache, key, produce, ttl=self.settings.cache_ttl)

    async def translate_subtitle(self, source_text: str, from_lang: str, to_lang: str) -> Optional[str]:
        """Translate every cue of ``source_text`` keeping the original timing."""
        if not self.can_translate:
            log.warning("Translation requested but no translation backend is configured")
            return None
        cues = [cue for cue in parse_srt(source_text) if clean_text(cue.text)]
        if not cues:
            return None
        lines = [clean_text(cue.text) for cue in cues]
        translated = await self.translator.translate_lines(lines, from_lang, to_lang)
        rebuilt = [
            Cue(index=cue.index, start=cue.start, end=cue.end, lines=text.split("\n"))
            for cue, text in zip(cues, translated)
        ]
        return serialize_srt(rebuilt)

    async def _translated_track(self, request: DualRequest) -> Optional[Tuple[str, str]]:
        source = await self.fetch_single(request.imdb_id, request.lang1, request.season, request.episode)
        if not source:
            log.info("No %s subtitle to translate for %s", request.lang1, request.imdb_id)
            return None

        async def produce() -> Optional[str]:
            return await self.translate_subtitle(source, request.lang1, request.lang2)

        key = subtitle_cache_key(
            request.imdb_id, f"{request.lang2}_from_{request.lang1}", request.season, request.episode
        )
        translated = await get_or_set(self.cache, key, produce, ttl=self.settings.cache_ttl)
        if not translated:
            return None
        return source, translated

    async def _build(self, request: DualRequest) -> Optional[str]:
        mode = AlignMode.parse(self.settings.align_mode)
        guard = self.settings.guard_ms

        if not request.translate:
            texts = await self.fetch_pair(request)
            if texts is not None:
                policy = self.policy_for(request.layout)
                return merge_subtitle_texts(texts[0], texts[1], request.offset_ms, policy, mode, guard)
            if not (self.settings.auto_translate_missing and self.can_translate):
                return None
            log.info("No %s/%s pair for %s; falling back to machine translation", request.lang1, request.lang2, request.imdb_id)

        pair = await self._translated_track(request)
        if pair is None:
            return None
        # the translated track shares the source timing, no offset to apply
        policy = self.policy_for(Layout.TRANSLATED)
        return merge_subtitle_texts(pair[0], pair[1], 0, policy, mode, guard)

    async def build_dual(self, request: DualRequest) -> Optional[str]:
        """Merged dual-language SRT for ``request`` or ``None`` when unavailable."""
        return await get_or_set(
            self.cache,
            request.cache_key,
            lambda: self._build(request),
            ttl=self.settings.merged_cache_ttl,
        )


def build_service(config: Settings = default_settings) -> DualSubtitleService:
    provider = OpenSubtitlesClient(
        config.provider_keys,
        base_url=config.opensubtitles_base_url,
        user_agent=config.opensubtitles_user_agent,
        timeout=config.request_timeout,
        download_timeout=config.download_timeout,
    )
    translator = TranslationClient(
        config.libretranslate_url,
        api_keys=config.translation_keys,
        batch_size=config.translate_batch_size,
        batch_delay=config.translate_batch_delay,
        max_retries=config.translate_max_retries,
        backoff_base=config.translate_backoff_base,
        backoff_max=config.translate_backoff_max,
        timeout=config.translate_timeout,
    )
    return DualSubtitleService(provider, translator, config=config)
