import asyncio
import json

import httpx
import pytest

from dual_subtitles.formatter import FormatPolicy, Layout
from dual_subtitles.matching import CandidateFile
from dual_subtitles.service import DualRequest, DualSubtitleService, merge_subtitle_texts
from dual_subtitles.settings import Settings
from dual_subtitles.sources.opensubtitles import ProviderError
from dual_subtitles.srt import parse_srt
from dual_subtitles.translation import TranslationClient


HELLO = "1\n00:00:01,000 --> 00:00:02,000\nHello\n"
BONJOUR = "1\n00:00:01,100 --> 00:00:01,900\nBonjour\n"


class FakeProvider:
    def __init__(self, candidates=None, files=None, fail_search=False):
        self.candidates = candidates or {}
        self.files = files or {}
        self.fail_search = fail_search
        self.searches = []
        self.downloads = []

    def search(self, imdb_id, language, season=None, episode=None):
        self.searches.append((imdb_id, language, season, episode))
        if self.fail_search:
            raise ProviderError("boom")
        return list(self.candidates.get(language, []))

    def download(self, file_id):
        self.downloads.append(file_id)
        return self.files.get(file_id, "")


def _candidate(file_id, language, name="Movie.2020.1080p.BluRay.x264.srt"):
    return CandidateFile(file_id=file_id, file_name=name, language=language)


def _settings(**overrides) -> Settings:
    values = {"cache_ttl": 60, "merged_cache_ttl": 60, "auto_translate_missing": True}
    values.update(overrides)
    return Settings(**values)


def _translator() -> TranslationClient:
    def handler(request: httpx.Request) -> httpx.Response:
        text = json.loads(request.content)["q"]
        return httpx.Response(200, json={"translatedText": f"[{text}]"})

    return TranslationClient(
        "https://translate.test", batch_delay=0, backoff_base=0, transport=httpx.MockTransport(handler)
    )


def test_hello_bonjour_merge():
    out = merge_subtitle_texts(HELLO, BONJOUR)
    cues = parse_srt(out)
    assert len(cues) == 1
    assert (cues[0].start, cues[0].end) == (1000, 2000)
    assert cues[0].lines == ["Hello", "<i>Bonjour</i>"]


def test_merge_with_empty_master_is_none():
    assert merge_subtitle_texts("", BONJOUR) is None
    assert merge_subtitle_texts(HELLO, "garbage") is None


def test_merge_keeps_orphans_and_applies_offset():
    secondary = BONJOUR + "\n2\n00:00:10,000 --> 00:00:11,000\nAu revoir\n"
    out = merge_subtitle_texts(HELLO, secondary, offset_ms=500, policy=FormatPolicy(italic_secondary=False))
    cues = parse_srt(out)
    assert [c.lines for c in cues] == [["Hello", "Bonjour"], ["Au revoir"]]
    assert cues[1].start == 10_500


def test_build_dual_pairs_real_files():
    provider = FakeProvider(
        candidates={"en": [_candidate("1", "en")], "fr": [_candidate("2", "fr")]},
        files={"1": HELLO, "2": BONJOUR},
    )
    service = DualSubtitleService(provider, config=_settings())
    request = DualRequest(imdb_id="tt0000001", lang1="en", lang2="fr")
    out = asyncio.run(service.build_dual(request))
    assert "Hello\n<i>Bonjour</i>" in out
    assert sorted(provider.downloads) == ["1", "2"]

    # second call is served from the cache
    asyncio.run(service.build_dual(request))
    assert len(provider.searches) == 2


def test_fetch_pair_missing_language_is_none():
    provider = FakeProvider(candidates={"en": [_candidate("1", "en")]}, files={"1": HELLO})
    service = DualSubtitleService(provider, config=_settings())
    assert asyncio.run(service.fetch_pair(DualRequest("tt1", "en", "fr"))) is None


def test_provider_errors_are_treated_as_missing():
    service = DualSubtitleService(FakeProvider(fail_search=True), config=_settings(auto_translate_missing=False))
    assert asyncio.run(service.build_dual(DualRequest("tt1", "en", "fr"))) is None


def test_auto_translate_when_second_language_missing():
    provider = FakeProvider(candidates={"en": [_candidate("1", "en")]}, files={"1": HELLO})
    service = DualSubtitleService(provider, translator=_translator(), config=_settings())
    out = asyncio.run(service.build_dual(DualRequest("tt1", "en", "fr", season=1, episode=2)))
    cues = parse_srt(out)
    assert cues[0].lines == ["Hello", "<i>[Hello]</i>"]
    assert service.cache.get("tt1:fr_from_en:s1e2") is not None


def test_no_fallback_without_translator():
    provider = FakeProvider(candidates={"en": [_candidate("1", "en")]}, files={"1": HELLO})
    service = DualSubtitleService(provider, config=_settings())
    assert asyncio.run(service.build_dual(DualRequest("tt1", "en", "fr"))) is None


def test_translate_subtitle_keeps_timing_and_count():
    source = HELLO + "\n2\n00:00:03,000 --> 00:00:04,000\n<i>World</i>\n"
    service = DualSubtitleService(FakeProvider(), translator=_translator(), config=_settings())
    out = asyncio.run(service.translate_subtitle(source, "en", "es"))
    cues = parse_srt(out)
    assert [(c.start, c.end) for c in cues] == [(1000, 2000), (3000, 4000)]
    assert [c.text for c in cues] == ["[Hello]", "[World]"]


@pytest.mark.parametrize("layout", [Layout.STACKED, Layout.SIDE_BY_SIDE])
def test_policy_for_uses_settings(layout):
    service = DualSubtitleService(FakeProvider(), config=_settings(max_line_width=30, secondary_color="#00ff00"))
    policy = service.policy_for(layout)
    assert policy.layout is layout
    assert policy.max_line_width == 30
    assert policy.secondary_color == "#00ff00"


def test_offset_that_drops_every_secondary_is_none():
    assert merge_subtitle_texts(HELLO, BONJOUR, offset_ms=-5000) is None


def test_build_dual_goes_through_fetch_pair(monkeypatch):
    service = DualSubtitleService(FakeProvider(), config=_settings(auto_translate_missing=False))
    calls = []

    async def fake_fetch_pair(request):
        calls.append(request)
        return HELLO, BONJOUR

    monkeypatch.setattr(service, "fetch_pair", fake_fetch_pair)
    request = DualRequest("tt1", "en", "fr")
    out = asyncio.run(service.build_dual(request))
    assert calls == [request]
    assert "Hello\n<i>Bonjour</i>" in out


def test_no_fallback_when_first_language_missing():
    provider = FakeProvider(candidates={"fr": [_candidate("2", "fr")]}, files={"2": BONJOUR})
    service = DualSubtitleService(provider, translator=_translator(), config=_settings())
    assert asyncio.run(service.build_dual(DualRequest("tt1", "en", "fr"))) is None
    assert provider.downloads == []
