from __future__ import annotations

import pytest
import requests

from dual_subtitles.sources import opensubtitles
from dual_subtitles.sources.opensubtitles import OpenSubtitlesClient, ProviderError


pytestmark = pytest.mark.provider


class DummyResponse:
    def __init__(
        self,
        *,
        status_code: int = 200,
        json_data: dict | None = None,
        text: str = "",
        content: bytes = b"",
    ) -> None:
        self.status_code = status_code
        self._json_data = json_data or {}
        self.text = text
        self.content = content

    def raise_for_status(self) -> None:
        if self.status_code >= 400:
            raise requests.HTTPError(f"{self.status_code} error", response=self)

    def json(self) -> dict:
        return self._json_data


SEARCH_PAYLOAD = {
    "data": [
        {
            "attributes": {
                "language": "es",
                "download_count": 1200,
                "ratings": 8.5,
                "uploader": {"rank": "trusted"},
                "upload_date": "2023-01-05T10:00:00Z",
                "release": "Show.S01E02.1080p.WEB-DL",
                "fps": 23.976,
                "hearing_impaired": False,
                "feature_details": {"season_number": 1, "episode_number": 2},
                "files": [{"file_id": 555, "file_name": "Show.S01E02.1080p.WEB-DL.srt"}],
            }
        },
        {
            "attributes": {
                "language": "es",
                "download_count": 10,
                "release": "Show.S01E03.720p.HDTV",
                "feature_details": {"season_number": 1, "episode_number": 3},
                "files": [{"file_id": 556, "file_name": "Show.S01E03.srt"}],
            }
        },
        {"attributes": {"files": []}},
    ]
}


def _client(keys=("k1",)) -> OpenSubtitlesClient:
    return OpenSubtitlesClient(list(keys), base_url="https://api.test/v1", timeout=1)


def test_search_maps_payload_and_filters_episode(monkeypatch) -> None:
    seen: dict = {}

    def fake_get(url, *, headers=None, params=None, timeout=None):  # noqa: ANN001, ANN202
        seen["url"] = url
        seen["headers"] = headers
        seen["params"] = params
        return DummyResponse(json_data=SEARCH_PAYLOAD)

    monkeypatch.setattr(opensubtitles.requests, "get", fake_get)

    results = _client().search("tt0123456", "es", season=1, episode=2)
    assert seen["url"] == "https://api.test/v1/subtitles"
    assert seen["headers"]["Api-Key"] == "k1"
    assert seen["params"]["imdb_id"] == "123456"
    assert seen["params"]["season_number"] == 1
    assert len(results) == 1
    candidate = results[0]
    assert candidate.file_id == "555"
    assert candidate.downloads == 1200
    assert candidate.rating == 8.5
    assert candidate.uploader_rank == "trusted"
    assert candidate.uploaded_at is not None and candidate.uploaded_at.year == 2023
    assert candidate.fps == pytest.approx(23.976)


def test_search_not_found_returns_empty(monkeypatch) -> None:
    monkeypatch.setattr(opensubtitles.requests, "get", lambda *a, **k: DummyResponse(status_code=404))
    assert _client().search("tt0123456", "fr") == []


def test_search_without_keys_or_bad_id_skips_network(monkeypatch) -> None:
    def boom(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        raise AssertionError("network should not be used")

    monkeypatch.setattr(opensubtitles.requests, "get", boom)
    assert OpenSubtitlesClient([]).search("tt0123456", "es") == []
    assert _client().search("not-imdb", "es") == []


def test_quota_error_rotates_to_next_key(monkeypatch) -> None:
    used: list = []

    def fake_get(url, *, headers=None, params=None, timeout=None):  # noqa: ANN001, ANN202
        used.append(headers["Api-Key"])
        if headers["Api-Key"] == "k1":
            return DummyResponse(status_code=429, text="Too many requests")
        return DummyResponse(json_data={"data": []})

    monkeypatch.setattr(opensubtitles.requests, "get", fake_get)
    client = _client(keys=("k1", "k2"))
    assert client.search("tt0123456", "es") == []
    assert used == ["k1", "k2"]
    assert client.keys.current == "k2"


def test_forbidden_quota_message_rotates(monkeypatch) -> None:
    used: list = []

    def fake_get(url, *, headers=None, params=None, timeout=None):  # noqa: ANN001, ANN202
        used.append(headers["Api-Key"])
        return DummyResponse(status_code=403, json_data={"message": "Daily quota exceeded"})

    monkeypatch.setattr(opensubtitles.requests, "get", fake_get)
    with pytest.raises(ProviderError):
        _client(keys=("k1", "k2")).search("tt0123456", "es")
    assert used == ["k1", "k2"]


def test_auth_failure_raises_without_rotation(monkeypatch) -> None:
    used: list = []

    def fake_get(url, *, headers=None, params=None, timeout=None):  # noqa: ANN001, ANN202
        used.append(headers["Api-Key"])
        return DummyResponse(status_code=401, json_data={"message": "Invalid API key"})

    monkeypatch.setattr(opensubtitles.requests, "get", fake_get)
    with pytest.raises(ProviderError):
        _client(keys=("k1", "k2")).search("tt0123456", "es")
    assert used == ["k1"]


def test_transport_error_raises_provider_error(monkeypatch) -> None:
    def fake_get(*args, **kwargs):  # noqa: ANN002, ANN003, ANN202
        raise requests.ConnectionError("connection refused")

    monkeypatch.setattr(opensubtitles.requests, "get", fake_get)
    with pytest.raises(ProviderError):
        _client().search("tt0123456", "es")


def test_download_fetches_link_and_decodes(monkeypatch) -> None:
    posted: list = []

    def fake_post(url, *, headers=None, json=None, timeout=None):  # noqa: ANN001, ANN202
        posted.append((url, json))
        return DummyResponse(json_data={"link": "https://files.test/sub.srt"})

    def fake_get(url, *, timeout=None):  # noqa: ANN001, ANN202
        assert url == "https://files.test/sub.srt"
        return DummyResponse(content="1\n00:00:01,000 --> 00:00:02,000\nHola\n".encode("utf-8"))

    monkeypatch.setattr(opensubtitles.requests, "post", fake_post)
    monkeypatch.setattr(opensubtitles.requests, "get", fake_get)

    text = _client().download("555")
    assert posted == [("https://api.test/v1/download", {"file_id": 555})]
    assert "Hola" in text


def test_download_not_found_returns_empty(monkeypatch) -> None:
    monkeypatch.setattr(opensubtitles.requests, "post", lambda *a, **k: DummyResponse(status_code=404))
    assert _client().download("555") == ""
