from __future__ import annotations

import logging
from datetime import datetime
from typing import Dict, List, Optional, Sequence

import requests

from ..matching import CandidateFile, filter_episode
from ..srt import decode_subtitle_bytes
from .credentials import CredentialPool, CredentialsExhausted

log = logging.getLogger("dual_subtitles.sources.opensubtitles")

API_BASE = "https://api.opensubtitles.com/api/v1"
DEFAULT_USER_AGENT = "DualSubtitlesStremioAddon v1.0"
RETRYABLE_STATUS = {402, 429}


class ProviderError(RuntimeError):
    """Transport or authentication failure talking to the subtitle provider."""


def _numeric_imdb_id(raw_id: str) -> Optional[str]:
    if not raw_id:
        return None
    token = raw_id.lower()
    if token.startswith("tt"):
        token = token[2:]
    token = token.lstrip("0")
    if not token.isdigit():
        return None
    return token


def _is_quota_error(exc: Exception) -> bool:
    """Quota or transient server responses worth retrying with another key."""
    if not isinstance(exc, requests.HTTPError) or exc.response is None:
        return False
    status = exc.response.status_code
    if status in RETRYABLE_STATUS or 500 <= status < 600:
        return True
    if status == 403:
        try:
            message = str((exc.response.json() or {}).get("message") or "")
        except ValueError:
            message = exc.response.text or ""
        return "quota" in message.lower()
    return False


def _parse_date(value: object) -> Optional[datetime]:
    if not value:
        return None
    text = str(value).strip().replace("Z", "+00:00")
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        return None


def _to_int(value: object) -> Optional[int]:
    try:
        return int(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return None


def _to_float(value: object) -> float:
    try:
        return float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError):
        return 0.0


def candidates_from_payload(payload: Dict, language: str) -> List[CandidateFile]:
    candidates: List[CandidateFile] = []
    for item in payload.get("data") or []:
        attrs = item.get("attributes") or {}
        files = attrs.get("files") or []
        if not files:
            continue
        file_entry = files[0]
        file_id = file_entry.get("file_id")
        if not file_id:
            continue
        details = attrs.get("feature_details") or {}
        uploader = attrs.get("uploader") or {}
        fps = _to_float(attrs.get("fps"))
        candidates.append(
            CandidateFile(
                file_id=str(file_id),
                file_name=file_entry.get("file_name") or "subtitle.srt",
                language=attrs.get("language") or language,
                downloads=_to_int(attrs.get("download_count")) or 0,
                rating=_to_float(attrs.get("ratings")),
                uploader_rank=str(uploader.get("rank") or ""),
                uploaded_at=_parse_date(attrs.get("upload_date")),
                season=_to_int(details.get("season_number")),
                episode=_to_int(details.get("episode_number")),
                release=str(attrs.get("release") or ""),
                fps=fps or None,
                hearing_impaired=bool(attrs.get("hearing_impaired")),
            )
        )
    return candidates


class OpenSubtitlesClient:
    """OpenSubtitles REST client with API key rotation on quota errors.

    ``search`` and ``download`` return empty results for "not found" and raise
    :class:`ProviderError` for transport or authentication failures.
    """

    def __init__(
        self,
        api_keys: Sequence[str],
        base_url: str = API_BASE,
        user_agent: str = DEFAULT_USER_AGENT,
        timeout: float = 10,
        download_timeout: float = 15,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.user_agent = user_agent
        self.timeout = timeout
        self.download_timeout = download_timeout
        self.keys = CredentialPool(api_keys)
        if self.keys:
            log.info("Initialized OpenSubtitles client with %d API key(s) for rotation", len(self.keys))
        else:
            log.error("No OpenSubtitles API keys configured; set OPENSUBTITLES_API_KEYS")

    def is_configured(self) -> bool:
        return bool(self.keys)

    def _headers(self, api_key: str) -> Dict[str, str]:
        return {
            "Api-Key": api_key,
            "User-Agent": self.user_agent,
            "Content-Type": "application/json",
            "Accept": "application/json",
        }

    def _run(self, operation_name: str, operation):
        try:
            return self.keys.run(operation_name, operation, _is_quota_error)
        except CredentialsExhausted as exc:
            raise ProviderError(str(exc)) from exc
        except requests.HTTPError as exc:
            status = exc.response.status_code if exc.response is not None else "?"
            raise ProviderError(f"OpenSubtitles {operation_name} failed with HTTP {status}") from exc
        except requests.RequestException as exc:
            raise ProviderError(f"OpenSubtitles {operation_name} request failed: {exc}") from exc

    def search(
        self,
        imdb_id: str,
        language: str,
        season: Optional[int] = None,
        episode: Optional[int] = None,
    ) -> List[CandidateFile]:
        """Search subtitles for an IMDb title in one language."""
        if not self.is_configured():
            log.debug("OpenSubtitles API key not configured; skipping search")
            return []
        imdb_numeric = _numeric_imdb_id(imdb_id)
        if not imdb_numeric:
            log.debug("Unable to derive numeric IMDb ID from %s", imdb_id)
            return []

        params: Dict[str, object] = {
            "imdb_id": imdb_numeric,
            "languages": language,
            "order_by": "download_count",
            "sort_direction": "desc",
        }
        if season and episode:
            params["season_number"] = int(season)
            params["episode_number"] = int(episode)
            params["type"] = "episode"

        def perform(api_key: str) -> Dict:
            log.info("Searching subtitles for %s (%s) using key #%d", imdb_id, language, self.keys.position)
            response = requests.get(
                f"{self.base_url}/subtitles",
                headers=self._headers(api_key),
                params=params,
                timeout=self.timeout,
            )
            if response.status_code == 404:
                return {}
            response.raise_for_status()
            return response.json() or {}

        payload = self._run("search", perform)
        candidates = candidates_from_payload(payload if isinstance(payload, dict) else {}, language)
        kept = filter_episode(candidates, season, episode)
        log.info(
            "OpenSubtitles search ok imdb=%s lang=%s items=%d kept=%d",
            imdb_id,
            language,
            len(candidates),
            len(kept),
        )
        return kept

    def download(self, file_id: str) -> str:
        """Download a subtitle file and return its decoded text."""
        if not self.is_configured():
            return ""
        try:
            numeric_id = int(str(file_id))
        except ValueError:
            log.warning("OpenSubtitles download skipped: non-numeric file id %r", file_id)
            return ""

        def perform(api_key: str) -> Optional[str]:
            log.info("Downloading subtitle %s using key #%d", file_id, self.keys.position)
            response = requests.post(
                f"{self.base_url}/download",
                headers=self._headers(api_key),
                json={"file_id": numeric_id},
                timeout=self.timeout,
            )
            if response.status_code == 404:
                return None
            response.raise_for_status()
            return (response.json() or {}).get("link")

        link = self._run("download", perform)
        if not link:
            log.warning("OpenSubtitles download response missing link for %s", file_id)
            return ""
        try:
            file_response = requests.get(link, timeout=self.download_timeout)
            if file_response.status_code == 404:
                return ""
            file_response.raise_for_status()
        except requests.RequestException as exc:
            raise ProviderError(f"OpenSubtitles file fetch failed: {exc}") from exc
        return decode_subtitle_bytes(file_response.content)
