"""Line-by-line machine translation through a LibreTranslate compatible API."""

from __future__ import annotations

import asyncio
import logging
from typing import List, Optional, Sequence

import httpx

from .sources.credentials import CredentialPool

log = logging.getLogger("dual_subtitles.translation")

QUOTA_MARKERS = ("quota", "too many requests", "rate limit")


class TranslationError(RuntimeError):
    pass


class TranslationThrottled(TranslationError):
    """The translation backend asked us to slow down."""


def _is_quota_message(text: str) -> bool:
    lowered = (text or "").lower()
    return any(marker in lowered for marker in QUOTA_MARKERS)


class TranslationClient:
    def __init__(
        self,
        url: str,
        api_keys: Sequence[str] = (),
        batch_size: int = 10,
        batch_delay: float = 0.5,
        max_retries: int = 3,
        backoff_base: float = 1.0,
        backoff_max: float = 8.0,
        timeout: float = 120.0,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ) -> None:
        self.url = (url or "").rstrip("/")
        self.keys = CredentialPool(api_keys)
        self.batch_size = max(1, int(batch_size))
        self.batch_delay = max(0.0, float(batch_delay))
        self.max_retries = max(0, int(max_retries))
        self.backoff_base = max(0.0, float(backoff_base))
        self.backoff_max = max(0.0, float(backoff_max))
        self.timeout = timeout
        self._transport = transport

    def is_configured(self) -> bool:
        return bool(self.url)

    def _backoff(self, attempt: int) -> float:
        return min(self.backoff_max, self.backoff_base * (2 ** attempt))

    async def translate_text(self, client: httpx.AsyncClient, text: str, from_lang: str, to_lang: str) -> str:
        """Translate one piece of text.

        Raises :class:`TranslationThrottled` on 429 or a quota message and
        :class:`TranslationError` on anything else unexpected.
        """
        payload = {"q": text, "source": from_lang, "target": to_lang, "format": "text"}
        api_key = self.keys.current
        if api_key:
            payload["api_key"] = api_key
        try:
            response = await client.post(f"{self.url}/translate", json=payload)
        except httpx.HTTPError as exc:
            raise TranslationError(f"Translation request failed: {exc}") from exc

        if response.status_code == 429:
            raise TranslationThrottled("HTTP 429 from translation backend")
        if response.status_code >= 400:
            body = response.text
            if _is_quota_message(body):
                # next attempt goes out with the next key, if there is one
                self.keys.rotate()
                raise TranslationThrottled(f"Quota exceeded: HTTP {response.status_code}")
            raise TranslationError(f"Translation failed with HTTP {response.status_code}")

        try:
            data = response.json()
        except ValueError as exc:
            raise TranslationError("Translation backend returned invalid JSON") from exc
        translated = data.get("translatedText") if isinstance(data, dict) else None
        if not isinstance(translated, str):
            raise TranslationError("Translation response missing translatedText")
        return translated

    async def _translate_line(self, client: httpx.AsyncClient, line: str, from_lang: str, to_lang: str) -> str:
        if not line.strip():
            return line
        attempt = 0
        while True:
            try:
                return await self.translate_text(client, line, from_lang, to_lang)
            except TranslationThrottled as exc:
                if attempt >= self.max_retries:
                    log.warning("Translation throttled after %d retries; keeping original line (%s)", attempt, exc)
                    return line
                delay = self._backoff(attempt)
                attempt += 1
                log.info("Translation throttled; retry %d/%d in %.1fs", attempt, self.max_retries, delay)
                await asyncio.sleep(delay)
            except TranslationError as exc:
                log.warning("Translation failed; keeping original line: %s", exc)
                return line

    async def translate_lines(self, lines: Sequence[str], from_lang: str, to_lang: str) -> List[str]:
        """Translate ``lines`` keeping their count and order.

        Lines that cannot be translated come back unchanged.
        """
        items = list(lines)
        if not items:
            return []
        if not self.is_configured():
            log.warning("Translation URL not configured; returning %d lines untranslated", len(items))
            return items

        results: List[str] = []
        total_batches = (len(items) + self.batch_size - 1) // self.batch_size
        async with httpx.AsyncClient(timeout=self.timeout, transport=self._transport) as client:
            for batch_no, offset in enumerate(range(0, len(items), self.batch_size), start=1):
                batch = items[offset : offset + self.batch_size]
                translated = await asyncio.gather(
                    *(self._translate_line(client, line, from_lang, to_lang) for line in batch)
                )
                results.extend(translated)
                log.debug("Translated batch %d/%d (%d lines)", batch_no, total_batches, len(batch))
                if batch_no < total_batches and self.batch_delay:
                    await asyncio.sleep(self.batch_delay)
        log.info("Translated %d lines %s -> %s", len(results), from_lang, to_lang)
        return results


__all__ = ["TranslationClient", "TranslationError", "TranslationThrottled"]
