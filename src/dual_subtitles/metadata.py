from __future__ import annotations

import re
from dataclasses import dataclass
from typing import Optional
from urllib.parse import unquote

IMDB_RE = re.compile(r"^tt\d+$")


@dataclass
class StremioID:
    base: str
    season: Optional[int]
    episode: Optional[int]

    @property
    def is_imdb(self) -> bool:
        return bool(IMDB_RE.match(self.base))

    @property
    def is_episode(self) -> bool:
        return self.season is not None and self.episode is not None


def _to_int(value: str) -> Optional[int]:
    value = (value or "").strip()
    return int(value) if value.isdigit() else None


def parse_stremio_id(raw_id: str) -> StremioID:
    """Parse Stremio IDs that may be URL-encoded once or twice.

    Examples of incoming IDs:
    - tt0369179                   (movie)
    - tt0369179:1:2               (series S01E02)
    - tt0369179%3A1%3A2           (encoded once)
    - tt0369179%253A1%253A2       (encoded twice)
    """
    s = raw_id or ""
    for _ in range(2):
        decoded = unquote(s)
        if decoded == s:
            break
        s = decoded

    parts = s.split(":")
    base = parts[0] if parts else s
    season = _to_int(parts[1]) if len(parts) > 1 else None
    episode = _to_int(parts[2]) if len(parts) > 2 else None
    if season is None or episode is None:
        season = episode = None
    return StremioID(base=base, season=season, episode=episode)
