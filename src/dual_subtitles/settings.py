from typing import List, Optional, Tuple

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Dual Subtitles application settings.

    All settings can be overridden via environment variables or a .env file.
    Environment variables use uppercase names (e.g., GUARD_MS=80).

    Alignment modes:
        master = first language is the timing backbone (default)
        union  = every boundary of both tracks splits the timeline

    Layouts:
        stacked      = first language on top, second below (styled)
        side_by_side = two monospaced-style columns (best effort)
        translated   = like stacked, second track always styled
    """

    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    addon_version: str = "1.0.0"
    public_url: str = ""
    request_timeout: int = 10
    download_timeout: int = 15
    testing: bool = False
    log_level: str = "INFO"
    json_logs: bool = False

    # OpenSubtitles REST API
    opensubtitles_api_key: str = ""
    opensubtitles_api_keys: str = ""  # comma separated, rotated on quota errors
    opensubtitles_base_url: str = "https://api.opensubtitles.com/api/v1"
    opensubtitles_user_agent: str = "DualSubtitlesStremioAddon v1.0"

    # Result caching (seconds)
    cache_ttl: int = 86400
    merged_cache_ttl: int = 3600
    cache_max_size: int = 512

    # Machine translation (LibreTranslate compatible endpoint)
    libretranslate_url: str = ""
    libretranslate_api_keys: str = ""
    translate_batch_size: int = 10
    translate_batch_delay: float = 0.5
    translate_max_retries: int = 3
    translate_backoff_base: float = 1.0
    translate_backoff_max: float = 8.0
    translate_timeout: float = 120.0
    auto_translate_missing: bool = True

    # Alignment / formatting
    guard_ms: int = 50
    align_mode: str = "master"
    default_layout: str = "stacked"
    max_line_width: int = 45
    column_width: int = 40
    italic_secondary: bool = True
    secondary_color: Optional[str] = None
    candidate_top_n: int = 10

    # Offered pairs, e.g. "es+fr,es+en,fr+en"
    language_pairs: str = "es+fr,es+en,fr+en"

    @property
    def provider_keys(self) -> List[str]:
        raw = self.opensubtitles_api_keys or self.opensubtitles_api_key or ""
        return [key.strip() for key in raw.split(",") if key.strip()]

    @property
    def translation_keys(self) -> List[str]:
        return [key.strip() for key in (self.libretranslate_api_keys or "").split(",") if key.strip()]

    @property
    def pairs(self) -> List[Tuple[str, str]]:
        result: List[Tuple[str, str]] = []
        for chunk in (self.language_pairs or "").split(","):
            if "+" not in chunk:
                continue
            first, second = (part.strip().lower() for part in chunk.split("+", 1))
            if first and second and first != second:
                result.append((first, second))
        return result


settings = Settings()
