from __future__ import annotations

import logging
import time
import uuid
from typing import Dict, List, Optional
from urllib.parse import unquote

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response
from prometheus_client import CONTENT_TYPE_LATEST, Counter, Histogram, generate_latest

from .formatter import Layout
from .logger import REQUEST_ID, setup_logging
from .metadata import parse_stremio_id
from .service import DualRequest, DualSubtitleService, build_service
from .settings import settings

# ---------------------------------------------------------------------
# Logging setup
# ---------------------------------------------------------------------
setup_logging()
log = logging.getLogger("dual_subtitles.app")

# ---------------------------------------------------------------------
# App + middleware
# ---------------------------------------------------------------------
app = FastAPI(title="Dual Subtitles for Stremio")

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.middleware("http")
async def request_id_middleware(request: Request, call_next):
    incoming = request.headers.get("x-request-id")
    rid = incoming or uuid.uuid4().hex[:16]
    token = REQUEST_ID.set(rid)
    try:
        response = await call_next(request)
    finally:
        REQUEST_ID.reset(token)
    response.headers["X-Request-ID"] = rid
    return response


SERVICE: DualSubtitleService = build_service(settings)


def get_service() -> DualSubtitleService:
    return SERVICE


# ---------------------------------------------------------------------
# Manifest
# ---------------------------------------------------------------------
MANIFEST = {
    "id": "org.dualsubtitles.stremio",
    "version": settings.addon_version,
    "name": "Dual Subtitles",
    "description": "Learn languages with dual subtitles: two subtitle languages shown at once",
    "catalogs": [],
    "resources": ["subtitles"],
    "types": ["movie", "series"],
    "idPrefixes": ["tt"],
    "behaviorHints": {"configurable": False, "configurationRequired": False},
}

LANGUAGE_LABELS: Dict[str, str] = {
    "es": "Español",
    "fr": "Français",
    "en": "English",
    "de": "Deutsch",
    "it": "Italiano",
    "pt": "Português",
    "bg": "Български",
}


@app.get("/manifest.json")
async def manifest() -> JSONResponse:
    return JSONResponse(MANIFEST)


@app.get("/")
async def index() -> JSONResponse:
    return JSONResponse({"status": "ok", "manifest": "/manifest.json", "name": MANIFEST.get("name")})


# ---------------------------------------------------------------------
# Health and metrics
# ---------------------------------------------------------------------
REQ_LATENCY = Histogram("dualsubs_request_seconds", "Request latency seconds", ["route"])
OFFER_COUNT = Counter("dualsubs_offers_total", "Subtitle offer requests", ["media_type"])
MERGE_COUNT = Counter("dualsubs_merge_total", "Merged subtitle requests", ["outcome"])


@app.get("/healthz")
async def healthz() -> JSONResponse:
    return JSONResponse({"status": "ok", "version": MANIFEST.get("version")})


@app.get("/metrics")
async def metrics() -> Response:
    return Response(content=generate_latest(), media_type=CONTENT_TYPE_LATEST)


# ---------------------------------------------------------------------
# Subtitle offers
# ---------------------------------------------------------------------
def _public_base(request: Request) -> str:
    if settings.public_url:
        return settings.public_url.rstrip("/")
    base = str(request.base_url).rstrip("/")
    if request.headers.get("x-forwarded-proto") == "https" and base.startswith("http://"):
        base = "https://" + base[len("http://"):]
    return base


def _pair_label(lang1: str, lang2: str) -> str:
    return f"Dual {LANGUAGE_LABELS.get(lang1, lang1)} + {LANGUAGE_LABELS.get(lang2, lang2)}"


def _build_offers(request: Request, item_id: str) -> List[dict]:
    tokens = parse_stremio_id(item_id)
    if not tokens.is_imdb:
        log.info("Ignoring non-IMDb id %s", item_id)
        return []
    season = tokens.season or 0
    episode = tokens.episode or 0
    base = _public_base(request)
    offers = []
    for lang1, lang2 in settings.pairs:
        offers.append(
            {
                "id": f"dual-{tokens.base}-{lang1}-{lang2}",
                "url": f"{base}/subtitle/{tokens.base}/{season}/{episode}/{lang1}/{lang2}.srt",
                "lang": _pair_label(lang1, lang2),
            }
        )
    return offers


@app.get("/subtitles/{media_type}/{item_id}.json")
async def subtitles(media_type: str, item_id: str, request: Request) -> JSONResponse:
    OFFER_COUNT.labels(media_type=media_type).inc()
    offers = _build_offers(request, unquote(item_id))
    log.info("Returning %d dual subtitle offers for %s %s", len(offers), media_type, item_id)
    return JSONResponse({"subtitles": offers})


@app.get("/subtitles/{media_type}/{item_id}/{extra}.json")
async def subtitles_with_extra(media_type: str, item_id: str, extra: str, request: Request) -> JSONResponse:
    return await subtitles(media_type, item_id, request)


# ---------------------------------------------------------------------
# Merged subtitle download
# ---------------------------------------------------------------------
@app.get("/subtitle/{imdb_id}/{season}/{episode}/{lang1}/{lang2}.srt")
async def dual_subtitle(
    imdb_id: str,
    season: int,
    episode: int,
    lang1: str,
    lang2: str,
    offset: int = Query(0, description="Secondary track shift in milliseconds"),
    layout: Optional[str] = Query(None),
    translate: bool = Query(False),
) -> Response:
    started = time.perf_counter()
    lang1, lang2 = lang1.lower(), lang2.lower()
    if lang1 == lang2:
        raise HTTPException(status_code=400, detail="Languages must differ")

    request = DualRequest(
        imdb_id=imdb_id,
        lang1=lang1,
        lang2=lang2,
        season=season or None,
        episode=episode or None,
        offset_ms=offset,
        layout=Layout.parse(layout) if layout else None,
        translate=translate,
    )
    log.info(
        "Dual subtitle request %s S%sE%s %s+%s offset=%dms layout=%s translate=%s",
        imdb_id,
        season,
        episode,
        lang1,
        lang2,
        offset,
        layout or "default",
        translate,
    )
    body = await get_service().build_dual(request)
    REQ_LATENCY.labels(route="subtitle").observe(time.perf_counter() - started)
    if not body:
        MERGE_COUNT.labels(outcome="missing").inc()
        raise HTTPException(status_code=404, detail="No dual subtitle available")

    MERGE_COUNT.labels(outcome="ok").inc()
    filename = f"{imdb_id}_{lang1}_{lang2}.srt"
    return Response(
        content=body.encode("utf-8"),
        media_type="application/x-subrip; charset=utf-8",
        headers={"Content-Disposition": f'inline; filename="{filename}"'},
    )
