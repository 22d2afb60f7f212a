"""
Universal Manhwa API
API unifiée: plusieurs sources de manhwa avec repli automatique, plus relais flux/images
"""

import logging
from typing import List, Optional, Dict, Any
from contextlib import asynccontextmanager
from urllib.parse import urlparse

import httpx
from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response, StreamingResponse
from pydantic import BaseModel
import uvicorn

from config import (
    BROWSER, CACHE_TTLS, DEBUG, LOG_LEVEL, PORT, PROVIDER_PRIORITIES, PROVIDERS_CONFIG, RATE_LIMIT,
    RETRY, TIMEOUTS,
)
from scrapers import (
    AntiBlockTransport, BrowserService, FallbackOrchestrator, HianimeScraper, HttpStatusError,
    ManhuaPlusScraper, ManhuaUSScraper, MangaDexScraper, NetworkError, ProviderDescriptor,
    ProxyConfig, ResultPage, ScraperError, TTLCache, is_playlist, relay_headers, rewrite_playlist,
)

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger(__name__)

# ==================== MODÈLES PYDANTIC ====================

class ProviderModel(BaseModel):
    name: str
    priority: int
    operations: List[str] = []

class HealthResponse(BaseModel):
    status: str
    providers: int
    browser: bool
    cache: Dict[str, int] = {}
    version: str

# ==================== INSTANCES ====================

proxy = ProxyConfig.from_env()
cache = TTLCache()
browser = BrowserService(
    headless=BROWSER["headless"],
    fast_timeout=TIMEOUTS["scrape_fast"],
    dynamic_timeout=TIMEOUTS["scrape_dynamic"],
)


def make_transport() -> AntiBlockTransport:
    """Un transport par fournisseur: chaque source a son propre débit"""
    return AntiBlockTransport(
        proxy=proxy,
        max_retries=RETRY["max_retries"],
        retry_delay=RETRY["retry_delay"],
        requests_per_second=RATE_LIMIT["requests_per_second"],
        timeout=TIMEOUTS["request"],
    )


ADAPTERS = {
    "manhuaplus": ManhuaPlusScraper,
    "manhuaus": ManhuaUSScraper,
    "mangadex": MangaDexScraper,
}

scrapers = {
    key: ADAPTERS[key](make_transport(), browser, base_url=provider.base_url)
    for key, provider in PROVIDERS_CONFIG.items()
    if provider.enabled and key in ADAPTERS
}

orchestrator = FallbackOrchestrator(
    [
        (ProviderDescriptor(name=key, priority=PROVIDER_PRIORITIES[key]), scraper)
        for key, scraper in scrapers.items()
        if key in PROVIDER_PRIORITIES
    ],
    cache=cache,
    ttls=CACHE_TTLS,
)

hianime = HianimeScraper(browser, settle=TIMEOUTS["network_settle"])

# ==================== LIFESPAN ====================

@asynccontextmanager
async def lifespan(app: FastAPI):
    """Gestion du cycle de vie de l'application"""
    logger.info("Universal Manhwa API started")
    logger.info(f"{len(orchestrator.providers)} providers: {[p.name for p in orchestrator.providers]}")
    yield
    await browser.close()
    logger.info("Universal Manhwa API stopped")

# ==================== APP FASTAPI ====================

app = FastAPI(
    title="Universal Manhwa API",
    description="""
    API unifiée pour lire des manhwa depuis plusieurs sources, avec repli automatique.

    ## Sources (par priorité):
    1. **ManhuaPlus** - manhuaplus.top (HTML statique)
    2. **ManhuaUS** - manhuaus.com (HTML, rendu navigateur si besoin)
    3. **MangaDex** - api.mangadex.org (API JSON officielle)

    Chaque réponse indique le fournisseur utilisé (`provider`) et si un repli a eu lieu (`fallbackUsed`).
    """,
    version="1.0.0",
    docs_url="/docs",
    redoc_url="/redoc",
    lifespan=lifespan
)

# CORS
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# ==================== HELPERS ====================

async def _run(coro):
    """Exécute un appel, toute exception imprévue devient une 500"""
    try:
        return await coro
    except HTTPException:
        raise
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        raise HTTPException(status_code=500, detail=f"Erreur: {str(e)}")


def _require(value: Optional[str], name: str) -> str:
    if not value:
        raise HTTPException(status_code=400, detail=f"Missing required parameter: {name}")
    return value


def _page_response(outcome, page: int) -> Dict[str, Any]:
    """Liste paginée; une recherche épuisée renvoie une page vide avec les erreurs"""
    if outcome.found:
        return outcome.to_dict()
    return {
        **ResultPage(current_page=page).to_dict(),
        "provider": None,
        "fallbackUsed": False,
        **outcome.to_dict(),
    }


def _not_found(message: str, outcome) -> JSONResponse:
    return JSONResponse(status_code=404, content={"message": message, **outcome.to_dict()})


def _upstream_error(error: ScraperError) -> JSONResponse:
    if isinstance(error, HttpStatusError):
        return JSONResponse(status_code=error.status,
                            content={"error": f"Upstream returned HTTP {error.status}", "details": error.url})
    return JSONResponse(status_code=502, content={"error": "Upstream request failed", "details": error.message})


def _origin_referer(url: str) -> str:
    parsed = urlparse(url)
    return f"{parsed.scheme}://{parsed.netloc}/"


def relay_client() -> httpx.AsyncClient:
    return httpx.AsyncClient(timeout=TIMEOUTS["relay"], follow_redirects=True)

# ==================== ENDPOINTS ====================

@app.get("/", tags=["Root"])
async def root():
    """Page d'accueil de l'API"""
    return {
        "name": "Universal Manhwa API",
        "version": "1.0.0",
        "docs": "/docs",
        "endpoints": {
            "providers": "/manhwa/unified/",
            "search": "/manhwa/unified/search?query={query}&page={page}",
            "latest": "/manhwa/unified/latest?page={page}",
            "info": "/manhwa/unified/info?id={id}&provider={provider}",
            "read": "/manhwa/unified/read?chapterId={chapterId}&provider={provider}",
            "genre": "/manhwa/unified/genre/{slug}?page={page}",
            "genres": "/manhwa/unified/genres",
            "advanced_search": "/manhwa/unified/advanced-search?query=&status=&sort=&genres=",
            "anime_watch": "/anime/hianime/watch/{episodeId}?ep={ep}",
            "stream_proxy": "/proxy/stream?url={url}&referer={referer}",
            "image_proxy": "/proxy/image?url={url}&referer={referer}",
            "health": "/health"
        },
    }

@app.get("/health", tags=["Health"], response_model=HealthResponse)
async def health_check():
    """Vérification de l'état de l'API"""
    return HealthResponse(
        status="healthy",
        providers=len(orchestrator.providers),
        browser=browser.is_running,
        cache=cache.stats(),
        version="1.0.0",
    )

# ==================== MANHWA (UNIFIÉ) ====================

@app.get("/manhwa/unified/", tags=["Manhwa"], response_model=List[ProviderModel])
async def list_providers():
    """Liste les fournisseurs dans l'ordre où ils sont essayés"""
    providers = []
    for descriptor in orchestrator.providers:
        adapter = orchestrator.adapter(descriptor.name)
        providers.append(ProviderModel(
            name=descriptor.name,
            priority=descriptor.priority,
            operations=[op for op in adapter.OPERATIONS if adapter.supports(op)],
        ))
    return providers

@app.get("/manhwa/unified/search", tags=["Manhwa"])
async def unified_search(
    query: Optional[str] = Query(default=None, description="Terme de recherche"),
    page: int = Query(default=1, ge=1),
    provider: Optional[str] = Query(default=None, description="Fournisseur à essayer en premier"),
):
    """
    Recherche avec repli automatique

    - **query**: Terme de recherche (ex: "Solo Leveling")
    - **page**: Numéro de page
    - **provider**: Fournisseur préféré (optionnel)
    """
    query = _require(query, "query")
    outcome = await _run(orchestrator.search(query, page, preferred=provider))
    return _page_response(outcome, page)

@app.get("/manhwa/unified/latest", tags=["Manhwa"])
async def unified_latest(
    page: int = Query(default=1, ge=1),
    provider: Optional[str] = Query(default=None),
):
    """Dernières mises à jour"""
    outcome = await _run(orchestrator.latest(page, preferred=provider))
    return _page_response(outcome, page)

@app.get("/manhwa/unified/genres", tags=["Manhwa"])
async def unified_genres(provider: Optional[str] = Query(default=None)):
    """Liste des genres"""
    outcome = await _run(orchestrator.genres(preferred=provider))
    if outcome.found:
        return outcome.to_dict()
    return {"genres": [], "provider": None, "fallbackUsed": False, **outcome.to_dict()}

@app.get("/manhwa/unified/genre/{slug}", tags=["Manhwa"])
async def unified_genre(
    slug: str,
    page: int = Query(default=1, ge=1),
    provider: Optional[str] = Query(default=None),
):
    """Séries d'un genre"""
    outcome = await _run(orchestrator.genre(slug, page, preferred=provider))
    return _page_response(outcome, page)

@app.get("/manhwa/unified/advanced-search", tags=["Manhwa"])
async def unified_advanced_search(
    query: Optional[str] = Query(default=None),
    page: int = Query(default=1, ge=1),
    status: Optional[str] = Query(default=None, description="ongoing, completed, hiatus"),
    sort: Optional[str] = Query(default=None, description="latest, popular, rating, title"),
    genres: Optional[str] = Query(default=None, description="Genres séparés par des virgules"),
    provider: Optional[str] = Query(default=None),
):
    """Recherche filtrée"""
    genre_list = [g.strip() for g in genres.split(",") if g.strip()] if genres else None
    outcome = await _run(orchestrator.advanced_search(
        query=query, page=page, status=status, sort=sort, genres=genre_list, preferred=provider,
    ))
    return _page_response(outcome, page)

@app.get("/manhwa/unified/info", tags=["Manhwa"])
async def unified_info(
    id: Optional[str] = Query(default=None, description="Identifiant de la série"),
    provider: Optional[str] = Query(default=None),
):
    """
    Fiche d'une série avec ses chapitres

    - **id**: Identifiant de la série
    - **provider**: Fournisseur préféré, ex: celui renvoyé par la recherche
    """
    series_id = _require(id, "id")
    outcome = await _run(orchestrator.info(series_id, preferred=provider))
    if not outcome.found:
        return _not_found(f"Series '{series_id}' not found on any provider", outcome)
    return outcome.to_dict()

@app.get("/manhwa/unified/read", tags=["Manhwa"])
async def unified_read(
    chapter_id: Optional[str] = Query(default=None, alias="chapterId"),
    provider: Optional[str] = Query(default=None),
):
    """
    Pages d'un chapitre

    - **chapterId**: Identifiant du chapitre
    - **provider**: Fournisseur d'où vient le chapitre (recommandé)
    """
    chapter_id = _require(chapter_id, "chapterId")
    outcome = await _run(orchestrator.read(chapter_id, preferred=provider))
    if not outcome.found:
        return _not_found(f"Chapter '{chapter_id}' not found on any provider", outcome)
    return outcome.to_dict()

# ==================== ANIME ====================

@app.get("/anime/hianime/watch/{episode_id}", tags=["Anime"])
async def hianime_watch(
    episode_id: str,
    ep: Optional[str] = Query(default=None, description="Numéro interne de l'épisode"),
):
    """Sources vidéo d'un épisode, découvertes sur le réseau du navigateur"""
    if ep:
        episode_id = f"{episode_id}?ep={ep}"
    try:
        sources = await hianime.get_episode_sources(episode_id)
    except ScraperError as e:
        logger.warning(f"[Hianime] Stream discovery failed for {episode_id}: {e.message}")
        return _upstream_error(e)
    except Exception as e:
        logger.exception(f"Unexpected error: {e}")
        raise HTTPException(status_code=500, detail=f"Erreur: {str(e)}")
    if not sources:
        raise HTTPException(status_code=404, detail=f"No stream found for episode '{episode_id}'")
    return {"episodeId": episode_id, "sources": [s.to_dict() for s in sources]}

# ==================== RELAIS ====================

@app.get("/proxy/stream", tags=["Proxy"], name="stream_proxy")
async def stream_proxy(
    request: Request,
    url: Optional[str] = Query(default=None, description="URL du flux (m3u8, segment, clé)"),
    referer: Optional[str] = Query(default=None),
):
    """
    Relais de flux vidéo

    Les playlists m3u8 sont réécrites: chaque entrée repasse par ce relais avec le même referer.
    """
    url = _require(url, "url")
    referer = referer or _origin_referer(url)
    headers = relay_headers(referer)
    if "range" in request.headers:
        headers["Range"] = request.headers["range"]

    client = relay_client()
    try:
        upstream = await client.send(client.build_request("GET", url, headers=headers), stream=True)
    except httpx.HTTPError as e:
        await client.aclose()
        logger.warning(f"[Proxy] Stream relay failed for {url}: {e}")
        return _upstream_error(NetworkError(url, str(e) or type(e).__name__))

    if upstream.status_code >= 400:
        await upstream.aclose()
        await client.aclose()
        return _upstream_error(HttpStatusError(url, upstream.status_code))

    content_type = upstream.headers.get("content-type", "")
    if is_playlist(url, content_type):
        try:
            await upstream.aread()
            body = upstream.text
        except httpx.HTTPError as e:
            logger.warning(f"[Proxy] Playlist read failed for {url}: {e}")
            return _upstream_error(NetworkError(url, str(e) or type(e).__name__))
        finally:
            await upstream.aclose()
            await client.aclose()
        playlist = rewrite_playlist(body, str(upstream.url), str(request.url_for("stream_proxy")), referer)
        return Response(
            content=playlist,
            media_type="application/vnd.apple.mpegurl",
            headers={"Cache-Control": "no-cache"},
        )

    passthrough = {}
    for name in ("content-range", "accept-ranges"):
        if name in upstream.headers:
            passthrough[name] = upstream.headers[name]
    if "content-length" in upstream.headers and "content-encoding" not in upstream.headers:
        passthrough["content-length"] = upstream.headers["content-length"]

    async def relay_body():
        try:
            async for chunk in upstream.aiter_bytes():
                yield chunk
        finally:
            await upstream.aclose()
            await client.aclose()

    return StreamingResponse(
        relay_body(),
        status_code=upstream.status_code,
        media_type=content_type or "application/octet-stream",
        headers=passthrough,
    )

@app.get("/proxy/image", tags=["Proxy"])
async def image_proxy(
    url: Optional[str] = Query(default=None, description="URL de l'image"),
    referer: Optional[str] = Query(default=None),
):
    """Relais d'images (contourne la protection hotlink des sources)"""
    url = _require(url, "url")
    headers = relay_headers(referer or _origin_referer(url),
                            accept="image/avif,image/webp,image/apng,image/*,*/*;q=0.8")

    async with relay_client() as client:
        try:
            upstream = await client.get(url, headers=headers)
        except httpx.HTTPError as e:
            logger.warning(f"[Proxy] Image relay failed for {url}: {e}")
            return _upstream_error(NetworkError(url, str(e) or type(e).__name__))

    if upstream.status_code >= 400:
        return _upstream_error(HttpStatusError(url, upstream.status_code))

    return Response(
        content=upstream.content,
        media_type=upstream.headers.get("content-type", "image/jpeg"),
        headers={"Cache-Control": "public, max-age=86400"},
    )

# ==================== POINT D'ENTRÉE ====================

if __name__ == "__main__":
    uvicorn.run(
        "main:app",
        host="0.0.0.0",
        port=PORT,
        reload=DEBUG
    )
