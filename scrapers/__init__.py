"""
Universal Manhwa Scraper Package
Fournisseurs multiples avec repli automatique, cache et rendu navigateur
"""

from .base_scraper import (
    BaseScraper, ProviderDescriptor, SeriesStatus, ScanGroup, ChapterRef, PageRef,
    SearchResult, ResultPage, Genre, SeriesInfo, VideoSource,
)
from .browser import BrowserService, media_url_matcher
from .cache import TTLCache, make_key
from .orchestrator import FallbackOrchestrator, FallbackResult, Exhausted, FetchAttempt, Operation, AttemptOutcome
from .manhwa_scrapers import ManhuaPlusScraper, ManhuaUSScraper, MangaDexScraper
from .anime_scrapers import HianimeScraper
from .utils import (
    AntiBlockTransport, RateLimiter, ProxyConfig, ScraperError, NetworkError, HttpStatusError,
    bypass_cloudflare, is_playlist, relay_headers, rewrite_playlist,
)

__all__ = [
    'BaseScraper',
    'ProviderDescriptor',
    'SeriesStatus',
    'ScanGroup',
    'ChapterRef',
    'PageRef',
    'SearchResult',
    'ResultPage',
    'Genre',
    'SeriesInfo',
    'VideoSource',
    'BrowserService',
    'media_url_matcher',
    'TTLCache',
    'make_key',
    'FallbackOrchestrator',
    'FallbackResult',
    'Exhausted',
    'FetchAttempt',
    'Operation',
    'AttemptOutcome',
    'ManhuaPlusScraper',
    'ManhuaUSScraper',
    'MangaDexScraper',
    'HianimeScraper',
    'AntiBlockTransport',
    'RateLimiter',
    'ProxyConfig',
    'ScraperError',
    'NetworkError',
    'HttpStatusError',
    'bypass_cloudflare',
    'is_playlist',
    'relay_headers',
    'rewrite_playlist',
]
