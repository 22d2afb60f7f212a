"""
Utilitaires pour le scraping
Transport anti-blocage, erreurs réseau, helpers HTML et réécriture de playlists HLS
"""

import asyncio
import json
import logging
import os
import random
import re
import time
from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Dict, Any, Callable, Awaitable, Mapping
from urllib.parse import urljoin, urlparse, urlencode

import aiohttp
import cloudscraper
from bs4 import BeautifulSoup

logger = logging.getLogger(__name__)

# Pool fixe de signatures navigateur (tirée au hasard à chaque requête)
USER_AGENTS = [
    # Chrome Windows
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/129.0.0.0 Safari/537.36",
    # Chrome Mac
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/130.0.0.0 Safari/537.36",
    # Firefox
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:133.0) Gecko/20100101 Firefox/133.0",
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64; rv:132.0) Gecko/20100101 Firefox/132.0",
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10.15; rv:133.0) Gecko/20100101 Firefox/133.0",
    # Safari
    "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Safari/605.1.15",
    # Edge
    "Mozilla/5.0 (Windows NT 10.0; Win64; x64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36 Edg/131.0.0.0",
    # Linux
    "Mozilla/5.0 (X11; Linux x86_64) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Safari/537.36",
    "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:133.0) Gecko/20100101 Firefox/133.0",
    # Mobile
    "Mozilla/5.0 (iPhone; CPU iPhone OS 17_2 like Mac OS X) AppleWebKit/605.1.15 (KHTML, like Gecko) Version/17.2 Mobile/15E148 Safari/604.1",
    "Mozilla/5.0 (Linux; Android 14; SM-S918B) AppleWebKit/537.36 (KHTML, like Gecko) Chrome/131.0.0.0 Mobile Safari/537.36",
]

REFERERS = [
    "https://www.google.com/",
    "https://www.google.com/search?q=manhwa",
    "https://www.bing.com/",
    "https://duckduckgo.com/",
    "",
]


# ==================== ERREURS ====================

class ScraperError(Exception):
    """Erreur de base du transport"""

    def __init__(self, url: str, message: str):
        super().__init__(message)
        self.url = url
        self.message = message

    @property
    def transient(self) -> bool:
        return False


class NetworkError(ScraperError):
    """Timeout, connexion refusée ou réinitialisée"""

    @property
    def transient(self) -> bool:
        return True


class HttpStatusError(ScraperError):
    """Réponse non-2xx"""

    def __init__(self, url: str, status: int):
        super().__init__(url, f"HTTP {status} for {url}")
        self.status = status

    @property
    def transient(self) -> bool:
        return self.status >= 500 or self.status == 429


# ==================== IDENTITÉ & PROXY ====================

def get_random_user_agent() -> str:
    return random.choice(USER_AGENTS)


def get_random_headers() -> Dict[str, str]:
    """Génère des headers aléatoires"""
    return {
        "User-Agent": get_random_user_agent(),
        "Accept": "text/html,application/xhtml+xml,application/xml;q=0.9,image/webp,*/*;q=0.8",
        "Accept-Language": "en-US,en;q=0.5",
        "Accept-Encoding": "gzip, deflate",  # pas de 'br' pour éviter la dépendance brotli
        "DNT": "1",
        "Connection": "keep-alive",
        "Upgrade-Insecure-Requests": "1",
    }


def random_referer() -> str:
    return random.choice(REFERERS)


def relay_headers(referer: str, accept: str = "*/*") -> Dict[str, str]:
    """Headers usurpés pour relayer un flux ou une image vers le site d'origine"""
    parsed = urlparse(referer)
    return {
        "User-Agent": get_random_user_agent(),
        "Referer": referer,
        "Origin": f"{parsed.scheme}://{parsed.netloc}",
        "Accept": accept,
        "Accept-Language": "en-US,en;q=0.9",
    }


@dataclass(frozen=True)
class ProxyConfig:
    """Proxy amont optionnel"""
    host: str
    port: int
    username: Optional[str] = None
    password: Optional[str] = None

    @property
    def url(self) -> str:
        return f"http://{self.host}:{self.port}"

    @property
    def auth_url(self) -> str:
        if self.username and self.password:
            return f"http://{self.username}:{self.password}@{self.host}:{self.port}"
        return self.url

    @property
    def auth(self) -> Optional[aiohttp.BasicAuth]:
        if self.username and self.password:
            return aiohttp.BasicAuth(self.username, self.password)
        return None

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None) -> Optional["ProxyConfig"]:
        """Lit PROXY_HOST/PROXY_PORT/PROXY_USERNAME/PROXY_PASSWORD; None si host ou port absent"""
        environ = os.environ if environ is None else environ
        host = environ.get("PROXY_HOST")
        port = environ.get("PROXY_PORT")
        if not host or not port:
            return None
        try:
            port_number = int(port)
        except ValueError:
            logger.warning(f"[Proxy] Invalid PROXY_PORT {port!r}, using direct connection")
            return None
        return cls(
            host=host,
            port=port_number,
            username=environ.get("PROXY_USERNAME") or None,
            password=environ.get("PROXY_PASSWORD") or None,
        )


# ==================== TRANSPORT ====================

class RateLimiter:
    """Espacement minimal entre deux requêtes (1/requests_per_second secondes)"""

    def __init__(self, requests_per_second: float = 2.0,
                 clock: Callable[[], float] = time.monotonic,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        if requests_per_second <= 0:
            raise ValueError("requests_per_second must be positive")
        self.min_interval = 1.0 / requests_per_second
        self._clock = clock
        self._sleep = sleep
        self._last: Optional[float] = None
        self._lock = asyncio.Lock()

    async def wait(self) -> None:
        async with self._lock:
            if self._last is not None:
                elapsed = self._clock() - self._last
                if elapsed < self.min_interval:
                    await self._sleep(self.min_interval - elapsed)
            self._last = self._clock()


class AntiBlockTransport:
    """Client HTTP avec rotation d'identité, limitation de débit et retries exponentiels"""

    def __init__(self, proxy: Optional[ProxyConfig] = None, max_retries: int = 3,
                 retry_delay: float = 1.0, requests_per_second: float = 2.0,
                 timeout: float = 30.0, rate_limiter: Optional[RateLimiter] = None,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        self.proxy = proxy
        self.max_retries = max(1, max_retries)
        self.retry_delay = retry_delay
        self.timeout = timeout
        self.rate_limiter = rate_limiter or RateLimiter(requests_per_second)
        self._sleep = sleep
        if proxy:
            logger.info(f"[Proxy] Using proxy: {proxy.host}:{proxy.port}")

    def backoff_delay(self, attempt: int) -> float:
        """Délai avant de retenter après l'essai `attempt` (1-based)"""
        return self.retry_delay * (2 ** (attempt - 1))

    async def fetch(self, url: str, method: str = "GET", params: Any = None,
                    data: Any = None, headers: Optional[Dict[str, str]] = None,
                    timeout: Optional[float] = None) -> str:
        """Récupère le corps d'une page, avec retries sur les erreurs transitoires"""
        last_error: Optional[ScraperError] = None

        for attempt in range(1, self.max_retries + 1):
            await self.rate_limiter.wait()
            try:
                return await self._send(url, method, params, data, headers, timeout or self.timeout)
            except ScraperError as e:
                last_error = e
                if not e.transient:
                    raise
                logger.warning(f"[Fetch] Attempt {attempt}/{self.max_retries} failed for {url}: {e.message}")

            if attempt < self.max_retries:
                await self._sleep(self.backoff_delay(attempt))

        raise last_error

    async def fetch_json(self, url: str, params: Any = None,
                         headers: Optional[Dict[str, str]] = None, **kwargs) -> Any:
        """Récupère du JSON depuis une URL"""
        merged = {"Accept": "application/json"}
        merged.update(headers or {})
        body = await self.fetch(url, params=params, headers=merged, **kwargs)
        try:
            return json.loads(body)
        except ValueError as e:
            raise ScraperError(url, f"Invalid JSON from {url}: {e}") from e

    async def _send(self, url: str, method: str, params: Any, data: Any,
                    headers: Optional[Dict[str, str]], timeout: float) -> str:
        request_headers = get_random_headers()
        request_headers.update(headers or {})

        try:
            async with aiohttp.ClientSession() as session:
                async with session.request(
                    method,
                    url,
                    params=params,
                    data=data,
                    headers=request_headers,
                    proxy=self.proxy.url if self.proxy else None,
                    proxy_auth=self.proxy.auth if self.proxy else None,
                    timeout=aiohttp.ClientTimeout(total=timeout),
                ) as response:
                    if not 200 <= response.status < 300:
                        raise HttpStatusError(url, response.status)
                    # octets invalides remplacés: une page mal encodée reste exploitable
                    return await response.text(errors="replace")
        except asyncio.TimeoutError as e:
            raise NetworkError(url, f"Timeout after {timeout}s for {url}") from e
        except aiohttp.ClientError as e:
            raise NetworkError(url, f"{type(e).__name__}: {e}") from e


def bypass_cloudflare(url: str, headers: Optional[Dict[str, str]] = None,
                      proxy: Optional[ProxyConfig] = None, timeout: int = 30) -> Optional[str]:
    """Contourne la protection Cloudflare avec cloudscraper (synchrone)"""
    try:
        scraper = cloudscraper.create_scraper()
        proxies = {"http": proxy.auth_url, "https": proxy.auth_url} if proxy else None
        response = scraper.get(url, headers=headers or get_random_headers(),
                               proxies=proxies, timeout=timeout)
        if response.status_code == 200:
            return response.text
        logger.info(f"Cloudflare bypass got HTTP {response.status_code} for {url}")
        return None
    except Exception as e:
        logger.warning(f"Cloudflare bypass error: {e}")
        return None


# ==================== HELPERS HTML ====================

def normalize_url(url: str, base_url: str = "") -> str:
    """Convertit une URL relative ou protocol-relative en URL absolue"""
    if not url:
        return ""
    url = url.strip()
    if url.startswith(("http://", "https://")):
        return url
    if url.startswith("//"):
        return f"https:{url}"
    return urljoin(base_url + "/", url) if base_url else url


def extract_image_url(img, base_url: str = "") -> str:
    """Extrait l'URL réelle d'une image (lazy-loading compris)"""
    if img is None:
        return ""
    for attr in ("data-original", "data-src", "data-lazy-src", "src"):
        value = img.get(attr)
        if value and not value.startswith("data:"):
            return normalize_url(value, base_url)
    srcset = img.get("srcset")
    if srcset:
        return normalize_url(srcset.split()[0], base_url)
    return ""


def extract_poster_url(soup: BeautifulSoup, base_url: str = "") -> str:
    """Extrait l'URL du poster"""
    meta = soup.find('meta', property='og:image')
    if meta:
        return meta.get('content', '')

    img = soup.find('img', class_=re.compile('poster|cover|thumb', re.I))
    if img:
        return extract_image_url(img, base_url)

    return ""


def extract_description(soup: BeautifulSoup) -> str:
    """Extrait la description"""
    for class_name in ['summary__content', 'detail-content', 'description', 'synopsis', 'summary']:
        div = soup.find(['div', 'p'], class_=re.compile(class_name, re.I))
        if div:
            text = div.get_text(" ", strip=True)
            if text:
                return text

    meta = soup.find('meta', property='og:description') or soup.find('meta', attrs={'name': 'description'})
    if meta:
        return meta.get('content', '')

    return ""


def clean_title(title: str) -> str:
    """Nettoie un titre"""
    if not title:
        return ""
    title = re.sub(r'\s+', ' ', title)
    title = title.strip(' -:|•')
    return title.strip()


_DATE_FORMATS = ("%Y-%m-%d", "%d/%m/%Y", "%m/%d/%Y", "%B %d, %Y", "%b %d, %Y", "%d %B %Y")


def parse_date(text: Optional[str]) -> Optional[datetime]:
    """Parse une date de sortie; None pour les formats relatifs ("2 hours ago")"""
    if not text:
        return None
    text = text.strip()
    try:
        return datetime.fromisoformat(text.replace("Z", "+00:00"))
    except ValueError:
        pass
    for fmt in _DATE_FORMATS:
        try:
            return datetime.strptime(text, fmt)
        except ValueError:
            continue
    return None


def slug_from_url(url: str, base_url: str, prefix: str = "/manga/") -> str:
    """Extrait l'identifiant d'un lien: https://site/manga/{id}/ -> {id}"""
    if not url:
        return ""
    path = url.replace(base_url, "", 1) if url.startswith(base_url) else urlparse(url).path
    if path.startswith(prefix):
        path = path[len(prefix):]
    return path.strip("/")


# ==================== PLAYLISTS HLS ====================

_URI_ATTRIBUTE = re.compile(r'URI="([^"]+)"')


def is_playlist(url: str, content_type: str = "") -> bool:
    return ".m3u8" in url or "mpegurl" in (content_type or "").lower()


def build_relay_url(relay_endpoint: str, target_url: str, referer: Optional[str] = None) -> str:
    params = {"url": target_url}
    if referer:
        params["referer"] = referer
    return f"{relay_endpoint}?{urlencode(params)}"


def rewrite_playlist(content: str, playlist_url: str, relay_endpoint: str,
                     referer: Optional[str] = None) -> str:
    """
    Réécrit chaque entrée d'une playlist m3u8 en URL absolue relayée

    Args:
        content: Corps de la playlist
        playlist_url: URL d'où la playlist a été récupérée (base des entrées relatives)
        relay_endpoint: URL absolue de l'endpoint de relais (ex: http://host/proxy/stream)
        referer: Referer d'origine, conservé en paramètre de requête

    Returns:
        La playlist dont les segments, sous-playlists et clés passent par le relais
    """
    def relay(entry: str) -> str:
        return build_relay_url(relay_endpoint, urljoin(playlist_url, entry), referer)

    rewritten = []
    for line in content.splitlines():
        stripped = line.strip()
        if not stripped:
            rewritten.append(line)
        elif stripped.startswith("#"):
            rewritten.append(_URI_ATTRIBUTE.sub(lambda m: f'URI="{relay(m.group(1))}"', line))
        else:
            rewritten.append(relay(stripped))

    result = "\n".join(rewritten)
    if content.endswith("\n"):
        result += "\n"
    return result
