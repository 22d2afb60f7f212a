"""
Service de rendu headless (Playwright)

Un seul navigateur partagé, lancé à la demande. Chaque scrape ouvre sa propre
page, fermée quelle que soit l'issue.
"""

import asyncio
import logging
from typing import Callable, Iterable, List, Optional

from fake_useragent import UserAgent
from playwright.async_api import Browser, Page, Route, async_playwright
from playwright.async_api import Error as PlaywrightError
from playwright.async_api import TimeoutError as PlaywrightTimeoutError

from .utils import NetworkError, get_random_user_agent

logger = logging.getLogger(__name__)

DEFAULT_LAUNCH_ARGS = [
    '--no-sandbox',
    '--disable-setuid-sandbox',
    '--disable-dev-shm-usage',
    '--disable-gpu',
    '--no-first-run',
    '--no-zygote',
    '--disable-extensions',
    '--disable-blink-features=AutomationControlled',
]

BLOCKED_RESOURCE_TYPES = {"image", "stylesheet", "font", "media"}


def chrome_user_agent() -> str:
    """User-Agent Chrome réaliste pour les pages du navigateur"""
    try:
        return UserAgent().chrome
    except Exception as e:
        logger.debug(f"fake_useragent unavailable, using static pool: {e}")
        return get_random_user_agent()


def media_url_matcher(extensions: Iterable[str] = (".m3u8", ".mp4"),
                      hosts: Iterable[str] = (),
                      host_markers: Iterable[str] = ()) -> Callable[[str], bool]:
    """
    Construit un prédicat sur les URLs de réponses réseau

    Args:
        extensions: Extensions de fichiers média recherchées dans l'URL
        hosts: Sous-chaînes d'hôtes CDN (ex: "googlevideo.com")
        host_markers: Sous-chaînes supplémentaires exigées avec `hosts` (ex: "videoplayback")
    """
    extensions = tuple(e.lower() for e in extensions)
    hosts = tuple(hosts)
    host_markers = tuple(host_markers)

    def matcher(url: str) -> bool:
        path = url.lower().split("?", 1)[0]
        if any(ext in path for ext in extensions):
            return True
        if any(host in url for host in hosts):
            return all(marker in url for marker in host_markers)
        return False

    return matcher


async def _block_heavy_resources(route: Route) -> None:
    """Abandonne images/styles/polices/médias pour accélérer le chargement"""
    try:
        if route.request.resource_type in BLOCKED_RESOURCE_TYPES:
            await route.abort()
        else:
            await route.continue_()
    except PlaywrightError as e:
        logger.debug(f"Route handling failed: {e}")


class BrowserService:
    """Navigateur headless partagé par tout le processus"""

    def __init__(self, headless: bool = True, launch_args: Optional[List[str]] = None,
                 fast_timeout: float = 10.0, dynamic_timeout: float = 20.0):
        self.headless = headless
        self.launch_args = list(launch_args if launch_args is not None else DEFAULT_LAUNCH_ARGS)
        self.fast_timeout = fast_timeout
        self.dynamic_timeout = dynamic_timeout
        self.browser: Optional[Browser] = None
        self._playwright = None
        self._lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self.browser is not None and self.browser.is_connected()

    async def launch(self) -> None:
        """Lance le navigateur s'il ne tourne pas déjà (idempotent)"""
        async with self._lock:
            if self.is_running:
                return
            if self._playwright is None:
                self._playwright = await async_playwright().start()
            self.browser = await self._playwright.chromium.launch(
                headless=self.headless,
                args=self.launch_args,
            )
            logger.info("[Browser] Chromium launched")

    async def close(self) -> None:
        async with self._lock:
            if self.browser is not None:
                await self.browser.close()
                self.browser = None
            if self._playwright is not None:
                await self._playwright.stop()
                self._playwright = None
            logger.info("[Browser] Closed")

    async def _new_page(self, block_resources: bool) -> Page:
        await self.launch()
        page = await self.browser.new_page(
            user_agent=chrome_user_agent(),
            viewport={'width': 1920, 'height': 1080},
            locale='en-US',
        )
        if block_resources:
            try:
                await page.route("**/*", _block_heavy_resources)
            except BaseException:
                await page.close()
                raise
        return page

    async def _goto(self, page: Page, url: str, wait_until: str, timeout: float) -> None:
        try:
            await page.goto(url, wait_until=wait_until, timeout=timeout * 1000)
        except PlaywrightTimeoutError as e:
            raise NetworkError(url, f"Navigation timeout after {timeout}s for {url}") from e
        except PlaywrightError as e:
            raise NetworkError(url, f"Navigation failed for {url}: {e.message}") from e

    async def scrape_fast(self, url: str, timeout: Optional[float] = None, settle: float = 0.5) -> str:
        """Scrape rapide: DOM seulement, ressources lourdes bloquées"""
        page = await self._new_page(block_resources=True)
        try:
            await self._goto(page, url, "domcontentloaded", timeout or self.fast_timeout)
            # court délai pour laisser le JS remplir le contenu
            await asyncio.sleep(settle)
            return await page.content()
        finally:
            await page.close()

    async def scrape_dynamic(self, url: str, wait_selector: Optional[str] = None,
                             timeout: Optional[float] = None, selector_timeout: float = 15.0,
                             settle: float = 2.0) -> str:
        """Scrape de pages JS: aucune ressource bloquée, attente du réseau au repos"""
        page = await self._new_page(block_resources=False)
        try:
            await self._goto(page, url, "networkidle", timeout or self.dynamic_timeout)

            if wait_selector:
                try:
                    await page.wait_for_selector(wait_selector, timeout=selector_timeout * 1000)
                except PlaywrightTimeoutError:
                    logger.info(f"[Browser] Selector {wait_selector!r} not found on {url}, using current content")

            await asyncio.sleep(settle)
            return await page.content()
        finally:
            await page.close()

    async def observe_network(self, url: str, matcher: Callable[[str], bool],
                              settle: float = 3.0, frame_selector: Optional[str] = None,
                              timeout: float = 30.0) -> Optional[str]:
        """
        Capture la première URL de réponse réseau acceptée par `matcher`

        Args:
            url: Page à ouvrir
            matcher: Prédicat sur l'URL des réponses
            settle: Fenêtre d'observation après la navigation (secondes)
            frame_selector: Sélecteur d'iframe dont la source est visitée directement
            timeout: Timeout de navigation (secondes)

        Returns:
            L'URL capturée, ou None si rien ne correspond dans la fenêtre
        """
        loop = asyncio.get_running_loop()
        found: asyncio.Future = loop.create_future()

        def on_response(response) -> None:
            if not found.done() and matcher(response.url):
                logger.info(f"[Browser] Detected matching response: {response.url}")
                found.set_result(response.url)

        page = await self._new_page(block_resources=False)
        page.on("response", on_response)
        try:
            try:
                await self._goto(page, url, "domcontentloaded", timeout)
            except NetworkError:
                if found.done():
                    return found.result()
                raise

            if frame_selector and not found.done():
                await self._enter_frame(page, frame_selector, timeout)

            try:
                return await asyncio.wait_for(found, timeout=settle)
            except asyncio.TimeoutError:
                logger.info(f"[Browser] No matching response within {settle}s for {url}")
                return None
        finally:
            page.remove_listener("response", on_response)
            if not found.done():
                found.cancel()
            await page.close()

    async def _enter_frame(self, page: Page, frame_selector: str, timeout: float) -> None:
        """Navigue vers la source de l'iframe pour restreindre la surface observée"""
        try:
            element = await page.wait_for_selector(frame_selector, timeout=10000)
            frame_src = await element.get_attribute("src") if element else None
        except PlaywrightError as e:
            logger.info(f"[Browser] Frame {frame_selector!r} not found: {e.message}")
            return

        if frame_src and frame_src.startswith("http"):
            logger.info(f"[Browser] Navigating into frame source {frame_src}")
            try:
                await page.goto(frame_src, wait_until="networkidle", timeout=timeout * 1000)
            except PlaywrightError as e:
                logger.info(f"[Browser] Frame navigation incomplete: {e.message}")
