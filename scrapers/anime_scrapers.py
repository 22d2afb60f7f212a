"""
Scrapers pour sites d'anime
L'URL du flux est générée côté client: elle est capturée sur le réseau du navigateur
"""

import logging
from typing import List

from .base_scraper import VideoSource
from .browser import BrowserService, media_url_matcher

logger = logging.getLogger(__name__)


class HianimeScraper:
    """Découverte de flux HLS sur Hianime"""

    def __init__(self, browser: BrowserService, base_url: str = "https://hianime.to",
                 settle: float = 3.0):
        self.browser = browser
        self.base_url = base_url.rstrip('/')
        self.site_name = "Hianime"
        self.settle = settle
        # .m3u8 ou flux Google Video (videoplayback)
        self.matcher = media_url_matcher(
            extensions=(".m3u8",),
            hosts=("googlevideo.com",),
            host_markers=("videoplayback",),
        )

    async def get_episode_sources(self, episode_id: str) -> List[VideoSource]:
        """
        Récupère les sources vidéo d'un épisode

        Args:
            episode_id: Identifiant de l'épisode (ex: "one-piece-100?ep=2142")

        Returns:
            Liste des sources (vide si aucun flux n'a été détecté)
        """
        watch_url = f"{self.base_url}/watch/{episode_id}"
        logger.info(f"[Hianime] Looking for stream on {watch_url}")

        stream_url = await self.browser.observe_network(
            watch_url,
            self.matcher,
            settle=self.settle,
            frame_selector="#iframe-embed",
        )
        if not stream_url:
            logger.info(f"[Hianime] No stream detected for {episode_id}")
            return []

        return [VideoSource(
            url=stream_url,
            is_m3u8=".m3u8" in stream_url,
            quality="auto",
            referer=f"{self.base_url}/",
            headers={"Referer": f"{self.base_url}/"},
        )]
