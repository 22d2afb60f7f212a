"""
Scrapers pour sites de manhwa
HTML statique (ManhuaPlus), HTML rendu (ManhuaUS) et API JSON officielle (MangaDex)
"""

import asyncio
import logging
import re
from typing import List, Dict, Optional, Any, Tuple
from urllib.parse import urlencode

from bs4 import BeautifulSoup

from .base_scraper import (
    BaseScraper, ResultPage, SearchResult, SeriesInfo, SeriesStatus, ChapterRef,
    PageRef, ScanGroup, Genre, number_pages, parse_chapter_number, sort_chapters,
)
from .utils import (
    HttpStatusError, ScraperError, bypass_cloudflare, clean_title, extract_image_url, extract_poster_url,
    extract_description, parse_date, random_referer, slug_from_url,
)

logger = logging.getLogger(__name__)


def _text(el) -> str:
    return el.get_text(" ", strip=True) if el else ""


class ManhuaPlusScraper(BaseScraper):
    """Scraper pour ManhuaPlus (thème NetTruyen)"""

    def __init__(self, transport=None, browser=None, base_url: str = "https://manhuaplus.top"):
        super().__init__(base_url, "ManhuaPlus", transport, browser)

    async def _get_soup(self, url: str, params: Optional[Dict[str, Any]] = None) -> BeautifulSoup:
        headers = {"Referer": random_referer() or f"{self.base_url}/"}
        try:
            html = await self.transport.fetch(url, params=params, headers=headers)
        except HttpStatusError as e:
            if e.status not in (403, 503):
                raise
            # Essayer avec bypass
            target = f"{url}?{urlencode(params)}" if params else url
            logger.info(f"[ManhuaPlus] HTTP {e.status}, trying Cloudflare bypass for {target}")
            html = await asyncio.to_thread(bypass_cloudflare, target, None,
                                     getattr(self.transport, "proxy", None))
            if not html:
                raise
        return BeautifulSoup(html, 'lxml')

    def _parse_items(self, soup: BeautifulSoup) -> List[SearchResult]:
        results = []
        for item in soup.select('.items .row .item'):
            title_el = item.select_one('figcaption h3 a')
            if not title_el:
                continue

            image = extract_image_url(item.select_one('.image a img'), self.base_url)
            if not image or image == self.base_url:
                continue

            series_id = slug_from_url(title_el.get('href', ''), self.base_url)
            title = clean_title(title_el.get_text())
            rating_match = re.search(r'(\d+\.?\d*)', _text(item.select_one('.rate, .rating, .score')))

            if title and series_id:
                results.append(SearchResult(
                    id=series_id,
                    title=title,
                    image=image,
                    latest_chapter=_text(item.select_one('ul.comic-item li.chapter a')),
                    rating=float(rating_match.group(1)) if rating_match else None,
                ))
        return results

    def _result_page(self, soup: BeautifulSoup, page: int) -> ResultPage:
        results = self._parse_items(soup)
        has_next = soup.select_one('a.next, a[rel="next"]') is not None or len(results) >= 24
        return ResultPage(current_page=page, has_next_page=has_next, results=results)

    async def _list(self, url: str, page: int, params: Optional[Dict[str, Any]] = None) -> ResultPage:
        try:
            soup = await self._get_soup(url, params)
        except HttpStatusError as e:
            if e.status == 404:
                return ResultPage(current_page=page)
            raise
        return self._result_page(soup, page)

    async def search(self, query: str, page: int = 1) -> ResultPage:
        """Recherche sur ManhuaPlus"""
        return await self._list(f"{self.base_url}/search", page, {"keyword": query, "page": page})

    async def latest(self, page: int = 1) -> ResultPage:
        url = f"{self.base_url}/{page}" if page > 1 else self.base_url
        result = await self._list(url, page)
        # des centaines de pages: il y a une suite tant que la page n'est pas vide
        return ResultPage(current_page=page, has_next_page=bool(result.results), results=result.results)

    async def genre(self, slug: str, page: int = 1) -> ResultPage:
        return await self._list(f"{self.base_url}/genres/{slug}", page, {"page": page})

    async def genres(self) -> List[Genre]:
        soup = await self._get_soup(self.base_url)
        genres = {}
        for link in soup.select('.megamenu .nav li a[href*="/genres/"]'):
            slug = link.get('href', '').rstrip('/').split('/')[-1]
            name = link.get_text(strip=True)
            if slug and name:
                genres[slug] = Genre(name=name, slug=slug)
        return list(genres.values())

    async def info(self, series_id: str) -> SeriesInfo:
        """Récupère la fiche d'une série"""
        soup = await self._get_soup(f"{self.base_url}/manga/{series_id}")

        chapters = []
        for li in soup.select('.list-chapter li, #nt_listchapter li'):
            link = li.find('a')
            if not link:
                continue
            chapter_title = link.get_text(strip=True)
            chapter_id = slug_from_url(link.get('href', ''), self.base_url)
            if chapter_title and chapter_id:
                chapters.append(ChapterRef(
                    id=chapter_id,
                    title=chapter_title,
                    number=parse_chapter_number(chapter_title),
                    release_date=parse_date(_text(li.select_one('.chapter-time'))),
                ))

        detail = soup.select_one('.detail-content p') or soup.select_one('.detail-content')
        logger.info(f"[ManhuaPlus] Info for '{series_id}': {len(chapters)} chapters")

        return SeriesInfo(
            id=series_id,
            title=clean_title(_text(soup.select_one('.title-detail'))),
            image=(extract_image_url(soup.select_one('.detail-info .col-image img'), self.base_url)
                   or extract_poster_url(soup, self.base_url)),
            description=self.clean_text(_text(detail) or extract_description(soup)),
            genres=[_text(a) for a in soup.select('.info-item .kind a, .list-info .kind a') if _text(a)],
            authors=[_text(a) for a in soup.select('.info-item .author a, .list-info .author a') if _text(a)],
            status=SeriesStatus.from_text(_text(soup.select_one('.info-item .status, .list-info .status'))),
            chapters=sort_chapters(chapters),
        )

    async def read(self, chapter_id: str) -> List[PageRef]:
        soup = await self._get_soup(f"{self.base_url}/manga/{chapter_id}")
        urls = []
        for img in soup.select('.reading-detail .page-chapter img, .reading-content img'):
            url = extract_image_url(img, self.base_url)
            if url and 'loading' not in url and 'placeholder' not in url:
                urls.append(url)
        logger.info(f"[ManhuaPlus] Read '{chapter_id}': {len(urls)} pages")
        return number_pages(urls)


class ManhuaUSScraper(BaseScraper):
    """Scraper pour ManhuaUS (thème WordPress Madara)"""

    def __init__(self, transport=None, browser=None, base_url: str = "https://manhuaus.com"):
        super().__init__(base_url, "ManhuaUS", transport, browser)

    async def _get_soup(self, url: str, params: Optional[Dict[str, Any]] = None) -> BeautifulSoup:
        html = await self.transport.fetch(url, params=params)
        return BeautifulSoup(html, 'lxml')

    def _paged(self, path: str, page: int) -> str:
        path = path.rstrip('/')
        return f"{self.base_url}{path}/page/{page}/" if page > 1 else f"{self.base_url}{path}/"

    def _result_page(self, soup: BeautifulSoup, page: int) -> ResultPage:
        results = []
        # la recherche utilise .c-tabs-item__content, les listes .page-item-detail
        items = soup.select('.c-tabs-item__content') or soup.select('.page-item-detail')
        for item in items:
            link = item.select_one('.post-title h3 a, .post-title a')
            if not link:
                continue
            series_id = slug_from_url(link.get('href', ''), self.base_url)
            title = clean_title(link.get_text())
            if not (title and series_id):
                continue
            results.append(SearchResult(
                id=series_id,
                title=title,
                image=extract_image_url(item.select_one('.tab-thumb img, .item-thumb img'), self.base_url),
                latest_chapter=_text(item.select_one('.latest-chap .chapter a')),
                status=SeriesStatus.from_text(_text(item.select_one('.mg_status .summary-content'))),
            ))

        has_next = soup.select_one('.nav-links .next, .pagination .next, a.next.page-numbers, .nextpostslink') is not None
        return ResultPage(current_page=page, has_next_page=has_next, results=results)

    async def _list(self, url: str, page: int, params: Optional[Dict[str, Any]] = None) -> ResultPage:
        try:
            soup = await self._get_soup(url, params)
        except HttpStatusError as e:
            if e.status == 404:
                return ResultPage(current_page=page)
            raise
        return self._result_page(soup, page)

    async def search(self, query: str, page: int = 1) -> ResultPage:
        """Recherche sur ManhuaUS"""
        return await self._list(self._paged("", page), page, {"s": query, "post_type": "wp-manga"})

    async def latest(self, page: int = 1) -> ResultPage:
        return await self._list(self._paged("/manga", page), page, {"m_orderby": "latest"})

    async def genre(self, slug: str, page: int = 1) -> ResultPage:
        return await self._list(self._paged(f"/manga-genre/{slug}", page), page)

    async def genres(self) -> List[Genre]:
        soup = await self._get_soup(f"{self.base_url}/")
        genres = {}
        for link in soup.select('.genres_wrap a[href*="manga-genre"], .menu-item a[href*="manga-genre"]'):
            slug = link.get('href', '').rstrip('/').split('/')[-1]
            # "Action (1234)" -> "Action"
            name = re.sub(r'\s*\(\d+\)\s*$', '', link.get_text(" ", strip=True))
            if slug and name:
                genres[slug] = Genre(name=name, slug=slug)
        return list(genres.values())

    def _parse_chapters(self, soup: BeautifulSoup) -> List[ChapterRef]:
        chapters = []
        for li in soup.select('.wp-manga-chapter'):
            link = li.find('a')
            if not link:
                continue
            chapter_title = link.get_text(strip=True)
            chapter_id = slug_from_url(link.get('href', ''), self.base_url)
            if chapter_title and chapter_id:
                chapters.append(ChapterRef(
                    id=chapter_id,
                    title=chapter_title,
                    number=parse_chapter_number(chapter_title),
                    release_date=parse_date(_text(li.select_one('.chapter-release-date'))),
                ))
        return chapters

    async def _get_chapters(self, series_id: str, html: str, soup: BeautifulSoup) -> List[ChapterRef]:
        """Chapitres via admin-ajax.php; l'identifiant interne est dans `var manga = {...}`"""
        match = re.search(r'"manga_id":"(\d+)"', html)
        if not match:
            return self._parse_chapters(soup)

        try:
            fragment = await self.transport.fetch(
                f"{self.base_url}/wp-admin/admin-ajax.php",
                method="POST",
                data={"action": "manga_get_chapters", "manga": match.group(1)},
                headers={
                    "X-Requested-With": "XMLHttpRequest",
                    "Referer": f"{self.base_url}/manga/{series_id}/",
                },
            )
        except ScraperError as e:
            logger.warning(f"[ManhuaUS] Failed to fetch chapters via AJAX: {e.message}")
            return self._parse_chapters(soup)

        return self._parse_chapters(BeautifulSoup(fragment, 'lxml'))

    def _alt_titles(self, soup: BeautifulSoup) -> List[str]:
        for item in soup.select('.post-content_item'):
            heading = _text(item.select_one('.summary-heading'))
            if 'alternative' in heading.lower():
                raw = _text(item.select_one('.summary-content'))
                return [t.strip() for t in re.split(r'[;,/]', raw) if t.strip()]
        return []

    async def info(self, series_id: str) -> SeriesInfo:
        """Récupère la fiche d'une série"""
        html = await self.transport.fetch(f"{self.base_url}/manga/{series_id}/")
        soup = BeautifulSoup(html, 'lxml')

        chapters = await self._get_chapters(series_id, html, soup)
        logger.info(f"[ManhuaUS] Info for '{series_id}': {len(chapters)} chapters")

        return SeriesInfo(
            id=series_id,
            title=clean_title(_text(soup.select_one('.post-title h1'))),
            alt_titles=self._alt_titles(soup),
            image=extract_image_url(soup.select_one('.summary_image img'), self.base_url),
            description=self.clean_text(_text(soup.select_one('.description-summary .summary__content'))),
            genres=[_text(a) for a in soup.select('.genres-content a') if _text(a)],
            authors=[_text(a) for a in soup.select('.author-content a') if _text(a)],
            status=SeriesStatus.from_text(_text(soup.select_one('.post-status .summary-content'))),
            chapters=sort_chapters(chapters),
        )

    def _page_urls(self, soup: BeautifulSoup) -> List[str]:
        images = soup.select('.reading-content .page-break img') or soup.select('.wp-manga-chapter-img')
        return [extract_image_url(img, self.base_url) for img in images]

    async def read(self, chapter_id: str) -> List[PageRef]:
        url = f"{self.base_url}/manga/{chapter_id}/"
        urls = self._page_urls(await self._get_soup(url))

        if not any(urls) and self.browser is not None:
            # images injectées par JS: rendu complet
            logger.info(f"[ManhuaUS] No static images for '{chapter_id}', rendering page")
            html = await self.browser.scrape_dynamic(url, wait_selector='.reading-content img')
            urls = self._page_urls(BeautifulSoup(html, 'lxml'))

        return number_pages(urls)


class MangaDexScraper(BaseScraper):
    """Scraper MangaDex via l'API officielle (https://api.mangadex.org/docs/)"""

    PAGE_SIZE = 20
    CONTENT_RATINGS = ("safe", "suggestive", "erotica")
    SORT_ORDERS = {
        "latest": "latestUploadedChapter",
        "popular": "followedCount",
        "rating": "rating",
        "title": "title",
        "relevance": "relevance",
    }

    def __init__(self, transport=None, browser=None, language: str = "en",
                 base_url: str = "https://api.mangadex.org"):
        super().__init__(base_url, "MangaDex", transport, browser, language)
        self.image_base_url = "https://uploads.mangadex.org"

    def _params(self, page: int, *extra: Tuple[str, Any]) -> List[Tuple[str, Any]]:
        params = [("limit", self.PAGE_SIZE), ("offset", (page - 1) * self.PAGE_SIZE),
                  ("includes[]", "cover_art")]
        params.extend(("contentRating[]", r) for r in self.CONTENT_RATINGS)
        params.extend(extra)
        return params

    @staticmethod
    def _localized(values: Optional[Dict[str, str]], fallback: str = "") -> str:
        if not values:
            return fallback
        return values.get("en") or values.get("ja-ro") or next(iter(values.values()), fallback)

    def _cover(self, manga: Dict[str, Any], size: int = 256) -> str:
        for rel in manga.get("relationships", []):
            file_name = (rel.get("attributes") or {}).get("fileName")
            if rel.get("type") == "cover_art" and file_name:
                return f"{self.image_base_url}/covers/{manga['id']}/{file_name}.{size}.jpg"
        return ""

    def _to_result(self, manga: Dict[str, Any]) -> SearchResult:
        attributes = manga.get("attributes", {})
        last_chapter = attributes.get("lastChapter")
        return SearchResult(
            id=manga["id"],
            title=self._localized(attributes.get("title")),
            image=self._cover(manga),
            latest_chapter=f"Chapter {last_chapter}" if last_chapter else "",
            status=SeriesStatus.from_text(attributes.get("status")),
        )

    async def _manga_list(self, page: int, *extra: Tuple[str, Any]) -> ResultPage:
        data = await self.transport.fetch_json(f"{self.base_url}/manga", params=self._params(page, *extra))
        results = [self._to_result(m) for m in data.get("data", []) if m.get("id")]
        has_next = data.get("total", 0) > (page - 1) * self.PAGE_SIZE + self.PAGE_SIZE
        return ResultPage(current_page=page, has_next_page=has_next, results=results)

    async def search(self, query: str, page: int = 1) -> ResultPage:
        """Recherche sur MangaDex"""
        result = await self._manga_list(page, ("title", query), ("order[relevance]", "desc"))
        logger.info(f"[MangaDex] Search for '{query}' found {len(result.results)} items")
        return result

    async def latest(self, page: int = 1) -> ResultPage:
        return await self._manga_list(page, ("order[latestUploadedChapter]", "desc"))

    async def genre(self, slug: str, page: int = 1) -> ResultPage:
        return await self._manga_list(page, ("includedTags[]", slug), ("order[followedCount]", "desc"))

    async def advanced_search(self, query: Optional[str] = None, page: int = 1,
                              status: Optional[str] = None, sort: Optional[str] = None,
                              genres: Optional[List[str]] = None) -> ResultPage:
        extra: List[Tuple[str, Any]] = []
        if query:
            extra.append(("title", query))
        if status:
            extra.append(("status[]", status.lower()))
        extra.extend(("includedTags[]", g) for g in genres or [])
        order = self.SORT_ORDERS.get((sort or "").lower(), "relevance" if query else "followedCount")
        extra.append((f"order[{order}]", "asc" if order == "title" else "desc"))
        return await self._manga_list(page, *extra)

    async def genres(self) -> List[Genre]:
        data = await self.transport.fetch_json(f"{self.base_url}/manga/tag")
        genres = [
            Genre(name=self._localized(tag["attributes"].get("name")), slug=tag["id"])
            for tag in data.get("data", [])
            if tag.get("attributes", {}).get("group") == "genre"
        ]
        return sorted(genres, key=lambda g: g.name)

    def _to_chapter(self, chapter: Dict[str, Any]) -> ChapterRef:
        attributes = chapter.get("attributes", {})
        number = attributes.get("chapter")
        scan_group = None
        for rel in chapter.get("relationships", []):
            if rel.get("type") == "scanlation_group" and rel.get("attributes"):
                scan_group = ScanGroup(id=rel["id"], name=rel["attributes"].get("name", ""))
                break
        return ChapterRef(
            id=chapter["id"],
            title=attributes.get("title") or (f"Chapter {number}" if number else "Oneshot"),
            number=parse_chapter_number(number),
            release_date=parse_date(attributes.get("publishAt")),
            scan_group=scan_group,
        )

    async def info(self, series_id: str) -> SeriesInfo:
        """Récupère la fiche et les chapitres (toutes équipes de scan confondues)"""
        manga_data = await self.transport.fetch_json(
            f"{self.base_url}/manga/{series_id}",
            params=[("includes[]", "cover_art"), ("includes[]", "author"), ("includes[]", "artist")],
        )
        manga = manga_data["data"]
        attributes = manga.get("attributes", {})

        chapter_params = [("manga", series_id), ("limit", 500), ("translatedLanguage[]", self.language),
                          ("order[chapter]", "desc"), ("includes[]", "scanlation_group")]
        chapter_params.extend(("contentRating[]", r) for r in self.CONTENT_RATINGS)
        chapters_data = await self.transport.fetch_json(f"{self.base_url}/chapter", params=chapter_params)
        chapters = [self._to_chapter(c) for c in chapters_data.get("data", []) if c.get("id")]

        authors: List[str] = []
        for rel in manga.get("relationships", []):
            name = (rel.get("attributes") or {}).get("name")
            if rel.get("type") in ("author", "artist") and name and name not in authors:
                authors.append(name)

        logger.info(f"[MangaDex] Info for '{series_id}': {len(chapters)} chapters")

        return SeriesInfo(
            id=manga["id"],
            title=self._localized(attributes.get("title")),
            alt_titles=[t for alt in attributes.get("altTitles", []) for t in alt.values()],
            image=self._cover(manga, 512),
            description=self._localized(attributes.get("description")),
            genres=[
                self._localized(tag["attributes"].get("name"))
                for tag in attributes.get("tags", [])
                if tag.get("attributes", {}).get("group") == "genre"
            ],
            authors=authors,
            status=SeriesStatus.from_text(attributes.get("status")),
            chapters=sort_chapters(chapters),
        )

    async def read(self, chapter_id: str) -> List[PageRef]:
        data = await self.transport.fetch_json(f"{self.base_url}/at-home/server/{chapter_id}")
        server = data.get("baseUrl", "")
        chapter = data.get("chapter", {})
        chapter_hash = chapter.get("hash", "")
        pages = number_pages(f"{server}/data/{chapter_hash}/{name}" for name in chapter.get("data", []))
        logger.info(f"[MangaDex] Read '{chapter_id}': {len(pages)} pages")
        return pages
