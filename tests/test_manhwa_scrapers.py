"""
Tests for the provider adapters, driven by HTML/JSON fixtures through a fake transport.
"""

import json
from datetime import datetime
from unittest.mock import AsyncMock, MagicMock, patch

import pytest

from scrapers.anime_scrapers import HianimeScraper
from scrapers.base_scraper import SeriesStatus, group_chapters_by_number, number_pages, parse_chapter_number
from scrapers.manhwa_scrapers import MangaDexScraper, ManhuaPlusScraper, ManhuaUSScraper
from scrapers.utils import HttpStatusError

# ==================== FIXTURES HTML ====================

MANHUAPLUS_LIST = """
<html><body>
<div class="items"><div class="row">
  <div class="item"><figure>
    <div class="image"><a href="https://manhuaplus.top/manga/solo-leveling">
      <img src="data:image/gif;base64,R0lGOD" data-original="https://cdn.manhuaplus.top/covers/solo.jpg">
    </a></div>
    <figcaption>
      <h3><a href="https://manhuaplus.top/manga/solo-leveling">  Solo   Leveling </a></h3>
      <ul class="comic-item"><li class="chapter"><a href="https://manhuaplus.top/manga/solo-leveling/chapter-200">Chapter 200</a></li></ul>
    </figcaption>
  </figure></div>
  <div class="item"><figure>
    <div class="image"><a href="/manga/no-cover"><img></a></div>
    <figcaption><h3><a href="/manga/no-cover">No Cover</a></h3></figcaption>
  </figure></div>
</div></div>
</body></html>
"""

MANHUAPLUS_INFO = """
<html><body>
<h1 class="title-detail">Solo Leveling</h1>
<div class="detail-info"><div class="col-image"><img src="https://cdn.manhuaplus.top/covers/solo.jpg"></div>
  <ul class="list-info">
    <li class="author"><p class="col-xs-8"><a href="/author/chugong">Chugong</a></p></li>
    <li class="status"><p class="col-xs-8">Ongoing</p></li>
    <li class="kind"><p class="col-xs-8"><a href="/genres/action">Action</a> - <a href="/genres/fantasy">Fantasy</a></p></li>
  </ul>
</div>
<div class="detail-content"><p>10 years ago, the Gate appeared.</p></div>
<div class="list-chapter"><ul>
  <li><a href="https://manhuaplus.top/manga/solo-leveling/chapter-1">Chapter 1</a><span class="chapter-time">2024-01-01</span></li>
  <li><a href="https://manhuaplus.top/manga/solo-leveling/chapter-2">Chapter 2</a><span class="chapter-time">2 hours ago</span></li>
</ul></div>
</body></html>
"""

MANHUAPLUS_READ = """
<html><body><div class="reading-detail">
  <div class="page-chapter"><img src="https://manhuaplus.top/images/loading.gif"></div>
  <div class="page-chapter"><img data-src="https://img.manhuaplus.top/solo/200/01.jpg"></div>
  <div class="page-chapter"><img data-src="https://img.manhuaplus.top/solo/200/02.jpg"></div>
</div></body></html>
"""

MANHUAUS_INFO = """
<html><head><script>var manga = {"ajax_url":"https:\\/\\/manhuaus.com\\/wp-admin\\/admin-ajax.php","manga_id":"1234"};</script></head>
<body>
<div class="post-title"><h1>The Beginning After the End</h1></div>
<div class="summary_image"><img data-src="https://manhuaus.com/wp-content/uploads/tbate.jpg"></div>
<div class="post-content_item"><div class="summary-heading"><h5>Alternative</h5></div><div class="summary-content">TBATE; 最強の王様</div></div>
<div class="author-content"><a href="/author/turtleme">TurtleMe</a></div>
<div class="genres-content"><a href="/manga-genre/action">Action</a>, <a href="/manga-genre/isekai">Isekai</a></div>
<div class="post-status"><div class="post-content_item"><div class="summary-content">Completed</div></div></div>
<div class="description-summary"><div class="summary__content"><p>King Grey has unrivaled strength.</p></div></div>
<ul class="main version-chap">
  <li class="wp-manga-chapter"><a href="https://manhuaus.com/manga/tbate/chapter-1/">Chapter 1</a></li>
</ul>
</body></html>
"""

MANHUAUS_CHAPTERS = """
<ul class="main version-chap">
  <li class="wp-manga-chapter"><a href="https://manhuaus.com/manga/tbate/chapter-3/">Chapter 3</a>
    <span class="chapter-release-date"><i>January 5, 2024</i></span></li>
  <li class="wp-manga-chapter"><a href="https://manhuaus.com/manga/tbate/chapter-2-5/">Chapter 2.5</a></li>
</ul>
"""

MANHUAUS_EMPTY_READER = '<html><body><div class="reading-content"></div></body></html>'

MANHUAUS_RENDERED_READER = """
<html><body><div class="reading-content">
  <div class="page-break"><img src=" https://manhuaus.com/uploads/tbate/1/01.jpg "></div>
  <div class="page-break"><img src="https://manhuaus.com/uploads/tbate/1/02.jpg"></div>
</div></body></html>
"""


def _mangadex_manga(manga_id="m1", title="Solo Leveling", status="completed"):
    return {
        "id": manga_id,
        "type": "manga",
        "attributes": {
            "title": {"en": title},
            "altTitles": [{"ko": "나 혼자만 레벨업"}, {"ja": "俺だけレベルアップな件"}],
            "description": {"en": "E-rank hunter."},
            "status": status,
            "lastChapter": "179",
            "tags": [
                {"id": "t1", "attributes": {"name": {"en": "Action"}, "group": "genre"}},
                {"id": "t2", "attributes": {"name": {"en": "Long Strip"}, "group": "format"}},
            ],
        },
        "relationships": [
            {"id": "a1", "type": "author", "attributes": {"name": "Chugong"}},
            {"id": "a2", "type": "artist", "attributes": {"name": "Dubu"}},
            {"id": "c1", "type": "cover_art", "attributes": {"fileName": "cover.jpg"}},
        ],
    }


def _mangadex_chapter(chapter_id, number, group_id, group_name):
    return {
        "id": chapter_id,
        "attributes": {"chapter": number, "title": None, "publishAt": "2024-01-05T10:00:00+00:00"},
        "relationships": [{"id": group_id, "type": "scanlation_group", "attributes": {"name": group_name}}],
    }

# ==================== MANHUAPLUS ====================

class TestManhuaPlus:

    @pytest.mark.asyncio
    async def test_search_parses_items(self, fake_transport) -> None:
        fake_transport.fetch.return_value = MANHUAPLUS_LIST
        scraper = ManhuaPlusScraper(fake_transport)

        page = await scraper.search("solo")

        assert [r.id for r in page.results] == ["solo-leveling"]
        result = page.results[0]
        assert result.title == "Solo Leveling"
        assert result.image == "https://cdn.manhuaplus.top/covers/solo.jpg"
        assert result.latest_chapter == "Chapter 200"
        assert page.has_next_page is False
        assert fake_transport.fetch.await_args.kwargs["params"] == {"keyword": "solo", "page": 1}

    @pytest.mark.asyncio
    async def test_search_not_found_is_empty_page(self, fake_transport) -> None:
        fake_transport.fetch.side_effect = HttpStatusError("https://manhuaplus.top/search", 404)
        scraper = ManhuaPlusScraper(fake_transport)

        page = await scraper.search("nothing", page=2)

        assert page.results == []
        assert page.current_page == 2

    @pytest.mark.asyncio
    async def test_cloudflare_block_uses_bypass(self, fake_transport) -> None:
        fake_transport.fetch.side_effect = HttpStatusError("https://manhuaplus.top/search", 403)
        scraper = ManhuaPlusScraper(fake_transport)

        with patch("scrapers.manhwa_scrapers.bypass_cloudflare", return_value=MANHUAPLUS_LIST) as bypass:
            page = await scraper.search("solo")

        assert [r.id for r in page.results] == ["solo-leveling"]
        assert bypass.call_args.args[0] == "https://manhuaplus.top/search?keyword=solo&page=1"

    @pytest.mark.asyncio
    async def test_failed_bypass_reraises_block(self, fake_transport) -> None:
        fake_transport.fetch.side_effect = HttpStatusError("https://manhuaplus.top/manga/x", 503)
        scraper = ManhuaPlusScraper(fake_transport)

        with patch("scrapers.manhwa_scrapers.bypass_cloudflare", return_value=None):
            with pytest.raises(HttpStatusError):
                await scraper.info("x")

    @pytest.mark.asyncio
    async def test_info(self, fake_transport) -> None:
        fake_transport.fetch.return_value = MANHUAPLUS_INFO
        scraper = ManhuaPlusScraper(fake_transport)

        info = await scraper.info("solo-leveling")

        assert info.title == "Solo Leveling"
        assert info.status is SeriesStatus.ONGOING
        assert info.authors == ["Chugong"]
        assert info.genres == ["Action", "Fantasy"]
        assert info.description == "10 years ago, the Gate appeared."
        assert [c.id for c in info.chapters] == ["solo-leveling/chapter-2", "solo-leveling/chapter-1"]
        assert info.chapters[0].release_date is None
        assert info.chapters[1].release_date == datetime(2024, 1, 1)

    @pytest.mark.asyncio
    async def test_read_skips_placeholders(self, fake_transport) -> None:
        fake_transport.fetch.return_value = MANHUAPLUS_READ
        scraper = ManhuaPlusScraper(fake_transport)

        pages = await scraper.read("solo-leveling/chapter-200")

        assert [(p.index, p.image_url) for p in pages] == [
            (1, "https://img.manhuaplus.top/solo/200/01.jpg"),
            (2, "https://img.manhuaplus.top/solo/200/02.jpg"),
        ]

    @pytest.mark.asyncio
    async def test_mirror_base_url_used_for_requests(self, fake_transport) -> None:
        fake_transport.fetch.return_value = MANHUAPLUS_LIST
        scraper = ManhuaPlusScraper(fake_transport, base_url="https://mirror.manhuaplus.example/")

        await scraper.latest(page=2)

        assert fake_transport.fetch.await_args.args[0] == "https://mirror.manhuaplus.example/2"

    def test_capabilities(self) -> None:
        scraper = ManhuaPlusScraper(MagicMock())

        assert scraper.supports("genre") is True
        assert scraper.supports("advanced_search") is False

# ==================== MANHUAUS ====================

class TestManhuaUS:

    @pytest.mark.asyncio
    async def test_info_loads_chapters_via_ajax(self, fake_transport) -> None:
        fake_transport.fetch.side_effect = [MANHUAUS_INFO, MANHUAUS_CHAPTERS]
        scraper = ManhuaUSScraper(fake_transport)

        info = await scraper.info("tbate")

        assert info.title == "The Beginning After the End"
        assert info.alt_titles == ["TBATE", "最強の王様"]
        assert info.status is SeriesStatus.COMPLETED
        assert info.genres == ["Action", "Isekai"]
        assert info.authors == ["TurtleMe"]
        assert info.image == "https://manhuaus.com/wp-content/uploads/tbate.jpg"
        assert [c.number for c in info.chapters] == [3.0, 2.5]
        assert info.chapters[0].release_date == datetime(2024, 1, 5)

        ajax_call = fake_transport.fetch.await_args_list[1]
        assert ajax_call.args[0] == "https://manhuaus.com/wp-admin/admin-ajax.php"
        assert ajax_call.kwargs["method"] == "POST"
        assert ajax_call.kwargs["data"] == {"action": "manga_get_chapters", "manga": "1234"}

    @pytest.mark.asyncio
    async def test_info_falls_back_to_page_chapters(self, fake_transport) -> None:
        fake_transport.fetch.side_effect = [
            MANHUAUS_INFO,
            HttpStatusError("https://manhuaus.com/wp-admin/admin-ajax.php", 400),
        ]
        scraper = ManhuaUSScraper(fake_transport)

        info = await scraper.info("tbate")

        assert [c.id for c in info.chapters] == ["tbate/chapter-1"]

    @pytest.mark.asyncio
    async def test_read_renders_page_when_static_has_no_images(self, fake_transport) -> None:
        fake_transport.fetch.return_value = MANHUAUS_EMPTY_READER
        browser = MagicMock()
        browser.scrape_dynamic = AsyncMock(return_value=MANHUAUS_RENDERED_READER)
        scraper = ManhuaUSScraper(fake_transport, browser)

        pages = await scraper.read("tbate/chapter-1")

        assert [p.image_url for p in pages] == [
            "https://manhuaus.com/uploads/tbate/1/01.jpg",
            "https://manhuaus.com/uploads/tbate/1/02.jpg",
        ]
        browser.scrape_dynamic.assert_awaited_once_with(
            "https://manhuaus.com/manga/tbate/chapter-1/", wait_selector=".reading-content img",
        )

    @pytest.mark.asyncio
    async def test_read_without_browser_returns_no_pages(self, fake_transport) -> None:
        fake_transport.fetch.return_value = MANHUAUS_EMPTY_READER
        scraper = ManhuaUSScraper(fake_transport)

        assert await scraper.read("tbate/chapter-1") == []

# ==================== MANGADEX ====================

class TestMangaDex:

    @pytest.mark.asyncio
    async def test_search(self, fake_transport) -> None:
        fake_transport.fetch_json.return_value = {"data": [_mangadex_manga()], "total": 45}
        scraper = MangaDexScraper(fake_transport)

        page = await scraper.search("solo")

        assert page.has_next_page is True
        result = page.results[0]
        assert result.title == "Solo Leveling"
        assert result.image == "https://uploads.mangadex.org/covers/m1/cover.jpg.256.jpg"
        assert result.latest_chapter == "Chapter 179"
        assert result.status is SeriesStatus.COMPLETED
        params = fake_transport.fetch_json.await_args.kwargs["params"]
        assert ("title", "solo") in params
        assert ("offset", 0) in params

    @pytest.mark.asyncio
    async def test_last_page_has_no_next(self, fake_transport) -> None:
        fake_transport.fetch_json.return_value = {"data": [_mangadex_manga()], "total": 45}
        scraper = MangaDexScraper(fake_transport)

        page = await scraper.latest(page=3)

        assert page.has_next_page is False
        assert ("offset", 40) in fake_transport.fetch_json.await_args.kwargs["params"]

    @pytest.mark.asyncio
    async def test_info_keeps_every_scan_group_version(self, fake_transport) -> None:
        fake_transport.fetch_json.side_effect = [
            {"data": _mangadex_manga()},
            {"data": [
                _mangadex_chapter("ch1-a", "1", "g1", "Alpha Scans"),
                _mangadex_chapter("ch2", "2", "g1", "Alpha Scans"),
                _mangadex_chapter("ch1-b", "1", "g2", "Beta Scans"),
            ]},
        ]
        scraper = MangaDexScraper(fake_transport)

        info = await scraper.info("m1")

        assert info.authors == ["Chugong", "Dubu"]
        assert info.genres == ["Action"]
        assert info.alt_titles == ["나 혼자만 레벨업", "俺だけレベルアップな件"]
        assert [c.id for c in info.chapters] == ["ch2", "ch1-a", "ch1-b"]
        groups = group_chapters_by_number(info.chapters)
        assert [c.scan_group.name for c in groups[1.0]] == ["Alpha Scans", "Beta Scans"]
        assert info.chapters[0].title == "Chapter 2"

    @pytest.mark.asyncio
    async def test_read_builds_page_urls(self, fake_transport) -> None:
        fake_transport.fetch_json.return_value = {
            "baseUrl": "https://node.mangadex.network",
            "chapter": {"hash": "abc", "data": ["1.png", "2.png"]},
        }
        scraper = MangaDexScraper(fake_transport)

        pages = await scraper.read("ch1")

        assert [p.image_url for p in pages] == [
            "https://node.mangadex.network/data/abc/1.png",
            "https://node.mangadex.network/data/abc/2.png",
        ]
        assert fake_transport.fetch_json.await_args.args[0] == "https://api.mangadex.org/at-home/server/ch1"

    @pytest.mark.asyncio
    async def test_genres_only_genre_tags(self, fake_transport) -> None:
        fake_transport.fetch_json.return_value = {"data": [
            {"id": "t2", "attributes": {"name": {"en": "Romance"}, "group": "genre"}},
            {"id": "t3", "attributes": {"name": {"en": "Long Strip"}, "group": "format"}},
            {"id": "t1", "attributes": {"name": {"en": "Action"}, "group": "genre"}},
        ]}
        scraper = MangaDexScraper(fake_transport)

        genres = await scraper.genres()

        assert [(g.name, g.slug) for g in genres] == [("Action", "t1"), ("Romance", "t2")]

    @pytest.mark.asyncio
    async def test_advanced_search_filters(self, fake_transport) -> None:
        fake_transport.fetch_json.return_value = {"data": [], "total": 0}
        scraper = MangaDexScraper(fake_transport)

        await scraper.advanced_search(status="Completed", sort="popular", genres=["t1", "t2"])

        params = fake_transport.fetch_json.await_args.kwargs["params"]
        assert ("status[]", "completed") in params
        assert ("includedTags[]", "t1") in params
        assert ("includedTags[]", "t2") in params
        assert ("order[followedCount]", "desc") in params

    def test_all_operations_supported(self) -> None:
        scraper = MangaDexScraper(MagicMock())

        assert all(scraper.supports(op) for op in scraper.OPERATIONS)

# ==================== HELPERS & ANIME ====================

class TestChapterHelpers:

    def test_parse_chapter_number(self) -> None:
        assert parse_chapter_number("Chapter 12.5 - The Return") == 12.5
        assert parse_chapter_number("Oneshot") == 0.0
        assert parse_chapter_number(None) == 0.0

    def test_number_pages_is_gapless(self) -> None:
        pages = number_pages(["https://a/1.jpg", "", "  ", "https://a/2.jpg"])

        assert [p.index for p in pages] == [1, 2]

    def test_series_status_from_text(self) -> None:
        assert SeriesStatus.from_text("OnGoing") is SeriesStatus.ONGOING
        assert SeriesStatus.from_text("On Hiatus") is SeriesStatus.HIATUS
        assert SeriesStatus.from_text(None) is SeriesStatus.UNKNOWN


class TestHianime:

    @pytest.mark.asyncio
    async def test_stream_found(self) -> None:
        browser = MagicMock()
        browser.observe_network = AsyncMock(return_value="https://cdn.example/hls/master.m3u8")
        scraper = HianimeScraper(browser)

        sources = await scraper.get_episode_sources("one-piece-100?ep=2142")

        assert len(sources) == 1
        assert sources[0].is_m3u8 is True
        assert sources[0].headers == {"Referer": "https://hianime.to/"}
        args = browser.observe_network.await_args
        assert args.args[0] == "https://hianime.to/watch/one-piece-100?ep=2142"
        assert args.kwargs["frame_selector"] == "#iframe-embed"

    @pytest.mark.asyncio
    async def test_no_stream(self) -> None:
        browser = MagicMock()
        browser.observe_network = AsyncMock(return_value=None)

        assert await HianimeScraper(browser).get_episode_sources("x") == []
