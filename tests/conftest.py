"""
Pytest fixtures for the manhwa API tests.

All upstream sources are faked: no test touches the network or a real browser.
"""

from typing import Any, Dict, List, Optional
from unittest.mock import AsyncMock, MagicMock

import pytest

from scrapers.base_scraper import (
    BaseScraper, ChapterRef, PageRef, ResultPage, SearchResult, SeriesInfo,
)


class FakeProvider(BaseScraper):
    """Provider whose answers are scripted per operation.

    A response that is an exception instance is raised instead of returned.
    """

    def __init__(self, name: str, responses: Optional[Dict[str, Any]] = None):
        super().__init__(f"https://{name}.example", name, transport=MagicMock())
        self.responses = dict(responses or {})
        self.calls: List[tuple] = []

    def _respond(self, operation: str, **arguments: Any) -> Any:
        self.calls.append((operation, arguments))
        response = self.responses.get(operation)
        if isinstance(response, BaseException):
            raise response
        return response

    async def search(self, query, page=1):
        return self._respond("search", query=query, page=page)

    async def latest(self, page=1):
        return self._respond("latest", page=page)

    async def info(self, series_id):
        return self._respond("info", series_id=series_id)

    async def read(self, chapter_id):
        return self._respond("read", chapter_id=chapter_id)


class SearchOnlyProvider(BaseScraper):
    """Provider without `read`/`latest` capabilities"""

    def __init__(self, name: str, page: Optional[ResultPage] = None):
        super().__init__(f"https://{name}.example", name, transport=MagicMock())
        self.page = page
        self.calls = 0

    async def search(self, query, page=1):
        self.calls += 1
        return self.page

    async def info(self, series_id):
        self.calls += 1
        return None


class FakeClock:
    """Monotonic clock driven by the test"""

    def __init__(self, now: float = 0.0):
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_info(series_id: str = "solo-leveling", title: str = "Solo Leveling", chapters: int = 2) -> SeriesInfo:
    return SeriesInfo(
        id=series_id,
        title=title,
        chapters=[
            ChapterRef(id=f"{series_id}/chapter-{n}", title=f"Chapter {n}", number=float(n))
            for n in range(chapters, 0, -1)
        ],
    )


def make_page(*titles: str, page: int = 1) -> ResultPage:
    return ResultPage(
        current_page=page,
        has_next_page=False,
        results=[SearchResult(id=t.lower().replace(" ", "-"), title=t) for t in titles],
    )


def make_pages(count: int = 2) -> List[PageRef]:
    return [PageRef(index=i, image_url=f"https://img.example/{i}.jpg") for i in range(1, count + 1)]


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_transport() -> MagicMock:
    transport = MagicMock()
    transport.proxy = None
    transport.fetch = AsyncMock()
    transport.fetch_json = AsyncMock()
    return transport


@pytest.fixture
def no_wait_limiter() -> MagicMock:
    limiter = MagicMock()
    limiter.wait = AsyncMock()
    return limiter
