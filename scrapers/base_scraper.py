"""
Base Scraper Class - Interface commune pour tous les fournisseurs
Schéma canonique (séries, chapitres, pages) et contrat d'adaptateur
"""

import re
from abc import ABC, abstractmethod
from collections import OrderedDict
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import List, Dict, Optional, Any, Iterable, TYPE_CHECKING

from .utils import AntiBlockTransport

if TYPE_CHECKING:
    from .browser import BrowserService


class SeriesStatus(Enum):
    ONGOING = "ongoing"
    COMPLETED = "completed"
    HIATUS = "hiatus"
    UNKNOWN = "unknown"

    @classmethod
    def from_text(cls, text: Optional[str]) -> "SeriesStatus":
        """Déduit le statut d'un texte libre ("OnGoing", "Completed", "On Hiatus"...)"""
        text_lower = (text or "").lower()
        if "hiatus" in text_lower:
            return cls.HIATUS
        if "ongoing" in text_lower or "on going" in text_lower or "releasing" in text_lower:
            return cls.ONGOING
        if "completed" in text_lower or "complete" in text_lower or "finished" in text_lower:
            return cls.COMPLETED
        return cls.UNKNOWN


@dataclass(frozen=True)
class ProviderDescriptor:
    """Fournisseur enregistré au démarrage; priorité basse = essayé en premier"""
    name: str
    priority: int


@dataclass(frozen=True)
class ScanGroup:
    """Équipe de traduction d'un chapitre"""
    id: str
    name: str

    def to_dict(self) -> Dict[str, Any]:
        return {"id": self.id, "name": self.name}


@dataclass(frozen=True)
class ChapterRef:
    """Représente un chapitre d'une série"""
    id: str
    title: str
    number: float
    release_date: Optional[datetime] = None
    scan_group: Optional[ScanGroup] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "number": self.number,
            "releaseDate": self.release_date.isoformat() if self.release_date else None,
            "scanGroup": self.scan_group.to_dict() if self.scan_group else None,
        }


@dataclass(frozen=True)
class PageRef:
    """Une page d'un chapitre (index 1-based)"""
    index: int
    image_url: str
    width: Optional[int] = None
    height: Optional[int] = None

    def to_dict(self) -> Dict[str, Any]:
        result = {"index": self.index, "imageUrl": self.image_url}
        if self.width is not None:
            result["width"] = self.width
        if self.height is not None:
            result["height"] = self.height
        return result


@dataclass(frozen=True)
class SearchResult:
    """Une entrée de liste (recherche, dernières sorties, genre)"""
    id: str
    title: str
    image: str = ""
    latest_chapter: str = ""
    status: SeriesStatus = SeriesStatus.UNKNOWN
    rating: Optional[float] = None

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "image": self.image,
            "latestChapter": self.latest_chapter,
            "status": self.status.value,
            "rating": self.rating,
        }


@dataclass(frozen=True)
class ResultPage:
    """Page de résultats paginée"""
    current_page: int = 1
    has_next_page: bool = False
    results: List[SearchResult] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "currentPage": self.current_page,
            "hasNextPage": self.has_next_page,
            "results": [r.to_dict() for r in self.results],
        }


@dataclass(frozen=True)
class Genre:
    name: str
    slug: str

    def to_dict(self) -> Dict[str, Any]:
        return {"name": self.name, "slug": self.slug}


@dataclass(frozen=True)
class SeriesInfo:
    """Fiche complète d'une série"""
    id: str
    title: str
    alt_titles: List[str] = field(default_factory=list)
    image: str = ""
    description: str = ""
    genres: List[str] = field(default_factory=list)
    authors: List[str] = field(default_factory=list)
    status: SeriesStatus = SeriesStatus.UNKNOWN
    chapters: List[ChapterRef] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "altTitles": list(self.alt_titles),
            "image": self.image,
            "description": self.description,
            "genres": list(self.genres),
            "authors": list(self.authors),
            "status": self.status.value,
            "chapters": [c.to_dict() for c in self.chapters],
        }


@dataclass(frozen=True)
class VideoSource:
    """Représente une source vidéo découverte"""
    url: str
    is_m3u8: bool = False
    quality: str = "auto"
    referer: str = ""
    headers: Dict[str, str] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "url": self.url,
            "isM3U8": self.is_m3u8,
            "quality": self.quality,
            "referer": self.referer,
            "headers": dict(self.headers),
        }


# ==================== HELPERS CHAPITRES / PAGES ====================

_NUMBER = re.compile(r'(\d+(?:\.\d+)?)')


def parse_chapter_number(text: Optional[str]) -> float:
    """Extrait le numéro d'un titre de chapitre ("Chapter 12.5 - ..." -> 12.5)"""
    if not text:
        return 0.0
    match = _NUMBER.search(text)
    return float(match.group(1)) if match else 0.0


def sort_chapters(chapters: Iterable[ChapterRef]) -> List[ChapterRef]:
    """Tri par numéro décroissant (stable: les versions d'un même numéro gardent leur ordre)"""
    return sorted(chapters, key=lambda c: c.number, reverse=True)


def group_chapters_by_number(chapters: Iterable[ChapterRef]) -> "OrderedDict[float, List[ChapterRef]]":
    """Regroupe les versions (équipes de scan) d'un même numéro, du plus récent au plus ancien"""
    groups: "OrderedDict[float, List[ChapterRef]]" = OrderedDict()
    for chapter in sort_chapters(chapters):
        groups.setdefault(chapter.number, []).append(chapter)
    return groups


def number_pages(image_urls: Iterable[str]) -> List[PageRef]:
    """Construit une liste de pages sans trou à partir des URLs d'images"""
    urls = [u.strip() for u in image_urls if u and u.strip()]
    return [PageRef(index=i, image_url=url) for i, url in enumerate(urls, 1)]


# ==================== CONTRAT ADAPTATEUR ====================

class BaseScraper(ABC):
    """Classe de base pour tous les fournisseurs"""

    OPERATIONS = ("search", "latest", "info", "read", "genre", "genres", "advanced_search")

    def __init__(self, base_url: str, site_name: str,
                 transport: Optional[AntiBlockTransport] = None,
                 browser: Optional["BrowserService"] = None,
                 language: str = "en"):
        self.base_url = base_url.rstrip('/')
        self.site_name = site_name
        # un transport (et son rate limiter) par fournisseur
        self.transport = transport or AntiBlockTransport()
        self.browser = browser
        self.language = language

    @property
    def name(self) -> str:
        return self.site_name.lower()

    def supports(self, operation: str) -> bool:
        """Vrai si l'adaptateur implémente l'opération"""
        if operation not in self.OPERATIONS:
            return False
        method = getattr(type(self), operation, None)
        if method is None:
            return False
        return method is not getattr(BaseScraper, operation)

    @abstractmethod
    async def search(self, query: str, page: int = 1) -> ResultPage:
        """
        Recherche de séries

        Args:
            query: Terme de recherche
            page: Numéro de page (1-based)

        Returns:
            Page de résultats
        """
        pass

    @abstractmethod
    async def info(self, series_id: str) -> SeriesInfo:
        """
        Récupère la fiche complète d'une série avec ses chapitres

        Args:
            series_id: Identifiant de la série chez ce fournisseur

        Returns:
            SeriesInfo
        """
        pass

    async def latest(self, page: int = 1) -> ResultPage:
        """Dernières mises à jour"""
        raise NotImplementedError(f"{self.site_name} does not support latest")

    async def read(self, chapter_id: str) -> List[PageRef]:
        """Pages d'un chapitre, ordonnées et sans trou"""
        raise NotImplementedError(f"{self.site_name} does not support read")

    async def genre(self, slug: str, page: int = 1) -> ResultPage:
        """Séries d'un genre"""
        raise NotImplementedError(f"{self.site_name} does not support genre")

    async def genres(self) -> List[Genre]:
        """Liste des genres du fournisseur"""
        raise NotImplementedError(f"{self.site_name} does not support genres")

    async def advanced_search(self, query: Optional[str] = None, page: int = 1,
                              status: Optional[str] = None, sort: Optional[str] = None,
                              genres: Optional[List[str]] = None) -> ResultPage:
        """Recherche filtrée (statut, tri, genres)"""
        raise NotImplementedError(f"{self.site_name} does not support advanced_search")

    def clean_text(self, text: str) -> str:
        """Nettoie le texte extrait"""
        if not text:
            return ""
        return ' '.join(text.replace('\n', ' ').replace('\t', ' ').split())
