"""
Unified Provider System

Essaie les fournisseurs par ordre de priorité jusqu'à obtenir une réponse
valide. La réponse porte toujours le champ `provider` pour que le client
sache quelle source utiliser pour les requêtes suivantes (ex: read après info).
"""

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Sequence, Tuple, Union

from .base_scraper import BaseScraper, ProviderDescriptor
from .cache import TTLCache, make_key
from .utils import ScraperError
from .validators import validate

logger = logging.getLogger(__name__)


class Operation(Enum):
    SEARCH = "search"
    LATEST = "latest"
    INFO = "info"
    READ = "read"
    GENRE = "genre"
    GENRES = "genres"
    ADVANCED_SEARCH = "advanced_search"


class AttemptOutcome(Enum):
    SUCCESS = "success"
    HTTP_ERROR = "httpError"
    PARSE_EMPTY = "parseEmpty"
    EXCEPTION = "exception"


@dataclass
class FetchAttempt:
    """Résultat de l'essai d'un fournisseur, le temps d'un appel"""
    provider: str
    outcome: AttemptOutcome
    data: Any = None
    error_message: str = ""

    @property
    def reason(self) -> str:
        return f"{self.provider}: {self.error_message or self.outcome.value}"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "provider": self.provider,
            "outcome": self.outcome.value,
            "error": self.error_message,
        }


def _serialize(data: Any) -> Any:
    if hasattr(data, "to_dict"):
        return data.to_dict()
    if isinstance(data, (list, tuple)):
        return [_serialize(item) for item in data]
    return data


@dataclass
class FallbackResult:
    """Premier résultat valide, avec sa provenance"""
    operation: Operation
    data: Any
    provider: str
    fallback_used: bool
    attempts: List[FetchAttempt] = field(default_factory=list)
    found: bool = field(default=True, init=False)

    def to_dict(self) -> Dict[str, Any]:
        payload = _serialize(self.data)
        if not isinstance(payload, dict):
            key = "pages" if self.operation is Operation.READ else self.operation.value
            payload = {key: payload}
        return {**payload, "provider": self.provider, "fallbackUsed": self.fallback_used}


@dataclass
class Exhausted:
    """Aucun fournisseur n'a donné de réponse valide"""
    operation: Operation
    attempts: List[FetchAttempt] = field(default_factory=list)
    tried_providers: List[str] = field(default_factory=list)
    found: bool = field(default=False, init=False)

    @property
    def errors(self) -> List[str]:
        return [a.reason for a in self.attempts]

    def to_dict(self) -> Dict[str, Any]:
        return {"errors": self.errors, "triedProviders": list(self.tried_providers)}


OrchestratorOutcome = Union[FallbackResult, Exhausted]


class FallbackOrchestrator:
    """Coordonne les fournisseurs, le cache et la validation"""

    def __init__(self, providers: Sequence[Tuple[ProviderDescriptor, BaseScraper]],
                 cache: Optional[TTLCache] = None,
                 ttls: Optional[Dict[str, float]] = None,
                 default_ttl: float = 300.0):
        names = [d.name for d, _ in providers]
        duplicates = {n for n in names if names.count(n) > 1}
        if duplicates:
            raise ValueError(f"Duplicate provider names: {sorted(duplicates)}")

        # sorted() est stable: à priorité égale, l'ordre d'enregistrement est conservé
        ordered = sorted(providers, key=lambda item: item[0].priority)
        self._providers: Tuple[ProviderDescriptor, ...] = tuple(d for d, _ in ordered)
        self._adapters: Dict[str, BaseScraper] = {d.name: a for d, a in ordered}
        self.cache = cache
        self.ttls = dict(ttls or {})
        self.default_ttl = default_ttl

    @property
    def providers(self) -> Tuple[ProviderDescriptor, ...]:
        return self._providers

    def adapter(self, name: str) -> Optional[BaseScraper]:
        return self._adapters.get(name)

    def provider_order(self, preferred: Optional[str] = None) -> List[ProviderDescriptor]:
        """Fournisseur préféré en tête, les autres dans leur ordre d'origine"""
        if not preferred:
            return list(self._providers)
        head = [d for d in self._providers if d.name == preferred]
        tail = [d for d in self._providers if d.name != preferred]
        return head + tail

    async def run(self, operation: Union[Operation, str], preferred: Optional[str] = None,
                  **arguments: Any) -> OrchestratorOutcome:
        """
        Exécute une opération avec repli automatique

        Args:
            operation: Opération du contrat fournisseur
            preferred: Fournisseur à essayer en premier (optionnel)
            **arguments: Arguments de l'opération

        Returns:
            FallbackResult au premier résultat valide, sinon Exhausted
        """
        operation = Operation(operation)
        op_name = operation.value
        attempts: List[FetchAttempt] = []
        tried: List[str] = []
        first_tried: Optional[ProviderDescriptor] = None

        for descriptor in self.provider_order(preferred):
            adapter = self._adapters[descriptor.name]
            if not adapter.supports(op_name):
                logger.debug(f"[Unified] {descriptor.name} does not support {op_name}, skipping")
                continue

            if first_tried is None:
                first_tried = descriptor
            tried.append(descriptor.name)
            logger.info(f"[Unified] Trying {op_name} with provider: {descriptor.name}")

            try:
                data = await self._invoke(descriptor, adapter, op_name, arguments)
            except ScraperError as e:
                attempts.append(FetchAttempt(descriptor.name, AttemptOutcome.HTTP_ERROR,
                                             error_message=e.message))
                logger.info(f"[Unified] Failed with {descriptor.name}: {e.message}")
                continue
            except Exception as e:
                message = str(e) or type(e).__name__
                attempts.append(FetchAttempt(descriptor.name, AttemptOutcome.EXCEPTION,
                                             error_message=message))
                logger.warning(f"[Unified] Adapter {descriptor.name} crashed on {op_name}: {message}")
                continue

            try:
                valid = validate(op_name, data)
            except Exception as e:
                message = f"Unexpected {op_name} payload: {e}"
                attempts.append(FetchAttempt(descriptor.name, AttemptOutcome.EXCEPTION, data=data,
                                             error_message=message))
                logger.warning(f"[Unified] {descriptor.name}: {message}")
                continue

            if not valid:
                attempts.append(FetchAttempt(descriptor.name, AttemptOutcome.PARSE_EMPTY, data=data,
                                             error_message="Invalid data (empty result)"))
                logger.info(f"[Unified] Invalid {op_name} data from {descriptor.name}")
                continue

            attempts.append(FetchAttempt(descriptor.name, AttemptOutcome.SUCCESS, data=data))
            logger.info(f"[Unified] Success with {descriptor.name} for {op_name}")
            return FallbackResult(
                operation=operation,
                data=data,
                provider=descriptor.name,
                fallback_used=self._is_fallback(descriptor, first_tried, preferred),
                attempts=attempts,
            )

        logger.info(f"[Unified] All providers failed for {op_name} {arguments}")
        return Exhausted(operation=operation, attempts=attempts, tried_providers=tried)

    @staticmethod
    def _is_fallback(winner: ProviderDescriptor, first_tried: ProviderDescriptor,
                     preferred: Optional[str]) -> bool:
        """
        Repli = le gagnant n'est pas le premier fournisseur essayé.

        Dans l'ordre par défaut on compare les priorités: à priorité égale
        avec le premier, ce n'est pas un repli.
        """
        if first_tried.name == preferred:
            return winner.name != first_tried.name
        return winner.priority > first_tried.priority

    async def _invoke(self, descriptor: ProviderDescriptor, adapter: BaseScraper,
                      op_name: str, arguments: Dict[str, Any]) -> Any:
        method = getattr(adapter, op_name)
        if self.cache is None:
            return await method(**arguments)

        key = make_key(descriptor.name, op_name, arguments)
        ttl = self.ttls.get(op_name, self.default_ttl)
        return await self.cache.fetch(key, ttl, lambda: method(**arguments))

    # ==================== RACCOURCIS ====================

    async def search(self, query: str, page: int = 1, preferred: Optional[str] = None) -> OrchestratorOutcome:
        return await self.run(Operation.SEARCH, preferred, query=query, page=page)

    async def latest(self, page: int = 1, preferred: Optional[str] = None) -> OrchestratorOutcome:
        return await self.run(Operation.LATEST, preferred, page=page)

    async def info(self, series_id: str, preferred: Optional[str] = None) -> OrchestratorOutcome:
        return await self.run(Operation.INFO, preferred, series_id=series_id)

    async def read(self, chapter_id: str, preferred: Optional[str] = None) -> OrchestratorOutcome:
        return await self.run(Operation.READ, preferred, chapter_id=chapter_id)

    async def genre(self, slug: str, page: int = 1, preferred: Optional[str] = None) -> OrchestratorOutcome:
        return await self.run(Operation.GENRE, preferred, slug=slug, page=page)

    async def genres(self, preferred: Optional[str] = None) -> OrchestratorOutcome:
        return await self.run(Operation.GENRES, preferred)

    async def advanced_search(self, query: Optional[str] = None, page: int = 1,
                              status: Optional[str] = None, sort: Optional[str] = None,
                              genres: Optional[List[str]] = None,
                              preferred: Optional[str] = None) -> OrchestratorOutcome:
        return await self.run(Operation.ADVANCED_SEARCH, preferred, query=query, page=page,
                              status=status, sort=sort, genres=genres)
