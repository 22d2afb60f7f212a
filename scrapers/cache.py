"""
Cache TTL en mémoire

Les entrées vivent le temps du processus; une entrée expirée est ignorée puis
supprimée à la lecture suivante (pas de balayage en arrière-plan).
"""

import json
import logging
import time
from dataclasses import dataclass
from typing import Any, Awaitable, Callable, Dict, Optional, TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry:
    key: str
    value: Any
    created_at: float
    ttl: float

    def is_expired(self, now: float) -> bool:
        return now - self.created_at >= self.ttl


def make_key(provider: str, operation: str, args: Optional[Dict[str, Any]] = None) -> str:
    """Clé unique par (fournisseur, opération, arguments)"""
    encoded = json.dumps(args or {}, sort_keys=True, default=str, ensure_ascii=False)
    return f"{provider}:{operation}:{encoded}"


class TTLCache:
    """Stockage clé -> valeur avec expiration"""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: Dict[str, CacheEntry] = {}
        self._clock = clock
        self.hits = 0
        self.misses = 0

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get(self, key: str) -> Optional[CacheEntry]:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.is_expired(self._clock()):
            del self._entries[key]
            return None
        return entry

    def set(self, key: str, value: Any, ttl: float) -> CacheEntry:
        entry = CacheEntry(key=key, value=value, created_at=self._clock(), ttl=ttl)
        self._entries[key] = entry
        return entry

    async def fetch(self, key: str, ttl: float, producer: Callable[[], Awaitable[T]]) -> T:
        """
        Retourne la valeur en cache ou appelle `producer`

        Seul un appel réussi de `producer` crée ou remplace l'entrée; une
        exception est propagée telle quelle. Deux manques simultanés sur la
        même clé appellent tous deux `producer`.
        """
        entry = self.get(key)
        if entry is not None:
            self.hits += 1
            logger.debug(f"[Cache] Hit for {key}")
            return entry.value

        self.misses += 1
        value = await producer()
        self.set(key, value, ttl)
        logger.debug(f"[Cache] Stored {key} for {ttl}s")
        return value

    def invalidate(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        logger.info("[Cache] Cleared all entries")

    def prune(self) -> int:
        """Supprime les entrées expirées; retourne leur nombre"""
        now = self._clock()
        expired = [k for k, e in self._entries.items() if e.is_expired(now)]
        for key in expired:
            del self._entries[key]
        if expired:
            logger.info(f"[Cache] Cleared {len(expired)} expired entries")
        return len(expired)

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
