"""
Cache dos agregados derivados (sprint, times, empresa).

Cada entrada tem TTL próprio e um conjunto de tags. A invalidação por tag remove
todas as entradas que carregam a tag. As consultas retornam explicitamente se
houve acerto ou falha no cache.
"""

import time
from typing import Any, Callable, Dict, FrozenSet, Iterable, NamedTuple, Optional, Tuple
from loguru import logger
from pydantic import BaseModel


def team_tag(team_id: int) -> str:
    return f"team:{team_id}"


SPRINT_TAG = "sprint"
COMPANY_TAG = "company"


class CacheLookup(NamedTuple):
    """Resultado de uma consulta ao cache"""
    hit: bool
    value: Any = None


class CacheEntry:
    """Entrada do cache"""

    __slots__ = ("key", "value", "timestamp", "ttl", "tags", "last_access")

    def __init__(self, key: str, value: Any, timestamp: float, ttl: float, tags: FrozenSet[str]):
        self.key = key
        self.value = value
        self.timestamp = timestamp
        self.ttl = ttl
        self.tags = tags
        self.last_access = timestamp

    def age(self, now: float) -> float:
        return now - self.timestamp

    def is_fresh(self, now: float) -> bool:
        return self.age(now) < self.ttl


class CacheStats(BaseModel):
    """Estatísticas do cache"""
    hits: int = 0
    misses: int = 0
    size: int = 0
    hit_rate: float = 0.0


class CacheLayer:
    """Cache em memória com TTL, invalidação por tag e despejo LRU"""

    def __init__(
        self,
        default_ttl: float = 300,
        max_entries: int = 1000,
        clock: Callable[[], float] = time.monotonic,
    ):
        """
        Inicializa o cache

        Args:
            default_ttl: TTL padrão em segundos
            max_entries: Quantidade máxima de entradas antes do despejo LRU
            clock: Relógio monotônico em segundos
        """
        self._entries: Dict[str, CacheEntry] = {}
        self._default_ttl = default_ttl
        self._max_entries = max_entries
        self._clock = clock
        self._hits = 0
        self._misses = 0

    def is_cache_valid(self, key: str) -> bool:
        """Entrada existe, não expirou e não foi invalidada"""
        entry = self._entries.get(key)
        return entry is not None and entry.is_fresh(self._clock())

    def get(self, key: str) -> CacheLookup:
        """
        Consulta uma chave

        Entradas expiradas são removidas na consulta.

        Args:
            key: Chave do cache

        Returns:
            CacheLookup: hit=True e o valor, ou hit=False
        """
        now = self._clock()
        entry = self._entries.get(key)
        if entry is None:
            self._misses += 1
            return CacheLookup(hit=False)
        if not entry.is_fresh(now):
            del self._entries[key]
            self._misses += 1
            logger.debug(f"Cache expirado para {key}")
            return CacheLookup(hit=False)
        entry.last_access = now
        self._hits += 1
        return CacheLookup(hit=True, value=entry.value)

    def set(self, key: str, value: Any, ttl: Optional[float] = None, tags: Iterable[str] = ()) -> None:
        """Grava um valor com TTL e tags"""
        now = self._clock()
        self._entries[key] = CacheEntry(
            key=key,
            value=value,
            timestamp=now,
            ttl=self._default_ttl if ttl is None else ttl,
            tags=frozenset(tags),
        )
        if len(self._entries) > self._max_entries:
            self._evict_lru()

    def get_or_compute(
        self,
        key: str,
        compute: Callable[[], Any],
        ttl: Optional[float] = None,
        tags: Iterable[str] = (),
    ) -> Tuple[Any, bool]:
        """
        Retorna o valor em cache ou calcula e grava

        Returns:
            Tuple[Any, bool]: (valor, se foi acerto no cache)
        """
        lookup = self.get(key)
        if lookup.hit:
            logger.debug(f"Cache hit: {key}")
            return lookup.value, True
        logger.debug(f"Cache miss: {key}")
        value = compute()
        self.set(key, value, ttl=ttl, tags=tags)
        return value, False

    def invalidate(self, tag: str) -> int:
        """
        Remove todas as entradas que carregam a tag

        Returns:
            int: Quantidade de entradas removidas
        """
        keys = [key for key, entry in self._entries.items() if tag in entry.tags]
        for key in keys:
            del self._entries[key]
        if keys:
            logger.debug(f"Cache invalidado pela tag {tag}: {len(keys)} entradas")
        return len(keys)

    def invalidate_tags(self, tags: Iterable[str]) -> int:
        return sum(self.invalidate(tag) for tag in tags)

    def invalidate_key(self, key: str) -> bool:
        return self._entries.pop(key, None) is not None

    def clear(self) -> None:
        self._entries.clear()
        self._hits = 0
        self._misses = 0

    def cleanup_expired(self) -> int:
        """Remove todas as entradas expiradas"""
        now = self._clock()
        expired = [key for key, entry in self._entries.items() if not entry.is_fresh(now)]
        for key in expired:
            del self._entries[key]
        return len(expired)

    def stats(self) -> CacheStats:
        total = self._hits + self._misses
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=len(self._entries),
            hit_rate=self._hits / total if total else 0.0,
        )

    def _evict_lru(self) -> None:
        lru_key = min(self._entries, key=lambda k: self._entries[k].last_access)
        del self._entries[lru_key]
        logger.debug(f"Entrada LRU removida do cache: {lru_key}")

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return key in self._entries
