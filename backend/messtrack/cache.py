"""
Cache injecté : une interface, deux implémentations interchangeables.

- InMemoryCache : dictionnaire du processus avec expiration (dev, tests, mono-worker)
- RedisCache    : cache réseau partagé entre workers (production)

Le backend est choisi une seule fois au démarrage (build_cache) et rangé dans
app.state.cache. Les services le reçoivent en paramètre : aucun état global.
Les valeurs sont des chaînes (JSON sérialisé par l'appelant).
"""

import logging
import threading
import time
from abc import ABC, abstractmethod
from typing import Dict, Optional, Tuple

import redis
from fastapi import Request

logger = logging.getLogger(__name__)


class CacheUnavailableError(RuntimeError):
    """Le cache réseau ne répond pas : l'appelant doit traiter l'opération comme un échec de stockage."""


class CacheBackend(ABC):
    """Contrat minimal get / set / delete / expire (+ pop atomique)."""

    @abstractmethod
    def get(self, key: str) -> Optional[str]:
        ...

    @abstractmethod
    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        ...

    @abstractmethod
    def delete(self, key: str) -> None:
        ...

    @abstractmethod
    def expire(self, key: str, seconds: int) -> bool:
        ...

    @abstractmethod
    def pop(self, key: str) -> Optional[str]:
        """Lit et supprime la clé en une seule opération (valeurs à usage unique)."""

    def purge_expired(self) -> int:
        return 0


class InMemoryCache(CacheBackend):
    """Cache en mémoire du processus, protégé par un verrou (threadpool FastAPI)."""

    def __init__(self, clock=time.monotonic):
        self._clock = clock
        self._lock = threading.Lock()
        self._data: Dict[str, Tuple[str, Optional[float]]] = {}

    def _alive(self, key: str) -> Optional[str]:
        entry = self._data.get(key)
        if entry is None:
            return None
        value, expires_at = entry
        if expires_at is not None and expires_at <= self._clock():
            del self._data[key]
            return None
        return value

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._alive(key)

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        expires_at = self._clock() + ttl if ttl else None
        with self._lock:
            self._data[key] = (value, expires_at)

    def delete(self, key: str) -> None:
        with self._lock:
            self._data.pop(key, None)

    def expire(self, key: str, seconds: int) -> bool:
        with self._lock:
            value = self._alive(key)
            if value is None:
                return False
            self._data[key] = (value, self._clock() + seconds)
            return True

    def pop(self, key: str) -> Optional[str]:
        with self._lock:
            value = self._alive(key)
            if value is not None:
                del self._data[key]
            return value

    def purge_expired(self) -> int:
        """Supprime les entrées expirées (appelé par le scheduler)."""
        now = self._clock()
        with self._lock:
            expired = [
                key for key, (_, expires_at) in self._data.items()
                if expires_at is not None and expires_at <= now
            ]
            for key in expired:
                del self._data[key]
        return len(expired)


class RedisCache(CacheBackend):
    """Cache Redis. Toute erreur réseau devient CacheUnavailableError."""

    def __init__(self, client: redis.Redis, prefix: str = ""):
        self._client = client
        self._prefix = f"{prefix}:" if prefix else ""

    def _key(self, key: str) -> str:
        return self._prefix + key

    def get(self, key: str) -> Optional[str]:
        try:
            return self._client.get(self._key(key))
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    def set(self, key: str, value: str, ttl: Optional[int] = None) -> None:
        try:
            self._client.set(self._key(key), value, ex=ttl)
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    def delete(self, key: str) -> None:
        try:
            self._client.delete(self._key(key))
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    def expire(self, key: str, seconds: int) -> bool:
        try:
            return bool(self._client.expire(self._key(key), seconds))
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc

    def pop(self, key: str) -> Optional[str]:
        try:
            return self._client.getdel(self._key(key))
        except redis.RedisError as exc:
            raise CacheUnavailableError(str(exc)) from exc


def build_cache(settings) -> CacheBackend:
    """Instancie le backend configuré (CACHE_BACKEND = memory | redis)."""
    backend = settings.CACHE_BACKEND.lower()
    if backend == "redis":
        client = redis.from_url(settings.REDIS_URL, decode_responses=True)
        logger.info("Cache Redis configuré.")
        return RedisCache(client, prefix=settings.CACHE_KEY_PREFIX)
    if backend == "memory":
        logger.info("Cache en mémoire du processus configuré.")
        return InMemoryCache()
    raise ValueError(f"CACHE_BACKEND inconnu : {settings.CACHE_BACKEND}")


def get_cache(request: Request) -> CacheBackend:
    """Dépendance FastAPI : renvoie le cache créé au démarrage."""
    return request.app.state.cache
