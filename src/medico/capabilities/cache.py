"""In-memory TTL cache for capability results.

Only stateless capabilities that declare a ``CachePolicy`` are cached, and
only ``Success`` results are stored. Each capability gets its own
``TTLCache`` sized by its policy.
"""

import copy
import hashlib
import json
import re
from collections.abc import Mapping
from dataclasses import dataclass, replace
from typing import Any

from cachetools import TTLCache

from medico.capabilities.types import Capability, Success


@dataclass
class CacheStats:
    """Cache statistics."""

    hits: int
    misses: int
    size: int


def _normalize_text(value: str) -> str:
    return re.sub(r"\s+", " ", value.strip().lower())


def derive_cache_key(
    capability_name: str,
    input_value: Mapping[str, Any],
    normalize: tuple[str, ...] = (),
) -> str:
    """Derive a cache key from a capability name and its validated input.

    The named string fields are trimmed, lowercased and whitespace-collapsed;
    the value is then serialized as canonical JSON (sorted keys) and hashed.
    """
    normalized = dict(input_value)
    for name in normalize:
        if isinstance(normalized.get(name), str):
            normalized[name] = _normalize_text(normalized[name])
    canonical = json.dumps(normalized, sort_keys=True, ensure_ascii=False, default=str)
    digest = hashlib.sha256(canonical.encode("utf-8")).hexdigest()
    return f"{capability_name}:{digest}"


class ResultCache:
    """Per-capability TTL caches for successful results."""

    def __init__(self) -> None:
        self._caches: dict[str, TTLCache] = {}
        self._hits = 0
        self._misses = 0

    def _cache_for(self, capability: Capability) -> TTLCache | None:
        policy = capability.cache
        if policy is None:
            return None
        cache = self._caches.get(capability.name)
        if cache is None:
            cache = TTLCache(maxsize=policy.maxsize, ttl=policy.ttl_seconds)
            self._caches[capability.name] = cache
        return cache

    def _key(self, capability: Capability, input_value: Mapping[str, Any]) -> str:
        assert capability.cache is not None
        return derive_cache_key(capability.name, input_value, capability.cache.normalize)

    def get(self, capability: Capability, input_value: Mapping[str, Any]) -> Success | None:
        """Get a copy of a cached result, marked ``cached=True``."""
        cache = self._cache_for(capability)
        if cache is None:
            return None
        result = cache.get(self._key(capability, input_value))
        if result is None:
            self._misses += 1
            return None
        self._hits += 1
        return replace(result, value=copy.deepcopy(result.value), cached=True)

    def set(
        self,
        capability: Capability,
        input_value: Mapping[str, Any],
        result: Success,
    ) -> None:
        cache = self._cache_for(capability)
        if cache is None:
            return
        stored = replace(result, value=copy.deepcopy(result.value))
        cache[self._key(capability, input_value)] = stored

    def invalidate(
        self,
        capability: Capability | None = None,
        input_value: Mapping[str, Any] | None = None,
    ) -> None:
        """Invalidate cache entries.

        Args:
            capability: Capability whose entries to drop, or None to clear all.
            input_value: A specific input to drop; requires ``capability``.
        """
        if capability is None:
            self._caches.clear()
            return
        cache = self._caches.get(capability.name)
        if cache is None:
            return
        if input_value is None:
            cache.clear()
        else:
            cache.pop(self._key(capability, input_value), None)

    def stats(self) -> CacheStats:
        return CacheStats(
            hits=self._hits,
            misses=self._misses,
            size=sum(len(c) for c in self._caches.values()),
        )
