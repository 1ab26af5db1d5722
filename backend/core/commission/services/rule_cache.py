from __future__ import annotations

import time
from typing import Callable

from django.conf import settings
from django.core.cache import BaseCache, caches

from commission.models import CommissionRule

DEFAULT_KEY_PREFIX = "commission:active-rules"


class RuleCache:
    """Injectable cache of the active commission rule set.

    Entries live in a Django cache backend (``CACHES["default"]`` unless one
    is passed in), so every `RuleCache` pointed at the same backend and prefix
    shares one view of the rules. Data is stored under a generation key.
    `invalidate()` bumps the generation, which orphans whatever any process
    loaded before the write, including loads still in flight. A ttl of 0
    disables caching.
    """

    def __init__(
        self,
        *,
        cache: BaseCache | None = None,
        ttl_seconds: int | None = None,
        key_prefix: str = DEFAULT_KEY_PREFIX,
    ):
        self.cache = cache if cache is not None else caches["default"]
        if ttl_seconds is None:
            ttl_seconds = getattr(settings, "COMMISSION_RULE_CACHE_TTL_SECONDS", 30)
        self.ttl_seconds = ttl_seconds
        self.key_prefix = key_prefix

    @property
    def generation_key(self) -> str:
        return f"{self.key_prefix}:generation"

    def _rules_key(self, generation: int) -> str:
        return f"{self.key_prefix}:{generation}"

    def _generation(self) -> int:
        generation = self.cache.get(self.generation_key)
        if generation is None:
            # A fresh value keeps an evicted counter from reviving old entries.
            self.cache.add(self.generation_key, time.time_ns(), timeout=None)
            generation = self.cache.get(self.generation_key)
        return generation

    def get_or_load(self, loader: Callable[[], list[CommissionRule]]) -> tuple[CommissionRule, ...]:
        if self.ttl_seconds <= 0:
            return tuple(loader())

        generation = self._generation()
        key = self._rules_key(generation)
        rules = self.cache.get(key)
        if rules is not None:
            return rules

        # A storage error propagates and leaves the cache untouched.
        rules = tuple(loader())
        if self._generation() == generation:
            self.cache.set(key, rules, timeout=self.ttl_seconds)
        return rules

    def invalidate(self) -> None:
        try:
            self.cache.incr(self.generation_key)
        except ValueError:
            self.cache.set(self.generation_key, time.time_ns(), timeout=None)
