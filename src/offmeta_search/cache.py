"""
Translation cache with in-flight request deduplication.

One TranslationCache wraps one translator (anything with an async
``translate(request)``). Identical requests share a single network call
while it is pending, and successful results are served from memory for
the TTL. Each instance owns its own state; nothing here is module-global.
"""

import asyncio
import json
import logging
import time
from collections import OrderedDict, deque
from dataclasses import dataclass
from typing import Any, Callable, Deque, Dict, Optional

from .config import (
    IDENTICAL_SEARCH_COOLDOWN_MS,
    MAX_CACHE_SIZE,
    RESULT_CACHE_TTL_MS,
    SEARCH_RATE_LIMIT_PER_MINUTE,
)
from .events import TranslationCacheHitEvent, TranslationDedupHitEvent, TranslationRequestedEvent
from .exceptions import RateLimitedError, TranslationError
from .models.search import TranslationRequest, TranslationResult
from .tools.query_validator import normalize_whitespace, repair_query

logger = logging.getLogger(__name__)


def make_cache_key(request: TranslationRequest) -> str:
    """Fingerprint of query + filters + salt; bypass_cache does not take part"""
    query = normalize_whitespace(request.query).lower()
    filters = json.dumps(request.filters.model_dump(), sort_keys=True) if request.filters else "{}"
    return f"translation:{query}|{filters}|{request.cache_salt or ''}"


class SearchRateLimiter:
    """
    Client-side guard on real backend calls.

    Allows at most ``max_per_minute`` recorded calls in any sliding
    60 second window and refuses an identical query repeated within
    ``identical_cooldown_ms``. Only successful calls are recorded, so
    failures never use up the allowance.
    """

    def __init__(self, max_per_minute: int = SEARCH_RATE_LIMIT_PER_MINUTE,
                 identical_cooldown_ms: int = IDENTICAL_SEARCH_COOLDOWN_MS,
                 clock: Callable[[], float] = time.monotonic):
        self.max_per_minute = max_per_minute
        self.identical_cooldown = identical_cooldown_ms / 1000
        self._clock = clock
        self._calls: Deque[float] = deque()
        self._last_query: Optional[str] = None
        self._last_time: Optional[float] = None

    def _prune(self, now: float):
        while self._calls and now - self._calls[0] >= 60:
            self._calls.popleft()

    def check(self, query: str):
        """Raise RateLimitedError when a call for this query is not allowed right now"""
        now = self._clock()
        self._prune(now)

        folded = normalize_whitespace(query).lower()
        if (self._last_query == folded and self._last_time is not None
                and now - self._last_time < self.identical_cooldown):
            raise RateLimitedError(
                "Please wait before repeating the same search",
                status_code=None,
                retry_after=self.identical_cooldown - (now - self._last_time),
            )

        if len(self._calls) >= self.max_per_minute:
            raise RateLimitedError(
                "Rate limit exceeded. Please wait a moment before searching again.",
                status_code=None,
                retry_after=60 - (now - self._calls[0]) if self._calls else 60,
            )

    def record(self, query: str):
        now = self._clock()
        self._calls.append(now)
        self._last_query = normalize_whitespace(query).lower()
        self._last_time = now


@dataclass
class _CacheEntry:
    result: TranslationResult
    stored_at: float


class _InFlight:
    def __init__(self, task: "asyncio.Task[TranslationResult]"):
        self.task = task
        self.waiters = 0


class TranslationCache:
    """Memoizing, deduplicating front for a translator"""

    def __init__(self, translator, ttl_ms: int = RESULT_CACHE_TTL_MS, max_size: int = MAX_CACHE_SIZE,
                 rate_limiter: Optional[SearchRateLimiter] = None,
                 clock: Callable[[], float] = time.monotonic, event_emitter=None):
        self.translator = translator
        self.ttl = ttl_ms / 1000
        self.max_size = max_size
        self._clock = clock
        self.rate_limiter = rate_limiter if rate_limiter is not None else SearchRateLimiter(clock=clock)
        self.events = event_emitter

        self._entries: "OrderedDict[str, _CacheEntry]" = OrderedDict()
        self._inflight: Dict[str, _InFlight] = {}

        self.hits = 0
        self.misses = 0
        self.dedup_hits = 0
        self.network_calls = 0

    def _emit(self, event):
        if self.events:
            self.events.emit(event)

    # Cache storage

    def get(self, key: str) -> Optional[TranslationResult]:
        """Cached result for a key, or None when missing or older than the TTL"""
        entry = self._entries.get(key)
        if entry is None:
            return None
        if self._clock() - entry.stored_at >= self.ttl:
            del self._entries[key]
            return None
        return entry.result

    def put(self, key: str, result: TranslationResult):
        # Re-inserting refreshes the entry's position; eviction is oldest insert first
        self._entries.pop(key, None)
        self._entries[key] = _CacheEntry(result=result, stored_at=self._clock())
        while len(self._entries) > self.max_size:
            evicted, _ = self._entries.popitem(last=False)
            logger.debug("Evicted translation cache entry %s", evicted)

    def clear(self):
        self._entries.clear()

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, key: str) -> bool:
        return self.get(key) is not None

    def get_cache_stats(self) -> Dict[str, Any]:
        return {
            "size": len(self._entries),
            "max_size": self.max_size,
            "ttl_seconds": self.ttl,
            "hits": self.hits,
            "misses": self.misses,
            "dedup_hits": self.dedup_hits,
            "network_calls": self.network_calls,
            "in_flight": len(self._inflight),
        }

    # Translation

    async def translate(self, request: TranslationRequest) -> TranslationResult:
        """
        Translate with caching and deduplication

        A cache hit returns a copy marked ``from_cache``. On a miss the
        caller joins any pending identical request, or starts one. When
        every caller waiting on a pending request has been cancelled, the
        underlying call is cancelled too.
        """
        key = make_cache_key(request)

        if not request.bypass_cache:
            cached = self.get(key)
            if cached is not None:
                self.hits += 1
                logger.info("Translation cache hit for %r", request.query)
                self._emit(TranslationCacheHitEvent(request.query, key))
                return cached.model_copy(update={"from_cache": True})
            self.misses += 1

        inflight = self._inflight.get(key)
        if inflight is not None:
            self.dedup_hits += 1
            logger.info("Dedup hit for %r", request.query)
            self._emit(TranslationDedupHitEvent(request.query, key, inflight.waiters + 1))
        else:
            inflight = _InFlight(asyncio.create_task(self._fetch(key, request)))
            self._inflight[key] = inflight

        inflight.waiters += 1
        try:
            return await asyncio.shield(inflight.task)
        finally:
            inflight.waiters -= 1
            if inflight.waiters == 0 and not inflight.task.done():
                if self._inflight.get(key) is inflight:
                    del self._inflight[key]
                inflight.task.cancel()

    async def _fetch(self, key: str, request: TranslationRequest) -> TranslationResult:
        try:
            # Explicit refreshes skip the client limiter
            if self.rate_limiter is not None and not request.bypass_cache:
                self.rate_limiter.check(request.query)

            self.network_calls += 1
            self._emit(TranslationRequestedEvent(request.query, key, request.bypass_cache))
            logger.info("Backend translation call for %r", request.query)
            started = self._clock()

            result = await self.translator.translate(request)

            if self.rate_limiter is not None:
                self.rate_limiter.record(request.query)
            result = self._finalize(result)
            self.put(key, result)

            logger.info(
                "Translation success for %r (source=%s, %.0f ms)",
                request.query, result.source, (self._clock() - started) * 1000,
            )
            return result
        finally:
            current = self._inflight.get(key)
            if current is not None and current.task is asyncio.current_task():
                del self._inflight[key]

    @staticmethod
    def _finalize(result: TranslationResult) -> TranslationResult:
        """Repair the translated query so callers always receive balanced syntax"""
        report = repair_query(result.scryfall_query)
        if not report.sanitized:
            raise TranslationError("Translation returned an empty query")
        if report.sanitized == result.scryfall_query and not report.issues:
            return result

        issues = list(result.validation_issues or [])
        issues.extend(issue for issue in report.issues if issue not in issues)
        return result.model_copy(update={
            "scryfall_query": report.sanitized,
            "validation_issues": issues or None,
        })
