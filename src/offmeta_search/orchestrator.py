import asyncio
import inspect
import logging
import math
import time
from enum import Enum
from typing import AsyncIterator, Awaitable, Callable, Optional, Union

from .cache import TranslationCache
from .config import FALLBACK_CONFIDENCE, RATE_LIMIT_COOLDOWN_MS, SEARCH_TIMEOUT_MS, SEMANTIC_SEARCH_URL
from .events import (
    ErrorOccurredEvent,
    RateLimitedEvent,
    SearchDegradedEvent,
    SearchEventEmitter,
    SearchStartedEvent,
    SearchSucceededEvent,
    SearchTimedOutEvent,
    StaleResultDiscardedEvent,
)
from .exceptions import ErrorKind, classify_error
from .history import SearchContextStore, SearchHistory
from .models.search import Explanation, FilterState, TranslationRequest, TranslationResult
from .tools.fallback import DEFAULT_FALLBACK_QUERY, build_client_fallback_query
from .tools.query_validator import sanitize_input

logger = logging.getLogger(__name__)

CompletionCallback = Callable[[TranslationResult], Union[None, Awaitable[None]]]

TIMEOUT_ASSUMPTION = "Search timed out, using simplified translation"
UNAVAILABLE_ASSUMPTION = "AI unavailable, using simplified translation"


class SearchState(str, Enum):
    IDLE = "idle"
    SEARCHING = "searching"
    SUCCESS = "success"
    TIMED_OUT = "timed_out"
    RATE_LIMITED = "rate_limited"
    ERRORED = "errored"


def create_default_translator(event_emitter=None):
    """Hosted translation endpoint when configured, otherwise the local agent"""
    if SEMANTIC_SEARCH_URL:
        from .tools.semantic_search import SemanticSearchClient
        return SemanticSearchClient(url=SEMANTIC_SEARCH_URL)
    from .agents.query_agent import QueryAgent
    return QueryAgent(event_emitter=event_emitter)


def build_fallback_result(query: str, timed_out: bool) -> TranslationResult:
    """Reduced-confidence result built without the translation service"""
    return TranslationResult(
        scryfall_query=build_client_fallback_query(query) or DEFAULT_FALLBACK_QUERY,
        explanation=Explanation(
            readable=f"Simplified search for: {query}",
            assumptions=[TIMEOUT_ASSUMPTION if timed_out else UNAVAILABLE_ASSUMPTION],
            confidence=FALLBACK_CONFIDENCE,
        ),
        show_affiliate=False,
        source="client_fallback",
    )


class SearchHandler:
    """
    Drives searches from free text to a delivered TranslationResult.

    Each call to handle_search mints a new token and cancels the previous
    search's request. Only the search holding the latest token may change
    state or reach the completion callback, so a slow older search can
    never overwrite a newer one. Failures are never raised to the caller:
    timeouts and errors degrade to a client-built query, and a backend rate
    limit starts a cooldown during which searches are refused locally.
    """

    def __init__(self, translator=None, on_complete: Optional[CompletionCallback] = None,
                 history: Optional[SearchHistory] = None,
                 context_store: Optional[SearchContextStore] = None,
                 event_emitter: Optional[SearchEventEmitter] = None,
                 filters: Optional[FilterState] = None,
                 timeout_ms: int = SEARCH_TIMEOUT_MS,
                 rate_limit_cooldown_ms: int = RATE_LIMIT_COOLDOWN_MS,
                 clock: Callable[[], float] = time.time):
        self.events = event_emitter or SearchEventEmitter()
        if translator is None:
            translator = create_default_translator(self.events)
        if not isinstance(translator, TranslationCache):
            translator = TranslationCache(translator, event_emitter=self.events)
        self.translator = translator
        self.on_complete = on_complete
        self.history = history
        self.context_store = context_store if context_store is not None else SearchContextStore()
        self.filters = filters
        self.timeout_ms = timeout_ms
        self.rate_limit_cooldown_ms = rate_limit_cooldown_ms
        self._clock = clock

        self.query = ""
        self.is_searching = False
        self.last_outcome: Optional[SearchState] = None
        self.last_result: Optional[TranslationResult] = None
        self.rate_limited_until: Optional[float] = None
        self._token = 0
        self._inflight: Optional[asyncio.Future] = None

    @property
    def state(self) -> SearchState:
        return SearchState.SEARCHING if self.is_searching else SearchState.IDLE

    @property
    def current_token(self) -> int:
        return self._token

    # Rate limit cooldown

    def is_rate_limited(self) -> bool:
        return self.rate_limited_until is not None and self._clock() < self.rate_limited_until

    @property
    def rate_limit_countdown(self) -> int:
        """Whole seconds left in the cooldown, 0 when searches are allowed"""
        if self.rate_limited_until is None:
            return 0
        remaining = self.rate_limited_until - self._clock()
        if remaining <= 0:
            return 0
        return math.ceil(remaining)

    async def iter_rate_limit_countdown(self, sleep: Callable[[float], Awaitable] = asyncio.sleep) -> AsyncIterator[int]:
        """Yield the countdown once a second until it reaches 0; display only"""
        while True:
            remaining = self.rate_limit_countdown
            yield remaining
            if remaining <= 0:
                return
            await sleep(1)

    def _start_cooldown(self, error: BaseException):
        cooldown = self.rate_limit_cooldown_ms / 1000
        retry_after = getattr(error, "retry_after", None)
        if retry_after and retry_after > cooldown:
            cooldown = retry_after
        self.rate_limited_until = self._clock() + cooldown

    # Searching

    def cancel(self):
        """Abandon the current search; its result will be discarded"""
        self._token += 1
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()
        self._inflight = None
        self.is_searching = False

    async def handle_search(self, query_override: Optional[str] = None, *, bypass_cache: bool = False,
                            cache_salt: Optional[str] = None) -> Optional[TranslationResult]:
        """
        Run one search

        Args:
            query_override: Text to search; defaults to the last searched text
            bypass_cache: Skip the translation cache (identical pending requests are still shared)
            cache_salt: Extra cache key component, e.g. to force a fresh translation

        Returns:
            The result handed to the completion callback, or None when nothing
            was delivered (empty query, rate limited, superseded or cancelled)
        """
        raw = query_override if query_override is not None else self.query
        query = sanitize_input(raw or "")
        if not query:
            return None
        self.query = query

        if self.is_rate_limited():
            countdown = self.rate_limit_countdown
            logger.info("Search for %r refused locally, rate limited for %ss", query, countdown)
            self.events.emit(RateLimitedEvent(query, countdown, preflight=True))
            return None

        if self.history is not None:
            self.history.add(query)

        self._token += 1
        token = self._token
        if self._inflight is not None and not self._inflight.done():
            self._inflight.cancel()

        request = TranslationRequest(
            query=query,
            filters=self.filters,
            cache_salt=cache_salt,
            bypass_cache=bypass_cache,
        )
        work = asyncio.ensure_future(self.translator.translate(request))
        self._inflight = work
        self.is_searching = True
        logger.info("Search started for %r (token %d)", query, token)
        self.events.emit(SearchStartedEvent(query, token))

        try:
            done, _ = await asyncio.wait({work}, timeout=self.timeout_ms / 1000)

            if token != self._token:
                if not work.done():
                    work.cancel()
                logger.info("Discarding stale result for %r (token %d, latest %d)", query, token, self._token)
                self.events.emit(StaleResultDiscardedEvent(query, token, self._token))
                return None

            if not done:
                work.cancel()
                logger.warning("Translation for %r timed out after %d ms, using fallback", query, self.timeout_ms)
                return await self._deliver_fallback(query, timed_out=True)

            if work.cancelled():
                return None

            error = work.exception()
            if error is None:
                return await self._deliver_success(query, work.result())

            kind = classify_error(error)
            if kind is ErrorKind.RATE_LIMITED:
                self._start_cooldown(error)
                self.last_outcome = SearchState.RATE_LIMITED
                logger.warning("Translation rate limited for %r: %s", query, error)
                self.events.emit(RateLimitedEvent(query, self.rate_limit_countdown))
                return None

            logger.warning("Translation failed for %r (%s), using fallback: %s", query, kind.value, error)
            self.events.emit(ErrorOccurredEvent(str(error), kind.value, query))
            return await self._deliver_fallback(query, timed_out=kind is ErrorKind.TIMEOUT, error=error)

        except asyncio.CancelledError:
            work.cancel()
            raise
        finally:
            if token == self._token:
                self.is_searching = False
                self._inflight = None

    async def _notify(self, result: TranslationResult):
        if self.on_complete is None:
            return
        try:
            outcome = self.on_complete(result)
            if inspect.isawaitable(outcome):
                await outcome
        except Exception:
            logger.exception("Search completion callback failed")

    async def _deliver_success(self, query: str, result: TranslationResult) -> TranslationResult:
        self.last_outcome = SearchState.SUCCESS
        self.last_result = result
        self.context_store.save(query, result.scryfall_query)
        await self._notify(result)
        self.events.emit(SearchSucceededEvent(query, result.scryfall_query, result.source, result.from_cache))
        return result

    async def _deliver_fallback(self, query: str, timed_out: bool,
                                error: Optional[BaseException] = None) -> TranslationResult:
        result = build_fallback_result(query, timed_out)
        self.last_outcome = SearchState.TIMED_OUT if timed_out else SearchState.ERRORED
        self.last_result = result
        await self._notify(result)
        if timed_out:
            self.events.emit(SearchTimedOutEvent(query, result.scryfall_query, self.timeout_ms))
        else:
            self.events.emit(SearchDegradedEvent(query, result.scryfall_query, str(error)))
        return result
