"""
Integration tests for the SearchHandler.

Tests cover:
- Complete search workflow from free text to a delivered result
- Cache hits on repeated searches
- Timeout and error fallbacks
- Rate limit cooldown and countdown
- Stale result suppression for overlapping searches
- Completion callback handling
"""
import asyncio
from unittest.mock import patch

import pytest

from offmeta_search.agents.query_agent import QueryAgent
from offmeta_search.cache import TranslationCache
from offmeta_search.exceptions import RateLimitedError, SearchTimeoutError, TranslationError
from offmeta_search.models.search import FilterState
from offmeta_search.orchestrator import (
    TIMEOUT_ASSUMPTION,
    UNAVAILABLE_ASSUMPTION,
    SearchHandler,
    SearchState,
    build_fallback_result,
    create_default_translator,
)
from offmeta_search.tools.semantic_search import SemanticSearchClient


async def _settle(rounds: int = 10):
    for _ in range(rounds):
        await asyncio.sleep(0)


@pytest.fixture
def delivered():
    return []


@pytest.fixture
def handler(translation_cache, history, context_store, real_event_emitter, clock, delivered):
    return SearchHandler(
        translator=translation_cache,
        on_complete=delivered.append,
        history=history,
        context_store=context_store,
        event_emitter=real_event_emitter,
        clock=clock,
    )


def _types(recorded_events):
    return [event_type for event_type, _ in recorded_events]


class TestSearchHandlerInitialization:
    """Test suite for SearchHandler construction."""

    def test_plain_translator_is_wrapped_in_cache(self, translator):
        handler = SearchHandler(translator=translator)
        assert isinstance(handler.translator, TranslationCache)
        assert handler.translator.translator is translator

    def test_cache_is_used_as_is(self, translation_cache):
        assert SearchHandler(translator=translation_cache).translator is translation_cache

    def test_initial_state(self, handler):
        assert handler.state is SearchState.IDLE
        assert handler.last_outcome is None
        assert handler.rate_limit_countdown == 0
        assert not handler.is_rate_limited()

    def test_default_translator_prefers_backend(self):
        with patch("offmeta_search.orchestrator.SEMANTIC_SEARCH_URL", "https://abc.supabase.co/functions/v1/semantic-search"):
            assert isinstance(create_default_translator(), SemanticSearchClient)

    def test_default_translator_falls_back_to_agent(self):
        with patch("offmeta_search.orchestrator.SEMANTIC_SEARCH_URL", None):
            assert isinstance(create_default_translator(), QueryAgent)


class TestSuccessfulSearch:
    """Test suite for the success path."""

    @pytest.mark.asyncio
    async def test_search_delivers_result(self, handler, translator, history, context_store, delivered,
                                          recorded_events):
        result = await handler.handle_search("green ramp")

        assert result.scryfall_query == "otag:ramp c:green"
        assert result.source == "ai"
        assert delivered == [result]
        assert handler.last_outcome is SearchState.SUCCESS
        assert handler.state is SearchState.IDLE
        assert handler.last_result is result
        assert history.items == ["green ramp"]
        assert context_store.get().previous_scryfall == "otag:ramp c:green"
        assert translator.calls[0].query == "green ramp"

        assert _types(recorded_events) == ["search_started", "translation_requested", "search_succeeded"]
        notice = recorded_events[-1][1]
        assert notice["notice"] == "success"
        assert notice["from_cache"] is False

    @pytest.mark.asyncio
    async def test_repeat_search_is_cache_hit(self, handler, translator, delivered, recorded_events):
        await handler.handle_search("green ramp")
        second = await handler.handle_search("Green  Ramp")

        assert len(translator.calls) == 1
        assert second.from_cache is True
        assert len(delivered) == 2
        assert recorded_events[-1][1]["from_cache"] is True

    @pytest.mark.asyncio
    async def test_input_is_sanitized(self, handler, translator):
        await handler.handle_search("  green\x00 ramp\u200b ")
        assert translator.calls[0].query == "green ramp"

    @pytest.mark.asyncio
    async def test_repeats_last_query_without_override(self, handler, translator):
        await handler.handle_search("green ramp")
        result = await handler.handle_search()
        assert result.from_cache is True
        assert handler.query == "green ramp"

    @pytest.mark.asyncio
    async def test_filters_and_salt_are_forwarded(self, handler, translator):
        handler.filters = FilterState(colors=["G"])
        await handler.handle_search("green ramp", cache_salt="retry-1")

        request = translator.calls[0]
        assert request.filters.colors == ["G"]
        assert request.cache_salt == "retry-1"

    @pytest.mark.asyncio
    async def test_bypass_cache(self, handler, translator, cache_clock):
        await handler.handle_search("green ramp")
        cache_clock.advance(1)

        result = await handler.handle_search("green ramp", bypass_cache=True)

        assert result.from_cache is False
        assert len(translator.calls) == 2
        assert translator.calls[1].bypass_cache is True

    @pytest.mark.asyncio
    @pytest.mark.parametrize("query", ["", "   ", "\u200b\x00"])
    async def test_empty_query_is_a_no_op(self, handler, translator, history, delivered, recorded_events, query):
        assert await handler.handle_search(query) is None
        assert translator.calls == []
        assert history.items == []
        assert delivered == []
        assert recorded_events == []

    @pytest.mark.asyncio
    async def test_bypass_refresh_right_after_search_is_not_locked_out(self, handler, translator, delivered,
                                                                       cache_clock):
        await handler.handle_search("green ramp")
        cache_clock.advance(0.1)

        result = await handler.handle_search("green ramp", bypass_cache=True)

        assert result.from_cache is False
        assert len(delivered) == 2
        assert not handler.is_rate_limited()
        assert handler.rate_limit_countdown == 0

    @pytest.mark.asyncio
    async def test_translated_or_chain_is_grouped(self, handler, translator, delivered, result_factory):
        translator.result = result_factory("t:elf OR t:goblin c:g")

        result = await handler.handle_search("elves or goblins in green")

        assert result.scryfall_query == "(t:elf OR t:goblin) c:g"
        assert delivered[0].scryfall_query == "(t:elf OR t:goblin) c:g"


class TestTimeoutFallback:
    """A search that outlives the deadline degrades to a client-built query"""

    @pytest.mark.asyncio
    async def test_timeout_uses_client_fallback(self, translator, history, context_store, real_event_emitter,
                                                recorded_events, delivered, clock, translation_cache):
        translator.hang = True
        handler = SearchHandler(translator=translation_cache, on_complete=delivered.append, history=history,
                                context_store=context_store, event_emitter=real_event_emitter, clock=clock,
                                timeout_ms=50)

        result = await handler.handle_search("green ramp")

        assert result.source == "client_fallback"
        assert result.scryfall_query == "otag:ramp c:g"
        assert result.explanation.assumptions == [TIMEOUT_ASSUMPTION]
        assert result.explanation.confidence == 0.5
        assert result.show_affiliate is False
        assert delivered == [result]
        assert handler.last_outcome is SearchState.TIMED_OUT
        assert handler.state is SearchState.IDLE
        assert context_store.get() is None

        timed_out = [data for event_type, data in recorded_events if event_type == "search_timed_out"]
        assert timed_out[0]["notice"] == "timeout_degraded"
        assert timed_out[0]["fallback_query"] == "otag:ramp c:g"

        await _settle()
        assert translator.cancelled == ["green ramp"]

    @pytest.mark.asyncio
    async def test_backend_timeout_error_is_a_timeout(self, handler, translator, delivered):
        translator.error = SearchTimeoutError("upstream timed out")

        result = await handler.handle_search("green ramp")

        assert result.explanation.assumptions == [TIMEOUT_ASSUMPTION]
        assert handler.last_outcome is SearchState.TIMED_OUT


class TestErrorFallback:
    """Generic failures degrade without surfacing an exception"""

    @pytest.mark.asyncio
    async def test_generic_error_uses_fallback(self, handler, translator, delivered, recorded_events):
        translator.error = TranslationError("backend exploded")

        result = await handler.handle_search("cheap green creatures with trample")

        assert result.source == "client_fallback"
        assert result.scryfall_query == "c:g t:creature kw:trample mv<=3"
        assert result.explanation.assumptions == [UNAVAILABLE_ASSUMPTION]
        assert result.explanation.readable == "Simplified search for: cheap green creatures with trample"
        assert delivered == [result]
        assert handler.last_outcome is SearchState.ERRORED

        types = _types(recorded_events)
        assert "error_occurred" in types
        degraded = recorded_events[-1]
        assert degraded[0] == "search_degraded"
        assert degraded[1]["notice"] == "generic_degraded"
        assert degraded[1]["error_message"] == "backend exploded"

    @pytest.mark.asyncio
    async def test_unexpected_exception_uses_fallback(self, handler, translator):
        translator.error = KeyError("scryfallQuery")
        result = await handler.handle_search("dragons")
        assert result.scryfall_query == "t:dragon"

    def test_fallback_result_is_never_empty(self):
        result = build_fallback_result("!!!", timed_out=False)
        assert result.scryfall_query == "mv>=0"


class TestRateLimit:
    """Backend rate limits start a local cooldown"""

    @pytest.mark.asyncio
    async def test_rate_limit_starts_countdown(self, handler, translator, delivered, recorded_events, clock):
        translator.error = RateLimitedError("Rate limit exceeded (429). Please wait before searching again.")

        assert await handler.handle_search("green ramp") is None

        assert delivered == []
        assert handler.last_outcome is SearchState.RATE_LIMITED
        assert handler.is_rate_limited()
        assert handler.rate_limit_countdown == 30
        notice = recorded_events[-1]
        assert notice[0] == "rate_limited"
        assert notice[1]["countdown_seconds"] == 30
        assert notice[1]["preflight"] is False

    @pytest.mark.asyncio
    async def test_searches_refused_during_cooldown(self, handler, translator, delivered, recorded_events, clock):
        translator.error = RateLimitedError()
        await handler.handle_search("green ramp")

        clock.advance(10)
        assert await handler.handle_search("blue card draw") is None

        assert len(translator.calls) == 1
        assert delivered == []
        notice = recorded_events[-1][1]
        assert notice["preflight"] is True
        assert notice["countdown_seconds"] == 20

    @pytest.mark.asyncio
    async def test_countdown_ticks_to_zero_then_search_resumes(self, handler, translator, delivered, clock):
        translator.error = RateLimitedError()
        await handler.handle_search("green ramp")

        async def fake_sleep(seconds):
            clock.advance(seconds)

        ticks = [remaining async for remaining in handler.iter_rate_limit_countdown(sleep=fake_sleep)]

        assert ticks == list(range(30, -1, -1))
        assert not handler.is_rate_limited()

        translator.error = None
        result = await handler.handle_search("green ramp")
        assert result.source == "ai"
        assert len(translator.calls) == 2

    @pytest.mark.asyncio
    async def test_retry_after_extends_cooldown(self, handler, translator):
        translator.error = RateLimitedError(retry_after=45)
        await handler.handle_search("green ramp")
        assert handler.rate_limit_countdown == 45

    @pytest.mark.asyncio
    async def test_status_marker_in_foreign_exception(self, handler, translator):
        translator.error = RuntimeError("HTTP 429 Too Many Requests")
        assert await handler.handle_search("green ramp") is None
        assert handler.is_rate_limited()

    @pytest.mark.asyncio
    async def test_local_limiter_also_starts_cooldown(self, handler, translator, translation_cache):
        translation_cache.rate_limiter.max_per_minute = 1
        translation_cache.rate_limiter.record("elves")

        assert await handler.handle_search("green ramp") is None

        assert translator.calls == []
        assert handler.last_outcome is SearchState.RATE_LIMITED
        assert handler.rate_limit_countdown == 60


class TestStaleResults:
    """Only the latest search may deliver a result"""

    @pytest.mark.asyncio
    async def test_newer_search_supersedes_older(self, handler, translator, delivered, recorded_events,
                                                 result_factory):
        translator.gates["elves"] = asyncio.Event()
        translator.results["goblins"] = result_factory("t:goblin")

        older = asyncio.create_task(handler.handle_search("elves"))
        await _settle()
        assert handler.state is SearchState.SEARCHING

        newer = await handler.handle_search("goblins")

        assert await older is None
        assert newer.scryfall_query == "t:goblin"
        assert delivered == [newer]
        assert handler.last_result is newer
        assert handler.state is SearchState.IDLE
        assert translator.cancelled == ["elves"]

        stale = [data for event_type, data in recorded_events if event_type == "stale_result_discarded"]
        assert stale == [{"query": "elves", "token": 1, "latest_token": 2}]

    @pytest.mark.asyncio
    async def test_older_search_leaves_newer_running(self, handler, translator, delivered, result_factory):
        older_gate = translator.gates["elves"] = asyncio.Event()
        newer_gate = translator.gates["goblins"] = asyncio.Event()
        translator.results["goblins"] = result_factory("t:goblin")

        older = asyncio.create_task(handler.handle_search("elves"))
        await _settle()
        newer = asyncio.create_task(handler.handle_search("goblins"))
        await _settle()
        older_gate.set()
        assert await older is None
        assert handler.is_searching

        newer_gate.set()
        result = await newer
        assert delivered == [result]
        assert handler.last_outcome is SearchState.SUCCESS

    @pytest.mark.asyncio
    async def test_cancel_discards_pending_result(self, handler, translator, delivered):
        translator.gates["elves"] = asyncio.Event()

        pending = asyncio.create_task(handler.handle_search("elves"))
        await _settle()
        handler.cancel()

        assert await pending is None
        assert delivered == []
        assert handler.state is SearchState.IDLE


class TestCompletionCallback:
    """The completion callback can be sync or async and never breaks a search"""

    @pytest.mark.asyncio
    async def test_async_callback_is_awaited(self, translation_cache, context_store):
        seen = []

        async def on_complete(result):
            await asyncio.sleep(0)
            seen.append(result.scryfall_query)

        handler = SearchHandler(translator=translation_cache, on_complete=on_complete, context_store=context_store)
        await handler.handle_search("green ramp")

        assert seen == ["otag:ramp c:green"]

    @pytest.mark.asyncio
    async def test_callback_exception_is_contained(self, translation_cache, context_store, real_event_emitter,
                                                   recorded_events):
        def on_complete(result):
            raise RuntimeError("ui broke")

        handler = SearchHandler(translator=translation_cache, on_complete=on_complete,
                                context_store=context_store, event_emitter=real_event_emitter)
        result = await handler.handle_search("green ramp")

        assert result is not None
        assert handler.last_outcome is SearchState.SUCCESS
        assert recorded_events[-1][0] == "search_succeeded"

    @pytest.mark.asyncio
    async def test_no_callback(self, translation_cache, context_store):
        handler = SearchHandler(translator=translation_cache, context_store=context_store)
        assert (await handler.handle_search("green ramp")).scryfall_query == "otag:ramp c:green"
