"""
Pytest configuration and shared fixtures.
"""
import asyncio
import os
from typing import Dict, List, Optional
from unittest.mock import AsyncMock, Mock, patch

import pytest

from offmeta_search.cache import SearchRateLimiter, TranslationCache
from offmeta_search.events import SearchEventEmitter
from offmeta_search.history import SearchContextStore, SearchHistory
from offmeta_search.models.card import Card
from offmeta_search.models.search import Explanation, TranslationResult
from offmeta_search.storage import MemoryStorage


# Never let a test reach a real model provider
@pytest.fixture(autouse=True)
def mock_openai_api():
    """Automatically mock the OpenAI model used by the query agent"""
    with patch('offmeta_search.agents.query_agent.OpenAIResponsesModel') as mock_model, \
         patch.dict(os.environ, {"OPENAI_API_KEY": "test-api-key-12345"}):
        mock_model.return_value = Mock()
        yield mock_model


# ==================== TIME FIXTURES ====================

class FakeClock:
    """Manually advanced clock returning seconds"""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float):
        self.now += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def cache_clock():
    return FakeClock(start=500.0)


# ==================== TRANSLATOR FIXTURES ====================

def make_result(scryfall_query: str = "otag:ramp c:green", source: str = "ai",
                confidence: float = 0.9, **kwargs) -> TranslationResult:
    return TranslationResult(
        scryfall_query=scryfall_query,
        explanation=Explanation(readable=f"Translated to {scryfall_query}", assumptions=[], confidence=confidence),
        source=source,
        **kwargs,
    )


class FakeTranslator:
    """
    Stand-in for the translation service.

    Returns a per-query result when one is registered, the default result
    otherwise. ``hang`` blocks forever, ``gates`` block a query until the
    test releases it.
    """

    def __init__(self, result: Optional[TranslationResult] = None, error: Optional[BaseException] = None,
                 hang: bool = False):
        self.result = result or make_result()
        self.results: Dict[str, TranslationResult] = {}
        self.error = error
        self.hang = hang
        self.gates: Dict[str, asyncio.Event] = {}
        self.calls: List = []
        self.cancelled: List[str] = []

    async def translate(self, request):
        self.calls.append(request)
        try:
            if self.hang:
                await asyncio.Event().wait()
            gate = self.gates.get(request.query)
            if gate is not None:
                await gate.wait()
        except asyncio.CancelledError:
            self.cancelled.append(request.query)
            raise
        if self.error is not None:
            raise self.error
        return self.results.get(request.query, self.result)


@pytest.fixture
def translator():
    return FakeTranslator()


@pytest.fixture
def translation_cache(translator, cache_clock, real_event_emitter):
    """Cache around the fake translator with a controllable clock"""
    return TranslationCache(
        translator,
        clock=cache_clock,
        rate_limiter=SearchRateLimiter(clock=cache_clock),
        event_emitter=real_event_emitter,
    )


@pytest.fixture
def result_factory():
    return make_result


@pytest.fixture
def sample_result():
    return make_result()


# ==================== STORAGE FIXTURES ====================

@pytest.fixture
def memory_storage():
    return MemoryStorage()


@pytest.fixture
def history(memory_storage):
    return SearchHistory(storage=memory_storage)


@pytest.fixture
def context_store():
    return SearchContextStore(storage=MemoryStorage())


# ==================== EVENT FIXTURES ====================

@pytest.fixture
def mock_event_emitter():
    """Mock event emitter for testing."""
    emitter = Mock(spec=SearchEventEmitter)
    emitter.emit = Mock()
    emitter.emit_async = AsyncMock()
    emitter.on = Mock()
    emitter.off = Mock()
    emitter.clear_listeners = Mock()
    return emitter


@pytest.fixture
def real_event_emitter():
    """Real event emitter instance for testing."""
    return SearchEventEmitter()


@pytest.fixture
def recorded_events(real_event_emitter):
    """Every event emitted on real_event_emitter as (event_type, data) pairs"""
    events = []
    original_emit = real_event_emitter.emit

    def recording_emit(event_or_type, data=None):
        event_type, event_data = real_event_emitter._resolve(event_or_type, data)
        events.append((event_type, event_data))
        original_emit(event_or_type, data)

    real_event_emitter.emit = recording_emit
    return events


# ==================== CARD FIXTURES ====================

@pytest.fixture
def sample_card_data():
    """Sample MTG card data for testing - matches Scryfall API format."""
    return {
        "id": "b1b77b57-5b4c-4b35-8c9a-9f5e5e5e5e5e",
        "name": "Lightning Bolt",
        "mana_cost": "{R}",
        "cmc": 1.0,
        "type_line": "Instant",
        "oracle_text": "Lightning Bolt deals 3 damage to any target.",
        "colors": ["R"],
        "color_identity": ["R"],
        "set": "lea",
        "rarity": "common",
        "scryfall_uri": "https://scryfall.com/card/lea/161/lightning-bolt",
        "image_uris": {
            "normal": "https://cards.scryfall.io/normal/front/b/1/b1b77b57.jpg"
        },
        "prices": {
            "usd": "0.50",
            "usd_foil": "2.00",
            "eur": "0.45",
            "tix": "0.02"
        }
    }


@pytest.fixture
def sample_dfc_data():
    """Double-faced card: text and images live on card_faces"""
    return {
        "id": "e1e11e11-1e1e-1e1e-1e1e-1e1e1e1e1e1e",
        "name": "Delver of Secrets // Insectile Aberration",
        "cmc": 1.0,
        "color_identity": ["U"],
        "set": "isd",
        "rarity": "common",
        "card_faces": [
            {
                "name": "Delver of Secrets",
                "mana_cost": "{U}",
                "type_line": "Creature — Human Wizard",
                "oracle_text": "At the beginning of your upkeep, look at the top card of your library.",
                "colors": ["U"],
                "image_uris": {"normal": "https://cards.scryfall.io/normal/front/e/1/e1e11e11.jpg"},
            },
            {
                "name": "Insectile Aberration",
                "mana_cost": "",
                "type_line": "Creature — Human Insect",
                "oracle_text": "Flying",
                "colors": ["U"],
            },
        ],
        "prices": {"usd": None},
    }


@pytest.fixture
def sample_card(sample_card_data):
    return Card.from_scryfall(sample_card_data)


@pytest.fixture
def mock_scryfall_response(sample_card_data, sample_dfc_data):
    """Mock successful Scryfall API response."""
    return {
        "object": "list",
        "total_cards": 2,
        "has_more": False,
        "data": [sample_card_data, sample_dfc_data]
    }


@pytest.fixture
def mock_requests_session():
    """Mock requests session for API testing."""
    session = Mock()
    session.headers = {}
    session.get = Mock()
    session.post = Mock()
    return session


# ==================== TAG SEARCH FIXTURES ====================

@pytest.fixture
def sample_tags_data():
    """Sample tags data for testing tag search functionality."""
    return {
        "mana": ["ramp", "mana-rock", "mana-dork"],
        "interaction": ["removal", "boardwipe", "counterspell"],
        "card advantage": ["draw", "tutor"],
    }
