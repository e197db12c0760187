"""
Search history and last-search context, persisted through a storage backend
"""

import json
import logging
from typing import List, Optional

from pydantic import BaseModel, ValidationError

from .config import MAX_HISTORY_ITEMS
from .storage import JsonFileStorage, MemoryStorage

logger = logging.getLogger(__name__)

SEARCH_HISTORY_KEY = "offmeta_search_history"
SEARCH_CONTEXT_KEY = "lastSearchContext"


class SearchHistory:
    """
    Past queries, most recent first, unique ignoring case.

    Every mutation is written straight back to storage. Storage failures
    are logged and never raised; missing or corrupt stored data loads as
    an empty history.
    """

    def __init__(self, storage=None, max_items: int = MAX_HISTORY_ITEMS):
        self.storage = storage if storage is not None else JsonFileStorage()
        self.max_items = max_items
        self._items = self._load()

    @property
    def items(self) -> List[str]:
        return list(self._items)

    def __len__(self) -> int:
        return len(self._items)

    def __iter__(self):
        return iter(list(self._items))

    def _load(self) -> List[str]:
        try:
            stored = self.storage.get_item(SEARCH_HISTORY_KEY)
            if not stored:
                return []
            data = json.loads(stored)
        except Exception as e:
            logger.warning("Discarding unreadable search history: %s", e)
            return []

        if not isinstance(data, list):
            logger.warning("Discarding search history with unexpected shape")
            return []
        return [entry for entry in data if isinstance(entry, str)][:self.max_items]

    def _persist(self):
        try:
            self.storage.set_item(SEARCH_HISTORY_KEY, json.dumps(self._items))
        except Exception as e:
            logger.warning("Could not persist search history: %s", e)

    def add(self, query: str):
        """Move a query to the front, dropping any case-insensitive duplicate"""
        if not query or not query.strip():
            return
        folded = query.lower()
        remaining = [entry for entry in self._items if entry.lower() != folded]
        self._items = [query] + remaining[:self.max_items - 1] if self.max_items > 0 else []
        self._persist()

    def remove(self, query: str):
        folded = query.lower()
        self._items = [entry for entry in self._items if entry.lower() != folded]
        self._persist()

    def clear(self):
        self._items = []
        try:
            self.storage.remove_item(SEARCH_HISTORY_KEY)
        except Exception as e:
            logger.warning("Could not clear search history: %s", e)


class SearchContext(BaseModel):
    previous_query: str
    previous_scryfall: str


class SearchContextStore:
    """The last successful (query, translated query) pair, kept for follow-up searches"""

    def __init__(self, storage=None):
        self.storage = storage if storage is not None else MemoryStorage()
        self._context: Optional[SearchContext] = None

    def save(self, query: str, scryfall_query: str):
        self._context = SearchContext(previous_query=query, previous_scryfall=scryfall_query)
        try:
            self.storage.set_item(SEARCH_CONTEXT_KEY, json.dumps({
                "previousQuery": query,
                "previousScryfall": scryfall_query,
            }))
        except Exception as e:
            logger.warning("Could not persist search context: %s", e)

    def get(self) -> Optional[SearchContext]:
        if self._context is not None:
            return self._context
        try:
            stored = self.storage.get_item(SEARCH_CONTEXT_KEY)
            if stored:
                data = json.loads(stored)
                self._context = SearchContext(
                    previous_query=data["previousQuery"],
                    previous_scryfall=data["previousScryfall"],
                )
        except (ValueError, KeyError, TypeError, ValidationError) as e:
            logger.warning("Discarding unreadable search context: %s", e)
        return self._context
