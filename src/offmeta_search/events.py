"""
Event system for the OffMeta search pipeline
Keeps the search logic free of any knowledge of how notices are rendered
"""

import asyncio
import inspect
import logging
from abc import ABC, abstractmethod
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Dict, List, Optional, Set

from .config import QUERY_PREVIEW_LENGTH

logger = logging.getLogger(__name__)


def preview(query: str, length: int = QUERY_PREVIEW_LENGTH) -> str:
    """Shorten a query for display in a notice"""
    if len(query) <= length:
        return query
    return query[:length].rstrip() + "..."


class BaseEvent(ABC):
    """Base class for all search events"""

    def __init__(self):
        self.timestamp = datetime.now()

    @property
    @abstractmethod
    def event_type(self) -> str:
        """Return the event type identifier"""
        pass

    def to_dict(self) -> Dict[str, Any]:
        """Convert event to a plain dictionary for listeners"""
        data = {}
        for key, value in self.__dict__.items():
            if key != 'timestamp' and not key.startswith('_'):
                data[key] = value.value if isinstance(value, Enum) else value
        return data


class NoticeKind(str, Enum):
    """Classification of a user-facing notice"""
    SUCCESS = "success"
    TIMEOUT_DEGRADED = "timeout_degraded"
    RATE_LIMITED = "rate_limited"
    GENERIC_DEGRADED = "generic_degraded"


class NoticeEvent(BaseEvent):
    """A transient message the UI should show the user"""

    kind: NoticeKind

    def __init__(self, title: str, description: str, query: str):
        super().__init__()
        self.notice = self.kind
        self.title = title
        self.description = description
        self.query_preview = preview(query)


# Search lifecycle

class SearchStartedEvent(BaseEvent):
    def __init__(self, query: str, token: int):
        super().__init__()
        self.query = query
        self.token = token

    @property
    def event_type(self) -> str:
        return "search_started"


class QueryGenerationStartedEvent(BaseEvent):
    def __init__(self, query: str):
        super().__init__()
        self.query = query

    @property
    def event_type(self) -> str:
        return "query_generation_started"


class StaleResultDiscardedEvent(BaseEvent):
    def __init__(self, query: str, token: int, latest_token: int):
        super().__init__()
        self.query = query
        self.token = token
        self.latest_token = latest_token

    @property
    def event_type(self) -> str:
        return "stale_result_discarded"


class ErrorOccurredEvent(BaseEvent):
    def __init__(self, error_message: str, error_kind: str, query: str):
        super().__init__()
        self.error_message = error_message
        self.error_kind = error_kind
        self.query = query

    @property
    def event_type(self) -> str:
        return "error_occurred"


# Translation cache

class TranslationCacheHitEvent(BaseEvent):
    def __init__(self, query: str, cache_key: str):
        super().__init__()
        self.query = query
        self.cache_key = cache_key

    @property
    def event_type(self) -> str:
        return "translation_cache_hit"


class TranslationDedupHitEvent(BaseEvent):
    def __init__(self, query: str, cache_key: str, waiters: int):
        super().__init__()
        self.query = query
        self.cache_key = cache_key
        self.waiters = waiters

    @property
    def event_type(self) -> str:
        return "translation_dedup_hit"


class TranslationRequestedEvent(BaseEvent):
    def __init__(self, query: str, cache_key: str, bypass_cache: bool):
        super().__init__()
        self.query = query
        self.cache_key = cache_key
        self.bypass_cache = bypass_cache

    @property
    def event_type(self) -> str:
        return "translation_requested"


# Notices

class SearchSucceededEvent(NoticeEvent):
    kind = NoticeKind.SUCCESS

    def __init__(self, query: str, scryfall_query: str, source: str, from_cache: bool = False):
        label = "cached" if from_cache else source
        super().__init__("Search ready", f"Translated with {label}", query)
        self.scryfall_query = scryfall_query
        self.source = source
        self.from_cache = from_cache

    @property
    def event_type(self) -> str:
        return "search_succeeded"


class SearchTimedOutEvent(NoticeEvent):
    kind = NoticeKind.TIMEOUT_DEGRADED

    def __init__(self, query: str, fallback_query: str, timeout_ms: int):
        super().__init__(
            "Search took too long",
            "Showing results from a simplified search instead",
            query,
        )
        self.fallback_query = fallback_query
        self.timeout_ms = timeout_ms

    @property
    def event_type(self) -> str:
        return "search_timed_out"


class SearchDegradedEvent(NoticeEvent):
    kind = NoticeKind.GENERIC_DEGRADED

    def __init__(self, query: str, fallback_query: str, error_message: str):
        super().__init__(
            "Smart search unavailable",
            "Showing results from a simplified search instead",
            query,
        )
        self.fallback_query = fallback_query
        self.error_message = error_message

    @property
    def event_type(self) -> str:
        return "search_degraded"


class RateLimitedEvent(NoticeEvent):
    kind = NoticeKind.RATE_LIMITED

    def __init__(self, query: str, countdown_seconds: int, preflight: bool = False):
        super().__init__(
            "Too many searches",
            f"Please wait {countdown_seconds} seconds before searching again",
            query,
        )
        self.countdown_seconds = countdown_seconds
        self.preflight = preflight

    @property
    def event_type(self) -> str:
        return "rate_limited"


class SearchEventType(str, Enum):
    """Event type identifiers accepted by SearchEventEmitter.on"""
    SEARCH_STARTED = "search_started"
    QUERY_GENERATION_STARTED = "query_generation_started"
    TRANSLATION_CACHE_HIT = "translation_cache_hit"
    TRANSLATION_DEDUP_HIT = "translation_dedup_hit"
    TRANSLATION_REQUESTED = "translation_requested"
    SEARCH_SUCCEEDED = "search_succeeded"
    SEARCH_TIMED_OUT = "search_timed_out"
    SEARCH_DEGRADED = "search_degraded"
    RATE_LIMITED = "rate_limited"
    STALE_RESULT_DISCARDED = "stale_result_discarded"
    ERROR_OCCURRED = "error_occurred"

    def __str__(self) -> str:
        return self.value


NOTICE_EVENT_TYPES = (
    SearchEventType.SEARCH_SUCCEEDED,
    SearchEventType.SEARCH_TIMED_OUT,
    SearchEventType.SEARCH_DEGRADED,
    SearchEventType.RATE_LIMITED,
)


class SearchEventEmitter:
    """Event emitter for search progress and user notices"""

    def __init__(self):
        self._listeners: Dict[str, List[Callable]] = {}
        self._tasks: Set[asyncio.Task] = set()

    def on(self, event_type: str, callback: Callable[[Dict[str, Any]], None]):
        """Register an event listener"""
        self._listeners.setdefault(str(event_type), []).append(callback)

    def off(self, event_type: str, callback: Callable):
        """Remove an event listener"""
        event_type = str(event_type)
        if event_type in self._listeners:
            self._listeners[event_type] = [
                cb for cb in self._listeners[event_type] if cb != callback
            ]

    def _resolve(self, event_or_type, data: Optional[Dict[str, Any]]):
        if isinstance(event_or_type, BaseEvent):
            return event_or_type.event_type, event_or_type.to_dict()
        return str(event_or_type), data if data is not None else {}

    def emit(self, event_or_type, data: Optional[Dict[str, Any]] = None):
        """
        Emit an event to all registered listeners

        Args:
            event_or_type: Either a BaseEvent instance or a SearchEventType/string
            data: Payload when emitting by type name
        """
        event_type, event_data = self._resolve(event_or_type, data)

        for callback in self._listeners.get(event_type, []):
            try:
                result = callback(event_data)
                if inspect.isawaitable(result):
                    # Coroutine listeners need emit_async; schedule when a loop is running
                    try:
                        task = asyncio.get_running_loop().create_task(result)
                        self._tasks.add(task)
                        task.add_done_callback(self._tasks.discard)
                    except RuntimeError:
                        result.close()
                        logger.warning("Async listener for %s skipped outside an event loop", event_type)
            except Exception:
                # Listener failures never break a search
                logger.exception("Event listener error for %s", event_type)

    async def emit_async(self, event_or_type, data: Optional[Dict[str, Any]] = None):
        """
        Emit an event, awaiting coroutine listeners in registration order

        Args:
            event_or_type: Either a BaseEvent instance or a SearchEventType/string
            data: Payload when emitting by type name
        """
        event_type, event_data = self._resolve(event_or_type, data)

        for callback in self._listeners.get(event_type, []):
            try:
                result = callback(event_data)
                if inspect.isawaitable(result):
                    await result
            except Exception:
                logger.exception("Event listener error for %s", event_type)

    def clear_listeners(self, event_type: Optional[str] = None):
        """Clear all listeners for a specific event type, or all listeners"""
        if event_type:
            self._listeners[str(event_type)] = []
        else:
            self._listeners.clear()
