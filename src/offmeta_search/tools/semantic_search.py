import asyncio
import logging
import time
import uuid
from typing import Any, Dict, Optional

import requests
from pydantic import ValidationError

from ..config import SEMANTIC_SEARCH_URL, SUPABASE_ANON_KEY
from ..exceptions import RateLimitedError, SearchTimeoutError, TranslationError
from ..models.search import TranslationRequest, TranslationResult

logger = logging.getLogger(__name__)


def _retry_after(response: requests.Response) -> Optional[float]:
    value = response.headers.get('Retry-After')
    try:
        return float(value) if value is not None else None
    except ValueError:
        return None


class SemanticSearchClient:
    """
    Client for the hosted translation endpoint (the semantic-search function).

    The HTTP call is blocking, so translate() runs it on a worker thread.
    Cancelling the awaiting task abandons the response; the backend may
    still finish the work.
    """

    def __init__(self, url: Optional[str] = SEMANTIC_SEARCH_URL, api_key: Optional[str] = SUPABASE_ANON_KEY,
                 session: Optional[requests.Session] = None, timeout: float = 30.0,
                 session_id: Optional[str] = None):
        if not url:
            raise ValueError("SEMANTIC_SEARCH_URL (or SUPABASE_URL) must be configured")
        self.url = url
        self.api_key = api_key
        self.timeout = timeout
        self.session_id = session_id or f"{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"
        self.session = session or requests.Session()
        self.session.headers.update({
            'Content-Type': 'application/json',
            'Accept': 'application/json',
        })

    def _headers(self) -> Dict[str, str]:
        headers = {'x-session-id': self.session_id}
        if self.api_key:
            headers['apikey'] = self.api_key
            headers['Authorization'] = f"Bearer {self.api_key}"
        return headers

    @staticmethod
    def build_payload(request: TranslationRequest) -> Dict[str, Any]:
        """Request body in the shape the endpoint expects"""
        payload: Dict[str, Any] = {
            'query': request.query.strip(),
            'useCache': not request.bypass_cache,
        }
        if request.filters:
            payload['filters'] = request.filters.model_dump(by_alias=True)
        if request.cache_salt:
            payload['cacheSalt'] = request.cache_salt
        return payload

    def translate_sync(self, request: TranslationRequest) -> TranslationResult:
        """Blocking translation call; raises TranslationError subclasses on failure"""
        try:
            response = self.session.post(
                self.url,
                json=self.build_payload(request),
                headers=self._headers(),
                timeout=self.timeout,
            )
        except requests.exceptions.Timeout as e:
            raise SearchTimeoutError(f"Translation request timed out: {e}") from e
        except requests.exceptions.RequestException as e:
            raise TranslationError(f"Translation request failed: {e}") from e

        if response.status_code == 429:
            raise RateLimitedError(
                "Rate limit exceeded (429). Please wait before searching again.",
                retry_after=_retry_after(response),
            )
        if response.status_code >= 400:
            raise TranslationError(
                f"Translation service returned HTTP {response.status_code}",
                status_code=response.status_code,
            )

        try:
            data = response.json()
        except ValueError as e:
            raise TranslationError("Translation service returned invalid JSON") from e

        if not data.get('success') or not data.get('scryfallQuery'):
            raise TranslationError(data.get('error') or 'Translation failed')

        try:
            return TranslationResult.model_validate(data)
        except ValidationError as e:
            raise TranslationError(f"Malformed translation response: {e}") from e

    async def translate(self, request: TranslationRequest) -> TranslationResult:
        logger.debug("Calling translation endpoint for %r", request.query)
        return await asyncio.to_thread(self.translate_sync, request)
