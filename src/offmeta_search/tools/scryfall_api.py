import logging
import time
from typing import Optional

import requests

from ..config import SCRYFALL_BASE_URL, SCRYFALL_RATE_LIMIT_MS
from ..models.card import Card, CardSearchResult

logger = logging.getLogger(__name__)


class ScryfallAPI:
    """Card search against the Scryfall API for an already translated query"""

    def __init__(self, session: Optional[requests.Session] = None, base_url: str = SCRYFALL_BASE_URL,
                 rate_limit_ms: int = SCRYFALL_RATE_LIMIT_MS, timeout: float = 10.0):
        self.base_url = base_url
        self.rate_limit_ms = rate_limit_ms
        self.timeout = timeout
        self.last_request_time = 0
        self.session = session or requests.Session()
        self.session.headers.update({
            'User-Agent': 'OffMetaSearch/1.0',
            'Accept': 'application/json'
        })

    def _rate_limit(self) -> None:
        """Keep at least rate_limit_ms between requests"""
        current_time = time.time() * 1000
        time_since_last = current_time - self.last_request_time

        if time_since_last < self.rate_limit_ms:
            time.sleep((self.rate_limit_ms - time_since_last) / 1000)

        self.last_request_time = time.time() * 1000

    def search_cards(self, query: str, page: int = 1, max_results: Optional[int] = None) -> CardSearchResult:
        """
        Fetch one page of cards for a Scryfall query

        Args:
            query: Scryfall search syntax
            page: 1-based result page
            max_results: Optional cap on the cards kept from the page

        Returns:
            CardSearchResult; a query with no matches is an empty result, not an error
        """
        self._rate_limit()

        params = {
            'q': query,
            'unique': 'cards',
            'page': page
        }

        try:
            response = self.session.get(f"{self.base_url}/cards/search", params=params, timeout=self.timeout)
            # Scryfall answers 404 when nothing matches
            if response.status_code == 404:
                return CardSearchResult(query=query)
            response.raise_for_status()
            data = response.json()
        except (requests.exceptions.RequestException, ValueError) as e:
            logger.warning("Card search failed for %r: %s", query, e)
            return CardSearchResult(query=query, error=str(e))

        cards = [Card.from_scryfall(card_data) for card_data in data.get('data', [])]
        if max_results is not None:
            cards = cards[:max_results]

        return CardSearchResult(
            query=query,
            cards=cards,
            total_cards=data.get('total_cards', len(cards)),
            has_more=data.get('has_more', False)
        )
