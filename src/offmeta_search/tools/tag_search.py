import json
import importlib.resources
import logging
from typing import List, Dict, Tuple

from fuzzywuzzy import fuzz

logger = logging.getLogger(__name__)


class TagSearchTool:
    """Fuzzy lookup of Scryfall oracle tags (otag:) for rough concept words"""

    def __init__(self, tags_data: Dict[str, List[str]] = None, threshold: int = 60):
        self.threshold = threshold
        self.tags_data: Dict[str, List[str]] = tags_data if tags_data is not None else self._load_tags()
        # (tag, category) pairs
        self.flat_tags: List[Tuple[str, str]] = [
            (tag, category) for category, tags in self.tags_data.items() for tag in tags
        ]

    @staticmethod
    def _load_tags() -> Dict[str, List[str]]:
        """Load the tag list shipped inside the package"""
        try:
            resource = importlib.resources.files('offmeta_search') / 'data' / 'oracle_tags.json'
            return json.loads(resource.read_text(encoding='utf-8'))
        except (FileNotFoundError, ValueError) as e:
            logger.error("Could not load oracle tags, the package may be installed incorrectly: %s", e)
            return {}

    @property
    def all_tags(self) -> List[str]:
        return [tag for tag, _ in self.flat_tags]

    def find_similar_tags(self, guess_tags: List[str], max_results: int = 10) -> List[str]:
        """
        Find tags similar to the provided guesses

        Args:
            guess_tags: Concept words or tag guesses, e.g. ["ramp", "board wipe"]
            max_results: Maximum number of suggestions to return

        Returns:
            Tag names sorted by best match score
        """
        tag_scores = []

        for guess in guess_tags:
            normalized = guess.lower().replace('-', ' ')
            for tag, _ in self.flat_tags:
                score = fuzz.token_sort_ratio(normalized, tag.replace('-', ' '))
                if score > self.threshold:
                    tag_scores.append((tag, score))

        seen_tags = set()
        unique_tags = []
        for tag, score in sorted(tag_scores, key=lambda x: x[1], reverse=True):
            if tag not in seen_tags:
                seen_tags.add(tag)
                unique_tags.append(tag)

        return unique_tags[:max_results]
