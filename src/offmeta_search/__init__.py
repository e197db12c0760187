"""OffMeta search package public API.

Imports stay lazy so importing a single tool (e.g.
offmeta_search.tools.fallback) does not pull in the AI stack.
"""

from typing import TYPE_CHECKING

__all__ = ["SearchHandler", "TranslationCache"]

if TYPE_CHECKING:
	from .cache import TranslationCache as TranslationCache
	from .orchestrator import SearchHandler as SearchHandler


def __getattr__(name: str):
	if name == "SearchHandler":
		from .orchestrator import SearchHandler
		return SearchHandler
	if name == "TranslationCache":
		from .cache import TranslationCache
		return TranslationCache
	raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
