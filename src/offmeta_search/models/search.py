from typing import List, Optional, Literal, Tuple, Any
from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel


TranslationSource = Literal["ai", "deterministic", "client_fallback"]

# Backend pipeline stages that produce a rule-based query
_DETERMINISTIC_SOURCES = {"deterministic", "pattern_match", "concept_match", "fallback", "forced_fallback"}


class WireModel(BaseModel):
    """Base for models exchanged with the translation backend (camelCase on the wire)"""
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class FilterState(WireModel):
    """Constraints selected in the UI alongside the free-text query"""
    colors: List[str] = []
    types: List[str] = []
    cmc_range: Tuple[int, int] = (0, 16)
    sort_by: str = "name-asc"


class TranslationRequest(WireModel):
    """One request to translate free text into Scryfall syntax"""
    query: str
    filters: Optional[FilterState] = None
    cache_salt: Optional[str] = None
    bypass_cache: bool = False


class Explanation(WireModel):
    """Human readable account of how a query was translated"""
    readable: str
    assumptions: List[str] = []
    confidence: float = Field(ge=0.0, le=1.0)


class RangeConstraint(WireModel):
    op: str
    value: float


class ColorConstraint(WireModel):
    values: List[str] = []
    is_identity: bool = False
    is_exact: bool = False
    is_or: bool = False


class SearchIntent(WireModel):
    """Parsed intent reported by the backend translation pipeline"""
    colors: Optional[ColorConstraint] = None
    types: List[str] = []
    cmc: Optional[RangeConstraint] = None
    power: Optional[RangeConstraint] = None
    toughness: Optional[RangeConstraint] = None
    tags: List[str] = []
    oracle_patterns: List[str] = []
    warnings: List[str] = []
    deterministic_query: Optional[str] = None


class TranslationResult(WireModel):
    """Normalized outcome of a translation, real or fallback"""
    scryfall_query: str = Field(min_length=1)
    explanation: Optional[Explanation] = None
    show_affiliate: bool = False
    validation_issues: Optional[List[str]] = None
    intent: Optional[SearchIntent] = None
    source: TranslationSource = "ai"
    from_cache: bool = False

    @model_validator(mode="before")
    @classmethod
    def _mark_backend_cache_hits(cls, data: Any) -> Any:
        if isinstance(data, dict) and data.get("source") == "cache":
            data = {**data, "fromCache": True}
        return data

    @field_validator("source", mode="before")
    @classmethod
    def _normalize_source(cls, value: Any) -> str:
        if value is None or value == "cache":
            return "ai"
        if value in _DETERMINISTIC_SOURCES:
            return "deterministic"
        if value in ("ai", "client_fallback"):
            return value
        return "ai"


class ValidationReport(BaseModel):
    """Outcome of a structural check over a query string"""
    sanitized: str
    issues: List[str] = []

    @property
    def valid(self) -> bool:
        return not self.issues
