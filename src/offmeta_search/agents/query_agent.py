import logging
from typing import List, Optional

from pydantic import BaseModel, Field
from pydantic_ai import Agent, RunContext
from pydantic_ai.models.openai import OpenAIResponsesModel

from ..config import QUERY_AGENT_MODEL
from ..events import ErrorOccurredEvent, QueryGenerationStartedEvent
from ..exceptions import ErrorKind, RateLimitedError, TranslationError, classify_error
from ..models.search import Explanation, TranslationRequest, TranslationResult
from ..prompts import load_query_agent_prompt
from ..tools.query_validator import build_filter_query
from ..tools.tag_search import TagSearchTool

logger = logging.getLogger(__name__)


class QueryAgentDeps:
    """Dependencies for the Query Agent"""
    def __init__(self, tag_search: Optional[TagSearchTool] = None):
        self.tag_search = tag_search or TagSearchTool()


class AgentTranslation(BaseModel):
    """Structured output requested from the model"""
    scryfall_query: str = Field(description="Scryfall search syntax")
    readable: str = Field(description="One sentence explaining the query")
    assumptions: List[str] = []
    confidence: float = Field(ge=0.0, le=1.0)


async def search_similar_tags(ctx: RunContext[QueryAgentDeps], guess_tags: List[str]) -> List[str]:
    """
    Find oracle tags similar to your guesses using fuzzy matching.

    Args:
        guess_tags: List of tag guesses to find similar matches for

    Returns:
        List of valid tag names sorted by relevance
    """
    return ctx.deps.tag_search.find_similar_tags(guess_tags)


def create_query_agent(model_name: str = QUERY_AGENT_MODEL) -> Agent:
    """Build the translation agent; needs OPENAI_API_KEY at call time"""
    return Agent(
        model=OpenAIResponsesModel(model_name),
        deps_type=QueryAgentDeps,
        output_type=AgentTranslation,
        system_prompt=load_query_agent_prompt(),
        tools=[search_similar_tags],
    )


class QueryAgent:
    """Translates natural language into Scryfall syntax with an LLM, no backend required"""

    def __init__(self, agent: Optional[Agent] = None, deps: Optional[QueryAgentDeps] = None,
                 event_emitter=None):
        self._agent = agent
        self.deps = deps or QueryAgentDeps()
        self.events = event_emitter

    @property
    def agent(self) -> Agent:
        if self._agent is None:
            self._agent = create_query_agent()
        return self._agent

    def _build_prompt(self, request: TranslationRequest) -> str:
        prompt_parts = [
            f"Convert this card search to a Scryfall query: {request.query.strip()}"
        ]

        filter_query = build_filter_query(request.filters)
        if filter_query:
            prompt_parts.append(
                f"The user also selected these filters; they are applied separately, do not repeat them: {filter_query}"
            )

        prompt_parts.append(
            "If the request involves functional categories, use the search_similar_tags tool "
            "to find relevant oracle tags and include them with otag: format."
        )
        return "\n\n".join(prompt_parts)

    async def translate(self, request: TranslationRequest) -> TranslationResult:
        """
        Translate one request

        Raises:
            TranslationError: when the model call fails or returns no query
        """
        if self.events:
            self.events.emit(QueryGenerationStartedEvent(request.query))

        try:
            result = await self.agent.run(self._build_prompt(request), deps=self.deps)
        except Exception as e:
            if self.events:
                self.events.emit(ErrorOccurredEvent(str(e), "agent_error", request.query))
            if classify_error(e) is ErrorKind.RATE_LIMITED:
                raise RateLimitedError(f"Model provider rate limit: {e}") from e
            raise TranslationError(f"Query agent failed: {e}") from e

        output: AgentTranslation = result.output
        if not output.scryfall_query.strip():
            raise TranslationError("Query agent returned an empty query")

        logger.debug("Agent translated %r -> %r", request.query, output.scryfall_query)
        return TranslationResult(
            scryfall_query=output.scryfall_query.strip(),
            explanation=Explanation(
                readable=output.readable,
                assumptions=output.assumptions,
                confidence=output.confidence,
            ),
            source="ai",
        )
