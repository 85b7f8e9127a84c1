"""LLM summary call used by the ``summarize`` compression strategy."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import TYPE_CHECKING

from pydantic import BaseModel

from conversation_state.errors import SummarizationError
from conversation_state.models import dump_items

if TYPE_CHECKING:
    from collections.abc import Sequence

    from pydantic_ai import Agent

    from conversation_state.models import Item


@dataclass
class SummarizerConfig:
    """Connection settings for the summary model.

    Example:
        config = SummarizerConfig(
            openai_base_url="http://localhost:8000/v1",
            model="llama3.1:8b",
        )

    """

    openai_base_url: str
    model: str = "gpt-4o-mini"
    api_key: str | None = None
    max_tokens: int = 1000  # Response cap, also sets the requested summary length
    temperature: float = 0.3

    def __post_init__(self) -> None:
        """Normalize the base URL."""
        self.openai_base_url = self.openai_base_url.rstrip("/")
        if self.api_key is None:
            self.api_key = "not-needed"


class SummaryOutput(BaseModel):
    """Structured output for summary generation."""

    summary: str


_SUMMARY_PROMPT = """Summarize this conversation segment, preserving:
1. Key decisions and outcomes
2. Tool usage patterns and results
{context_rules}
CONVERSATION SEGMENT:
{segment}

Create a concise summary that maintains conversation continuity.{length_rule}"""

_CONTEXT_RULES = """3. Important context for future messages
4. User preferences and requirements, quoted exactly
"""

_SYSTEM_PROMPT = (
    "You compact chat transcripts for an agent that will continue the conversation. "
    "Output only the summary, no preamble."
)


def summary_word_budget(config: SummarizerConfig) -> int:
    """Approximate word count that fits in the summary's token budget (~0.75 words/token)."""
    return int(config.max_tokens * 0.75)


def build_summary_prompt(
    items: Sequence[Item],
    *,
    preserve_context: bool = True,
    max_words: int | None = None,
) -> str:
    """Build the prompt asking the model to summarize ``items``."""
    return _SUMMARY_PROMPT.format(
        context_rules=_CONTEXT_RULES if preserve_context else "",
        segment=json.dumps(dump_items(items), indent=2, ensure_ascii=False),
        length_rule=f"\nUse at most {max_words} words." if max_words else "",
    )


def _build_agent(config: SummarizerConfig) -> Agent[None, SummaryOutput]:
    """Create the summary agent for an OpenAI-compatible endpoint.

    Raises:
        SummarizationError: If the optional ``llm`` extra is not installed.

    """
    try:
        from pydantic_ai import Agent  # noqa: PLC0415
        from pydantic_ai.models.openai import OpenAIChatModel  # noqa: PLC0415
        from pydantic_ai.providers.openai import OpenAIProvider  # noqa: PLC0415
        from pydantic_ai.settings import ModelSettings  # noqa: PLC0415
    except ImportError as e:
        msg = "Summaries need pydantic-ai; install the 'llm' extra"
        raise SummarizationError(msg) from e

    model = OpenAIChatModel(
        model_name=config.model,
        provider=OpenAIProvider(api_key=config.api_key, base_url=config.openai_base_url),
        settings=ModelSettings(temperature=config.temperature, max_tokens=config.max_tokens),
    )
    return Agent(
        model=model,
        system_prompt=_SYSTEM_PROMPT,
        output_type=SummaryOutput,
        retries=2,
    )


async def generate_summary(prompt: str, config: SummarizerConfig) -> str:
    """Run ``prompt`` through the summary model and return the summary text.

    Raises:
        SummarizationError: If pydantic-ai is missing, the call fails, or the
            model returns an empty summary.

    """
    agent = _build_agent(config)
    try:
        result = await agent.run(prompt)
    except Exception as e:
        msg = f"Summarization failed: {e}"
        raise SummarizationError(msg) from e

    summary = result.output.summary.strip()
    if not summary:
        msg = "Summary model returned an empty summary"
        raise SummarizationError(msg)
    return summary
