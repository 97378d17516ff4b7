"""LLM collaborators for the quiz workflow.

- client: Anthropic client, JSON response parsing, model calls with fallback
- summarizer: summarize(url), page fetch plus Claude summary
- generator: generate(schema, context), structured output validated by pydantic
- prompts: System and user prompt templates
"""

from src.llm.client import call_model, get_anthropic_client, parse_llm_json_response
from src.llm.generator import generate, validate_generated
from src.llm.summarizer import summarize

__all__ = [
    "call_model",
    "get_anthropic_client",
    "parse_llm_json_response",
    "generate",
    "validate_generated",
    "summarize",
]
