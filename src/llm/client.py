"""Shared LLM client for the Anthropic Claude API.

Used by both collaborators the quiz workflow calls out to:
- summarizer: source page text -> study summary
- generator: summary -> schema-validated quiz content
"""

import json
import logging
import os
from typing import Optional

from src.jobs.errors import GenerationTransportError

logger = logging.getLogger(__name__)

# Default models
GENERATION_MODEL = os.environ.get("QUIZ_GENERATION_MODEL", "claude-sonnet-4-5-20250929")
GENERATION_MODEL_FALLBACK = "claude-haiku-4-5-20251001"
SUMMARY_MODEL = os.environ.get("SUMMARY_MODEL", "claude-haiku-4-5-20251001")


def get_anthropic_client():
    """Get an async Anthropic client if an API key is available.

    Returns None if ANTHROPIC_API_KEY is not set.
    """
    api_key = os.environ.get("ANTHROPIC_API_KEY")
    if not api_key:
        return None

    import httpx
    from anthropic import AsyncAnthropic

    return AsyncAnthropic(
        api_key=api_key,
        timeout=httpx.Timeout(connect=30.0, read=300.0, write=30.0, pool=30.0),
    )


def parse_llm_json_response(raw_text: str) -> dict:
    """Parse JSON from LLM response, handling markdown code fences.

    LLMs sometimes wrap JSON in ```json ... ``` fences despite being
    told not to. This function strips those fences before parsing.

    Raises:
        json.JSONDecodeError: If the text cannot be parsed as JSON
    """
    content = raw_text.strip()

    # Strip leading markdown fence (```json or ```)
    if content.startswith("```"):
        content = content.split("\n", 1)[1] if "\n" in content else content[3:]

    # Strip trailing fence
    if content.endswith("```"):
        content = content.rsplit("```", 1)[0]

    content = content.strip()
    return json.loads(content)


async def call_model(
    prompt: str,
    model: str = GENERATION_MODEL,
    fallback_model: Optional[str] = GENERATION_MODEL_FALLBACK,
    max_tokens: int = 8000,
    system_prompt: Optional[str] = None,
) -> tuple[str, str, int]:
    """Call Claude, falling back to a second model if the first fails.

    Returns:
        Tuple of (raw_response_text, model_used, total_tokens)

    Raises:
        GenerationTransportError: If no API key is configured or every
            model attempt fails
    """
    client = get_anthropic_client()
    if client is None:
        raise GenerationTransportError(
            "LLM service unavailable. Set ANTHROPIC_API_KEY environment variable."
        )

    kwargs = {
        "max_tokens": max_tokens,
        "messages": [{"role": "user", "content": prompt}],
    }
    if system_prompt:
        kwargs["system"] = system_prompt

    attempt_models = [model] + ([fallback_model] if fallback_model and fallback_model != model else [])
    last_error: Optional[Exception] = None
    for attempt_model in attempt_models:
        try:
            response = await client.messages.create(model=attempt_model, **kwargs)
        except Exception as e:
            last_error = e
            logger.warning(f"Model {attempt_model} failed: {e}")
            continue

        raw_text = ""
        for block in response.content:
            if hasattr(block, "text"):
                raw_text = block.text
                break
        total_tokens = response.usage.input_tokens + response.usage.output_tokens
        logger.info(f"LLM call on {attempt_model}: {total_tokens:,} tokens")
        return raw_text, attempt_model, total_tokens

    raise GenerationTransportError(
        f"All model attempts failed ({', '.join(attempt_models)}): {last_error}"
    ) from last_error
