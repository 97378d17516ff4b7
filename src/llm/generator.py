"""Structured content generator: generate(schema, context) -> validated model.

The model is shown the schema's JSON Schema and must answer with a single
JSON object. Output that is not JSON, or JSON that fails pydantic
validation, raises SchemaValidationError; a failed API call raises
GenerationTransportError. Partial results are never returned.
"""

import json
import logging
from typing import Optional, TypeVar

from pydantic import BaseModel, ValidationError

from src.jobs.errors import SchemaValidationError
from src.llm.client import GENERATION_MODEL, call_model, parse_llm_json_response
from src.llm.prompts import QUIZ_SYSTEM_PROMPT, QUIZ_USER_TEMPLATE

logger = logging.getLogger(__name__)

T = TypeVar("T", bound=BaseModel)


def validate_generated(schema: type[T], raw_text: str) -> T:
    """Parse and validate raw model output against `schema`."""
    try:
        data = parse_llm_json_response(raw_text)
    except json.JSONDecodeError as e:
        raise SchemaValidationError(schema.__name__, f"response is not valid JSON: {e}") from e

    try:
        return schema.model_validate(data)
    except ValidationError as e:
        problems = "; ".join(
            f"{'.'.join(str(p) for p in err['loc']) or '<root>'}: {err['msg']}"
            for err in e.errors()[:5]
        )
        raise SchemaValidationError(schema.__name__, problems) from e


async def generate(
    schema: type[T],
    context: str,
    *,
    model: str = GENERATION_MODEL,
    system_prompt: Optional[str] = None,
    max_tokens: int = 8000,
) -> T:
    """Generate content conforming to `schema` from `context`."""
    prompt = QUIZ_USER_TEMPLATE.format(
        schema=json.dumps(schema.model_json_schema(), indent=2),
        context=context,
    )
    raw_text, model_used, tokens = await call_model(
        prompt,
        model=model,
        max_tokens=max_tokens,
        system_prompt=system_prompt or QUIZ_SYSTEM_PROMPT,
    )
    result = validate_generated(schema, raw_text)
    logger.info(f"Generated {schema.__name__} with {model_used} ({tokens:,} tokens)")
    return result
