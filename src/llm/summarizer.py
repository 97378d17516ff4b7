"""Content summarization collaborator: summarize(url) -> text.

Fetches the page with httpx, reduces the HTML to readable text, and asks
Claude for a fact-preserving summary. Fetch failures surface as
httpx.HTTPError, model failures as GenerationTransportError; the calling
step handler turns either into an actionable error message.
"""

import html
import logging
import os
import re

import httpx

from src.llm.client import SUMMARY_MODEL, call_model
from src.llm.prompts import SUMMARY_SYSTEM_PROMPT, SUMMARY_USER_TEMPLATE

logger = logging.getLogger(__name__)

FETCH_TIMEOUT = float(os.environ.get("FETCH_TIMEOUT", "30"))
MAX_PAGE_CHARS = 150_000  # ~40K tokens, comfortably inside the context window

_SCRIPT_RE = re.compile(r"<(script|style|noscript)[^>]*>.*?</\1>", re.IGNORECASE | re.DOTALL)
_TAG_RE = re.compile(r"<[^>]+>")
_WS_RE = re.compile(r"[ \t\r\f\v]+")
_BLANK_LINES_RE = re.compile(r"\n\s*\n+")


def html_to_text(markup: str) -> str:
    """Strip tags, scripts and styles; collapse whitespace."""
    text = _SCRIPT_RE.sub(" ", markup)
    text = _TAG_RE.sub("\n", text)
    text = html.unescape(text)
    text = _WS_RE.sub(" ", text)
    text = _BLANK_LINES_RE.sub("\n\n", text)
    return text.strip()


async def fetch_page_text(url: str) -> str:
    """Download a page and return its readable text."""
    async with httpx.AsyncClient(
        timeout=httpx.Timeout(FETCH_TIMEOUT),
        follow_redirects=True,
        headers={"User-Agent": "tento-quiz-generator/0.1"},
    ) as client:
        response = await client.get(url)
        response.raise_for_status()

    content_type = response.headers.get("content-type", "")
    text = html_to_text(response.text) if "html" in content_type else response.text.strip()
    if len(text) > MAX_PAGE_CHARS:
        logger.info(f"Truncating {url} from {len(text):,} to {MAX_PAGE_CHARS:,} chars")
        text = text[:MAX_PAGE_CHARS]
    return text


async def summarize(url: str) -> str:
    """Summarize the content at `url`."""
    text = await fetch_page_text(url)
    if not text:
        raise ValueError(f"No readable content at {url}")

    prompt = SUMMARY_USER_TEMPLATE.format(url=url, char_count=len(text), text=text)
    summary, model_used, tokens = await call_model(
        prompt,
        model=SUMMARY_MODEL,
        max_tokens=4000,
        system_prompt=SUMMARY_SYSTEM_PROMPT,
    )
    summary = summary.strip()
    if not summary:
        raise ValueError(f"Model {model_used} returned an empty summary for {url}")

    logger.info(f"Summarized {url}: {len(text):,} -> {len(summary):,} chars ({tokens:,} tokens)")
    return summary
