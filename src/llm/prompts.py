"""Prompt templates for the quiz generation collaborators."""

SUMMARY_SYSTEM_PROMPT = """You are a content extraction and summarization agent feeding a quiz \
generation pipeline. Summarize the supplied page text with absolute factual precision.

- Preserve technical details, numbers, dates, names and citations exactly.
- Keep lists, categorizations and the logical relationships between facts.
- Retain domain terminology as it appears in the source.
- Flag missing, truncated or paywalled content explicitly.
- Do not add commentary, opinions or facts that are not in the text."""

SUMMARY_USER_TEMPLATE = """# Source

**URL**: {url}
**Extracted text length**: {char_count:,} characters

## Page text:
{text}

Produce the summary."""

QUIZ_SYSTEM_PROMPT = """You write multiple-choice quizzes from a source summary. Every correct \
answer must be directly supported by the summary; incorrect options must be plausible but wrong. \
Return ONLY a JSON object matching the provided JSON Schema. No prose, no markdown fences."""

QUIZ_USER_TEMPLATE = """# JSON Schema

{schema}

# Context

{context}

Return the JSON object."""


def build_quiz_context(
    summary: str,
    *,
    question_count: int,
    quiz_name: str,
    url: str,
) -> str:
    """Context block handed to the structured generator for one quiz."""
    return (
        f"Quiz name: {quiz_name}\n"
        f"Source URL: {url}\n"
        f"Number of questions: exactly {question_count}\n"
        f"Each question has 2-4 options with at least one correct option and an "
        f"explanation for every option.\n\n"
        f"## Source summary\n\n{summary}"
    )
