"""Sender classifier executor — assigns senders to user categories via LLM.

Two entry points: ``classify_sender`` (one sender, with context, used by
the background queue) and ``classify_senders_bulk`` (many senders in one
call, used by the fast categorizer).
"""

import logging

from mailsort.integrations.ollama import OllamaClient
from mailsort.schemas.senders import (
    BulkCategorizationResult,
    Category,
    SenderCategoryVerdict,
)

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You categorize email senders for a personal inbox.

Pick exactly one category from the list the user gives you, using the \
category name verbatim. If none fits, return null for the category. Never \
invent a category.
"""

SENDER_PROMPT = """\
## Categories
{categories}

## Sender
{address}

## Recent emails from this sender
{context}
"""

BULK_PROMPT = """\
## Categories
{categories}

## Senders
{senders}

Return one entry per sender, using the sender address exactly as given.
"""


def _format_categories(categories: list[Category]) -> str:
    return "\n".join(
        f"- {c.name}" + (f": {c.description}" if c.description else "") for c in categories
    )


def resolve_category(name: str | None, categories: list[Category]) -> Category | None:
    """Match an LLM-returned name to a known category, case-insensitively."""
    if not name:
        return None
    wanted = name.strip().lower()
    for category in categories:
        if category.name.lower() == wanted:
            return category
    return None


async def classify_sender(
    address: str,
    *,
    context: str,
    categories: list[Category],
    ollama: OllamaClient,
    model: str,
) -> SenderCategoryVerdict:
    """Ask the LLM for the category of one sender."""
    prompt = SENDER_PROMPT.format(
        categories=_format_categories(categories),
        address=address,
        context=context or "(no recent emails)",
    )
    verdict, _raw = await ollama.generate_structured(
        model=model,
        schema_class=SenderCategoryVerdict,
        system=SYSTEM_PROMPT,
        prompt=prompt,
    )
    logger.info("Sender %s: category=%s", address, verdict.category)
    return verdict


async def classify_senders_bulk(
    addresses: list[str],
    *,
    categories: list[Category],
    ollama: OllamaClient,
    model: str,
) -> dict[str, str | None]:
    """Ask the LLM for the categories of many senders in one call.

    Returns raw names keyed by lower-cased address; senders the LLM left
    out are absent.
    """
    prompt = BULK_PROMPT.format(
        categories=_format_categories(categories),
        senders="\n".join(f"- {a}" for a in addresses),
    )
    result, _raw = await ollama.generate_structured(
        model=model,
        schema_class=BulkCategorizationResult,
        system=SYSTEM_PROMPT,
        prompt=prompt,
    )
    return {entry.sender.strip().lower(): entry.category for entry in result.senders}
