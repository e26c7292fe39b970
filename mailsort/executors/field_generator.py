"""Generates action field values (reply text, subjects, labels, addresses)."""

import logging

from mailsort.executors.ai_condition import format_email
from mailsort.integrations.ollama import OllamaClient
from mailsort.schemas.email import EmailMessage
from mailsort.schemas.rules import GeneratedText

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = """\
You write one field of an automated email action on behalf of the user.
Return only the value of the field in "value": no greeting about the task, \
no explanations, no placeholders.
"""

_FIELD_GUIDANCE = {
    "content": "the body text of the email to send",
    "subject": "a short subject line",
    "label": "a short label name (one to three words)",
    "to": "a single email address",
    "cc": "a comma-separated list of email addresses, or empty",
    "bcc": "a comma-separated list of email addresses, or empty",
    "url": "a URL",
}


async def generate_field(
    field: str,
    email: EmailMessage,
    *,
    rule_instructions: str | None,
    hint: str | None,
    ollama: OllamaClient,
    model: str,
) -> str:
    """Generate the value of ``field`` for an action run on ``email``."""
    parts = [f"Write {_FIELD_GUIDANCE.get(field, field)}."]
    if rule_instructions:
        parts.append(f"## Rule instructions\n{rule_instructions.strip()}")
    if hint:
        parts.append(f"## Guidance for this field\n{hint.strip()}")
    parts.append(f"## Email being handled\n{format_email(email)}")

    result, _raw = await ollama.generate_structured(
        model=model,
        schema_class=GeneratedText,
        system=SYSTEM_PROMPT,
        prompt="\n\n".join(parts),
        temperature=0.4,
    )
    logger.debug("Generated %s for email %s (%d chars)", field, email.uid, len(result.value))
    return result.value.strip()
