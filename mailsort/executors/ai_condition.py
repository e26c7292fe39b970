"""AI condition executor — asks the LLM whether an email fits a rule.

Stateless: receives the email, instructions and client, returns a verdict.
"""

import logging

from mailsort.integrations.ollama import OllamaClient
from mailsort.schemas.email import EmailMessage
from mailsort.schemas.rules import ConditionVerdict

logger = logging.getLogger(__name__)

# Truncate email body sent to the LLM to stay within context limits.
MAX_BODY_CHARS = 2000

SYSTEM_PROMPT = """\
You are an email assistant that decides whether an email matches a rule \
written by the user.

Read the rule instructions, then the email. Answer with "matches": true only \
when the email clearly fits the instructions. When in doubt, answer false.
Give one sentence of reasoning.
"""

USER_PROMPT = """\
## Rule instructions
{instructions}

## Email
{email}
"""


def format_email(email: EmailMessage) -> str:
    """Render an email as prompt text."""
    body = email.body or "(no body)"
    if len(body) > MAX_BODY_CHARS:
        body = body[:MAX_BODY_CHARS] + "\n\n[... content truncated ...]"

    return (
        f"**From:** {email.from_address} ({email.from_name or 'unknown'})\n"
        f"**To:** {', '.join(email.to) if email.to else '(unknown)'}\n"
        f"**Subject:** {email.subject or '(no subject)'}\n"
        f"**Date:** {email.date.isoformat() if email.date else '(unknown)'}\n\n"
        f"{body}"
    )


async def check_ai_condition(
    email: EmailMessage,
    instructions: str,
    *,
    ollama: OllamaClient,
    model: str,
) -> ConditionVerdict:
    """Ask the LLM whether ``email`` satisfies ``instructions``.

    Errors from the client propagate; callers decide the failure policy.
    """
    prompt = USER_PROMPT.format(instructions=instructions.strip(), email=format_email(email))
    verdict, _raw = await ollama.generate_structured(
        model=model,
        schema_class=ConditionVerdict,
        system=SYSTEM_PROMPT,
        prompt=prompt,
        temperature=0.0,
    )
    logger.debug(
        "AI condition for email %s: matches=%s (%s)",
        email.uid,
        verdict.matches,
        verdict.reasoning,
    )
    return verdict
