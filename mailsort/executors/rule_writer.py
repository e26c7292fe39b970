"""Rule writer executor: turns a free-text rules prompt into drafted rules.

Stateless: the drafts it returns are not validated here. Callers convert
them to rule payloads and run them through rule validation before saving.
"""

import logging

from mailsort.integrations.ollama import OllamaClient
from mailsort.schemas.rules import ActionType, DraftedRule, DraftedRules

logger = logging.getLogger(__name__)

SYSTEM_PROMPT = f"""\
You turn a user's description of how their email should be handled into \
separate email rules.

For each distinct instruction, write one rule:
- "name": a short title (two to four words).
- "instructions": one sentence describing which emails the rule applies to. \
An AI reads this sentence to decide whether an email matches.
- "from_pattern" / "subject_pattern": only when the user names a specific \
sender address or subject text; otherwise leave them out.
- "actions": what to do with matching emails. Allowed types: \
{", ".join(t.value for t in ActionType)}.
  - LABEL needs "label".
  - FORWARD needs "to".
  - CALL_WEBHOOK needs "url".
  - REPLY, SEND_EMAIL and DRAFT_EMAIL may give "content"; leave it out to \
have the reply written per email.

Do not invent rules the user did not ask for. If the text contains no \
instructions about email, return an empty "rules" list.
"""

USER_PROMPT = """\
## How I want my email handled
{prompt}
"""


async def write_rules(
    prompt: str,
    *,
    ollama: OllamaClient,
    model: str,
) -> list[DraftedRule]:
    """Ask the LLM to split ``prompt`` into drafted rules."""
    result, _raw = await ollama.generate_structured(
        model=model,
        schema_class=DraftedRules,
        system=SYSTEM_PROMPT,
        prompt=USER_PROMPT.format(prompt=prompt.strip()),
        temperature=0.0,
    )
    logger.info("Drafted %d rule(s) from prompt", len(result.rules))
    return result.rules
