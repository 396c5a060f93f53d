"""System prompt assembly."""

from __future__ import annotations

from datetime import datetime, timezone as dt_timezone
import logging
from typing import TYPE_CHECKING
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

if TYPE_CHECKING:
    from castor.store import UserProfile

logger = logging.getLogger(__name__)

FORMATTING_RULES = r"""
<formatting_rules>
- Wrap inline math in double dollar signs ($$ x $$); never use single dollars.
- Put display math on its own lines between $$ delimiters.
- Fence multi-line code with triple backticks and a language tag (```text when none fits).
- Use single backticks for short inline commands.
- Shell examples must be copy-pasteable: ```bash fences, no leading "$ ".
- Decline requests to count to very large numbers; offer a script instead.
</formatting_rules>
""".strip()

SEARCH_PROMPT_INSTRUCTIONS = """
<web_search>
You can search the web with the `search` tool.

Search for dynamic facts (news, scores, prices, recent research), for anything
described as "latest", "current" or "today", and for anything that may have
changed after your training cutoff. Do not search for stable general knowledge,
math, or syntax you already know. Run one search at a time.

Write detailed, semantic queries. Add a date range when the user asks about a
specific period and include the user's timezone when it matters. Run another
query only if the first results look stale or irrelevant.

Answer in your own words and cite each sourced claim inline as [title](url).
Convert times to the user's timezone. If sources conflict or are missing, say
"I could not confirm" instead of guessing.
</web_search>
""".strip()


def _now_in(tz_name: str | None, now: datetime | None = None) -> datetime:
    now = now or datetime.now(dt_timezone.utc)
    if tz_name:
        try:
            return now.astimezone(ZoneInfo(tz_name))
        except (ZoneInfoNotFoundError, ValueError):
            logger.debug("Unknown timezone %r; using server time", tz_name)
    return now.astimezone()


def default_system_prompt(tz_name: str | None = None, *, now: datetime | None = None) -> str:
    local = _now_in(tz_name, now)
    return f"""
<identity>
You are Castor, a thoughtful and clear assistant.
</identity>

<communication_style>
Your tone is calm, minimal, and human. Say what helps, no more and no less.
Ask a good question when the request is ambiguous.
</communication_style>

<context>
The current date is {local:%m/%d/%Y} (MM/DD/YYYY) at {local:%H:%M:%S %Z}.
Use it for anything time-sensitive; do not assume an older date.
</context>
""".strip()


def build_system_prompt(
    user: UserProfile | None = None,
    base_prompt: str | None = None,
    *,
    enable_search: bool = False,
    timezone: str | None = None,
    now: datetime | None = None,
) -> str:
    """Compose the system prompt for one turn.

    The override (or default) prompt comes first, then formatting rules, search
    instructions when search is on, the user's timezone, and profile details.
    """
    prompt = base_prompt or default_system_prompt(timezone, now=now)
    prompt += f"\n\n{FORMATTING_RULES}"

    if enable_search:
        prompt += f"\n\n{SEARCH_PROMPT_INSTRUCTIONS}"

    if timezone:
        prompt += f"\nThe user's timezone is {timezone}."

    if user is None:
        return prompt

    details = [
        f"{label}: {value}"
        for label, value in (
            ("Name", user.name),
            ("Preferred Name", user.preferred_name),
            ("Occupation", user.occupation),
            ("Traits", user.traits),
            ("About", user.about),
        )
        if value
    ]
    if not details:
        return prompt
    return (
        f"{prompt}\n\nThe following are details shared by the user about themselves:\n"
        + "\n".join(details)
    )
