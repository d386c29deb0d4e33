import inspect
import logging
from typing import AsyncIterator, Awaitable, Callable, List, Optional, Union

from .github import validate_username
from .llm import LLMError, stream_generate
from .tools import ToolError, default_registry

logger = logging.getLogger(__name__)

ROAST_TEMPERATURE = 0.8

ChunkSink = Callable[[str], Union[None, Awaitable[None]]]


class RoastError(Exception):
    pass


def build_prompt(username: str) -> str:
    return f"""You are a stand-up comedian who roasts software developers.
Roast the GitHub user "{username}" based on their recent activity.

Use the get_github_repos tool to see their most recently pushed repositories
and the get_github_commits tool to read their recent commit messages.

Rules:
- Be savage but good-natured: mock the code habits, never the person.
- Pick on repository names, favourite languages, star and fork counts
  (or the lack of them), and how long ago they last pushed anything.
- Quote their worst or laziest commit messages back at them.
- If they have no recent commits, roast that silence instead.
- Keep it to 3-5 short paragraphs and end with a backhanded compliment.
- Reply with the roast only, in plain text.
""".strip()


async def stream_roast(username: str) -> AsyncIterator[str]:
    """Yield roast chunks for `username` in the order the model produces them."""
    name = validate_username(username)
    logger.info("Roasting %s", name)

    async for chunk in stream_generate(build_prompt(name), default_registry(), temperature=ROAST_TEMPERATURE):
        yield chunk


async def roast_user(username: str, on_chunk: Optional[ChunkSink] = None) -> str:
    """Run the roast flow, forwarding each chunk to `on_chunk`; returns the full roast.

    GitHub errors raised by the tools propagate as-is. Generation and tool
    dispatch errors become RoastError. Nothing is returned on failure.
    """
    parts: List[str] = []
    try:
        async for chunk in stream_roast(username):
            parts.append(chunk)
            if on_chunk is not None:
                res = on_chunk(chunk)
                if inspect.isawaitable(res):
                    await res
    except (LLMError, ToolError) as e:
        raise RoastError(str(e)) from e

    roast = "".join(parts)
    if not roast.strip():
        raise RoastError("Model returned an empty roast.")

    logger.info("Roast for %s complete (%d chunks, %d chars)", username, len(parts), len(roast))
    return roast
