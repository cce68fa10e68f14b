"""Single-turn AI completion client built on the Claude Agent SDK."""

from __future__ import annotations

import asyncio
import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Optional

from claude_agent_sdk import (
    AssistantMessage,
    ClaudeAgentOptions,
    ResultMessage,
    TextBlock,
    query,
)

from ..config import get_settings
from ..errors import CompletionError

logger = logging.getLogger(__name__)

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL)


@dataclass
class Completion:
    text: str
    model: str
    input_tokens: int = 0
    output_tokens: int = 0


class CompletionClient:
    """Runs one prompt through the SDK with no tools and returns the text.

    Failures of any kind (transport, timeout, error result) raise
    :class:`CompletionError`; callers decide whether that is fatal.
    """

    def __init__(self, timeout: Optional[float] = None):
        settings = get_settings()
        self.timeout = timeout if timeout is not None else settings.completion_timeout_seconds

    async def complete(self, prompt: str, system_prompt: str, model: str) -> Completion:
        try:
            return await asyncio.wait_for(self._run(prompt, system_prompt, model), timeout=self.timeout)
        except asyncio.TimeoutError as e:
            raise CompletionError(f"completion timed out after {self.timeout}s") from e
        except CompletionError:
            raise
        except Exception as e:
            if isinstance(e, BaseExceptionGroup):
                msgs = [str(exc) for exc in e.exceptions]
                raise CompletionError("; ".join(msgs) or str(e)) from e
            raise CompletionError(str(e) or type(e).__name__) from e

    async def _run(self, prompt: str, system_prompt: str, model: str) -> Completion:
        options = ClaudeAgentOptions(
            model=model,
            system_prompt=system_prompt,
            allowed_tools=[],
            max_turns=1,
        )
        chunks: list[str] = []
        usage: dict[str, Any] = {}
        async for message in query(prompt=prompt, options=options):
            if isinstance(message, AssistantMessage):
                for block in message.content:
                    if isinstance(block, TextBlock):
                        chunks.append(block.text)
            elif isinstance(message, ResultMessage):
                if message.is_error:
                    raise CompletionError(f"completion ended with '{message.subtype}'")
                usage = message.usage or {}

        text = "".join(chunks).strip()
        if not text:
            raise CompletionError("completion returned no text")
        logger.debug("Completion from %s: %d chars", model, len(text))
        return Completion(
            text=text,
            model=model,
            input_tokens=int(usage.get("input_tokens", 0) or 0),
            output_tokens=int(usage.get("output_tokens", 0) or 0),
        )


def extract_json(text: str) -> Any:
    """Parse the JSON object in a model reply, tolerating code fences and prose."""
    match = _FENCE.search(text)
    candidate = match.group(1) if match else text
    candidate = candidate.strip()
    if not candidate.startswith(("{", "[")):
        start = candidate.find("{")
        end = candidate.rfind("}")
        if start == -1 or end <= start:
            raise CompletionError("completion contains no JSON object")
        candidate = candidate[start : end + 1]
    try:
        return json.loads(candidate)
    except json.JSONDecodeError as e:
        raise CompletionError(f"completion contains malformed JSON: {e.msg}") from e
