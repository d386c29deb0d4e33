import os
import json
import logging
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Dict, List, Tuple

import httpx

from .tools import ToolRegistry

logger = logging.getLogger(__name__)

MAX_TOOL_ROUNDS = 5


class LLMError(Exception):
    pass


@dataclass
class FunctionCall:
    name: str
    args: Dict[str, Any]
    id: str = ""
    # Provider-native representation, echoed back in the next request.
    raw: Dict[str, Any] = field(default_factory=dict)


def _provider() -> str:
    return os.getenv("LLM_PROVIDER", "gemini").strip().lower()


def _timeout() -> float:
    return float(os.getenv("LLM_TIMEOUT", "90"))


def _gemini_cfg() -> Tuple[str, str, str]:
    api_key = os.getenv("GEMINI_API_KEY") or os.getenv("GOOGLE_API_KEY")
    if not api_key:
        raise LLMError("GEMINI_API_KEY (or GOOGLE_API_KEY) environment variable is not set.")
    base_url = os.getenv("GEMINI_BASE_URL", "https://generativelanguage.googleapis.com/v1beta")
    model = os.getenv("GEMINI_MODEL", "gemini-2.0-flash")
    return api_key, base_url.rstrip("/"), model


def _openai_cfg() -> Tuple[str, str, str]:
    api_key = os.getenv("OPENAI_API_KEY")
    if not api_key:
        raise LLMError("OPENAI_API_KEY environment variable is not set.")
    base_url = os.getenv("OPENAI_BASE_URL", "https://api.openai.com/v1/")
    model = os.getenv("OPENAI_MODEL", "gpt-4o-mini")
    return api_key, base_url.rstrip("/") + "/", model


def _nebius_cfg() -> Tuple[str, str, str]:
    api_key = os.getenv("NEBIUS_API_KEY")
    if not api_key:
        raise LLMError("NEBIUS_API_KEY environment variable is not set.")
    base_url = os.getenv("NEBIUS_BASE_URL", "https://api.tokenfactory.nebius.com/v1/")
    model = os.getenv("NEBIUS_MODEL", "meta-llama/Meta-Llama-3.1-70B-Instruct")
    return api_key, base_url.rstrip("/") + "/", model


class GeminiChat:
    """Conversation state for Gemini's streamGenerateContent endpoint."""

    provider = "gemini"

    def __init__(self, prompt: str, registry: ToolRegistry, temperature: float):
        self.api_key, self.base_url, self.model = _gemini_cfg()
        self.registry = registry
        self.temperature = temperature
        self.contents: List[Dict[str, Any]] = [{"role": "user", "parts": [{"text": prompt}]}]
        self._calls: List[FunctionCall] = []

    def request(self) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        url = f"{self.base_url}/models/{self.model}:streamGenerateContent?alt=sse"
        headers = {"Content-Type": "application/json", "x-goog-api-key": self.api_key}
        payload: Dict[str, Any] = {
            "contents": self.contents,
            "generationConfig": {"temperature": self.temperature},
        }
        if len(self.registry):
            payload["tools"] = [{"function_declarations": self.registry.declarations()}]
        return url, headers, payload

    def start_round(self) -> None:
        self._calls = []

    def feed(self, event: Dict[str, Any]) -> List[str]:
        texts: List[str] = []
        candidates = event.get("candidates") or []
        if not candidates:
            return texts
        for part in candidates[0].get("content", {}).get("parts", []):
            if text := part.get("text"):
                texts.append(text)
            if fc := part.get("functionCall"):
                self._calls.append(FunctionCall(name=fc.get("name", ""), args=fc.get("args") or {}, raw=part))
        return texts

    def finish_round(self) -> List[FunctionCall]:
        return list(self._calls)

    def add_tool_results(self, text: str, calls: List[FunctionCall], results: List[Any]) -> None:
        parts: List[Dict[str, Any]] = [{"text": text}] if text else []
        parts.extend(c.raw for c in calls)
        self.contents.append({"role": "model", "parts": parts})
        self.contents.append(
            {
                "role": "user",
                "parts": [
                    {"functionResponse": {"name": c.name, "response": {"content": r}}}
                    for c, r in zip(calls, results)
                ],
            }
        )


class OpenAIChat:
    """Conversation state for OpenAI-compatible chat/completions streaming."""

    def __init__(self, prompt: str, registry: ToolRegistry, temperature: float, provider: str = "openai"):
        self.provider = provider
        cfg = _nebius_cfg if provider == "nebius" else _openai_cfg
        self.api_key, self.base_url, self.model = cfg()
        self.registry = registry
        self.temperature = temperature
        self.messages: List[Dict[str, Any]] = [{"role": "user", "content": prompt}]
        self._partial: Dict[int, Dict[str, str]] = {}

    def request(self) -> Tuple[str, Dict[str, str], Dict[str, Any]]:
        headers = {
            "Authorization": f"Bearer {self.api_key}",
            "Content-Type": "application/json",
        }
        payload: Dict[str, Any] = {
            "model": self.model,
            "messages": self.messages,
            "temperature": self.temperature,
            "stream": True,
        }
        if len(self.registry):
            payload["tools"] = [{"type": "function", "function": d} for d in self.registry.declarations()]
        return self.base_url + "chat/completions", headers, payload

    def start_round(self) -> None:
        self._partial = {}

    def feed(self, event: Dict[str, Any]) -> List[str]:
        texts: List[str] = []
        for choice in event.get("choices") or []:
            delta = choice.get("delta") or {}
            if content := delta.get("content"):
                texts.append(content)
            # Tool calls arrive as fragments keyed by index.
            for tc in delta.get("tool_calls") or []:
                slot = self._partial.setdefault(tc.get("index", 0), {"id": "", "name": "", "arguments": ""})
                fn = tc.get("function") or {}
                if tc.get("id"):
                    slot["id"] = tc["id"]
                if fn.get("name"):
                    slot["name"] = fn["name"]
                if fn.get("arguments"):
                    slot["arguments"] += fn["arguments"]
        return texts

    def finish_round(self) -> List[FunctionCall]:
        calls = []
        for _, slot in sorted(self._partial.items()):
            try:
                args = json.loads(slot["arguments"]) if slot["arguments"] else {}
            except ValueError as e:
                raise LLMError(f"Model sent malformed arguments for {slot['name']}.") from e
            calls.append(FunctionCall(name=slot["name"], args=args, id=slot["id"]))
        return calls

    def add_tool_results(self, text: str, calls: List[FunctionCall], results: List[Any]) -> None:
        self.messages.append(
            {
                "role": "assistant",
                "content": text or None,
                "tool_calls": [
                    {
                        "id": c.id,
                        "type": "function",
                        "function": {"name": c.name, "arguments": json.dumps(c.args)},
                    }
                    for c in calls
                ],
            }
        )
        for c, r in zip(calls, results):
            self.messages.append({"role": "tool", "tool_call_id": c.id, "content": json.dumps(r, ensure_ascii=False)})


def _new_chat(prompt: str, registry: ToolRegistry, temperature: float):
    provider = _provider()
    if provider == "gemini":
        return GeminiChat(prompt, registry, temperature)
    if provider in ("openai", "nebius"):
        return OpenAIChat(prompt, registry, temperature, provider=provider)
    raise LLMError('LLM_PROVIDER must be "gemini", "openai" or "nebius".')


async def _sse_events(provider: str, url: str, headers: Dict[str, str], payload: Dict[str, Any]) -> AsyncIterator[Dict[str, Any]]:
    async with httpx.AsyncClient() as client:
        try:
            async with client.stream("POST", url, headers=headers, json=payload, timeout=_timeout()) as r:
                if r.status_code >= 400:
                    body = (await r.aread()).decode("utf-8", errors="replace")
                    raise LLMError(f"{provider} API error ({r.status_code}): {body[:500]}")

                async for line in r.aiter_lines():
                    line = line.strip()
                    if not line.startswith("data:"):
                        continue
                    data = line[5:].strip()
                    if not data or data == "[DONE]":
                        continue
                    try:
                        event = json.loads(data)
                    except ValueError as e:
                        raise LLMError(f"Unexpected {provider} stream event: {data[:200]}") from e
                    if isinstance(event, dict) and event.get("error"):
                        raise LLMError(f"{provider} stream error: {json.dumps(event['error'])[:500]}")
                    yield event
        except httpx.RequestError as e:
            raise LLMError(f"{provider} request failed: {e.__class__.__name__}: {e}") from e


async def stream_generate(prompt: str, registry: ToolRegistry, temperature: float = 0.8) -> AsyncIterator[str]:
    """Yield text chunks in arrival order while the model runs, calling tools as it asks."""
    chat = _new_chat(prompt, registry, temperature)

    for round_no in range(MAX_TOOL_ROUNDS + 1):
        chat.start_round()
        text_parts: List[str] = []

        async for event in _sse_events(chat.provider, *chat.request()):
            for text in chat.feed(event):
                text_parts.append(text)
                yield text

        calls = chat.finish_round()
        if not calls:
            logger.info("Generation finished after %d tool rounds", round_no)
            return
        if round_no == MAX_TOOL_ROUNDS:
            raise LLMError(f"Model still calling tools after {MAX_TOOL_ROUNDS} rounds.")

        logger.info("Model requested tools: %s", ", ".join(c.name for c in calls))
        # Sequential, in the order the model asked; a tool failure ends the generation.
        results = [await registry.invoke(c.name, c.args) for c in calls]
        chat.add_tool_results("".join(text_parts), calls, results)
