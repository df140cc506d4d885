"""Model-call collaborator: chat(system, user, max_tokens) -> Message.

Talks to any OpenAI-compatible chat completions endpoint. The reply is either
plain text or a single tool call; tool calls are taken from the API's native
tool_calls field, or from a <tool_call>{...}</tool_call> block in the text for
models that emit them inline.
"""

import enum
import json
import os
import re
import sys
import threading
import time
from dataclasses import dataclass, field
from typing import Any

import openai

from errors import LLMCallError, UnexpectedVariantError

DEFAULT_MODEL = "gpt-4o"

_TOOL_CALL_RE = re.compile(r"<tool_call>\s*(\{.*?\})\s*</tool_call>", re.DOTALL | re.IGNORECASE)


class Role(str, enum.Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"
    TOOL = "tool"


@dataclass(frozen=True)
class Text:
    text: str


@dataclass(frozen=True)
class ToolCall:
    name: str
    arguments: dict[str, Any] | None = None

    def args(self) -> dict[str, Any]:
        return self.arguments or {}


Content = Text | ToolCall


@dataclass(frozen=True)
class Message:
    content: Content = field(default_factory=lambda: Text("placeholder"))
    name: str | None = None
    role: Role = Role.USER

    def text(self) -> str:
        if not isinstance(self.content, Text):
            raise UnexpectedVariantError(f"expected text, got tool call {self.content.name!r}")
        return self.content.text

    def tool_call(self) -> ToolCall:
        if not isinstance(self.content, ToolCall):
            raise UnexpectedVariantError("expected a tool call, got text")
        return self.content

    def content_to_string(self) -> str:
        if isinstance(self.content, ToolCall):
            return json.dumps({"name": self.content.name, "arguments": self.content.arguments})
        return self.content.text


# ---------------------------------------------------------------------------
# Usage accounting, shared by every agent in the process
# ---------------------------------------------------------------------------

class UsageTracker:
    """Thread-safe cumulative counters for model calls."""

    def __init__(self):
        self._lock = threading.Lock()
        self._stats = {"calls": 0, "failed": 0, "prompt_tokens": 0, "completion_tokens": 0}

    def record(self, prompt_tokens: int, completion_tokens: int) -> None:
        with self._lock:
            self._stats["calls"] += 1
            self._stats["prompt_tokens"] += prompt_tokens
            self._stats["completion_tokens"] += completion_tokens

    def record_failure(self) -> None:
        with self._lock:
            self._stats["failed"] += 1

    def snapshot(self) -> dict:
        with self._lock:
            stats = dict(self._stats)
        stats["total_tokens"] = stats["prompt_tokens"] + stats["completion_tokens"]
        return stats

    def reset(self) -> None:
        with self._lock:
            for key in self._stats:
                self._stats[key] = 0


usage = UsageTracker()


# ---------------------------------------------------------------------------
# Response decoding
# ---------------------------------------------------------------------------

def _decode_arguments(raw: Any) -> dict[str, Any] | None:
    if isinstance(raw, str):
        try:
            raw = json.loads(raw)
        except json.JSONDecodeError:
            return None
    return raw if isinstance(raw, dict) else None


def parse_tool_call_text(text: str) -> ToolCall | None:
    """Find the first well-formed <tool_call> block carrying a name."""
    for match in _TOOL_CALL_RE.finditer(text):
        try:
            data = json.loads(match.group(1))
        except json.JSONDecodeError:
            continue
        if isinstance(data, dict) and isinstance(data.get("name"), str):
            return ToolCall(name=data["name"], arguments=_decode_arguments(data.get("arguments")))
    return None


def _content_from_choice(message) -> Content:
    if message.tool_calls:
        fn = message.tool_calls[0].function
        return ToolCall(name=fn.name, arguments=_decode_arguments(fn.arguments))
    text = message.content or ""
    call = parse_tool_call_text(text)
    if call is not None:
        return call
    return Text(text)


# ---------------------------------------------------------------------------
# chat
# ---------------------------------------------------------------------------

def _retry_delay(exc: openai.APIStatusError, attempt: int, base_delay: float) -> float:
    delay = base_delay * (2 ** attempt)
    if getattr(exc, "response", None) is not None:
        retry_after_str = exc.response.headers.get("Retry-After")
        if retry_after_str:
            try:
                delay = max(delay, float(retry_after_str))
            except (ValueError, TypeError):
                pass
    return delay


def chat(system_prompt: str, user_prompt: str, max_tokens: int,
         model: str | None = None, temperature: float | None = None) -> Message:
    """One chat completion. Returns the reply as a Message with role assistant.

    Rate-limited requests (429) are retried with exponential backoff; any other
    API failure, or running out of retries, raises LLMCallError.
    """
    try:
        client = openai.OpenAI()
    except openai.OpenAIError as e:
        usage.record_failure()
        raise LLMCallError(f"client setup failed: {e}") from e
    model = model or os.environ.get("AGENT_MODEL", DEFAULT_MODEL)
    kwargs = {
        "model": model,
        "max_tokens": max_tokens,
        "messages": [
            {"role": Role.SYSTEM.value, "content": system_prompt},
            {"role": Role.USER.value, "content": user_prompt},
        ],
    }
    if temperature is not None:
        kwargs["temperature"] = temperature

    max_retries = int(os.environ.get("AGENT_MAX_RETRIES", "3"))
    base_delay = float(os.environ.get("AGENT_RETRY_BASE_DELAY", "2.0"))

    print(f"[llm] calling {model} (system {len(system_prompt)} chars, "
          f"user {len(user_prompt)} chars, max_tokens {max_tokens})...",
          file=sys.stderr, flush=True)
    t0 = time.time()
    for attempt in range(max_retries + 1):
        try:
            resp = client.chat.completions.create(**kwargs)
            break
        except openai.APIStatusError as e:
            if e.status_code == 429 and attempt < max_retries:
                delay = _retry_delay(e, attempt, base_delay)
                print(f"[llm] Rate limited (attempt {attempt + 1}/{max_retries}), "
                      f"retrying in {delay:.1f}s...",
                      file=sys.stderr, flush=True)
                time.sleep(delay)
                continue
            usage.record_failure()
            raise LLMCallError(f"API {e.status_code}: {str(e)[:300]}") from e
        except openai.APIError as e:
            usage.record_failure()
            raise LLMCallError(f"{type(e).__name__}: {str(e)[:300]}") from e

    prompt_tokens = resp.usage.prompt_tokens if resp.usage else 0
    completion_tokens = resp.usage.completion_tokens if resp.usage else 0
    usage.record(prompt_tokens, completion_tokens)
    print(f"[llm] completed ({prompt_tokens + completion_tokens} tokens, {time.time() - t0:.1f}s)",
          file=sys.stderr, flush=True)

    return Message(
        content=_content_from_choice(resp.choices[0].message),
        name=resp.model or model,
        role=Role.ASSISTANT,
    )
