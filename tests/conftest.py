import os
import sys

import pytest

sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))
from llm_client import Message, Role, Text, ToolCall


class ScriptedChat:
    """Stands in for llm_client.chat: replays canned replies and records prompts.

    A str reply becomes Text content, a ToolCall stays a tool call, an
    exception instance is raised.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def __call__(self, system_prompt, user_prompt, max_tokens, **kwargs):
        self.calls.append({
            "system": system_prompt,
            "user": user_prompt,
            "max_tokens": max_tokens,
            "kwargs": kwargs,
        })
        if not self.replies:
            raise AssertionError(f"unexpected model call: {user_prompt[:80]!r}")
        reply = self.replies.pop(0)
        if isinstance(reply, Exception):
            raise reply
        content = reply if isinstance(reply, ToolCall) else Text(reply)
        return Message(content=content, name="fake-model", role=Role.ASSISTANT)


@pytest.fixture
def scripted_chat():
    return ScriptedChat
