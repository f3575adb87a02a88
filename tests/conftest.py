"""
Pytest configuration shared by unit and integration tests.

Provides fakes for the OpenAI-compatible client and for chat transports so
no test touches the network.
"""

import os
import tempfile

# Keep test logs out of the source tree; must run before whytree is imported
os.environ.setdefault("WHYTREE_LOG_DIR", tempfile.mkdtemp(prefix="whytree-test-logs-"))

from types import SimpleNamespace  # noqa: E402

import pytest  # noqa: E402

from whytree.config.settings import Settings  # noqa: E402
from whytree.core.exchange import ChatReply  # noqa: E402
from whytree.core.models import ROLE_ASSISTANT, Message  # noqa: E402


def completion(text):
    """Minimal stand-in for an openai ChatCompletion."""
    return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=text))])


class FakeCompletions:
    def __init__(self, outcomes):
        self.outcomes = list(outcomes)
        self.calls = []

    def create(self, **kwargs):
        self.calls.append(kwargs)
        if not self.outcomes:
            raise AssertionError("Unexpected model call")
        outcome = self.outcomes.pop(0)
        if isinstance(outcome, Exception):
            raise outcome
        if isinstance(outcome, str):
            return completion(outcome)
        return outcome


class FakeOpenAIClient:
    def __init__(self, outcomes=()):
        self.completions = FakeCompletions(outcomes)
        self.chat = SimpleNamespace(completions=self.completions)


class FakeTransport:
    """
    Scripted chat transport. Each queued item is a ChatReply, an exception to
    raise, or a callable(messages, wants_tree) returning a ChatReply.
    """

    def __init__(self, *replies):
        self.replies = list(replies)
        self.calls = []

    def exchange(self, messages, wants_tree):
        self.calls.append((list(messages), wants_tree))
        if not self.replies:
            raise AssertionError("Unexpected transport call")
        item = self.replies.pop(0)
        if isinstance(item, Exception):
            raise item
        if callable(item):
            return item(messages, wants_tree)
        return item


def assistant_reply(text, tree=None):
    return ChatReply(message=Message.create(ROLE_ASSISTANT, text), tree_artifact=tree)


@pytest.fixture
def settings():
    return Settings(gemini_api_key="test-key", gemini_model="gemini-test")


@pytest.fixture
def settings_without_key():
    return Settings(gemini_api_key="")
