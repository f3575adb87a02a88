# whytree/core/exchange.py

"""
One chat exchange: dialogue in, assistant message (and maybe a tree) out.

Both the HTTP endpoint and the in-process CLI transport go through
build_chat_reply, so the reply shape is identical either way.
"""

from dataclasses import dataclass
from typing import Optional, Sequence

from whytree.clients.gemini_client import ModelGateway
from whytree.core.models import ROLE_ASSISTANT, Message

COMPLETION_NOTICE = "Your why-why analysis is complete. Take a look at the tree."


@dataclass(frozen=True)
class ChatReply:
    message: Message
    tree_artifact: Optional[str] = None


def build_chat_reply(gateway: ModelGateway, messages: Sequence[Message], wants_tree: bool) -> ChatReply:
    reply = gateway.converse(messages, wants_tree=wants_tree)

    diagram = reply.diagram if wants_tree else None
    # The raw JSON is not worth showing once the tree exists
    content = COMPLETION_NOTICE if diagram else reply.text

    return ChatReply(
        message=Message.create(ROLE_ASSISTANT, content),
        tree_artifact=diagram or None,
    )


class LocalChatTransport:
    """Runs exchanges against an in-process gateway."""

    def __init__(self, gateway: ModelGateway) -> None:
        self.gateway = gateway

    def exchange(self, messages: Sequence[Message], wants_tree: bool) -> ChatReply:
        return build_chat_reply(self.gateway, messages, wants_tree)
