# whytree/core/models.py

from dataclasses import dataclass, field, replace
import time
import uuid
from typing import Any, Dict, List, Optional

ROLE_USER = "user"
ROLE_ASSISTANT = "assistant"
ROLES = (ROLE_USER, ROLE_ASSISTANT)


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


@dataclass(frozen=True)
class Message:
    id: str
    role: str            # 'user' or 'assistant'
    content: str
    timestamp: int       # epoch millis

    @classmethod
    def create(cls, role: str, content: str) -> "Message":
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(id=new_id(), role=role, content=content, timestamp=now_ms())

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "role": self.role,
            "content": self.content,
            "timestamp": self.timestamp,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Message":
        role = data["role"]
        if role not in ROLES:
            raise ValueError(f"Unknown message role: {role!r}")
        return cls(
            id=str(data["id"]),
            role=role,
            content=str(data["content"]),
            timestamp=int(data["timestamp"]),
        )


@dataclass
class Analysis:
    """
    One problem-exploration session: the full dialogue plus the optional
    cause tree generated from it.
    """

    id: str
    title: str
    messages: List[Message] = field(default_factory=list)
    tree_artifact: Optional[str] = None
    created_at: int = field(default_factory=now_ms)
    updated_at: int = 0

    def __post_init__(self) -> None:
        if self.updated_at < self.created_at:
            self.updated_at = self.created_at

    @classmethod
    def start(cls, title: str) -> "Analysis":
        ts = now_ms()
        return cls(id=new_id(), title=title, created_at=ts, updated_at=ts)

    def touch(self) -> None:
        # never move backwards, even if the clock does
        self.updated_at = max(now_ms(), self.updated_at, self.created_at)

    def append(self, message: Message) -> None:
        self.messages.append(message)
        self.touch()

    def set_tree_artifact(self, artifact: Optional[str]) -> None:
        self.tree_artifact = artifact
        self.touch()

    def copy(self) -> "Analysis":
        # Messages are frozen, so a fresh list is enough to detach the copy
        return replace(self, messages=list(self.messages))

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "title": self.title,
            "messages": [m.to_dict() for m in self.messages],
            "treeArtifact": self.tree_artifact,
            "createdAt": self.created_at,
            "updatedAt": self.updated_at,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "Analysis":
        # Older records stored the tree under 'mermaidCode'
        artifact = data.get("treeArtifact", data.get("mermaidCode"))
        return cls(
            id=str(data["id"]),
            title=str(data.get("title") or ""),
            messages=[Message.from_dict(m) for m in data.get("messages") or []],
            tree_artifact=artifact if isinstance(artifact, str) else None,
            created_at=int(data["createdAt"]),
            updated_at=int(data.get("updatedAt") or data["createdAt"]),
        )
