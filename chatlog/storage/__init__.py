# chatlog/storage/__init__.py
"""
Storage backends for the chat message log.
"""

from abc import ABC, abstractmethod
from typing import List, Optional
from pathlib import Path
from chatlog.core.types import Message


class StorageBackend(ABC):
    """Abstract base for message log implementations."""

    @abstractmethod
    def append(self, message: Message) -> Message:
        pass

    @abstractmethod
    def list(self, limit: int) -> List[Message]:
        pass

    def find(self, message_id: str, limit: int = 500) -> Optional[Message]:
        """Look `message_id` up among the last `limit` messages."""
        for msg in self.list(limit):
            if msg.id == message_id:
                return msg
        return None


def create_storage(uri: str | Path, **options) -> StorageBackend:
    """
    `dir:///abs/path`, `dir://relative/path` or a plain directory path.
    Extra keyword options go to the backend constructor.
    """
    if isinstance(uri, Path):
        return MessageLog(uri.resolve(), **options)

    stripped = uri.strip()
    if stripped.startswith("dir://"):
        raw_path = stripped[len("dir://"):]
        if not raw_path:
            raise ValueError("Storage URI is missing a directory")
        return MessageLog(Path(raw_path).resolve(), **options)
    if "://" in stripped:
        raise ValueError(f"Unsupported storage URI: {uri}")
    if not stripped:
        raise ValueError("Storage URI is empty")
    return MessageLog(Path(stripped).resolve(), **options)


from .log import MessageLog

__all__ = ["StorageBackend", "create_storage", "MessageLog"]
