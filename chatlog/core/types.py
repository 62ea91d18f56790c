# chatlog/core/types.py
import math
from dataclasses import dataclass, field, replace
from typing import Any, Dict, List, Optional, Tuple


@dataclass(frozen=True)
class Author:
    """Self-declared identity of a poster. Not verified; anyone restating it owns the message."""
    nickname: str
    external_id: str                # digit string, 5-15 chars ("qq" on the wire)

    @property
    def user_key(self) -> str:
        return f"{self.nickname}|{self.external_id}"

    def to_dict(self) -> dict:
        return {"nickname": self.nickname, "qq": self.external_id}


@dataclass(frozen=True)
class Message:
    """Single entry in a shard. Immutable once appended."""
    id: str                         # opaque, supplied by the caller
    author: Author
    created_at: int                 # epoch millis
    text: Optional[str] = None
    attachments: Tuple[str, ...] = ()   # data: URLs or pic/ file names
    sequence: Optional[int] = None  # assigned at append time

    def with_sequence(self, sequence: int) -> "Message":
        return replace(self, sequence=sequence)

    def to_dict(self) -> dict:
        d: Dict[str, Any] = {"id": self.id}
        if self.sequence is not None:
            d["seq"] = self.sequence
        d["user"] = self.author.to_dict()
        if self.text:
            d["text"] = self.text
        inline = [a for a in self.attachments if a.startswith("data:")]
        saved = [a for a in self.attachments if not a.startswith("data:")]
        if saved:
            d["imagePaths"] = saved
        if inline:
            d["imageDataUrls"] = inline
        d["createdAt"] = self.created_at
        return d

    @classmethod
    def from_dict(cls, data: Any) -> Optional["Message"]:
        """Parse a stored record. Returns None when the record is unusable."""
        if not isinstance(data, dict):
            return None
        msg_id = data.get("id")
        user = data.get("user")
        created_at = data.get("createdAt")
        if not isinstance(msg_id, str) or not msg_id:
            return None
        if not isinstance(user, dict):
            return None
        if not isinstance(created_at, (int, float)) or isinstance(created_at, bool):
            return None
        if not math.isfinite(created_at):
            return None

        seq = data.get("seq")
        if not isinstance(seq, int) or isinstance(seq, bool):
            seq = None
        text = data.get("text")

        attachments: List[str] = []
        for key in ("imagePaths", "imageDataUrls"):
            values = data.get(key)
            if isinstance(values, list):
                attachments.extend(v for v in values if isinstance(v, str))

        return cls(
            id=msg_id,
            author=Author(
                nickname=str(user.get("nickname", "")),
                external_id=str(user.get("qq", "")),
            ),
            created_at=int(created_at),
            text=text if isinstance(text, str) else None,
            attachments=tuple(attachments),
            sequence=seq,
        )


@dataclass(frozen=True)
class ReactionCount:
    emoji: str
    count: int

    def to_dict(self) -> dict:
        return {"emoji": self.emoji, "count": self.count}


@dataclass(frozen=True)
class MessageView:
    """A message as served to readers: revocation and reactions merged in."""
    message: Message
    revoked: bool = False
    reactions: Tuple[ReactionCount, ...] = field(default_factory=tuple)

    @property
    def id(self) -> str:
        return self.message.id

    @property
    def text(self) -> Optional[str]:
        return None if self.revoked else self.message.text

    @property
    def attachments(self) -> Tuple[str, ...]:
        return () if self.revoked else self.message.attachments

    def to_dict(self) -> dict:
        d = self.message.to_dict()
        if self.revoked:
            # tombstone: identity and timing only
            for key in ("text", "imagePaths", "imageDataUrls"):
                d.pop(key, None)
        d["revoked"] = self.revoked
        d["reactions"] = [r.to_dict() for r in self.reactions]
        return d
