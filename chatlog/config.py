# chatlog/config.py
"""ChatConfig: where the chat log lives and the limits it runs with.

Storage root resolution, first match wins:

    1. explicit directory (CLI --dir)
    2. CHATLOG_DIR environment variable
    3. /tmp/chat on serverless hosts where only /tmp is writable (VERCEL / NOW_REGION set)
    4. ./chat under the working directory

Layout inside the root:

    chat_01.json, chat_02.json, ...   # shards, JSON arrays of messages
    revoked.json                      # JSON array of message ids
    reactions.json                    # message id -> emoji -> [user key]
    pic/<qq>_<index>.<ext>            # saved attachments
"""

from __future__ import annotations

import os
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Literal

from chatlog.storage.retention import RETENTION
from chatlog.storage.sequence import SEQUENCE_WINDOW
from chatlog.storage.shards import SHARD_CAPACITY

AttachmentMode = Literal["inline", "file"]

MAX_ATTACHMENTS = 6
MAX_ATTACHMENT_BYTES = 3 * 1024 * 1024


def resolve_base_dir(flag: str | Path | None = None) -> Path:
    if flag:
        return Path(flag).expanduser().resolve()
    env_path = os.environ.get("CHATLOG_DIR")
    if env_path:
        return Path(env_path).expanduser().resolve()
    if os.environ.get("VERCEL") or os.environ.get("NOW_REGION"):
        return Path("/tmp/chat")
    return Path.cwd() / "chat"


@dataclass
class ChatConfig:
    base_dir: Path = field(default_factory=resolve_base_dir)
    shard_capacity: int = SHARD_CAPACITY
    shard_window: int = SEQUENCE_WINDOW
    retention: timedelta = RETENTION
    page_size: int = 200            # messages returned after every request
    lookup_limit: int = 500         # messages searched for revoke/react targets
    max_attachments: int = MAX_ATTACHMENTS
    max_attachment_bytes: int = MAX_ATTACHMENT_BYTES
    attachment_mode: AttachmentMode = "inline"
    sweep_on_post: bool = False
    serialize_writes: bool = False

    def __post_init__(self) -> None:
        self.base_dir = Path(self.base_dir)
        if self.attachment_mode not in ("inline", "file"):
            raise ValueError(f"Unknown attachment mode: {self.attachment_mode!r}")

    @property
    def pic_dir(self) -> Path:
        return self.base_dir / "pic"

    @classmethod
    def from_env(cls, base_dir: str | Path | None = None, **overrides) -> ChatConfig:
        """Resolve the root and read CHATLOG_ATTACHMENT_MODE / CHATLOG_RETENTION_HOURS."""
        values: dict = {"base_dir": resolve_base_dir(base_dir)}
        mode = os.environ.get("CHATLOG_ATTACHMENT_MODE")
        if mode:
            values["attachment_mode"] = mode.strip().lower()
        hours = os.environ.get("CHATLOG_RETENTION_HOURS")
        if hours:
            try:
                values["retention"] = timedelta(hours=float(hours))
            except ValueError:
                raise ValueError(f"CHATLOG_RETENTION_HOURS is not a number: {hours!r}")
        values.update(overrides)
        return cls(**values)
