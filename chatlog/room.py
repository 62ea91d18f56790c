# chatlog/room.py
import contextlib
import logging
import re
import threading
import time
from typing import Callable, List, Optional, Sequence
from uuid import uuid4

from chatlog.attachments import AttachmentError, Upload, discard_attachments, ingest
from chatlog.config import ChatConfig
from chatlog.core.types import Author, Message, MessageView
from chatlog.storage import MessageLog, StorageBackend
from chatlog.storage.files import ensure_dir
from chatlog.storage.reactions import ReactionMap, ReactionTable, summarize_entry
from chatlog.storage.retention import RetentionSweeper, SweepReport
from chatlog.storage.revocations import RevocationTable

logger = logging.getLogger(__name__)

MAX_NICKNAME = 20
_EXTERNAL_ID = re.compile(r"^[0-9]{5,15}$")


class ChatRequestError(ValueError):
    """A request the room refuses. `status` mirrors the HTTP code a web layer would send."""
    status = 400

    def __init__(self, message: str, status: Optional[int] = None):
        super().__init__(message)
        if status is not None:
            self.status = status


class MessageNotFound(ChatRequestError):
    status = 404


class NotMessageOwner(ChatRequestError):
    status = 403


def new_message_id() -> str:
    return str(uuid4())


def now_millis() -> int:
    return int(time.time() * 1000)


def validate_identity(nickname: object, external_id: object) -> Author:
    """Trimmed nickname (1-20 chars) and a 5-15 digit id, or ChatRequestError."""
    nick = str(nickname if nickname is not None else "").strip()
    ext = str(external_id if external_id is not None else "").strip()
    if not nick:
        raise ChatRequestError("Nickname is required")
    if len(nick) > MAX_NICKNAME:
        raise ChatRequestError(f"Nickname longer than {MAX_NICKNAME} characters")
    if not _EXTERNAL_ID.match(ext):
        raise ChatRequestError("Invalid QQ number")
    return Author(nickname=nick, external_id=ext)


def merge_views(
    messages: Sequence[Message],
    revoked: set,
    reactions: ReactionMap,
) -> List[MessageView]:
    """Overlay revocations and reaction counts onto a page of messages."""
    return [
        MessageView(
            message=m,
            revoked=m.id in revoked,
            reactions=tuple(summarize_entry(reactions.get(m.id, {}))),
        )
        for m in messages
    ]


class ChatRoom:
    """
    The single chat room: posting, polling, revoking and reacting over one storage root.

    Every write returns the refreshed page, the way a polling client expects it.
    Identity is whatever nickname + QQ pair the caller states.
    """

    def __init__(
        self,
        config: Optional[ChatConfig] = None,
        storage: Optional[StorageBackend] = None,
        id_factory: Callable[[], str] = new_message_id,
        clock: Callable[[], int] = now_millis,
    ):
        self.config = config or ChatConfig.from_env()
        root = self.config.base_dir
        self.log = storage or MessageLog(
            root,
            capacity=self.config.shard_capacity,
            window=self.config.shard_window,
        )
        self.revocations = RevocationTable(root)
        self.reactions = ReactionTable(root)
        self.sweeper = RetentionSweeper(root, max_age=self.config.retention)
        self.id_factory = id_factory
        self.clock = clock
        self._lock = threading.Lock() if self.config.serialize_writes else None

    def _writing(self):
        return self._lock if self._lock is not None else contextlib.nullcontext()

    def messages(self, limit: Optional[int] = None) -> List[MessageView]:
        """Most recent messages, oldest first, with revocations and reactions applied."""
        ensure_dir(self.config.base_dir)
        page = self.log.list(self.config.page_size if limit is None else limit)
        return merge_views(page, self.revocations.revoked_ids(), self.reactions.snapshot())

    def post(
        self,
        nickname: object,
        external_id: object,
        text: Optional[str] = None,
        uploads: Sequence[Upload] = (),
    ) -> List[MessageView]:
        """Store a message and return the refreshed page."""
        self.post_message(nickname, external_id, text, uploads)
        return self.messages()

    def post_message(
        self,
        nickname: object,
        external_id: object,
        text: Optional[str] = None,
        uploads: Sequence[Upload] = (),
    ) -> Message:
        """Validate and store one message. Returns the stored copy with its sequence."""
        author = validate_identity(nickname, external_id)
        body = (text or "").strip()
        if not body and not uploads:
            raise ChatRequestError("Message is empty")

        created_at = self.clock()
        try:
            attachments = ingest(
                uploads,
                mode=self.config.attachment_mode,
                pic_dir=self.config.pic_dir,
                external_id=author.external_id,
                stamp=created_at,
                max_count=self.config.max_attachments,
                max_bytes=self.config.max_attachment_bytes,
            )
        except AttachmentError as e:
            raise ChatRequestError(str(e)) from e

        message = Message(
            id=self.id_factory(),
            author=author,
            created_at=created_at,
            text=body or None,
            attachments=attachments,
        )
        try:
            with self._writing():
                stored = self.log.append(message)
        except BaseException:
            if self.config.attachment_mode == "file":
                discard_attachments(self.config.pic_dir, attachments)
            raise
        logger.info("Message %s posted by %s", stored.id, author.user_key)

        if self.config.sweep_on_post:
            self.sweep()
        return stored

    def _target(self, message_id: object) -> Message:
        found = self.log.find(str(message_id), self.config.lookup_limit)
        if found is None:
            raise MessageNotFound("Message does not exist")
        return found

    def revoke(self, message_id: object, nickname: object, external_id: object) -> List[MessageView]:
        """Hide a message. Only its author (same nickname and QQ) may do this."""
        if not message_id:
            raise ChatRequestError("Message id is required")
        try:
            requester = validate_identity(nickname, external_id)
        except ChatRequestError:
            raise ChatRequestError("Invalid identity") from None

        target = self._target(message_id)
        if target.author != requester:
            raise NotMessageOwner("Only the sender can revoke a message")

        with self._writing():
            self.revocations.revoke(target.id)
        return self.messages()

    def react(
        self,
        message_id: object,
        emoji: object,
        nickname: object,
        external_id: object,
    ) -> List[MessageView]:
        """Toggle the caller's `emoji` on a message."""
        if not message_id or not emoji:
            raise ChatRequestError("Message id and emoji are required")
        try:
            requester = validate_identity(nickname, external_id)
        except ChatRequestError:
            raise ChatRequestError("Invalid identity") from None

        target = self._target(message_id)
        with self._writing():
            self.reactions.toggle(target.id, str(emoji), requester.user_key)
        return self.messages()

    def sweep(self, now: Optional[float] = None) -> SweepReport:
        with self._writing():
            return self.sweeper.sweep(now=now)
