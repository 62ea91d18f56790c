# chatlog/storage/log.py
import logging
from pathlib import Path
from typing import List

from chatlog.core.types import Message
from chatlog.storage.files import ensure_dir, write_json_atomic
from chatlog.storage.sequence import SEQUENCE_WINDOW, SequenceAllocator
from chatlog.storage.shards import SHARD_CAPACITY, ShardFile, ShardManager
from . import StorageBackend

logger = logging.getLogger(__name__)


class MessageLog(StorageBackend):
    """
    Append-only message log over numbered JSON shard files in one directory.

    Appends go to the highest-index shard until it holds `capacity` messages, then a new
    shard is started. Reads look at the last `window` shards only.

    There is no locking: two concurrent appends may both see room in the active shard and
    push it past capacity, or allocate the same sequence. Callers needing stricter behaviour
    serialize writes themselves.
    """

    def __init__(
        self,
        root: str | Path,
        capacity: int = SHARD_CAPACITY,
        window: int = SEQUENCE_WINDOW,
    ):
        if capacity <= 0:
            raise ValueError("Shard capacity must be positive")
        self.root = Path(root)
        self.capacity = capacity
        self.window = window
        self.shards = ShardManager(self.root)
        self.sequences = SequenceAllocator(self.shards, window=window)

    def append(self, message: Message) -> Message:
        """Assign the next sequence and persist `message`. Returns the stored copy."""
        ensure_dir(self.root)
        stored = message.with_sequence(self.sequences.next_sequence())

        active = self.shards.active_shard()
        if active is None:
            target: ShardFile = self.shards.rotate(1)
            records = []
        else:
            records = self.shards.load(active)
            if len(records) >= self.capacity:
                target = self.shards.rotate(active.index + 1)
                records = []
            else:
                target = active

        records.append(stored.to_dict())
        write_json_atomic(target.path, records)
        logger.debug("Appended %s (seq %d) to %s", stored.id, stored.sequence, target.name)
        return stored

    def list(self, limit: int = 200) -> List[Message]:
        """
        The most recent `limit` messages, oldest first, in file order.
        Unparseable records are skipped.
        """
        if limit <= 0:
            return []
        messages: List[Message] = []
        for shard in self.shards.recent(self.window):
            for record in self.shards.load(shard):
                msg = Message.from_dict(record)
                if msg is None:
                    logger.warning("Skipping malformed record in %s", shard.name)
                    continue
                messages.append(msg)
        return messages[-limit:]
