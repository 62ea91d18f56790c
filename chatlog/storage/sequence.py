# chatlog/storage/sequence.py
from chatlog.storage.shards import ShardManager

SEQUENCE_WINDOW = 10


class SequenceAllocator:
    """
    Hands out the next advisory sequence number.

    Only the most recent `window` shards are scanned, so the cost of an append stays bounded
    as the log grows. Sequences are an ordering hint; message ids carry identity.
    """

    def __init__(self, shards: ShardManager, window: int = SEQUENCE_WINDOW):
        self.shards = shards
        self.window = window

    def latest(self) -> int:
        """Highest `seq` seen in the window, 0 if none."""
        latest = 0
        for shard in self.shards.recent(self.window):
            for record in self.shards.load(shard):
                if not isinstance(record, dict):
                    continue
                seq = record.get("seq")
                if isinstance(seq, int) and not isinstance(seq, bool) and seq > latest:
                    latest = seq
        return latest

    def next_sequence(self) -> int:
        return self.latest() + 1
