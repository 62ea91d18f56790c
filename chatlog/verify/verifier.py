# chatlog/verify/verifier.py
from typing import List, Optional, Set
from dataclasses import dataclass, field

from chatlog.core.types import Message
from chatlog.storage.shards import SHARD_CAPACITY, ShardManager


@dataclass
class VerificationFailure:
    shard: str
    index: int                      # position inside the shard, -1 for whole-shard issues
    message: str
    category: str = "general"      # "sequence", "capacity", "duplicate_id", "malformed"


@dataclass
class VerificationResult:
    is_valid: bool
    message: str = ""
    failures: List[VerificationFailure] = field(default_factory=list)
    shards_checked: int = 0
    messages_checked: int = 0

    @property
    def first_failure(self) -> Optional[VerificationFailure]:
        return self.failures[0] if self.failures else None

    def __bool__(self):
        return self.is_valid

    def __str__(self):
        if self.is_valid:
            return f"Log is consistent ✓ ({self.messages_checked} messages in {self.shards_checked} shards)"
        lines = [f"Verification FAILED ({len(self.failures)} issues):"]
        for f in self.failures:
            lines.append(f"  • [{f.shard}:{f.index}] {f.category}: {f.message}")
        return "\n".join(lines)


class LogVerifier:
    """
    Offline consistency check over every shard of a storage root.
    Reports what the unlocked append path can leave behind; never repairs anything.
    """

    def __init__(self, shards: ShardManager, capacity: int = SHARD_CAPACITY):
        self.shards = shards
        self.capacity = capacity

    def verify(self) -> VerificationResult:
        result = VerificationResult(True)
        seen_ids: Set[str] = set()
        last_seq = 0

        for shard in self.shards.list_shards():
            records = self.shards.load(shard)
            result.shards_checked += 1

            if len(records) > self.capacity:
                result.failures.append(VerificationFailure(
                    shard.name, -1, f"{len(records)} messages exceed capacity {self.capacity}", "capacity"))

            for i, record in enumerate(records):
                msg = Message.from_dict(record)
                if msg is None:
                    result.failures.append(VerificationFailure(shard.name, i, "Unreadable record", "malformed"))
                    continue
                result.messages_checked += 1

                if msg.id in seen_ids:
                    result.failures.append(VerificationFailure(shard.name, i, f"Duplicate id {msg.id}", "duplicate_id"))
                seen_ids.add(msg.id)

                if msg.sequence is None:
                    result.failures.append(VerificationFailure(shard.name, i, "Missing sequence", "sequence"))
                elif msg.sequence <= last_seq:
                    result.failures.append(VerificationFailure(
                        shard.name, i, f"Sequence {msg.sequence} does not follow {last_seq}", "sequence"))
                else:
                    last_seq = msg.sequence

        result.is_valid = not result.failures
        result.message = "Consistent log" if result.is_valid else f"Found {len(result.failures)} issues"
        return result
