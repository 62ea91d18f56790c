# chatlog/storage/shards.py
import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Optional

from chatlog.storage.files import read_json

logger = logging.getLogger(__name__)

SHARD_PREFIX = "chat_"
SHARD_SUFFIX = ".json"
SHARD_CAPACITY = 100

_SHARD_NAME = re.compile(rf"^{re.escape(SHARD_PREFIX)}([0-9]+){re.escape(SHARD_SUFFIX)}$")


def shard_name(index: int) -> str:
    """chat_01.json, chat_02.json, ... chat_100.json"""
    return f"{SHARD_PREFIX}{index:02d}{SHARD_SUFFIX}"


def parse_shard_index(name: str) -> Optional[int]:
    """Index embedded in a shard file name, or None for anything that is not a shard."""
    m = _SHARD_NAME.match(name)
    if not m:
        return None
    index = int(m.group(1))
    return index if index > 0 else None


@dataclass(frozen=True)
class ShardFile:
    index: int
    path: Path

    @property
    def name(self) -> str:
        return self.path.name


class ShardManager:
    """Enumerates the numbered shard files of one storage root."""

    def __init__(self, root: str | Path):
        self.root = Path(root)

    def path_for(self, index: int) -> Path:
        return self.root / shard_name(index)

    def list_shards(self) -> List[ShardFile]:
        """All shards, ascending by index. Malformed names are ignored."""
        try:
            names = [p.name for p in self.root.iterdir() if p.is_file()]
        except OSError:
            return []

        shards = []
        for name in names:
            index = parse_shard_index(name)
            if index is None:
                continue
            shards.append(ShardFile(index=index, path=self.root / name))
        shards.sort(key=lambda s: s.index)
        return shards

    def recent(self, count: int) -> List[ShardFile]:
        """The last `count` shards, oldest first."""
        if count <= 0:
            return []
        return self.list_shards()[-count:]

    def active_shard(self) -> Optional[ShardFile]:
        """Highest-index shard, or None when the log is empty."""
        shards = self.list_shards()
        return shards[-1] if shards else None

    def rotate(self, next_index: int) -> ShardFile:
        """
        Name the shard that becomes active once written. Nothing touches disk here;
        the Message Log creates the file with its first message.
        """
        if next_index <= 0:
            raise ValueError(f"Shard index must be positive, got {next_index}")
        shard = ShardFile(index=next_index, path=self.path_for(next_index))
        logger.debug("Rotating to shard %s", shard.name)
        return shard

    def load(self, shard: ShardFile) -> list:
        """Raw records of a shard; a corrupt or vanished shard reads as empty."""
        return read_json(shard.path, [])
