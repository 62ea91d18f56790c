# chatlog/storage/retention.py
import logging
import time
from dataclasses import dataclass, field
from datetime import timedelta
from pathlib import Path
from typing import Iterator, List, Optional

from chatlog.storage.reactions import REACTIONS_FILE
from chatlog.storage.revocations import REVOKED_FILE
from chatlog.storage.shards import ShardManager

logger = logging.getLogger(__name__)

RETENTION = timedelta(days=2)
PIC_DIR = "pic"


@dataclass
class SweepReport:
    removed: List[Path] = field(default_factory=list)
    kept: int = 0

    def __bool__(self):
        return bool(self.removed)


class RetentionSweeper:
    """
    Deletes shards, side-tables and attachment files last modified before `now - max_age`.
    Runs synchronously when called; a file that cannot be removed is skipped.
    """

    def __init__(self, root: str | Path, max_age: timedelta = RETENTION):
        self.root = Path(root)
        self.max_age = max_age

    def _candidates(self) -> Iterator[Path]:
        for shard in ShardManager(self.root).list_shards():
            yield shard.path
        yield self.root / REVOKED_FILE
        yield self.root / REACTIONS_FILE
        pic_dir = self.root / PIC_DIR
        try:
            yield from (p for p in pic_dir.iterdir() if p.is_file())
        except OSError:
            pass  # no attachments yet

    def sweep(self, now: Optional[float] = None) -> SweepReport:
        """`now` is epoch seconds; defaults to the current time."""
        now = time.time() if now is None else now
        cutoff = now - self.max_age.total_seconds()
        report = SweepReport()

        for path in self._candidates():
            try:
                if path.stat().st_mtime < cutoff:
                    path.unlink()
                    report.removed.append(path)
                else:
                    report.kept += 1
            except OSError as e:
                logger.debug("Skipping %s during sweep: %s", path, e)

        if report.removed:
            logger.info("Retention sweep removed %d file(s) from %s", len(report.removed), self.root)
        return report
