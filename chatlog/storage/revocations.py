# chatlog/storage/revocations.py
import logging
from pathlib import Path
from typing import List, Set

from chatlog.storage.files import ensure_dir, read_json, write_json_atomic

logger = logging.getLogger(__name__)

REVOKED_FILE = "revoked.json"


class RevocationTable:
    """Append-only set of hidden message ids, persisted as a JSON array."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.path = self.root / REVOKED_FILE

    def _load(self) -> List[str]:
        return [i for i in read_json(self.path, []) if isinstance(i, str)]

    def revoked_ids(self) -> Set[str]:
        return set(self._load())

    def is_revoked(self, message_id: str) -> bool:
        return message_id in self.revoked_ids()

    def revoke(self, message_id: str) -> bool:
        """Mark `message_id` hidden. Returns False (and writes nothing) if it already was."""
        ids = self._load()
        if message_id in ids:
            return False
        ids.append(message_id)
        ensure_dir(self.root)
        write_json_atomic(self.path, ids)
        logger.debug("Revoked message %s", message_id)
        return True
