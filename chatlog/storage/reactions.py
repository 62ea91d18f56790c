# chatlog/storage/reactions.py
import logging
from pathlib import Path
from typing import Dict, List

from chatlog.core.types import ReactionCount
from chatlog.storage.files import ensure_dir, read_json, write_json_atomic

logger = logging.getLogger(__name__)

REACTIONS_FILE = "reactions.json"

# message id -> emoji -> [user key]
ReactionMap = Dict[str, Dict[str, List[str]]]


def summarize_entry(by_emoji: Dict[str, List[str]]) -> List[ReactionCount]:
    """Counts per emoji, highest first. Ties keep stored order."""
    counts = [ReactionCount(emoji=emoji, count=len(users)) for emoji, users in by_emoji.items()]
    counts.sort(key=lambda r: r.count, reverse=True)
    return counts


def _clean(raw: dict) -> ReactionMap:
    clean: ReactionMap = {}
    for message_id, by_emoji in raw.items():
        if not isinstance(by_emoji, dict):
            continue
        entry = {}
        for emoji, users in by_emoji.items():
            if not isinstance(users, list):
                continue
            keys = list(dict.fromkeys(u for u in users if isinstance(u, str)))
            if keys:
                entry[emoji] = keys
        if entry:
            clean[message_id] = entry
    return clean


class ReactionTable:
    """Per-message emoji reactions, toggled per user key."""

    def __init__(self, root: str | Path):
        self.root = Path(root)
        self.path = self.root / REACTIONS_FILE

    def snapshot(self) -> ReactionMap:
        """The whole map, read once."""
        return _clean(read_json(self.path, {}))

    def toggle(self, message_id: str, emoji: str, user_key: str) -> bool:
        """
        Flip `user_key` in message_id/emoji and persist the whole map.
        Returns True if the reaction is now on, False if it was removed.
        Last writer wins when two toggles race.
        """
        reactions = self.snapshot()
        users = reactions.setdefault(message_id, {}).setdefault(emoji, [])
        if user_key in users:
            users.remove(user_key)
            active = False
        else:
            users.append(user_key)
            active = True

        if not reactions[message_id][emoji]:
            del reactions[message_id][emoji]
        if not reactions[message_id]:
            del reactions[message_id]

        ensure_dir(self.root)
        write_json_atomic(self.path, reactions)
        logger.debug("Reaction %s by %s on %s -> %s", emoji, user_key, message_id, active)
        return active

    def summarize(self, message_id: str) -> List[ReactionCount]:
        return summarize_entry(self.snapshot().get(message_id, {}))
