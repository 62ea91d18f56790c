# chatlog/core/canon.py
from typing import Any

import jcs


def canonical_json(obj: Any) -> bytes:
    """
    Produce deterministic UTF-8 bytes according to RFC 8785 (JSON Canonicalization Scheme).
    Every file the store writes goes through here, so identical state means identical bytes.
    """
    return jcs.canonicalize(obj)


def canonical_json_str(obj: Any) -> str:
    """Same as above, as text. Used for JSONL export."""
    return canonical_json(obj).decode("utf-8")
