# chatlog/core/encoding.py
import base64
import binascii
from typing import Tuple


def to_data_url(data: bytes, mime: str) -> str:
    """Encode raw bytes as an inline `data:<mime>;base64,...` reference."""
    mime = mime or "application/octet-stream"
    return f"data:{mime};base64,{base64.b64encode(data).decode('ascii')}"


def from_data_url(url: str) -> Tuple[str, bytes]:
    """Decode a base64 data URL back to (mime, bytes). Raises ValueError on anything else."""
    if not url.startswith("data:"):
        raise ValueError("not a data URL")
    header, sep, payload = url[len("data:"):].partition(",")
    if not sep or not header.endswith(";base64"):
        raise ValueError("only base64 data URLs are supported")
    mime = header[: -len(";base64")] or "application/octet-stream"
    try:
        return mime, base64.b64decode(payload, validate=True)
    except binascii.Error as e:
        raise ValueError(f"invalid base64 payload: {e}") from e
