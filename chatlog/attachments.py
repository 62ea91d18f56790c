# chatlog/attachments.py
"""
Image attachments: validation on the way in, inline or on-disk storage, and lookup of
saved files for serving.
"""

import logging
import re
from dataclasses import dataclass
from pathlib import Path
from typing import List, Sequence, Tuple

from chatlog.core.encoding import to_data_url
from chatlog.storage.files import ensure_dir

logger = logging.getLogger(__name__)

ALLOWED_EXTENSIONS = ("jpg", "jpeg", "png", "gif", "webp", "svg")

_SAVED_NAME = re.compile(r"^[0-9]+_[0-9]+\.(jpe?g|png|gif|webp|svg)$", re.IGNORECASE)

_CONTENT_TYPES = {
    "jpg": "image/jpeg",
    "jpeg": "image/jpeg",
    "png": "image/png",
    "gif": "image/gif",
    "webp": "image/webp",
    "svg": "image/svg+xml",
}

_MIME_EXTENSIONS = {
    "image/jpeg": "jpg",
    "image/jpg": "jpg",
    "image/pjpeg": "jpg",
    "image/png": "png",
    "image/gif": "gif",
    "image/webp": "webp",
    "image/svg+xml": "svg",
}


class AttachmentError(ValueError):
    """Upload rejected: wrong type or too large."""


@dataclass(frozen=True)
class Upload:
    """An uploaded file as handed over by the request layer."""
    data: bytes
    mime: str
    filename: str = ""

    @property
    def size(self) -> int:
        return len(self.data)


def extension_for(upload: Upload) -> str:
    """File extension for a saved upload; falls back to the original name, then jpg."""
    ext = _MIME_EXTENSIONS.get(upload.mime.lower())
    if ext:
        return ext
    suffix = Path(upload.filename).suffix.lstrip(".").lower()
    return suffix if suffix in ALLOWED_EXTENSIONS else "jpg"


def validate_uploads(uploads: Sequence[Upload], max_count: int, max_bytes: int) -> List[Upload]:
    """Keep the first `max_count` uploads and check each is an image within `max_bytes`."""
    kept = list(uploads)[:max_count]
    if len(uploads) > max_count:
        logger.debug("Dropping %d upload(s) over the limit of %d", len(uploads) - max_count, max_count)
    for upload in kept:
        if not re.match(r"^image/.+", upload.mime or ""):
            raise AttachmentError("Only image files are supported")
        if upload.size > max_bytes:
            raise AttachmentError(f"Image larger than {max_bytes // (1024 * 1024)}MB")
    return kept


def save_attachment(pic_dir: Path, upload: Upload, external_id: str, index: int) -> str:
    """Write the raw bytes to pic/<external_id>_<index>.<ext> and return the file name."""
    ensure_dir(pic_dir)
    filename = f"{external_id}_{index}.{extension_for(upload)}"
    (pic_dir / filename).write_bytes(upload.data)
    return filename


def discard_attachments(pic_dir: Path, filenames: Sequence[str]) -> None:
    """Remove saved files that never made it into a message."""
    for name in filenames:
        try:
            (pic_dir / name).unlink(missing_ok=True)
        except OSError as e:
            logger.warning("Could not remove orphaned attachment %s: %s", name, e)


def ingest(
    uploads: Sequence[Upload],
    *,
    mode: str,
    pic_dir: Path,
    external_id: str,
    stamp: int,
    max_count: int,
    max_bytes: int,
) -> Tuple[str, ...]:
    """
    Validate uploads and turn them into message attachment references.
    `inline` mode embeds data URLs; `file` mode saves under pic_dir, numbered from `stamp`.
    """
    kept = validate_uploads(uploads, max_count, max_bytes)
    if mode == "inline":
        return tuple(to_data_url(u.data, u.mime) for u in kept)
    return tuple(
        save_attachment(pic_dir, u, external_id, stamp * 10 + i)
        for i, u in enumerate(kept)
    )


def resolve_attachment(pic_dir: Path, filename: str) -> Tuple[Path, str]:
    """
    Locate a saved attachment for serving. Returns (path, content type).
    Raises AttachmentError for names outside the saved-file pattern and
    FileNotFoundError when the file is gone.
    """
    if not filename or not _SAVED_NAME.match(filename):
        raise AttachmentError("Invalid file name")
    path = Path(pic_dir) / filename
    if not path.is_file():
        raise FileNotFoundError(filename)
    ext = filename.rsplit(".", 1)[1].lower()
    return path, _CONTENT_TYPES[ext]
