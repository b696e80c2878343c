"""Local storage for proctoring video uploads.

Stored files live in ``upload_dir``; the reference kept on the exam is
``<url_prefix>/<file name>``, and :func:`recording_path` maps it back.
"""

import logging
import os
import re
import time
from pathlib import Path
from typing import BinaryIO, Optional

from exam_portal.errors import ValidationError
from exam_portal.utils import upload_name

logger = logging.getLogger(__name__)

CHUNK_SIZE = 1024 * 1024
_UNSAFE_CHARS = re.compile(r"[^\w.\-]+")


def _safe_name(filename: Optional[str]) -> str:
    name = _UNSAFE_CHARS.sub("_", os.path.basename(filename or "")).strip("._")
    return name or "recording"


def save_recording(
    stream: BinaryIO,
    filename: Optional[str],
    content_type: Optional[str],
    upload_dir: str,
    max_bytes: int,
    url_prefix: str = "uploads",
) -> str:
    """Store an uploaded video and return its ``<url_prefix>/<file>`` reference.

    Raises:
        ValidationError: If the upload is not a video or exceeds ``max_bytes``
    """
    if not content_type or not content_type.startswith("video/"):
        raise ValidationError("File must be a video.")

    directory = Path(upload_dir)
    directory.mkdir(parents=True, exist_ok=True)
    stored_name = f"{int(time.time() * 1000)}-{_safe_name(filename)}"
    target = directory / stored_name

    written = 0
    with open(target, "wb") as out:
        while True:
            chunk = stream.read(CHUNK_SIZE)
            if not chunk:
                break
            written += len(chunk)
            if written > max_bytes:
                break
            out.write(chunk)

    if written > max_bytes:
        target.unlink(missing_ok=True)
        raise ValidationError(
            f"Video exceeds the {max_bytes // (1024 * 1024)} MB limit."
        )

    logger.info("Stored recording %s (%d bytes)", stored_name, written)
    return f"{url_prefix.strip('/')}/{stored_name}"


def recording_path(reference: str, upload_dir: str, url_prefix: str = "uploads") -> Optional[Path]:
    """Local file behind an upload reference, or None for remote URLs."""
    name = upload_name(reference, url_prefix)
    if name is None:
        return None
    return Path(upload_dir) / name


def delete_recording(reference: str, upload_dir: str, url_prefix: str = "uploads") -> bool:
    """Remove a stored upload; returns False if nothing was deleted."""
    path = recording_path(reference, upload_dir, url_prefix)
    if path is None or not path.exists():
        return False
    path.unlink()
    logger.info("Discarded recording %s", path.name)
    return True
