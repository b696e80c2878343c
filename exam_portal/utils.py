"""Utility functions for sanitization and validation."""

import re

import bleach

# Remote recording URL (e.g. https://cdn.example.com/rec/1.webm)
VIDEO_URL_PATTERN = re.compile(r"^(https?://)?([a-z0-9-]+\.)+[a-z0-9]{2,4}/[^\s]*$")
# File name part of a reference returned by the local upload store
UPLOAD_NAME_PATTERN = re.compile(r"[\w.\-]+")


def sanitize_question_text(text: str) -> str:
    """Sanitize question text to prevent XSS attacks.

    Allows basic formatting tags but removes script/dangerous content.
    """
    allowed_tags = ['b', 'i', 'u', 'em', 'strong', 'p', 'br', 'code', 'pre', 'ul', 'ol', 'li']
    allowed_attributes = {}

    sanitized = bleach.clean(text, tags=allowed_tags, attributes=allowed_attributes, strip=True)
    return sanitized.strip()


def upload_name(value: str, upload_prefix: str = "uploads") -> str | None:
    """File name inside the upload store if ``value`` is ``<upload_prefix>/<name>``."""
    head, sep, name = value.rpartition("/")
    if not sep or head != upload_prefix.strip("/") or not UPLOAD_NAME_PATTERN.fullmatch(name):
        return None
    if name in (".", ".."):
        return None
    return name


def is_valid_video_reference(value: str | None, upload_prefix: str = "uploads") -> bool:
    """Return True if ``value`` is an accepted recording URL or upload path."""
    if not value:
        return False
    return bool(VIDEO_URL_PATTERN.match(value) or upload_name(value, upload_prefix))
