"""
Filename normalization for object-storage keys.

Caller-supplied filenames are untrusted: they can contain path separators,
URL-significant symbols, whitespace, and arbitrary Unicode. normalize_filename
turns any of them into a name that is safe both on a local filesystem and
inside an object-storage key, then prefixes a millisecond timestamp so two
uploads of the same file don't collide.

The rules run in a fixed order. Later rules assume earlier ones have already
dealt with control characters and path separators, so don't reorder them.
"""

import re
import time
from typing import Optional

MAX_FILENAME_BYTES = 255

# Filesystem-unsafe characters (POSIX and Windows)
_ILLEGAL_RE = re.compile(r'[/?<>\\:*|"]')
_CONTROL_RE = re.compile(r"[\x00-\x1f\x80-\x9f]")
_RESERVED_RE = re.compile(r"^\.+\Z")
_WINDOWS_RESERVED_RE = re.compile(
    r"^(con|prn|aux|nul|com[0-9]|lpt[0-9])(\..*)?\Z",
    re.IGNORECASE | re.DOTALL,
)
_WINDOWS_TRAILING_RE = re.compile(r"[. ]+\Z")

# Characters with meaning in URLs or object-storage keys
_URL_UNSAFE_RE = re.compile(r"[&?#%'\":;+\[\]{}<>\\^$!`~|=]")
_WHITESPACE_RE = re.compile(r"\s+")
_NON_PRINTABLE_ASCII_RE = re.compile(r"[^\x20-\x7e]")


def current_millis() -> int:
    """Wall-clock time in milliseconds since the epoch."""
    return time.time_ns() // 1_000_000


def _truncate_utf8(value: str, max_bytes: int) -> str:
    encoded = value.encode("utf-8")
    if len(encoded) <= max_bytes:
        return value
    # Drop a trailing partial multi-byte sequence rather than splitting it
    return encoded[:max_bytes].decode("utf-8", errors="ignore")


def _sanitize_pass(name: str, replacement: str) -> str:
    sanitized = _ILLEGAL_RE.sub(replacement, name)
    sanitized = _CONTROL_RE.sub(replacement, sanitized)
    sanitized = _RESERVED_RE.sub(replacement, sanitized)
    sanitized = _WINDOWS_RESERVED_RE.sub(replacement, sanitized)
    sanitized = _WINDOWS_TRAILING_RE.sub(replacement, sanitized)
    return _truncate_utf8(sanitized, MAX_FILENAME_BYTES)


def sanitize_for_filesystem(name: str, replacement: str = "_") -> str:
    """
    Make a filename safe to write on any common filesystem.

    Replaces path separators, reserved characters, control characters,
    dot-only names, Windows device names, and trailing dots/spaces. The
    result is capped at 255 UTF-8 bytes. A second pass with an empty
    replacement catches anything the replacement itself made unsafe.

    Ordinary names keep their base name and extension:
    "clip.mp4" stays "clip.mp4", "a/b.mp4" becomes "a_b.mp4".
    """
    sanitized = _sanitize_pass(name, replacement)
    if replacement == "":
        return sanitized
    return _sanitize_pass(sanitized, "")


def make_storage_safe(name: str) -> str:
    """Apply the filesystem, URL, whitespace, and ASCII rules in order."""
    safe = sanitize_for_filesystem(name, replacement="_")
    safe = _URL_UNSAFE_RE.sub("_", safe)
    safe = _WHITESPACE_RE.sub("_", safe)
    return _NON_PRINTABLE_ASCII_RE.sub("", safe)


def normalize_filename(raw_name: str, now_ms: Optional[int] = None) -> str:
    """
    Turn a caller-supplied filename into a timestamped, storage-safe name.

    Never raises. Input that sanitizes down to nothing yields "<now_ms>_",
    which is still a valid name. The whole result, prefix included, fits
    in MAX_FILENAME_BYTES so it can be written to disk as-is.

    >>> normalize_filename("my video (final)!!.mp4", now_ms=1700000000000)
    '1700000000000_my_video_(final)__.mp4'
    """
    if now_ms is None:
        now_ms = current_millis()
    prefix = f"{now_ms}_"
    # make_storage_safe output is ASCII, so characters and bytes agree
    safe = make_storage_safe(raw_name or "")[:MAX_FILENAME_BYTES - len(prefix)]
    return f"{prefix}{safe}"


def build_storage_key(user_id: str, filename: str) -> str:
    """Namespace a normalized filename under the caller's prefix."""
    return f"user_{user_id}/{filename}"
