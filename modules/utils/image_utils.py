"""Utility helpers for decoding and persisting image payloads."""

from __future__ import annotations

import base64
import binascii
import re
import time
from pathlib import Path
from typing import Optional

_DATA_URL_RE = re.compile(r"^data:(?P<mime>[\w.+-]+/[\w.+-]+)?(?P<params>(;[^,;]+)*?);base64,(?P<data>.*)$", re.S)
_BASE64_RE = re.compile(r"^[A-Za-z0-9+/_-]+={0,2}$")


def is_remote_url(value: str) -> bool:
    """Return True for http(s) URLs."""
    lowered = value.strip().lower()
    return lowered.startswith("http://") or lowered.startswith("https://")


def is_data_url(value: str) -> bool:
    """Return True for ``data:`` URLs with a base64 payload."""
    return bool(_DATA_URL_RE.match(value.strip()))


def looks_like_base64(value: str, min_length: int = 16) -> bool:
    """Heuristic check for a bare base64 string."""
    compact = "".join(value.split())
    if len(compact) < min_length:
        return False
    return bool(_BASE64_RE.match(compact))


def decode_base64(value: str) -> bytes:
    """Decode standard or URL-safe base64, tolerating whitespace and missing padding."""
    compact = "".join(value.split())
    compact += "=" * (-len(compact) % 4)
    if "-" in compact or "_" in compact:
        return base64.urlsafe_b64decode(compact)
    return base64.b64decode(compact, validate=True)


def decode_data_url(value: str) -> bytes:
    """Return the decoded payload of a base64 data URL."""
    match = _DATA_URL_RE.match(value.strip())
    if match is None:
        raise ValueError("not a base64 data URL")
    return decode_base64(match.group("data"))


def try_decode_base64(value: str) -> Optional[bytes]:
    """Decode a data URL or bare base64 string, returning None when it is neither."""
    try:
        if is_data_url(value):
            return decode_data_url(value)
        if looks_like_base64(value):
            return decode_base64(value)
    except (binascii.Error, ValueError):
        return None
    return None


def timestamp_ms() -> int:
    """Milliseconds since the Unix epoch, used in artifact file names."""
    return int(time.time() * 1000)


def unique_artifact_path(directory: Path, prefix: str, suffix: str) -> Path:
    """Return ``<directory>/<prefix>-<ms><suffix>`` that does not exist yet."""
    stamp = timestamp_ms()
    candidate = directory / f"{prefix}-{stamp}{suffix}"
    while candidate.exists():
        stamp += 1
        candidate = directory / f"{prefix}-{stamp}{suffix}"
    return candidate


def write_artifact(directory: Path, prefix: str, suffix: str, data: bytes) -> Path:
    """Write bytes to a fresh artifact file and return its absolute path."""
    directory = Path(directory)
    directory.mkdir(parents=True, exist_ok=True)
    target = unique_artifact_path(directory, prefix, suffix)
    target.write_bytes(data)
    return target.resolve()
