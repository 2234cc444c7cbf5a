"""Normalization of image-generation responses into a single image reference.

Providers return the generated picture in several shapes: an ``images`` list on
the chat message, an ``image_url`` entry inside multimodal content, a direct
field on the message, a bare data-URL as the message text, or Gemini-style
``parts`` with inline data. Each shape is handled by one strategy; strategies
are tried in order and the first that yields a reference wins.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Callable, Iterable, Iterator, Optional

from modules.pipelines.errors import ResponseShapeError
from modules.utils.image_utils import (
    is_data_url,
    is_remote_url,
    try_decode_base64,
)

logger = logging.getLogger(__name__)


@dataclass(slots=True, frozen=True)
class ImageReference:
    """Either decoded bytes or a remote URL that still has to be fetched."""

    strategy: str
    data: Optional[bytes] = None
    url: Optional[str] = None


Strategy = Callable[[dict[str, Any]], Optional[ImageReference]]


def _message(body: dict[str, Any]) -> dict[str, Any]:
    """Return ``choices[0].message`` when present, otherwise the body itself."""
    choices = body.get("choices")
    if isinstance(choices, list) and choices and isinstance(choices[0], dict):
        message = choices[0].get("message")
        if isinstance(message, dict):
            return message
    return body


def _from_string(value: str, strategy: str, allow_bare_base64: bool = True) -> Optional[ImageReference]:
    text = value.strip()
    if not text:
        return None
    if is_remote_url(text):
        return ImageReference(strategy=strategy, url=text)
    if is_data_url(text) or allow_bare_base64:
        decoded = try_decode_base64(text)
        if decoded:
            return ImageReference(strategy=strategy, data=decoded)
    return None


def _from_value(value: Any, strategy: str) -> Optional[ImageReference]:
    """Interpret a single payload entry of unknown shape."""
    if isinstance(value, str):
        return _from_string(value, strategy)
    if not isinstance(value, dict):
        return None

    for key in ("inline_data", "inlineData"):
        inline = value.get(key)
        if isinstance(inline, dict) and isinstance(inline.get("data"), str):
            ref = _from_string(inline["data"], strategy)
            if ref is not None:
                return ref

    for key in ("b64_json", "base64", "b64", "data"):
        candidate = value.get(key)
        if isinstance(candidate, str):
            ref = _from_string(candidate, strategy)
            if ref is not None:
                return ref

    for key in ("image_url", "url", "image"):
        candidate = value.get(key)
        if isinstance(candidate, (str, dict)):
            ref = _from_value(candidate, strategy)
            if ref is not None:
                return ref

    for key in ("file_data", "fileData"):
        file_data = value.get(key)
        if isinstance(file_data, dict):
            uri = file_data.get("file_uri") or file_data.get("fileUri")
            if isinstance(uri, str) and is_remote_url(uri):
                return ImageReference(strategy=strategy, url=uri.strip())
    return None


def _first(entries: Iterable[Any], strategy: str) -> Optional[ImageReference]:
    for entry in entries:
        ref = _from_value(entry, strategy)
        if ref is not None:
            return ref
    return None


def from_message_images(body: dict[str, Any]) -> Optional[ImageReference]:
    images = _message(body).get("images")
    if isinstance(images, list):
        return _first(images, "message_images")
    return None


def from_content_image_parts(body: dict[str, Any]) -> Optional[ImageReference]:
    content = _message(body).get("content")
    if not isinstance(content, list):
        return None
    image_entries = [
        entry
        for entry in content
        if isinstance(entry, dict) and entry.get("type") in ("image_url", "image", "output_image")
    ]
    return _first(image_entries, "content_image_parts")


def from_message_image_field(body: dict[str, Any]) -> Optional[ImageReference]:
    message = _message(body)
    for key in ("image_url", "image"):
        value = message.get(key)
        if value:
            ref = _from_value(value, "message_image_field")
            if ref is not None:
                return ref
    return None


def from_content_string(body: dict[str, Any]) -> Optional[ImageReference]:
    content = _message(body).get("content")
    if not isinstance(content, str):
        return None
    # Plain text bodies only count when the whole text is an image reference.
    return _from_string(content, "content_string", allow_bare_base64=False)


def _iter_parts(body: dict[str, Any]) -> Iterator[Any]:
    for container in (_message(body), body):
        parts = container.get("parts")
        if isinstance(parts, list):
            yield from parts
    candidates = body.get("candidates")
    if isinstance(candidates, list):
        for candidate in candidates:
            content = candidate.get("content") if isinstance(candidate, dict) else None
            parts = content.get("parts") if isinstance(content, dict) else None
            if isinstance(parts, list):
                yield from parts


def from_native_parts(body: dict[str, Any]) -> Optional[ImageReference]:
    media_parts = (
        part
        for part in _iter_parts(body)
        if isinstance(part, dict) and "text" not in part
    )
    return _first(media_parts, "native_parts")


NORMALIZATION_STRATEGIES: list[tuple[str, Strategy]] = [
    ("message_images", from_message_images),
    ("content_image_parts", from_content_image_parts),
    ("message_image_field", from_message_image_field),
    ("content_string", from_content_string),
    ("native_parts", from_native_parts),
]


def find_image_reference(
    body: Any,
    strategies: Optional[list[tuple[str, Strategy]]] = None,
) -> ImageReference:
    """Run the strategies in order and return the first image reference found."""
    ordered = strategies if strategies is not None else NORMALIZATION_STRATEGIES
    names = [name for name, _ in ordered]
    if not isinstance(body, dict):
        raise ResponseShapeError(names, detail=f"response body is {type(body).__name__}, not an object")

    for name, strategy in ordered:
        ref = strategy(body)
        if ref is not None:
            logger.debug("Image payload found by strategy %s", name)
            return ref

    keys = ", ".join(sorted(_message(body).keys())) or "none"
    raise ResponseShapeError(names, detail=f"message keys: {keys}")
