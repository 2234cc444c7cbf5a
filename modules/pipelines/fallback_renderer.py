"""Local placeholder artwork used when the remote image provider is unreachable."""

from __future__ import annotations

import logging
from pathlib import Path
from xml.sax.saxutils import escape

from modules.utils.image_utils import write_artifact

logger = logging.getLogger(__name__)

DEFAULT_AFFIRMATION = "I Am Confident"
WIDTH, HEIGHT = 1920, 1080
GRADIENT_START = "#667eea"
GRADIENT_END = "#764ba2"

_SVG_TEMPLATE = """<svg width="{width}" height="{height}" xmlns="http://www.w3.org/2000/svg">
  <defs>
    <linearGradient id="grad" x1="0%" y1="0%" x2="100%" y2="100%">
      <stop offset="0%" style="stop-color:{start};stop-opacity:1" />
      <stop offset="100%" style="stop-color:{end};stop-opacity:1" />
    </linearGradient>
  </defs>
  <rect width="{width}" height="{height}" fill="url(#grad)"/>
  <text x="50%" y="50%" font-family="Arial, sans-serif" font-size="72" font-weight="bold"
        fill="white" text-anchor="middle" dominant-baseline="middle">{text}</text>
</svg>
"""


def extract_affirmation(prompt_text: str) -> str:
    """Return the text before the first colon, or the default phrase."""
    head, sep, _ = (prompt_text or "").partition(":")
    text = head.strip().strip("\"'*").strip()
    if not sep or not text:
        return DEFAULT_AFFIRMATION
    return text


def build_svg(affirmation: str) -> str:
    """Render the gradient placeholder as SVG markup."""
    return _SVG_TEMPLATE.format(
        width=WIDTH,
        height=HEIGHT,
        start=GRADIENT_START,
        end=GRADIENT_END,
        text=escape(affirmation),
    )


class FallbackRenderer:
    """Write vector placeholder wallpapers into the images directory."""

    def __init__(self, images_dir: Path) -> None:
        self.images_dir = Path(images_dir)

    def render_fallback(self, prompt_text: str) -> Path:
        """Write ``affirmation-fallback-<ms>.svg`` and return its absolute path."""
        svg = build_svg(extract_affirmation(prompt_text))
        path = write_artifact(self.images_dir, "affirmation-fallback", ".svg", svg.encode("utf-8"))
        logger.info("Fallback image created: %s", path)
        return path
