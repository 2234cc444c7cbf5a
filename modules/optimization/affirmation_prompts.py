"""Affirmation prompt generation via third-party LLM APIs."""

from __future__ import annotations

import importlib
import logging
import re
from dataclasses import dataclass
from typing import Awaitable, Callable, Dict, Optional, Sequence

from config.settings import AppConfig
from modules.pipelines.errors import ConfigurationError

logger = logging.getLogger(__name__)

PROMPT_COUNT = 3
MIN_PROMPT_LENGTH = 10

# Used when the model answered but nothing in the answer could be parsed.
EMPTY_PARSE_PROMPTS = [
    "I Am Confident: Beautiful sunrise over calm ocean, affirmation text in elegant white typography centered in the sky",
    "I Believe in Myself: Majestic forest with rays of light, affirmation text glowing in golden letters above the trees",
    "I Am Growing Every Day: Blooming flower garden in vibrant colors, affirmation text in bold script at the bottom",
]

# Used when the call itself failed.
CALL_FAILED_PROMPTS = [
    "I Am Worthy of Success: Stunning mountain landscape at golden hour with the affirmation text in bold white letters across the sky",
    "Every Day I Grow Stronger: Peaceful zen garden with cherry blossoms, affirmation text in elegant calligraphy floating above",
    "I Trust My Journey: Winding path through beautiful autumn forest, affirmation text in warm orange tones along the path",
]

_MARKER_RE = re.compile(r"^(\d+\.|-)\s*")


@dataclass(slots=True)
class BackendRequest:
    """Information passed to text backends."""

    instruction: str
    goals: list[str]
    areas: list[str]


BackendCallable = Callable[[BackendRequest], Awaitable[str]]


def build_instruction(goals: Sequence[str], areas: Sequence[str]) -> str:
    """Compose the single user message sent to the text model."""
    goals_text = ", ".join(goal.strip() for goal in goals if goal and goal.strip())
    areas_text = ", ".join(area.strip() for area in areas if area and area.strip())
    return (
        "You are an expert affirmation coach. Generate powerful, personalized affirmation image "
        "prompts based on the user's goals and confidence areas.\n\n"
        f"User wants to improve in: {areas_text or 'general self-confidence'}\n"
        f"User's goals: {goals_text or 'feeling calm, capable and motivated'}\n\n"
        f"Generate {PROMPT_COUNT} different affirmation image prompts. Each prompt should:\n"
        "1. Include a short, powerful affirmation text (5-8 words max)\n"
        "2. Describe a beautiful, uplifting visual scene\n"
        "3. Specify where the affirmation text should appear in the image\n"
        "4. Use inspiring, motivational imagery\n\n"
        "Return exactly 3 numbered lines, each formatted as:\n"
        '"[AFFIRMATION TEXT]: [Visual scene description with text placement]"\n\n'
        'Example: "I Am Confident and Capable: A serene mountain peak at sunrise with golden light, '
        'the affirmation text elegantly overlaid in the sky in bold white letters"\n\n'
        f"Generate {PROMPT_COUNT} unique prompts now:"
    )


def parse_prompts(text: str, limit: int = PROMPT_COUNT) -> list[str]:
    """Extract numbered or dashed ``"<text>: <scene>"`` lines from a model reply."""
    prompts: list[str] = []
    for line in (text or "").splitlines():
        stripped = line.strip()
        if not _MARKER_RE.match(stripped):
            continue
        candidate = _MARKER_RE.sub("", stripped, count=1).strip()
        candidate = candidate.strip("*").strip().strip("\"'“”").strip()
        if len(candidate) <= MIN_PROMPT_LENGTH or ":" not in candidate:
            continue
        prompts.append(candidate)
        if len(prompts) >= limit:
            break
    return prompts


class AffirmationPromptGenerator:
    """Turn stored goals and confidence areas into affirmation image prompts."""

    def __init__(self, config: AppConfig) -> None:
        self.config = config
        self._backends: Dict[str, BackendCallable] = {}
        self.warnings: list[str] = []
        self._auto_register_backends()

    def register_backend(self, name: str, backend: BackendCallable) -> None:
        """Register a text backend."""
        self._backends[name.lower()] = backend

    def clear_backends(self) -> None:
        """Remove all backends (mainly for tests)."""
        self._backends.clear()

    def has_backend(self, name: str) -> bool:
        """Return True when backend exists."""
        return name.lower() in self._backends

    def available_backends(self) -> list[str]:
        """Return the registered backends ordered by preference."""
        priority = {"openrouter": 0, "claude": 1}
        return sorted(self._backends.keys(), key=lambda item: (priority.get(item, 99), item))

    async def generate_prompts(
        self,
        goals: Sequence[str],
        areas: Sequence[str],
        backend_name: Optional[str] = None,
    ) -> list[str]:
        """Return up to three ``"<text>: <scene>"`` prompts, never raising except for missing keys."""
        name = (backend_name or self.config.text_backend).lower()
        self._require_credential(name)

        backend = self._backends.get(name)
        if backend is None:
            logger.warning(
                "Text backend %r is unavailable (%s); using fallback prompts",
                name,
                "; ".join(self.warnings) or "not registered",
            )
            return list(CALL_FAILED_PROMPTS)

        request = BackendRequest(
            instruction=build_instruction(goals, areas),
            goals=list(goals),
            areas=list(areas),
        )
        try:
            reply = await backend(request)
        except Exception as exc:  # noqa: BLE001
            logger.warning("Error generating affirmations via %s: %s", name, exc)
            return list(CALL_FAILED_PROMPTS)

        prompts = parse_prompts(reply)
        if not prompts:
            logger.warning("Could not parse any prompts from the %s reply; using fallback prompts", name)
            return list(EMPTY_PARSE_PROMPTS)
        return prompts

    # Internal helpers ---------------------------------------------------------
    def _require_credential(self, name: str) -> None:
        if name == "openrouter" and not self.config.openrouter_key:
            raise ConfigurationError("OPENROUTER_API_KEY is not configured")
        if name == "claude" and not self.config.anthropic_key:
            raise ConfigurationError("ANTHROPIC_API_KEY is not configured")

    def _auto_register_backends(self) -> None:
        """Register backends automatically when dependencies are available."""
        self._register_openrouter_backend()
        self._register_claude_backend()

    def _register_openrouter_backend(self) -> None:
        if not self.config.openrouter_key:
            return
        try:
            openai_module = importlib.import_module("openai")
        except ImportError as exc:
            self.warnings.append(f"openai could not be imported: {exc}")
            return

        headers = {}
        if self.config.metadata.get("http_referer"):
            headers["HTTP-Referer"] = str(self.config.metadata["http_referer"])
        if self.config.metadata.get("app_title"):
            headers["X-Title"] = str(self.config.metadata["app_title"])
        client = openai_module.AsyncOpenAI(
            api_key=self.config.openrouter_key,
            base_url=self.config.api_base_url,
            default_headers=headers or None,
            timeout=self.config.request_timeout,
        )

        async def _openrouter_backend(request: BackendRequest) -> str:
            completion = await client.chat.completions.create(
                model=self.config.text_model,
                messages=[{"role": "user", "content": request.instruction}],
            )
            if not completion.choices:
                return ""
            return completion.choices[0].message.content or ""

        self.register_backend("openrouter", _openrouter_backend)

    def _register_claude_backend(self) -> None:
        if not self.config.anthropic_key:
            return
        try:
            anthropic_module = importlib.import_module("anthropic")
        except ImportError as exc:  # pragma: no cover - optional dependency
            self.warnings.append(f"anthropic could not be imported: {exc}")
            return

        client = anthropic_module.AsyncAnthropic(api_key=self.config.anthropic_key)

        async def _claude_backend(request: BackendRequest) -> str:
            message = await client.messages.create(
                model=self.config.claude_model,
                max_tokens=512,
                messages=[{"role": "user", "content": request.instruction}],
            )
            return "\n".join(
                getattr(block, "text", "") for block in (message.content or [])
            )

        self.register_backend("claude", _claude_backend)
