"""Generation pipeline: preferences -> prompts -> image -> store -> wallpaper."""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Dict, List, Optional, Protocol, Sequence

from filelock import FileLock, Timeout

from config.settings import DEFAULT_SCHEDULE
from modules.services.history_service import GenerationHistoryService, HistoryEntry
from modules.services.scheduler import validate_schedule
from modules.services.storage_service import (
    CONFIDENCE_AREAS,
    CURRENT_IMAGE_PATH,
    GENERATION_SCHEDULE,
    ONBOARDING_COMPLETE,
    USER_GOALS,
    KeyValueStore,
    load_preferences,
)
from modules.services.wallpaper_service import WallpaperSetter

logger = logging.getLogger(__name__)

ALREADY_RUNNING = "generation already in progress"


class PromptSource(Protocol):
    async def generate_prompts(self, goals: Sequence[str], areas: Sequence[str]) -> List[str]:
        ...


class ImageSource(Protocol):
    async def generate_image(self, prompt: str) -> Path:
        ...


@dataclass(slots=True)
class PipelineResult:
    """Externally observable outcome of one generation run."""

    success: bool
    image_path: Optional[str] = None
    prompt: Optional[str] = None
    error: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        payload: Dict[str, Any] = {"success": self.success}
        if self.image_path is not None:
            payload["imagePath"] = self.image_path
        if self.prompt is not None:
            payload["prompt"] = self.prompt
        if self.error is not None:
            payload["error"] = self.error
        return payload


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _isoformat(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds").replace("+00:00", "Z")


class GenerationPipeline:
    """Single entry point for schedule ticks and manual generation requests."""

    def __init__(
        self,
        store: KeyValueStore,
        prompt_generator: PromptSource,
        image_generator: ImageSource,
        wallpaper_setter: WallpaperSetter,
        history: Optional[GenerationHistoryService] = None,
        clock: Callable[[], datetime] = _utc_now,
        default_schedule: str = DEFAULT_SCHEDULE,
        run_lock_path: Optional[Path] = None,
    ) -> None:
        self.store = store
        self.prompt_generator = prompt_generator
        self.image_generator = image_generator
        self.wallpaper_setter = wallpaper_setter
        self.history_service = history or GenerationHistoryService(store)
        self._clock = clock
        self.default_schedule = default_schedule
        self._lock = asyncio.Lock()
        # Shared with other processes using the same store, e.g. `serve` and a manual `run`.
        self._run_lock_path = Path(run_lock_path) if run_lock_path is not None else None
        self._run_lock = FileLock(str(self._run_lock_path)) if self._run_lock_path is not None else None

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    async def run_generation(self) -> PipelineResult:
        """Run one generation; concurrent calls are rejected, never interleaved."""
        if self._lock.locked():
            logger.warning("Generation requested while another run is active; rejecting")
            return PipelineResult(success=False, error=ALREADY_RUNNING)

        async with self._lock:
            if not self._acquire_run_lock():
                logger.warning("Generation already running in another process; rejecting")
                return PipelineResult(success=False, error=ALREADY_RUNNING)
            try:
                return await self._run()
            except Exception as exc:  # noqa: BLE001
                logger.error("Error generating affirmation: %s", exc)
                return PipelineResult(success=False, error=str(exc) or type(exc).__name__)
            finally:
                if self._run_lock is not None:
                    self._run_lock.release()

    def _acquire_run_lock(self) -> bool:
        if self._run_lock is None:
            return True
        self._run_lock_path.parent.mkdir(parents=True, exist_ok=True)
        try:
            self._run_lock.acquire(timeout=0)
        except Timeout:
            return False
        return True

    async def _run(self) -> PipelineResult:
        preferences = load_preferences(self.store)

        logger.info("Generating affirmation prompts...")
        prompts = await self.prompt_generator.generate_prompts(preferences.goals, preferences.areas)
        if not prompts:
            return PipelineResult(success=False, error="no affirmation prompts were produced")
        prompt = prompts[0]

        logger.info("Generating image with affirmation...")
        image_path = str(await self.image_generator.generate_image(prompt))

        await asyncio.to_thread(self.store.set, CURRENT_IMAGE_PATH, image_path)

        await self._apply_wallpaper(image_path)

        entry = HistoryEntry(path=image_path, prompt=prompt, timestamp=_isoformat(self._clock()))
        await asyncio.to_thread(self.history_service.record, entry)
        logger.info("Generation finished: %s", image_path)
        return PipelineResult(success=True, image_path=image_path, prompt=prompt)

    async def _apply_wallpaper(self, image_path: str) -> bool:
        try:
            applied = await self.wallpaper_setter.set_wallpaper(Path(image_path))
        except Exception as exc:  # noqa: BLE001
            logger.warning("Error setting wallpaper: %s", exc)
            return False
        if not applied:
            logger.warning("Wallpaper could not be applied for %s", image_path)
        return bool(applied)

    # Store-backed helpers -----------------------------------------------------
    def current_image(self) -> Optional[str]:
        value = self.store.get(CURRENT_IMAGE_PATH)
        return str(value) if value else None

    def history(self, limit: Optional[int] = None) -> List[HistoryEntry]:
        return self.history_service.list(limit)

    def schedule(self) -> str:
        return str(self.store.get(GENERATION_SCHEDULE) or self.default_schedule)

    def onboarding_complete(self) -> bool:
        return bool(self.store.get(ONBOARDING_COMPLETE, False))

    async def apply_current_wallpaper(self) -> bool:
        """Re-apply the stored current image, if any."""
        current = self.current_image()
        if not current:
            logger.info("No wallpaper image available yet")
            return False
        return await self._apply_wallpaper(current)

    def update_schedule(self, schedule: str) -> str:
        """Validate and persist a new schedule string."""
        normalized = validate_schedule(schedule)
        self.store.set(GENERATION_SCHEDULE, normalized)
        return normalized

    async def complete_onboarding(
        self,
        goals: Sequence[str],
        areas: Sequence[str],
        schedule: Optional[str] = None,
    ) -> PipelineResult:
        """Store the onboarding answers and produce the first wallpaper."""
        normalized = validate_schedule(schedule or self.default_schedule)
        answers = {
            USER_GOALS: list(goals),
            CONFIDENCE_AREAS: list(areas),
            GENERATION_SCHEDULE: normalized,
            ONBOARDING_COMPLETE: True,
        }
        for key, value in answers.items():
            await asyncio.to_thread(self.store.set, key, value)
        return await self.run_generation()
