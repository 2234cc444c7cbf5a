"""GenerationPipeline orchestration tests."""

from __future__ import annotations

import asyncio
import threading
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Optional

import pytest

from modules.pipelines.errors import ConfigurationError, ProviderClientError
from modules.pipelines.orchestrator import ALREADY_RUNNING, GenerationPipeline
from modules.services.scheduler import InvalidScheduleError
from modules.services.storage_service import (
    CONFIDENCE_AREAS,
    CURRENT_IMAGE_PATH,
    GENERATION_SCHEDULE,
    IMAGE_HISTORY,
    ONBOARDING_COMPLETE,
    USER_GOALS,
    JsonFileStore,
    MemoryStore,
)
from modules.services.wallpaper_service import RecordingWallpaperSetter


class DummyPromptGenerator:
    """Stub prompt generator capturing the preferences it received."""

    def __init__(self, error: Optional[Exception] = None) -> None:
        self.calls: list[tuple[list[str], list[str]]] = []
        self.error = error

    async def generate_prompts(self, goals, areas):
        self.calls.append((list(goals), list(areas)))
        if self.error is not None:
            raise self.error
        number = len(self.calls)
        return [f"I Am Run {number}: scene {number}", "I Am Second: unused", "I Am Third: unused"]


class DummyImageGenerator:
    """Stub image generator writing small files into tmp_path."""

    def __init__(self, root: Path, gate: Optional[asyncio.Event] = None) -> None:
        self.root = root
        self.gate = gate
        self.should_fail = False
        self.prompts: list[str] = []

    async def generate_image(self, prompt: str) -> Path:
        self.prompts.append(prompt)
        if self.gate is not None:
            await self.gate.wait()
        if self.should_fail:
            raise ProviderClientError(403, "forbidden")
        path = self.root / f"affirmation-{len(self.prompts)}.png"
        path.write_bytes(b"png")
        return path.resolve()


class TickingClock:
    """Deterministic clock advancing one minute per call."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 6, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        self.now += timedelta(minutes=1)
        return self.now


def build_pipeline(
    tmp_path: Path,
    store=None,
    prompts: Optional[DummyPromptGenerator] = None,
    images: Optional[DummyImageGenerator] = None,
    wallpaper: Optional[RecordingWallpaperSetter] = None,
) -> GenerationPipeline:
    return GenerationPipeline(
        store=store if store is not None else MemoryStore({USER_GOALS: ["speak up"], CONFIDENCE_AREAS: ["work"]}),
        prompt_generator=prompts or DummyPromptGenerator(),
        image_generator=images or DummyImageGenerator(tmp_path),
        wallpaper_setter=wallpaper or RecordingWallpaperSetter(),
        clock=TickingClock(),
    )


def test_successful_run_records_everything(tmp_path):
    prompts = DummyPromptGenerator()
    wallpaper = RecordingWallpaperSetter()
    store = MemoryStore({USER_GOALS: ["speak up"], CONFIDENCE_AREAS: ["work"]})
    pipeline = build_pipeline(tmp_path, store=store, prompts=prompts, wallpaper=wallpaper)

    result = asyncio.run(pipeline.run_generation())

    assert result.success is True
    assert result.prompt == "I Am Run 1: scene 1"
    assert prompts.calls == [(["speak up"], ["work"])]
    assert store.get(CURRENT_IMAGE_PATH) == result.image_path
    assert wallpaper.applied == [Path(result.image_path)]
    history = store.get(IMAGE_HISTORY)
    assert history == [
        {"path": result.image_path, "prompt": result.prompt, "timestamp": "2026-01-01T06:01:00.000Z"}
    ]
    assert result.to_dict() == {
        "success": True,
        "imagePath": result.image_path,
        "prompt": result.prompt,
    }


def test_history_is_capped_at_thirty_newest_first(tmp_path):
    store = MemoryStore()
    pipeline = build_pipeline(tmp_path, store=store)

    async def scenario():
        results = []
        for _ in range(35):
            results.append(await pipeline.run_generation())
        return results

    results = asyncio.run(scenario())

    history = store.get(IMAGE_HISTORY)
    assert all(result.success for result in results)
    assert len(history) == 30
    assert history[0]["path"] == results[-1].image_path
    assert history[-1]["path"] == results[5].image_path
    timestamps = [entry["timestamp"] for entry in history]
    assert timestamps == sorted(timestamps, reverse=True)


def test_failed_image_leaves_store_untouched(tmp_path):
    store_path = tmp_path / "store.json"
    store = JsonFileStore(store_path)
    store.set(USER_GOALS, ["speak up"])
    store.set(CURRENT_IMAGE_PATH, "/previous/affirmation-1.png")
    store.set(IMAGE_HISTORY, [{"path": "/previous/affirmation-1.png", "prompt": "old: one", "timestamp": "t"}])
    before = store_path.read_bytes()

    images = DummyImageGenerator(tmp_path)
    images.should_fail = True
    wallpaper = RecordingWallpaperSetter()
    pipeline = build_pipeline(tmp_path, store=store, images=images, wallpaper=wallpaper)

    result = asyncio.run(pipeline.run_generation())

    assert result.success is False
    assert "403" in (result.error or "")
    assert result.to_dict() == {"success": False, "error": result.error}
    assert store_path.read_bytes() == before
    assert wallpaper.applied == []


def test_configuration_error_becomes_failure_result(tmp_path):
    store = MemoryStore({CURRENT_IMAGE_PATH: "/keep.png", IMAGE_HISTORY: []})
    before = store.snapshot()
    prompts = DummyPromptGenerator(error=ConfigurationError("OPENROUTER_API_KEY is not configured"))
    pipeline = build_pipeline(tmp_path, store=store, prompts=prompts)

    result = asyncio.run(pipeline.run_generation())

    assert result.success is False
    assert "OPENROUTER_API_KEY" in (result.error or "")
    assert store.snapshot() == before


@pytest.mark.parametrize(
    "wallpaper",
    [RecordingWallpaperSetter(result=False), RecordingWallpaperSetter(error=RuntimeError("no desktop"))],
    ids=["returns-false", "raises"],
)
def test_wallpaper_failure_does_not_fail_run(tmp_path, wallpaper):
    store = MemoryStore()
    pipeline = build_pipeline(tmp_path, store=store, wallpaper=wallpaper)

    result = asyncio.run(pipeline.run_generation())

    assert result.success is True
    assert store.get(CURRENT_IMAGE_PATH) == result.image_path
    assert len(store.get(IMAGE_HISTORY)) == 1


def test_concurrent_run_is_rejected(tmp_path):
    store = MemoryStore()

    async def scenario():
        gate = asyncio.Event()
        images = DummyImageGenerator(tmp_path, gate=gate)
        pipeline = build_pipeline(tmp_path, store=store, images=images)

        first = asyncio.create_task(pipeline.run_generation())
        while not images.prompts:
            await asyncio.sleep(0)
        assert pipeline.is_running

        second = await pipeline.run_generation()
        gate.set()
        return await first, second, pipeline

    first, second, pipeline = asyncio.run(scenario())

    assert first.success is True
    assert second.success is False
    assert second.error == ALREADY_RUNNING
    assert len(store.get(IMAGE_HISTORY)) == 1
    assert not pipeline.is_running


def test_apply_current_wallpaper(tmp_path):
    wallpaper = RecordingWallpaperSetter()
    store = MemoryStore()
    pipeline = build_pipeline(tmp_path, store=store, wallpaper=wallpaper)

    assert asyncio.run(pipeline.apply_current_wallpaper()) is False

    store.set(CURRENT_IMAGE_PATH, str(tmp_path / "current.png"))
    assert asyncio.run(pipeline.apply_current_wallpaper()) is True
    assert wallpaper.applied == [tmp_path / "current.png"]


def test_complete_onboarding_stores_answers_and_generates(tmp_path):
    store = MemoryStore()
    prompts = DummyPromptGenerator()
    pipeline = build_pipeline(tmp_path, store=store, prompts=prompts)

    result = asyncio.run(pipeline.complete_onboarding(["ship it"], ["courage"], "30  7 * * 1-5"))

    assert result.success is True
    assert store.get(USER_GOALS) == ["ship it"]
    assert store.get(CONFIDENCE_AREAS) == ["courage"]
    assert store.get(GENERATION_SCHEDULE) == "30 7 * * 1-5"
    assert store.get(ONBOARDING_COMPLETE) is True
    assert prompts.calls == [(["ship it"], ["courage"])]


def test_invalid_schedule_rejected_before_storing(tmp_path):
    store = MemoryStore()
    pipeline = build_pipeline(tmp_path, store=store)

    with pytest.raises(InvalidScheduleError):
        asyncio.run(pipeline.complete_onboarding(["goal"], ["area"], "every morning"))
    with pytest.raises(InvalidScheduleError):
        pipeline.update_schedule("61 * * * *")

    assert store.snapshot() == {}
    assert pipeline.schedule() == "0 6 * * *"
    assert pipeline.update_schedule("0 21 * * *") == "0 21 * * *"
    assert pipeline.schedule() == "0 21 * * *"


def _file_pipeline(tmp_path: Path, name: str, gate: Optional[asyncio.Event] = None):
    output = tmp_path / name
    output.mkdir(exist_ok=True)
    store = JsonFileStore(tmp_path / "store.json")
    images = DummyImageGenerator(output, gate=gate)
    pipeline = GenerationPipeline(
        store=store,
        prompt_generator=DummyPromptGenerator(),
        image_generator=images,
        wallpaper_setter=RecordingWallpaperSetter(),
        clock=TickingClock(),
        run_lock_path=tmp_path / "store.run.lock",
    )
    return pipeline, images


def test_pipelines_sharing_a_store_file_keep_each_others_history(tmp_path):
    JsonFileStore(tmp_path / "store.json").set(USER_GOALS, ["speak up"])
    serve, _ = _file_pipeline(tmp_path, "serve")
    manual, _ = _file_pipeline(tmp_path, "manual")

    manual_result = asyncio.run(manual.run_generation())
    JsonFileStore(tmp_path / "store.json").set(GENERATION_SCHEDULE, "0 21 * * *")
    serve_result = asyncio.run(serve.run_generation())

    store = JsonFileStore(tmp_path / "store.json")
    history = store.get(IMAGE_HISTORY)
    assert [entry["path"] for entry in history] == [serve_result.image_path, manual_result.image_path]
    assert store.get(GENERATION_SCHEDULE) == "0 21 * * *"
    assert store.get(CURRENT_IMAGE_PATH) == serve_result.image_path
    assert serve.schedule() == "0 21 * * *"


def test_run_is_rejected_while_another_pipeline_holds_the_run_lock(tmp_path):
    async def scenario():
        gate = asyncio.Event()
        serve, serve_images = _file_pipeline(tmp_path, "serve", gate=gate)
        manual, manual_images = _file_pipeline(tmp_path, "manual")

        first = asyncio.create_task(serve.run_generation())
        while not serve_images.prompts:
            await asyncio.sleep(0)

        rejected = await manual.run_generation()
        gate.set()
        finished = await first
        after = await manual.run_generation()
        return rejected, finished, after, manual_images

    rejected, finished, after, manual_images = asyncio.run(scenario())

    assert rejected.success is False
    assert rejected.error == ALREADY_RUNNING
    assert finished.success is True
    assert after.success is True
    assert len(manual_images.prompts) == 1
    assert len(JsonFileStore(tmp_path / "store.json").get(IMAGE_HISTORY)) == 2


def test_configured_default_schedule_is_used(tmp_path):
    store = MemoryStore()
    pipeline = GenerationPipeline(
        store=store,
        prompt_generator=DummyPromptGenerator(),
        image_generator=DummyImageGenerator(tmp_path),
        wallpaper_setter=RecordingWallpaperSetter(),
        default_schedule="30 5 * * *",
    )

    assert pipeline.schedule() == "30 5 * * *"
    asyncio.run(pipeline.complete_onboarding(["goal"], ["area"]))
    assert store.get(GENERATION_SCHEDULE) == "30 5 * * *"


class ThreadRecordingStore(MemoryStore):
    """MemoryStore noting which thread performed each write."""

    def __init__(self, initial=None) -> None:
        super().__init__(initial)
        self.writer_threads: list[int] = []

    def set(self, key, value) -> None:
        self.writer_threads.append(threading.get_ident())
        super().set(key, value)


def test_store_writes_run_off_the_event_loop_thread(tmp_path):
    store = ThreadRecordingStore({USER_GOALS: ["speak up"]})
    pipeline = build_pipeline(tmp_path, store=store)

    result = asyncio.run(pipeline.run_generation())

    assert result.success is True
    assert len(store.writer_threads) == 2
    assert threading.get_ident() not in store.writer_threads
