"""Application entry point for the affirmation wallpaper generator."""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
from typing import Optional, Sequence

from config.settings import AppConfig, load_config
from modules.optimization.affirmation_prompts import AffirmationPromptGenerator
from modules.pipelines.image_generator import ImageGenerator
from modules.pipelines.orchestrator import GenerationPipeline
from modules.services.history_service import GenerationHistoryService
from modules.services.scheduler import CronScheduleTrigger, InvalidScheduleError
from modules.services.storage_service import JsonFileStore
from modules.services.wallpaper_service import DesktopWallpaperSetter, RecordingWallpaperSetter
from modules.utils.logging import setup_logging

logger = logging.getLogger("affirmation_wallpaper")


def build_pipeline(
    config: AppConfig, apply_wallpaper: bool = True
) -> tuple[GenerationPipeline, ImageGenerator]:
    """Wire the production services together."""
    store = JsonFileStore(config.store_path)
    image_generator = ImageGenerator(config)
    wallpaper = DesktopWallpaperSetter() if apply_wallpaper else RecordingWallpaperSetter()
    pipeline = GenerationPipeline(
        store=store,
        prompt_generator=AffirmationPromptGenerator(config),
        image_generator=image_generator,
        wallpaper_setter=wallpaper,
        history=GenerationHistoryService(store, limit=config.history_limit),
        default_schedule=config.default_schedule,
        run_lock_path=config.store_path.with_suffix(".run.lock"),
    )
    return pipeline, image_generator


async def _serve(pipeline: GenerationPipeline) -> int:
    if not pipeline.onboarding_complete():
        logger.error("Onboarding has not been completed; run `onboard` before `serve`")
        return 1
    trigger = CronScheduleTrigger(pipeline.schedule(), pipeline.run_generation)
    trigger.start()
    logger.info("Next generation at %s", trigger.next_fire_time().isoformat(timespec="minutes"))
    try:
        await asyncio.Event().wait()
    finally:
        trigger.stop()
    return 0


async def _dispatch(args: argparse.Namespace, config: AppConfig) -> int:
    pipeline, image_generator = build_pipeline(config, apply_wallpaper=not args.no_wallpaper)
    try:
        if args.command == "run":
            result = await pipeline.run_generation()
            print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
            return 0 if result.success else 1

        if args.command == "onboard":
            result = await pipeline.complete_onboarding(args.goal, args.area, args.schedule)
            print(json.dumps(result.to_dict(), ensure_ascii=False, indent=2))
            return 0 if result.success else 1

        if args.command == "schedule":
            print(pipeline.update_schedule(args.expression))
            return 0

        if args.command == "apply":
            return 0 if await pipeline.apply_current_wallpaper() else 1

        if args.command == "history":
            entries = [entry.to_dict() for entry in pipeline.history(args.limit)]
            print(json.dumps(entries, ensure_ascii=False, indent=2))
            return 0

        return await _serve(pipeline)
    finally:
        await image_generator.aclose()


def parse_args(argv: Optional[Sequence[str]] = None) -> argparse.Namespace:
    parser = argparse.ArgumentParser(
        prog="affirmation-wallpaper",
        description="Generate personalized affirmation wallpapers.",
    )
    parser.add_argument("--env-file", help="Path to a KEY=VALUE .env file (default: ./.env).")
    parser.add_argument(
        "--no-wallpaper",
        action="store_true",
        help="Generate and record images without touching the desktop.",
    )
    sub = parser.add_subparsers(dest="command", required=True)

    sub.add_parser("run", help="Generate one wallpaper now.")
    sub.add_parser("serve", help="Generate on the stored cron schedule until interrupted.")
    sub.add_parser("apply", help="Re-apply the current wallpaper image.")

    history = sub.add_parser("history", help="Print the generation history.")
    history.add_argument("--limit", type=int, default=None)

    schedule = sub.add_parser("schedule", help="Store a new cron schedule.")
    schedule.add_argument("expression", help='Five-field cron expression, e.g. "0 6 * * *".')

    onboard = sub.add_parser("onboard", help="Store goals and areas, then generate the first wallpaper.")
    onboard.add_argument("--goal", action="append", default=[], help="A personal goal (repeatable).")
    onboard.add_argument("--area", action="append", default=[], help="A confidence area (repeatable).")
    onboard.add_argument("--schedule", default=None, help="Cron schedule (default: DEFAULT_SCHEDULE or 0 6 * * *).")
    return parser.parse_args(argv)


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Load configuration and run the requested command."""
    args = parse_args(argv)
    config = load_config(args.env_file)
    setup_logging(config)
    try:
        return asyncio.run(_dispatch(args, config))
    except InvalidScheduleError as exc:
        logger.error("%s", exc)
        return 2
    except KeyboardInterrupt:
        return 0


if __name__ == "__main__":
    raise SystemExit(main())
