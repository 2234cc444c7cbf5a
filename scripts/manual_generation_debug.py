"""One-off script for debugging a full generation run against the real providers."""

import asyncio
from pathlib import Path

from config.settings import load_config
from modules.optimization.affirmation_prompts import AffirmationPromptGenerator
from modules.pipelines.image_generator import ImageGenerator
from modules.pipelines.orchestrator import GenerationPipeline
from modules.services.storage_service import (
    CONFIDENCE_AREAS,
    USER_GOALS,
    MemoryStore,
)
from modules.services.wallpaper_service import RecordingWallpaperSetter
from modules.utils.logging import setup_logging


async def run() -> None:
    # 1. 准备真实配置与服务对象，输出写到 debug 目录
    config = load_config()
    config.images_dir = Path("debug-images").resolve()
    setup_logging(config)

    store = MemoryStore(
        {
            USER_GOALS: ["ship the side project", "run a half marathon"],
            CONFIDENCE_AREAS: ["public speaking", "decision making"],
        }
    )
    prompt_generator = AffirmationPromptGenerator(config)
    image_generator = ImageGenerator(config)
    wallpaper = RecordingWallpaperSetter()

    pipeline = GenerationPipeline(
        store=store,
        prompt_generator=prompt_generator,
        image_generator=image_generator,
        wallpaper_setter=wallpaper,  # 只记录，不修改桌面
    )

    # 2. 单独查看提示词，便于观察模型输出
    prompts = await prompt_generator.generate_prompts(
        store.get(USER_GOALS), store.get(CONFIDENCE_AREAS)
    )
    for index, prompt in enumerate(prompts, start=1):
        print(f"提示词 {index}:", prompt)

    # 3. 执行完整流程
    try:
        result = await pipeline.run_generation()
    finally:
        await image_generator.aclose()

    print("状态:", result.to_dict())
    if result.success:
        print("图像已保存:", result.image_path)
        print("历史记录条数:", len(pipeline.history()))
    else:
        print("未生成图像，请检查错误信息。")


if __name__ == "__main__":
    asyncio.run(run())
