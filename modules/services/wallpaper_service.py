"""Desktop wallpaper application."""

from __future__ import annotations

import asyncio
import logging
import os
import shutil
import sys
from pathlib import Path
from typing import List, Optional, Protocol, Sequence

logger = logging.getLogger(__name__)


class WallpaperSetter(Protocol):
    """Anything that can apply an image file as the desktop wallpaper."""

    async def set_wallpaper(self, image_path: Path) -> bool:
        ...


async def _run(cmd: Sequence[str]) -> bool:
    try:
        process = await asyncio.create_subprocess_exec(
            *cmd,
            stdout=asyncio.subprocess.DEVNULL,
            stderr=asyncio.subprocess.PIPE,
        )
        _, stderr = await process.communicate()
    except OSError as exc:
        logger.debug("Could not run %s: %s", cmd[0], exc)
        return False
    if process.returncode != 0:
        logger.debug("%s exited with %s: %s", cmd[0], process.returncode, stderr.decode(errors="replace").strip())
        return False
    return True


class DesktopWallpaperSetter:
    """Best-effort wallpaper setter for GNOME, sway, X11, macOS and Windows."""

    def _linux_commands(self, image: str) -> List[List[str]]:
        commands: List[List[str]] = []
        if shutil.which("gsettings"):
            uri = Path(image).as_uri()
            commands.append(["gsettings", "set", "org.gnome.desktop.background", "picture-uri", uri])
            commands.append(["gsettings", "set", "org.gnome.desktop.background", "picture-uri-dark", uri])
        if shutil.which("swaymsg") and os.environ.get("SWAYSOCK"):
            commands.append(["swaymsg", "output", "*", "bg", image, "fill"])
        if shutil.which("feh"):
            commands.append(["feh", "--bg-fill", image])
        return commands

    async def _set_windows(self, image: str) -> bool:
        import ctypes

        spi_setdeskwallpaper = 20
        flags = 0x01 | 0x02  # SPIF_UPDATEINIFILE | SPIF_SENDCHANGE
        result = await asyncio.to_thread(
            ctypes.windll.user32.SystemParametersInfoW,  # type: ignore[attr-defined]
            spi_setdeskwallpaper,
            0,
            image,
            flags,
        )
        return bool(result)

    async def set_wallpaper(self, image_path: Path) -> bool:
        image = str(Path(image_path).resolve())
        if not Path(image).exists():
            logger.error("Wallpaper image not found: %s", image)
            return False

        logger.info("Setting wallpaper to: %s", image)
        if sys.platform.startswith("win"):
            return await self._set_windows(image)
        if sys.platform == "darwin":
            script = f'tell application "System Events" to tell every desktop to set picture to "{image}"'
            return await _run(["osascript", "-e", script])

        commands = self._linux_commands(image)
        if not commands:
            logger.warning("No supported wallpaper tool found for %s", image)
            return False
        # gsettings needs both keys; any other tool succeeding on its own is enough.
        applied = False
        for cmd in commands:
            if await _run(cmd):
                applied = True
                if cmd[0] != "gsettings":
                    break
        return applied


class RecordingWallpaperSetter:
    """Setter that only remembers the paths it was asked to apply."""

    def __init__(self, result: bool = True, error: Optional[Exception] = None) -> None:
        self.result = result
        self.error = error
        self.applied: List[Path] = []

    async def set_wallpaper(self, image_path: Path) -> bool:
        self.applied.append(Path(image_path))
        if self.error is not None:
            raise self.error
        return self.result
