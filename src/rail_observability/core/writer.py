"""Log routing, size-based rotation and append-only writes.

Nothing in this module raises on I/O trouble: failures are reported on the
stdlib logging channel and signalled through boolean returns.
"""

from __future__ import annotations

import logging
import os
from pathlib import Path

from .config import RailConfig

LOGGER = logging.getLogger(__name__)

CATEGORY_COMMANDS = "commands"
CATEGORY_LIBRARIES = "libraries"
CATEGORY_SCRIPTS = "scripts"
CATEGORY_SYSTEM = "system"
CATEGORIES = (CATEGORY_COMMANDS, CATEGORY_LIBRARIES, CATEGORY_SCRIPTS, CATEGORY_SYSTEM)


def rotated_path(path: Path, index: int) -> Path:
    return path.with_name(f"{path.name}.{index}")


class LogRouter:
    """Maps component names to log files and appends formatted entries."""

    def __init__(self, config: RailConfig | None = None, *, base_dir: Path | None = None) -> None:
        self.config = config or RailConfig()
        self.base_dir = Path(base_dir) if base_dir is not None else self.config.base_dir()

    def category(self, component: str) -> str:
        routing = self.config.routing
        if component in routing.commands:
            return CATEGORY_COMMANDS
        if component in routing.scripts:
            return CATEGORY_SCRIPTS
        if component in routing.libraries:
            return CATEGORY_LIBRARIES
        return CATEGORY_SYSTEM

    def resolve_path(self, component: str) -> Path:
        """Return `<base>/<category>/<component>.log`."""
        ext = self.config.paths.log_extension
        return self.base_dir / self.category(component) / f"{component}{ext}"

    def rotate_if_needed(self, path: Path) -> bool:
        """Rotate `path` when it has reached the size threshold.

        Returns True when a rotation cycle ran. The oldest file beyond the
        retention count is discarded.
        """
        rotation = self.config.rotation
        if not rotation.enabled:
            return False
        try:
            size = path.stat().st_size
        except FileNotFoundError:
            return False
        except OSError as exc:
            LOGGER.warning("Failed to stat log file %s: %s", path, exc)
            return False
        if size < rotation.max_size_bytes:
            return False

        keep = rotation.max_files
        oldest = rotated_path(path, keep)
        try:
            oldest.unlink(missing_ok=True)
        except OSError as exc:
            LOGGER.warning("Failed to remove oldest rotation %s: %s", oldest, exc)

        for i in range(keep - 1, 0, -1):
            src = rotated_path(path, i)
            if not src.exists():
                continue
            try:
                os.replace(src, rotated_path(path, i + 1))
            except OSError as exc:
                LOGGER.warning("Failed to rotate %s: %s", src, exc)

        try:
            os.replace(path, rotated_path(path, 1))
        except OSError as exc:
            LOGGER.warning("Failed to rotate current log %s: %s", path, exc)
            return False
        LOGGER.debug("Rotated %s (size=%d)", path, size)
        return True

    def append(self, path: Path, text: str) -> bool:
        """Append `text` to `path`, rotating first if needed. Never raises."""
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
        except OSError as exc:
            LOGGER.warning("Failed to create log directory %s: %s", path.parent, exc)
            return False

        self.rotate_if_needed(path)

        try:
            with open(path, "a", encoding="utf-8", errors="backslashreplace") as f:
                f.write(text)
        except (OSError, UnicodeError) as exc:
            LOGGER.warning("Failed to write log file %s: %s", path, exc)
            return False
        return True
