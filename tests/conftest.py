from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from rail_observability.core.config import ContextCaptureConfig, RailConfig
from rail_observability.core.context import ContextCapturer
from rail_observability.core.inspector import Inspector
from rail_observability.core.logger import Logger


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    for name in ("RAIL_OBS_BASE_DIR", "RAIL_OBS_CONFIG", "RAIL_OBS_MCP_LIMIT", "RAIL_OBS_LOG_LEVEL"):
        monkeypatch.delenv(name, raising=False)


@pytest.fixture
def base_dir(tmp_path: Path) -> Path:
    return tmp_path / "rails"


@pytest.fixture
def fake_proc(tmp_path: Path) -> ContextCaptureConfig:
    proc = tmp_path / "proc"
    proc.mkdir()
    (proc / "loadavg").write_text("0.10 0.20 0.30 1/123 4567\n", encoding="utf-8")
    (proc / "meminfo").write_text(
        "MemTotal:        2048000 kB\nMemFree:          512000 kB\nMemAvailable:    1024000 kB\n",
        encoding="utf-8",
    )
    return ContextCaptureConfig(
        proc_loadavg=str(proc / "loadavg"),
        proc_meminfo=str(proc / "meminfo"),
        sudoers_path=str(tmp_path / "no-sudoers"),
    )


@pytest.fixture
def capturer(fake_proc: ContextCaptureConfig) -> ContextCapturer:
    return ContextCapturer(fake_proc, user="alice", host="box", pid=4242, platform="linux")


@pytest.fixture
def make_logger(base_dir: Path, capturer: ContextCapturer) -> Callable[..., Logger]:
    def _make(component: str = "backup", config: RailConfig | None = None) -> Logger:
        return Logger(component, config, base_dir=base_dir, capturer=capturer)

    return _make


@pytest.fixture
def make_inspector(base_dir: Path, capturer: ContextCapturer) -> Callable[..., Inspector]:
    def _make(component: str = "backup", context_id: str | None = None) -> Inspector:
        return Inspector(component, context_id, base_dir=base_dir, capturer=capturer)

    return _make
