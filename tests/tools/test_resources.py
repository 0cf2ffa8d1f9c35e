from __future__ import annotations

from collections.abc import Callable
from pathlib import Path

import pytest

from rail_observability.core.logger import Logger
from rail_observability.resources import registry


@pytest.fixture
def rails_env(base_dir: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    base_dir.mkdir(parents=True, exist_ok=True)
    monkeypatch.setenv("RAIL_OBS_BASE_DIR", str(base_dir))
    return base_dir.resolve()


def test_safe_resolve_confines_to_base(rails_env: Path) -> None:
    assert registry._safe_resolve("system/backup.log") == rails_env / "system" / "backup.log"

    with pytest.raises(ValueError, match="escapes base dir"):
        registry._safe_resolve("../outside.log")
    with pytest.raises(ValueError, match="escapes base dir"):
        registry._safe_resolve("/etc/passwd")


def test_component_log_requires_known_category(rails_env: Path) -> None:
    with pytest.raises(ValueError, match="Unknown category"):
        registry._resolve_component_log("secrets", "backup")
    with pytest.raises(FileNotFoundError):
        registry._resolve_component_log("system", "backup")


def test_component_log_rejects_traversal(rails_env: Path) -> None:
    with pytest.raises(ValueError, match="escapes base dir"):
        registry._resolve_component_log("system", "../../etc/passwd")


def test_tail_returns_latest_entries(make_logger: Callable[..., Logger], rails_env: Path) -> None:
    logger = make_logger()
    for i in range(5):
        logger.success(f"step {i}", 1)

    path = registry._resolve_component_log("system", "backup")
    out = registry._tail(path, 2)

    assert [e["event"] for e in out["entries"]] == ["step 3", "step 4"]
    assert out["parse_error"] is None
