from __future__ import annotations

import json
import sys
from collections.abc import Callable
from pathlib import Path

import pytest

from rail_observability.cli import main
from rail_observability.core.inspector import Inspector
from rail_observability.core.logger import Logger
from rail_observability.core.parsing import read_log_file


def _exit_code(argv: list[str]) -> int:
    with pytest.raises(SystemExit) as excinfo:
        main(argv)
    return excinfo.value.code


def test_read_prints_entries(make_logger: Callable[..., Logger], capsys: pytest.CaptureFixture[str]) -> None:
    logger = make_logger()
    logger.check("disk", True, 10)
    logger.failure("restart", "timeout", -20)

    assert _exit_code(["read", str(logger.log_file), "--levels", "failure"]) == 0

    out = capsys.readouterr().out
    assert "[FAILURE] backup" in out
    assert "Checking: disk" not in out
    assert "Found 1 matching entries." in out


def test_read_missing_file(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    assert _exit_code(["read", str(tmp_path / "missing.log")]) == 2
    assert "not found" in capsys.readouterr().err


def test_read_reports_parse_error(tmp_path: Path, capsys: pytest.CaptureFixture[str]) -> None:
    path = tmp_path / "broken.log"
    path.write_text("nonsense\n", encoding="utf-8")

    assert _exit_code(["read", str(path)]) == 1
    assert "Parse error" in capsys.readouterr().err


def test_debug_prints_state(make_inspector: Callable[..., Inspector], capsys: pytest.CaptureFixture[str]) -> None:
    with make_inspector() as inspector:
        inspector.expected_state("count", 2, 3)

    assert _exit_code(["debug", str(inspector.output_path), "-v"]) == 0

    out = capsys.readouterr().out
    assert "[DIVERGENCE] count" in out
    assert "expected: 2" in out


def test_assess_outputs_json(make_logger: Callable[..., Logger], base_dir: Path, capsys: pytest.CaptureFixture[str]) -> None:
    make_logger("build").success("compiled", 40)

    assert _exit_code(["assess", "--base-dir", str(base_dir)]) == 0

    data = json.loads(capsys.readouterr().out)
    assert data["components"]["build"]["final_health"] == 40


def test_run_logs_command(base_dir: Path, tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("RAIL_OBS_BASE_DIR", str(base_dir))

    code = _exit_code(
        [
            "--config",
            str(tmp_path / "absent.jsonc"),
            "run",
            "deploy",
            sys.executable,
            "-c",
            "import sys; sys.exit(4)",
        ]
    )

    assert code == 4
    entries, error = read_log_file(base_dir / "system" / "deploy.log")
    assert error is None
    assert [e.event for e in entries][0] == "Configuration degraded: defaults-missing"
    assert entries[-1].details["exit_code"] == 4
