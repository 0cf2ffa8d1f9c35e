from __future__ import annotations

import json
from pathlib import Path

import pytest

from rail_observability.core import jsonc
from pydantic import ValidationError

from rail_observability.core.config import (
    DegradationTier,
    MessagesConfig,
    PathsConfig,
    RailConfig,
    default_config_path,
    load_config,
)
from rail_observability.core.models import LogLevel


def test_strip_comments_keeps_string_contents() -> None:
    text = """{
      // line comment
      "url": "http://example.com/*not a comment*/", /* block
      comment */ "n": 1
    }"""

    data = jsonc.loads(text)

    assert data == {"url": "http://example.com/*not a comment*/", "n": 1}
    # Newlines inside block comments survive so error positions stay accurate.
    assert jsonc.strip_comments(text).count("\n") == text.count("\n")


def test_strip_comments_handles_escaped_quotes() -> None:
    assert jsonc.loads('{"a": "say \\"//hi\\""} // trailing') == {"a": 'say "//hi"'}


def test_load_config_missing_file(tmp_path: Path) -> None:
    loaded = load_config(tmp_path / "nope.jsonc")

    assert loaded.tier is DegradationTier.DEFAULTS_MISSING
    assert loaded.health_cost == -3
    assert loaded.degraded
    assert loaded.config == RailConfig()


def test_load_config_invalid_json(tmp_path: Path) -> None:
    cfg = tmp_path / "config.jsonc"
    cfg.write_text("{ not json", encoding="utf-8")

    loaded = load_config(cfg)

    assert loaded.tier is DegradationTier.DEFAULTS_INVALID
    assert loaded.health_cost == -13
    assert loaded.source == cfg


def test_load_config_non_object_root(tmp_path: Path) -> None:
    cfg = tmp_path / "config.jsonc"
    cfg.write_text("[1, 2, 3]", encoding="utf-8")

    assert load_config(cfg).tier is DegradationTier.DEFAULTS_INVALID


def test_load_config_partial_keeps_valid_sections(tmp_path: Path) -> None:
    cfg = tmp_path / "config.jsonc"
    cfg.write_text(
        json.dumps(
            {
                "paths": {"debug_subdir": "traces"},
                "rotation": {"max_files": 0},
            }
        ),
        encoding="utf-8",
    )

    loaded = load_config(cfg)

    assert loaded.tier is DegradationTier.PARTIAL
    assert loaded.health_cost == -7
    assert loaded.config.paths.debug_subdir == "traces"
    assert loaded.config.rotation.max_files == 5
    assert any(p.startswith("rotation") for p in loaded.problems)


def test_message_template_with_unknown_placeholder_is_rejected() -> None:
    with pytest.raises(ValidationError):
        MessagesConfig(event_check="Checking {thing}")
    with pytest.raises(ValidationError):
        MessagesConfig(event_op_start="Starting {0}")

    assert MessagesConfig(event_check="Verify {what}!").event_check == "Verify {what}!"


def test_load_config_bad_message_template_degrades(tmp_path: Path) -> None:
    cfg = tmp_path / "config.jsonc"
    cfg.write_text(
        json.dumps({"messages": {"event_check": "Checking {thing}"}, "rotation": {"max_files": 2}}),
        encoding="utf-8",
    )

    loaded = load_config(cfg)

    assert loaded.tier is DegradationTier.PARTIAL
    assert loaded.config.messages.event_check == "Checking: {what}"
    assert loaded.config.rotation.max_files == 2
    assert any(p.startswith("messages") for p in loaded.problems)


def test_load_config_full(tmp_path: Path) -> None:
    cfg = tmp_path / "config.jsonc"
    cfg.write_text(
        """{
          // rotate early
          "rotation": {"max_size_bytes": 2048, "max_files": 3},
          "routing": {"commands": ["deploy"]},
          "behavior": {"full_context": {"SUCCESS": true, "OPERATION": false}},
          "unknown_section": {"ignored": true}
        }""",
        encoding="utf-8",
    )

    loaded = load_config(cfg)

    assert loaded.tier is DegradationTier.FULL
    assert not loaded.degraded
    assert loaded.config.rotation.max_size_bytes == 2048
    assert loaded.config.routing.commands == ["deploy"]
    behavior = loaded.config.behavior
    assert behavior.wants_full_context(LogLevel.SUCCESS)
    assert not behavior.wants_full_context(LogLevel.OPERATION)
    # Levels not listed keep the built-in policy.
    assert behavior.wants_full_context(LogLevel.FAILURE)
    assert not behavior.wants_full_context(LogLevel.CHECK)


def test_default_config_path_env_override(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    assert default_config_path(tmp_path) == tmp_path / ".rail-observability" / "config.jsonc"

    monkeypatch.setenv("RAIL_OBS_CONFIG", str(tmp_path / "custom.jsonc"))
    assert default_config_path(tmp_path) == tmp_path / "custom.jsonc"


def test_base_dir_resolution(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    assert RailConfig().base_dir(home=tmp_path) == tmp_path / ".rail-observability"

    cfg = RailConfig(paths=PathsConfig(base_dir=str(tmp_path / "abs")))
    assert cfg.base_dir(home=Path("/elsewhere")) == tmp_path / "abs"

    monkeypatch.setenv("RAIL_OBS_BASE_DIR", str(tmp_path / "env"))
    assert cfg.base_dir() == tmp_path / "env"
