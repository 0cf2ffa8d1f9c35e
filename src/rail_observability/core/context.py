"""System context capture.

Every probe here is best-effort: a failure yields the configured "unknown"
sentinel instead of an exception, so capturing context can never abort the
logging call it serves.
"""

from __future__ import annotations

import os
import shutil
import socket
import stat
import sys
from pathlib import Path

from .config import ContextCaptureConfig
from .models import ShellContext, SudoersContext, SystemContext, SystemMetrics

AUTOMATION_ENV_VARS: tuple[str, ...] = (
    "DEBIAN_FRONTEND",
    "NEEDRESTART_MODE",
    "NEEDRESTART_SUSPEND",
    "PIP_NO_INPUT",
    "NPM_CONFIG_YES",
    "GIT_EDITOR",
    "EDITOR",
    "VISUAL",
)

_KB_PER_MB = 1024
_BYTES_PER_GB = 1024**3


def current_user(unknown: str = "unknown") -> str:
    return os.getenv("USER") or os.getenv("LOGNAME") or unknown


def current_host(unknown: str = "unknown") -> str:
    try:
        return socket.gethostname() or unknown
    except OSError:
        return unknown


def current_cwd(unknown: str = "unknown") -> str:
    try:
        return os.getcwd()
    except OSError:
        return unknown


def actor(user: str, host: str, pid: int) -> str:
    return f"{user}@{host}:{pid}"


def _stdin_is_tty() -> bool:
    try:
        return sys.stdin is not None and sys.stdin.isatty()
    except (ValueError, OSError):
        return False


class ContextCapturer:
    """Builds `SystemContext` snapshots.

    Identity (user/host/pid) is supplied by the owner, which memoizes it once;
    everything else is probed fresh on each `capture()`.
    """

    def __init__(
        self,
        config: ContextCaptureConfig | None = None,
        *,
        user: str | None = None,
        host: str | None = None,
        pid: int | None = None,
        platform: str | None = None,
    ) -> None:
        self.config = config or ContextCaptureConfig()
        unknown = self.config.unknown_value
        self.user = user or current_user(unknown)
        self.host = host or current_host(unknown)
        self.pid = pid if pid is not None else os.getpid()
        self.platform = platform or sys.platform

    @property
    def _linux(self) -> bool:
        return self.platform.startswith("linux")

    def capture(self) -> SystemContext:
        unknown = self.config.unknown_value
        cwd = current_cwd(unknown)
        return SystemContext(
            user=self.user,
            host=self.host,
            pid=self.pid,
            cwd=cwd,
            shell=self.shell(),
            sudoers=self.sudoers(),
            system=SystemMetrics(
                load=self.load_average(),
                memory=self.memory_usage(),
                disk=self.disk_usage(cwd),
            ),
            environment=self.environment(),
        )

    def shell(self) -> ShellContext:
        shell = os.getenv("SHELL") or self.config.unknown_value
        login = os.getenv("0", "").startswith("-") or os.getenv("SHLVL") == "1"
        return ShellContext(type=Path(shell).name, interactive=_stdin_is_tty(), login=login)

    def environment(self) -> dict[str, str]:
        env = {name: os.environ[name] for name in AUTOMATION_ENV_VARS if os.environ.get(name)}
        prefix = self.config.framework_env_prefix
        if prefix:
            env.update({k: v for k, v in os.environ.items() if k.startswith(prefix)})
        return env

    def sudoers(self) -> SudoersContext:
        try:
            st = os.stat(self.config.sudoers_path)
        except OSError:
            return SudoersContext(permissions=self.config.unknown_value)
        perms = stat.S_IMODE(st.st_mode)
        return SudoersContext(
            installed=True,
            valid=perms == self.config.sudoers_valid_perms,
            permissions=f"{perms:04o}",
        )

    def load_average(self) -> str:
        if not self._linux:
            return self.config.unknown_value
        try:
            fields = Path(self.config.proc_loadavg).read_text(encoding="utf-8").split()
        except (OSError, UnicodeDecodeError):
            return self.config.unknown_value
        if len(fields) < 3:
            return self.config.unknown_value
        return ", ".join(fields[:3])

    def memory_usage(self) -> str:
        if not self._linux:
            return self.config.unknown_value
        try:
            text = Path(self.config.proc_meminfo).read_text(encoding="utf-8")
        except (OSError, UnicodeDecodeError):
            return self.config.unknown_value

        values: dict[str, int] = {}
        for line in text.splitlines():
            parts = line.split()
            if len(parts) >= 2 and parts[0] in ("MemTotal:", "MemAvailable:"):
                try:
                    values[parts[0]] = int(parts[1])
                except ValueError:
                    continue

        total = values.get("MemTotal:", 0)
        available = values.get("MemAvailable:", 0)
        if total <= 0 or available <= 0:
            return self.config.unknown_value
        used = total - available
        return f"{used // _KB_PER_MB}MB / {total // _KB_PER_MB}MB"

    def disk_usage(self, path: str) -> str:
        if not self._linux:
            return self.config.unknown_value
        try:
            usage = shutil.disk_usage(path)
        except (OSError, ValueError):
            return self.config.unknown_value
        if usage.total <= 0:
            return self.config.unknown_value
        pct = round(usage.used * 100 / usage.total)
        return f"{usage.used / _BYTES_PER_GB:.1f}G / {usage.total / _BYTES_PER_GB:.1f}G ({pct}%)"
