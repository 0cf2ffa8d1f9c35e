from __future__ import annotations

import argparse
import json
import sys

from rail_observability.core.config import load_config
from rail_observability.core.health import health_bar, health_indicator
from rail_observability.core.logger import Logger
from rail_observability.core.models import LogLevel
from rail_observability.core.parsing import read_debug_file, read_log_file
from rail_observability.server.log_server import configure_logging
from rail_observability.server.log_server import main as serve_main
from rail_observability.tools.rails import assess_logs_impl, correlate_rails_impl


def _parse_levels(s: str) -> list[LogLevel]:
    out: list[LogLevel] = []
    for part in s.split(","):
        name = part.strip().upper()
        if not name:
            continue
        try:
            out.append(LogLevel(name))
        except ValueError as e:
            allowed = ", ".join(lvl.value for lvl in LogLevel)
            raise argparse.ArgumentTypeError(f"Invalid level. Allowed: {allowed}") from e
    if not out:
        raise argparse.ArgumentTypeError("At least one level must be provided")
    return out


def _cmd_read(args: argparse.Namespace) -> int:
    entries, error = read_log_file(args.log_path)
    ranges = load_config(args.config).config.health.ranges
    if args.levels:
        entries = [e for e in entries if e.level in args.levels]
    if args.context_id:
        entries = [e for e in entries if e.context_id == args.context_id]
    if args.max_results is not None:
        entries = entries[-args.max_results :]

    for e in entries:
        print(
            f"{e.line_no} {e.timestamp.isoformat()} [{e.level.value}] {e.component} "
            f"{e.normalized_health:>4}% {e.event}"
        )
    print(f"\nFound {len(entries)} matching entries.")
    if entries:
        last = entries[-1].normalized_health
        print(f"Health: {health_bar(last)} {last}% {health_indicator(last, ranges)}")
    if error is not None:
        print(f"Parse error: {error}", file=sys.stderr)
        return 1
    return 0


def _cmd_debug(args: argparse.Namespace) -> int:
    entries, error = read_debug_file(args.debug_path)
    for e in entries:
        print(f"{e.line_no} {e.timestamp.isoformat()} [{e.type.value}] {e.label} ({e.call_site})")
        if args.verbose:
            for key, value in e.data.items():
                print(f"    {key}: {value}")
    print(f"\nFound {len(entries)} debug entries.")
    if error is not None:
        print(f"Parse error: {error}", file=sys.stderr)
        return 1
    return 0


def _cmd_assess(args: argparse.Namespace) -> int:
    result = assess_logs_impl(base_dir=args.base_dir)
    print(json.dumps(result, indent=2, ensure_ascii=False))
    return 1 if result["critical_issues"] else 0


def _cmd_correlate(args: argparse.Namespace) -> int:
    result = correlate_rails_impl(log_path=args.log_path, debug_path=args.debug_path)
    print(json.dumps(result, indent=2, ensure_ascii=False, default=str))
    return 0


def _cmd_run(args: argparse.Namespace) -> int:
    logger = Logger.from_config_file(args.component, args.config)
    result = logger.log_command(args.command, args.args, timeout=args.timeout)
    sys.stdout.write(result.stdout)
    sys.stderr.write(result.stderr)
    print(f"Logged to {logger.log_file} (health {logger.health}%)", file=sys.stderr)
    return result.exit_code


def _cmd_serve(args: argparse.Namespace) -> int:
    serve_main([])
    return 0


def build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(prog="rail-obs", description="Dual-rail observability: logs, debug traces, analysis.")
    p.add_argument("--config", default=None, help="Path to a JSONC config (default: $RAIL_OBS_CONFIG or ~/.rail-observability/config.jsonc)")
    sub = p.add_subparsers(dest="cmd", required=True)

    r = sub.add_parser("read", help="Print entries from a component log")
    r.add_argument("log_path")
    r.add_argument("--levels", type=_parse_levels, default=None, help="Comma-separated (e.g., FAILURE,ERROR)")
    r.add_argument("--context-id", default=None, help="Only entries from one run")
    r.add_argument("--max", dest="max_results", type=int, default=None, help="Show only the last N entries")
    r.set_defaults(func=_cmd_read)

    d = sub.add_parser("debug", help="Print entries from a debug file")
    d.add_argument("debug_path")
    d.add_argument("-v", "--verbose", action="store_true", help="Include captured state")
    d.set_defaults(func=_cmd_debug)

    a = sub.add_parser("assess", help="Assess every component log under the base directory")
    a.add_argument("--base-dir", default=None)
    a.set_defaults(func=_cmd_assess)

    c = sub.add_parser("correlate", help="Join a log file and a debug file on context id")
    c.add_argument("log_path")
    c.add_argument("debug_path")
    c.set_defaults(func=_cmd_correlate)

    run = sub.add_parser("run", help="Run a command and log its outcome")
    run.add_argument("component")
    run.add_argument("command")
    run.add_argument("args", nargs=argparse.REMAINDER)
    run.add_argument("--timeout", type=float, default=None, help="Seconds before the command is killed")
    run.set_defaults(func=_cmd_run)

    s = sub.add_parser("serve", help="Start the MCP server over stdio")
    s.set_defaults(func=_cmd_serve)
    return p


def main(argv: list[str] | None = None) -> None:
    args = build_parser().parse_args(argv)
    configure_logging()
    try:
        code = args.func(args)
    except FileNotFoundError as e:
        print(str(e), file=sys.stderr)
        raise SystemExit(2)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        raise SystemExit(2)
    raise SystemExit(code)


if __name__ == "__main__":
    main()
