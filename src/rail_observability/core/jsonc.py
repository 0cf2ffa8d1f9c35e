"""JSON-with-comments helpers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any


def strip_comments(text: str) -> str:
    """Remove // and /* */ comments, leaving string literals untouched.

    Newlines inside block comments are kept so JSON error positions still
    point at the right line.
    """
    out: list[str] = []
    i = 0
    n = len(text)
    in_string = False

    while i < n:
        ch = text[i]
        nxt = text[i + 1] if i + 1 < n else ""

        if in_string:
            out.append(ch)
            if ch == "\\" and nxt:
                out.append(nxt)
                i += 2
                continue
            if ch == '"':
                in_string = False
            i += 1
            continue

        if ch == '"':
            in_string = True
            out.append(ch)
            i += 1
        elif ch == "/" and nxt == "/":
            end = text.find("\n", i)
            i = n if end < 0 else end
        elif ch == "/" and nxt == "*":
            end = text.find("*/", i + 2)
            body = text[i + 2 :] if end < 0 else text[i + 2 : end]
            out.append("\n" * body.count("\n"))
            i = n if end < 0 else end + 2
        else:
            out.append(ch)
            i += 1

    return "".join(out)


def loads(text: str) -> Any:
    """Parse JSONC text. Raises json.JSONDecodeError on invalid input."""
    return json.loads(strip_comments(text))


def load(path: str | Path) -> Any:
    """Read and parse a JSONC file."""
    return loads(Path(path).read_text(encoding="utf-8"))
