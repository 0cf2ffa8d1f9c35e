"""Module entrypoint.

Allows:
    python -m rail_observability
"""

from __future__ import annotations

from rail_observability.cli import main

if __name__ == "__main__":
    main()
