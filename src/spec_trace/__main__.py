"""Module entrypoint for ``python -m spec_trace``."""

from __future__ import annotations

from spec_trace.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
