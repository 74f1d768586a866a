"""Module entrypoint for ``python -m zonebuild``."""

from __future__ import annotations

from zonebuild.main import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
