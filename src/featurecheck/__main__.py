"""Module entrypoint for ``python -m featurecheck``."""

from __future__ import annotations

from featurecheck.ui.cli import cli_entrypoint

if __name__ == "__main__":
    raise SystemExit(cli_entrypoint())
