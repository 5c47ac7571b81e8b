"""Entry point for `python -m rde_cli` and the `rde` console script."""

from __future__ import annotations

from rde_cli.app import app


def main() -> None:
    app()


if __name__ == "__main__":
    main()
