"""Entry point for running stagegate as a module: ``python -m stagegate``."""

from __future__ import annotations


def main() -> None:
    from stagegate.cli import main as cli_main

    cli_main()


if __name__ == "__main__":
    main()
