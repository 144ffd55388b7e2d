"""Command-line interface for stagegate."""


def main() -> None:
    from stagegate.cli.main import main as cli_main

    cli_main()


__all__ = ["main"]
