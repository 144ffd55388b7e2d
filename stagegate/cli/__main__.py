"""Entry point for the stagegate CLI when run as python -m stagegate.cli."""

if __name__ == "__main__":
    from stagegate.cli.main import main

    main()
