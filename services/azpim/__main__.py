"""Entry point for ``python -m azpim``."""

from azpim.cli.main import main

if __name__ == "__main__":
    main()
