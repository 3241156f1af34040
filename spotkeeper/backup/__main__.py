"""Entry point for ``python -m spotkeeper.backup``."""

from spotkeeper.backup import main

if __name__ == "__main__":
    main()
