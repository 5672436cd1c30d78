"""Entrypoint for ``python -m sheetops``: run the stdio session server."""

from sheetops.server.stdio import main

if __name__ == "__main__":
    main()
