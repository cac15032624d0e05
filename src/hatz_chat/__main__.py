"""
Entry point for running Hatz Chat as a module.

This allows users to run the CLI using:
    python -m hatz_chat [command] [options]
"""

from hatz_chat.cli.app import main

if __name__ == "__main__":
    main()
