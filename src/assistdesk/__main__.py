"""
Entry point for running assistdesk as a module.

Usage:
    python -m assistdesk [command] [options]
"""

from assistdesk.cli import main

if __name__ == "__main__":
    main()
