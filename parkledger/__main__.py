"""
Convenience entry point for running parkledger as a module.

Usage: python -m parkledger [command] [options]
"""

from .cli.app import app

if __name__ == "__main__":
    app()
