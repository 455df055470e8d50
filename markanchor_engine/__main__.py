"""Entry point for running markanchor_engine as a module.

Usage:
    python -m markanchor_engine <command> [options]
"""
from .cli import main

if __name__ == "__main__":
    raise SystemExit(main())
