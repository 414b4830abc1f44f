"""
CLI runner module.

Provides commands:
- init-config: Write a default config file
- clean: Run the field rules over a CSV file
- export: Export a cleaned batch (CSV, JSON, bank bulk layouts)
- status: State store statistics
"""

from .main import create_cli, main

__all__ = [
    "create_cli",
    "main",
]
