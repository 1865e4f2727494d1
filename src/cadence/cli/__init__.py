"""
CLI layer for cadence.

Terminal transport only: argument parsing, coloured output and table
formatting. Work is delegated to the repositories and services.

Entry point::

    cadence --help
"""

from cadence.cli.app import app

__all__ = ["app"]
