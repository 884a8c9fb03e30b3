"""
CLI layer for strata.

Provides a Typer application whose commands delegate to
``strata.migrations``. This package handles only terminal transport:
argument parsing, coloured output and table formatting.

Entry point::

    strata --help
"""

from strata.cli.app import app

__all__ = ["app"]
