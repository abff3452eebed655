"""Command-line interface for the verification engine."""

from manito_verify.cli.main import main

__all__ = ["main"]
