"""Terminal front end."""

from companion.cli.app import create_parser, main

__all__ = ["create_parser", "main"]
