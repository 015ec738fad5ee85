"""Command-line interface package for the scanner."""

from .app import build_parser, main, run
from .reporting import render_json, render_text, render_vet_json, render_vet_text

__all__ = [
    "build_parser",
    "main",
    "render_json",
    "render_text",
    "render_vet_json",
    "render_vet_text",
    "run",
]
