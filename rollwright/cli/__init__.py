"""Rollwright CLI — Typer-based command-line interface."""
