"""obake CLI — Typer-based command-line interface.

Provides the ``obake`` command with groups for building and listing shapes,
managing systemd units, starting and stopping setups, and listing audio
interfaces.

All output uses Rich for formatted terminal display.
"""
