"""promote-release CLI: Typer-based command-line interface.

Provides the ``promote-release`` command with subcommands for promoting
one or all channels, verifying a live channel, showing history and
generating signing keys.

Results go to stdout through Rich (or as JSON with ``--json``); logs go to
stderr.
"""
