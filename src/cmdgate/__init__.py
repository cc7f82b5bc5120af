"""Command safety gateway for agent-proposed shell commands."""

from cmdgate.version import __version__

__all__ = ["__version__"]
