"""Cost tracking for Claude Code session logs, served as a JSON API with live updates."""

__version__ = "0.1.0"
__all__ = ["__version__"]