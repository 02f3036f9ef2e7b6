"""DSAgent CLI UI - Rich terminal interface."""

from dsagent.ui.console import DSAgentConsole

__all__ = ["DSAgentConsole"]
