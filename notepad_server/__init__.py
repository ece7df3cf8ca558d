"""Human-in-the-loop notepad relay for MCP agents."""

__version__ = "2.0.0"
