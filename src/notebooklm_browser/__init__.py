"""NotebookLM Browser MCP - drive NotebookLM through a real browser."""

__version__ = "0.3.0"
