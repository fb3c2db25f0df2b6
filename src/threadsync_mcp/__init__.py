"""threadsync-mcp-server: comment thread sync and outbox for MCP agents."""

__version__ = "0.1.0"
