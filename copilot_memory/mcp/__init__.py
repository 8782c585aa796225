"""MCP front end for copilot_memory (requires the ``mcp`` extra)."""
