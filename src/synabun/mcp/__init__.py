"""Assistant tool runtime (MCP)."""
