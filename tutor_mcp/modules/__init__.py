"""Service modules: configuration, MCP client stack, response parsing."""
