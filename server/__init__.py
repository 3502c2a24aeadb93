"""MCP server for the DocHarbor search index."""
