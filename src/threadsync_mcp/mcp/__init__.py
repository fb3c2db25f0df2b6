"""MCP server exposing comment sync tools over stdio."""
