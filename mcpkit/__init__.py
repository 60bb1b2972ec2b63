"""mcpkit: turn a website into an MCP tool server.

The package authenticates into a site with a persistent Chromium profile,
lets a browser agent explore it for automatable actions, and writes a FastMCP
server project exposing those actions as tools.
"""

__version__ = "0.1.0"
