"""Entrypoint for running the geocontext MCP server.

Usage:
  python run_mcp_server.py [--host 127.0.0.1] [--port 8765]
  python run_mcp_server.py --stdio

Or via MCP host config (e.g., Claude Desktop) pointing to this script with --stdio.
"""
from mcp_tools_geocontext.mcp.server import main

if __name__ == "__main__":
    main()
