"""
Bridge MCP Server

Exposes recall and pattern maintenance as MCP tools over stdio.
"""

from .server import BridgeServerApp, create_app, main

__all__ = ["BridgeServerApp", "create_app", "main"]
