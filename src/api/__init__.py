"""
API module: HTTP and WebSocket boundary for the auction service.
"""

from .app import create_app, main

__all__ = ["create_app", "main"]
