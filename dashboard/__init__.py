"""
Dashboard Module
================

HTTP and WebSocket surface for SignalDesk.

Components:
- DashboardServer: FastAPI server with WebSocket support
- ConnectionManager: WebSocket connection management
"""

from __future__ import annotations

from dashboard.server import (
    DashboardServer,
    ConnectionManager,
    create_dashboard_server,
)

__version__ = "1.0.0"

__all__ = [
    "DashboardServer",
    "ConnectionManager",
    "create_dashboard_server",
]
