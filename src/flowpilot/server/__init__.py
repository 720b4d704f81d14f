"""FastAPI server adapter for flowpilot.

Design intent:
- Keep business logic in `flowpilot.automation.*`
- Keep server-specific concerns (routing, CORS, error rendering) here
"""

from __future__ import annotations

__all__ = ["create_app"]

from flowpilot.server.app import create_app
