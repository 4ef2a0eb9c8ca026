"""
asgi.py -- ASGI entry point for ETracker.

Run with:  uvicorn asgi:app --reload

The presentation layer (admin portal, dashboards) lives outside this
repository and talks to the JSON API mounted here.
"""

from api.main import app

__all__ = ["app"]
