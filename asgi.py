"""
asgi.py -- Application assembly for the Slotly auth service.

The ASGI server imports `app` from here so deployment configuration never
needs to know the internal module layout of api/.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
