"""
asgi.py -- Application assembly for ContractPortal.

The ASGI server imports `app` from here rather than from api/main.py so the
deployment target stays stable if further surfaces are mounted later.

Run with:  uvicorn asgi:app --reload
"""

from api.main import app

__all__ = ["app"]
