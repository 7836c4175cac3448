"""ASGI entry point (e.g. ``uvicorn biblioteca.api.app:app``)."""

from biblioteca.api.factory import create_app

app = create_app()
