"""FastAPI application factory."""

import os

from fastapi import FastAPI, Request, Response

from biblioteca.observability.correlation import CORRELATION_ID_HEADER, bound_correlation_id

from .routes import books, reservations


def create_app(title: str | None = None) -> FastAPI:
    """Create the FastAPI app with health, reservation and availability routes.

    Args:
        title: Explicit title override. If None, reads APP_TITLE
            (default "Biblioteca").
    """
    app = FastAPI(
        title=title or os.environ.get("APP_TITLE", "Biblioteca"),
        docs_url=None,
        redoc_url=None,
    )

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next) -> Response:
        with bound_correlation_id(request.headers.get(CORRELATION_ID_HEADER)) as cid:
            response = await call_next(request)
            response.headers[CORRELATION_ID_HEADER] = cid
            return response

    @app.get("/health")
    def health() -> dict:
        """Health check endpoint."""
        return {"status": "ok"}

    app.include_router(reservations.router)
    app.include_router(books.router)

    return app
