"""Entrypoint for running the dispatch service with uvicorn."""

from fastapi import FastAPI

from .app import app


def get_app() -> FastAPI:
    """Return the FastAPI app instance."""
    return app


if __name__ == "__main__":  # pragma: no cover
    import uvicorn

    uvicorn.run(
        "services.dispatch.main:app",
        host="0.0.0.0",
        port=8000,
        reload=True,
    )
