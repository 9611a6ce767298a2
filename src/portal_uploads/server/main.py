"""
FastAPI server for Portal Uploads.

Hosts one submission session: large attachments are posted here, uploaded to
the portal in the background, and collected for the final submission.
"""

import logging
from contextlib import asynccontextmanager
from typing import Optional

import uvicorn
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from .. import __version__
from ..core.api import PortalUploadAPI
from ..core.models import HealthCheckResponse, UploadContext
from .routes import router
from .session import UploadSession

logger = logging.getLogger(__name__)


def create_app(
    api: Optional[PortalUploadAPI] = None,
    context: Optional[UploadContext] = None,
) -> FastAPI:
    """Create and configure the FastAPI application.

    Args:
        api: Upload API to use (built from environment variables if omitted)
        context: Submission identity (read from PORTAL_* variables if omitted)
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        upload_api = api or PortalUploadAPI()
        upload_context = context or UploadContext.from_env()
        session = UploadSession(upload_api.open_submission(upload_context))
        app.state.session = session
        logger.info(f"Submission session opened for assignment {upload_context.assignment_id}")
        try:
            yield
        finally:
            await session.close()
            await upload_api.aclose()
            logger.info("Submission session closed")

    app = FastAPI(
        title="Portal Uploads API",
        description="""
        REST API for large assignment attachments.

        Files at or above the large-file threshold are uploaded to the portal's
        storage in resumable chunks while the submission form stays usable:
        - Register an upload and follow its progress
        - Rename, remove or retry individual uploads
        - Collect the finished attachments once nothing is still uploading

        Smaller files are rejected here; they travel inline with the submission.
        """,
        version=__version__,
        docs_url="/docs",
        redoc_url="/redoc",
        openapi_url="/openapi.json",
        lifespan=lifespan,
    )

    # CORS middleware
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Include API routes
    app.include_router(router, prefix="/api/v1")

    @app.get("/health", response_model=HealthCheckResponse, tags=["Health"])
    async def health_check() -> HealthCheckResponse:
        """Health check endpoint."""
        return HealthCheckResponse(status="healthy", version=__version__)

    @app.get("/", tags=["Root"])
    async def root():
        """Root endpoint with API information."""
        return {
            "name": "Portal Uploads API",
            "version": __version__,
            "docs": "/docs",
            "health": "/health",
            "openapi": "/openapi.json",
        }

    return app


def main() -> None:
    """Main entry point for the server."""
    import argparse

    parser = argparse.ArgumentParser(description="Portal Uploads API Server")
    parser.add_argument("--host", default="127.0.0.1", help="Host to bind to")
    parser.add_argument("--port", type=int, default=8000, help="Port to bind to")
    parser.add_argument("--log-level", default="info", help="Log level")

    args = parser.parse_args()

    logging.basicConfig(
        level=args.log_level.upper(),
        format="[%(asctime)s] %(levelname)s: %(message)s",
        datefmt="%H:%M:%S",
    )

    # One registry per process; uploads live in memory
    uvicorn.run(create_app(), host=args.host, port=args.port, log_level=args.log_level)


if __name__ == "__main__":
    main()
