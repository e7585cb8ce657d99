"""
FastAPI backend for the sensor data portal sampling service.

Chart pages of the portal post station series here to have them reduced
before rendering. One LTTB dispatcher (with its worker thread) lives for
the lifetime of the application.
"""

import os

import uvicorn
from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, ORJSONResponse

from portal_sampling import __version__
from portal_sampling.config import load_settings
from portal_sampling.shared.logger import get_logger, setup_logging

settings = load_settings()
setup_logging(settings.log_level)
logger = get_logger(__name__)

from portal_sampling.downsampling import router as downsampling_router
from portal_sampling.jobs import LttbDispatcher
from portal_sampling.system import router as system_router

# Create FastAPI app
app = FastAPI(
    title="Portal Sampling API",
    description="Downsampling of environmental station time series for charting",
    version=__version__,
    default_response_class=ORJSONResponse,
)
app.state.settings = settings


# ============= Exception Handlers for Error Logging =============


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException):
    """Log HTTP exceptions and return JSON response."""
    # Only log 5xx errors (server errors)
    if exc.status_code >= 500:
        logger.error("%s failed (%d): %s", request.url.path, exc.status_code, exc.detail)
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.detail},
    )


@app.exception_handler(Exception)
async def general_exception_handler(request: Request, exc: Exception):
    """Log unexpected exceptions and return JSON response."""
    logger.exception("Unhandled %s on %s: %s", type(exc).__name__, request.url.path, exc)
    return JSONResponse(
        status_code=500,
        content={"detail": "Internal server error"},
    )


# The portal front end is served from another origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=False,  # Must be False when using allow_origins=["*"]
    allow_methods=["*"],
    allow_headers=["*"],
)


# Include API routes
app.include_router(system_router, prefix="/api", tags=["system"])
app.include_router(downsampling_router, prefix="/api", tags=["downsampling"])


# ============= Startup / Shutdown Events =============


@app.on_event("startup")
async def startup_event():
    """Start the LTTB dispatcher for this application instance."""
    app.state.dispatcher = LttbDispatcher(request_timeout=app.state.settings.request_timeout)
    logger.info(
        "Sampling service started (default_max_points=%d, request_timeout=%s)",
        app.state.settings.default_max_points,
        app.state.settings.request_timeout,
    )


@app.on_event("shutdown")
async def shutdown_event():
    """Stop the dispatcher worker; requests still pending are abandoned."""
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is not None:
        # Never join the worker on the event loop
        dispatcher.close(wait=False)
        app.state.dispatcher = None


if __name__ == "__main__":
    import argparse

    parser = argparse.ArgumentParser(description="Portal sampling server")
    parser.add_argument(
        "--port",
        type=int,
        default=settings.port,
        help="Port to run the server on (default: 8000 or PORTAL_SAMPLING_PORT env var)",
    )
    parser.add_argument(
        "--host",
        type=str,
        default=os.environ.get("PORTAL_SAMPLING_HOST", "127.0.0.1"),
        help="Host to bind to (default: 127.0.0.1)",
    )
    parser.add_argument(
        "--reload",
        action=argparse.BooleanOptionalAction,
        default=False,
        help="Enable auto-reload",
    )
    args = parser.parse_args()

    uvicorn.run(
        "main:app",
        host=args.host,
        port=args.port,
        reload=args.reload,
        log_level=settings.log_level.lower(),
    )
